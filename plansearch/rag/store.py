"""Persisted vector collections and the store context.

Three independent collections back retrieval:

- catalog: one record per source document (overview + canonical metadata)
- chunks: fixed-size text windows with inherited metadata
- images: page images indexed through a textual description

Each collection is a llama-index ``VectorStoreIndex`` persisted in its own
directory under the index dir, next to a ``manifest.json`` stamping the
embedding model that built it. Opening a collection with a different model
is refused, since similarity between vectors of two models is meaningless.

All storage handles are owned by a ``StoreContext`` built once at startup
and passed explicitly to the indexer and the retrieval tools.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Self

from llama_index.core import StorageContext, load_index_from_storage
from llama_index.core.base.embeddings.base import BaseEmbedding
from llama_index.core.indices.vector_store import VectorStoreIndex
from llama_index.core.schema import BaseNode, NodeRelationship, RelatedNodeInfo, TextNode
from pydantic import BaseModel, Field

from plansearch.core.config import RAGSettings, settings

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


# =============================================================================
# ERRORS
# =============================================================================


class CollectionNotFoundError(FileNotFoundError):
    """A collection the caller expected has never been built."""

    def __init__(self, name: str, index_dir: Path) -> None:
        self.name = name
        self.index_dir = index_dir
        super().__init__(
            f"Table '{name}' not found in {index_dir}. Have you seeded the index yet? "
            f"Run: python -m plansearch.rag.ingest --files-dir <your_files_dir> "
            f"--index-dir {index_dir}"
        )


class EmbeddingModelMismatchError(RuntimeError):
    """A collection was built with a different embedding model."""

    def __init__(self, name: str, stored: str, requested: str) -> None:
        self.name = name
        self.stored = stored
        self.requested = requested
        super().__init__(
            f"Collection '{name}' was built with embedding model '{stored}' "
            f"but is being opened with '{requested}'. Re-index with --overwrite "
            "or configure RAG__EMBEDDING_MODEL to match."
        )


# =============================================================================
# RECORDS
# =============================================================================


class CollectionManifest(BaseModel):
    """Identity of a persisted collection."""

    name: str
    embedding_model: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class StoredRecord(BaseModel):
    """A record to insert: id, embedded text, flat metadata payload."""

    id: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    document_id: str = Field(description="Content hash of the source document")


@dataclass
class SimilarityHit:
    """One nearest-neighbour result."""

    id: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)
    distance: float = 0.0

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


def embed_model_id(embed_model: BaseEmbedding) -> str:
    """Identifier stamped into collection manifests."""
    return embed_model.model_name


def _to_node(record: StoredRecord) -> TextNode:
    keys = list(record.metadata)
    return TextNode(
        id_=record.id,
        text=record.text,
        metadata=dict(record.metadata),
        # Only the text itself is embedded; metadata is for filtering
        excluded_embed_metadata_keys=keys,
        excluded_llm_metadata_keys=keys,
        relationships={NodeRelationship.SOURCE: RelatedNodeInfo(node_id=record.document_id)},
    )


# =============================================================================
# COLLECTION
# =============================================================================


class VectorCollection:
    """
    A named, persisted similarity-search table.

    Supports insert, exact-predicate lookup, top-k similarity search and
    deletion by source document hash.
    """

    def __init__(
        self,
        name: str,
        persist_dir: Path,
        index: VectorStoreIndex,
        manifest: CollectionManifest,
    ) -> None:
        self.name = name
        self.persist_dir = persist_dir
        self.manifest = manifest
        self._index = index

    # ---------------------------------------------------------------- lifecycle

    @classmethod
    def create(cls, name: str, index_dir: Path, embed_model: BaseEmbedding) -> Self:
        """Create an empty collection (persisted on the first ``persist()``)."""
        index = VectorStoreIndex(
            nodes=[],
            storage_context=StorageContext.from_defaults(),
            embed_model=embed_model,
        )
        manifest = CollectionManifest(name=name, embedding_model=embed_model_id(embed_model))
        logger.info(f"Created collection '{name}' ({manifest.embedding_model})")
        return cls(name, index_dir / name, index, manifest)

    @classmethod
    def load(
        cls,
        name: str,
        index_dir: Path,
        embed_model: BaseEmbedding,
        strict: bool = True,
    ) -> Self:
        """
        Load a persisted collection.

        Raises:
            CollectionNotFoundError: If the collection was never persisted.
            EmbeddingModelMismatchError: If the collection was built with a
                different embedding model and ``strict`` is set.
        """
        persist_dir = index_dir / name
        manifest_path = persist_dir / MANIFEST_FILE
        if not manifest_path.exists():
            raise CollectionNotFoundError(name, index_dir)

        manifest = CollectionManifest.model_validate_json(manifest_path.read_text())
        requested = embed_model_id(embed_model)
        if manifest.embedding_model != requested:
            if strict:
                raise EmbeddingModelMismatchError(name, manifest.embedding_model, requested)
            logger.warning(
                f"!!! Collection '{name}' was built with '{manifest.embedding_model}' "
                f"but queried with '{requested}'. Similarity scores are unreliable. !!!"
            )

        try:
            storage_context = StorageContext.from_defaults(persist_dir=str(persist_dir))
            index = load_index_from_storage(storage_context, embed_model=embed_model)
        except FileNotFoundError as e:
            raise CollectionNotFoundError(name, index_dir) from e

        if not isinstance(index, VectorStoreIndex):
            raise RuntimeError(f"Expected VectorStoreIndex, got {type(index)}")

        collection = cls(name, persist_dir, index, manifest)
        logger.info(f"Loaded collection '{name}' with {collection.count()} records")
        return collection

    @classmethod
    def open_or_create(
        cls,
        name: str,
        index_dir: Path,
        embed_model: BaseEmbedding,
        strict: bool = True,
    ) -> Self:
        try:
            return cls.load(name, index_dir, embed_model, strict=strict)
        except CollectionNotFoundError:
            logger.info(f"Collection '{name}' doesn't exist yet. Creating it.")
            return cls.create(name, index_dir, embed_model)

    def persist(self) -> None:
        self.persist_dir.mkdir(parents=True, exist_ok=True)
        self._index.storage_context.persist(persist_dir=str(self.persist_dir))
        (self.persist_dir / MANIFEST_FILE).write_text(self.manifest.model_dump_json(indent=2))
        logger.info(f"Persisted collection '{self.name}' to {self.persist_dir}")

    # ---------------------------------------------------------------- writes

    def insert(self, records: list[StoredRecord]) -> int:
        """Embed and insert records. Returns the number inserted."""
        if not records:
            return 0
        self._index.insert_nodes([_to_node(record) for record in records])
        return len(records)

    def delete_document(self, document_id: str) -> None:
        """Delete every record derived from a source document hash."""
        self._index.delete_ref_doc(document_id, delete_from_docstore=True)

    # ---------------------------------------------------------------- reads

    def _nodes(self) -> list[BaseNode]:
        return list(self._index.docstore.docs.values())

    def count(self) -> int:
        return len(self._index.docstore.docs)

    def find(self, where: dict[str, Any], limit: int | None = None) -> list[SimilarityHit]:
        """
        Exact-predicate lookup (no similarity involved).

        Args:
            where: Field -> value equality conditions, all of which must hold.
            limit: Maximum number of records to return.
        """
        hits: list[SimilarityHit] = []
        for node in self._nodes():
            metadata = node.metadata
            if all(key in metadata and metadata[key] == value for key, value in where.items()):
                hits.append(
                    SimilarityHit(id=node.node_id, text=node.get_content(), metadata=dict(metadata))
                )
                if limit is not None and len(hits) >= limit:
                    break
        return hits

    def similarity_search(self, query: str, top_k: int) -> list[SimilarityHit]:
        """Top-k nearest neighbours of the embedded query, most similar first."""
        if self.count() == 0:
            return []

        retriever = self._index.as_retriever(similarity_top_k=top_k)
        results = retriever.retrieve(query)
        return [
            SimilarityHit(
                id=result.node.node_id,
                text=result.node.get_content(),
                metadata=dict(result.node.metadata),
                distance=1.0 - (result.score if result.score is not None else 0.0),
            )
            for result in results
        ]


def drop_collection(name: str, index_dir: Path) -> bool:
    """Delete a persisted collection. Returns False if it did not exist."""
    persist_dir = index_dir / name
    if not persist_dir.exists():
        return False
    shutil.rmtree(persist_dir)
    logger.info(f"Dropped collection '{name}'")
    return True


# =============================================================================
# STORE CONTEXT
# =============================================================================


@dataclass
class StoreContext:
    """
    Storage handles shared by the query server.

    ``images`` is None when no image has ever been indexed; image search
    reports itself unavailable in that case.
    """

    catalog: VectorCollection
    chunks: VectorCollection
    images: VectorCollection | None
    embed_model: BaseEmbedding
    rag: RAGSettings = field(default_factory=lambda: settings.rag)

    @classmethod
    def open(
        cls,
        index_dir: Path,
        embed_model: BaseEmbedding,
        rag_settings: RAGSettings | None = None,
    ) -> Self:
        """
        Open all collections for querying.

        Raises:
            CollectionNotFoundError: If the catalog or chunks collection is
                missing. A missing images collection is not an error.
            EmbeddingModelMismatchError: If a collection was built with a
                different embedding model (strict mode).
        """
        rag = rag_settings or settings.rag
        strict = rag.strict_embedding_model
        logger.info(f"Connecting to collections in {index_dir}")

        catalog = VectorCollection.load(rag.catalog_collection, index_dir, embed_model, strict)
        chunks = VectorCollection.load(rag.chunks_collection, index_dir, embed_model, strict)

        images: VectorCollection | None
        try:
            images = VectorCollection.load(rag.images_collection, index_dir, embed_model, strict)
        except CollectionNotFoundError:
            logger.warning(
                f"Image collection '{rag.images_collection}' not found; image search is unavailable"
            )
            images = None

        return cls(catalog=catalog, chunks=chunks, images=images, embed_model=embed_model, rag=rag)
