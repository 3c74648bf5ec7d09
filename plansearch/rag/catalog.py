"""Content-addressed catalog: the dedup gate and chunk enrichment.

Every source document gets exactly one catalog record keyed by the SHA-256
of its raw bytes. Before any expensive work (metadata extraction, overview
generation, chunk embedding) the gate checks whether that hash is already
catalogued, so re-running the indexer over an unchanged folder is cheap.

The catalog record's metadata is the canonical description of a document;
``enrich_chunks`` copies it onto every chunk cut from the same source so
chunk-level searches can be filtered without a join.
"""

import logging

from plansearch.core.config import settings
from plansearch.llm.client import TextGenerator
from plansearch.llm.tracing import observe
from plansearch.rag.extractors import compute_file_hash, extract_key_sections
from plansearch.rag.metadata import extract_metadata
from plansearch.rag.models import CatalogGateResult, SourceDocument
from plansearch.rag.schema import CatalogRecord, ChunkRecord
from plansearch.rag.store import StoredRecord, VectorCollection

logger = logging.getLogger(__name__)

__all__ = [
    "OVERVIEW_PROMPT",
    "catalog_record_exists",
    "compute_file_hash",
    "enrich_chunks",
    "generate_content_overview",
    "process_documents",
    "remove_stale_sources",
    "to_catalog_records",
    "to_chunk_records",
]

OVERVIEW_PROMPT = """Write a high-level one sentence content overview based on the text below.
If this appears to be a technical drawing or plan, describe what type of drawing it is and what it depicts.

"{text}"

WRITE THE CONTENT OVERVIEW ONLY, DO NOT WRITE ANYTHING ELSE:"""


# =============================================================================
# DEDUP GATE
# =============================================================================


def catalog_record_exists(catalog: VectorCollection, content_hash: str) -> bool:
    """Exact predicate query on the hash field (no similarity involved)."""
    return bool(catalog.find({"hash": content_hash}, limit=1))


@observe(name="generate_content_overview")
def generate_content_overview(
    text: str,
    generate: TextGenerator,
    max_chars: int | None = None,
) -> str:
    """One-sentence overview of a document, used as the catalog embedding text."""
    limit = max_chars or settings.metadata.max_summarization_chars
    return generate(OVERVIEW_PROMPT.format(text=text[:limit])).strip()


def _build_catalog_record(document: SourceDocument, generate: TextGenerator) -> CatalogRecord:
    sections = extract_key_sections(document)
    first_section = sections[0].content if sections else None

    metadata = extract_metadata(
        document.source,
        content=document.full_text,
        first_section=first_section,
        generate=generate,
    )

    overview = generate_content_overview(document.full_text, generate)
    if not overview:
        raise ValueError("model returned an empty content overview")

    return CatalogRecord(
        source=document.source,
        hash=document.hash,
        metadata=metadata,
        page_content=overview,
    )


@observe(name="process_documents")
def process_documents(
    documents: list[SourceDocument],
    catalog: VectorCollection | None,
    generate: TextGenerator,
    skip_exists_check: bool = False,
) -> CatalogGateResult:
    """
    Run the catalog gate over a batch of loaded documents.

    For each document:
    - hash already catalogued (or already staged this run): add its source
      to the skip set; no other work is done
    - otherwise: extract and merge metadata, generate the overview and
      stage a new catalog record

    A failure while building one record is logged and the document is
    reported as failed. It is NOT added to the skip set, so its chunks are
    still indexed.

    Args:
        documents: Loaded documents, in processing order.
        catalog: Existing catalog collection (None when starting fresh).
        generate: Text generation function for overviews and AI metadata.
        skip_exists_check: Skip the catalog lookup (used with ``--overwrite``).

    Returns:
        CatalogGateResult with the skip set, staged records and failures.
    """
    result = CatalogGateResult()
    staged_hashes: set[str] = set()

    for document in documents:
        if document.hash in staged_hashes:
            logger.info(f"Duplicate content staged earlier in this run, skipping {document.source}")
            result.skip_sources.add(document.source)
            continue

        if (
            not skip_exists_check
            and catalog is not None
            and catalog_record_exists(catalog, document.hash)
        ):
            logger.info(f"Document already catalogued, skipping {document.source}")
            result.skip_sources.add(document.source)
            continue

        try:
            record = _build_catalog_record(document, generate)
        except Exception:
            logger.exception(f"Error processing document {document.source}")
            result.failed_sources.append(document.source)
            continue

        logger.info(f"Content overview for {document.source}: {record.page_content}")
        staged_hashes.add(document.hash)
        result.catalog_records.append(record)

    logger.info(
        f"Catalog gate: {len(result.catalog_records)} new, "
        f"{len(result.skip_sources)} skipped, {len(result.failed_sources)} failed"
    )
    return result


def remove_stale_sources(
    documents: list[SourceDocument] | list[CatalogRecord],
    collections: list[VectorCollection],
    catalog: VectorCollection,
) -> int:
    """
    Delete records of sources whose bytes changed since they were catalogued.

    The old catalog record and everything derived from it (chunks, images)
    is removed so search never returns two versions of one file. Run this
    before the dedup gate: another file in the batch that still holds the
    old bytes then finds no catalog record for them and is catalogued under
    its own path in the same run.

    Returns:
        Number of stale source hashes removed.
    """
    removed = 0
    for document in documents:
        stale_hashes = {
            hit.metadata["hash"]
            for hit in catalog.find({"source": document.source})
            if hit.metadata.get("hash") != document.hash
        }
        for stale_hash in stale_hashes:
            logger.info(f"Removing stale records of {document.source} (hash {stale_hash[:12]})")
            for collection in collections:
                collection.delete_document(stale_hash)
            removed += 1
    return removed


# =============================================================================
# CHUNK ENRICHMENT
# =============================================================================


def enrich_chunks(chunks: list[ChunkRecord], catalog_records: list[CatalogRecord]) -> list[ChunkRecord]:
    """
    Copy catalog metadata onto chunks of the same source.

    Matched chunks get ``{**catalog payload, page, chunk_index}``; the
    chunk's own location wins over any same-named catalog key. Chunks with
    no matching catalog record keep ``{source, page, chunk_index}``.
    """
    payloads = {record.source: record.payload() for record in catalog_records}
    enriched: list[ChunkRecord] = []
    unmatched = 0

    for chunk in chunks:
        location = chunk.location()
        payload = payloads.get(chunk.source)
        if payload is None:
            unmatched += 1
            metadata = {"source": chunk.source, **location}
        else:
            metadata = {**payload, **location}
        enriched.append(chunk.model_copy(update={"metadata": metadata}))

    if unmatched:
        logger.debug(f"{unmatched} chunks had no catalog record to inherit metadata from")
    return enriched


# =============================================================================
# STORAGE RECORDS
# =============================================================================


def to_catalog_records(records: list[CatalogRecord]) -> list[StoredRecord]:
    """Catalog records keyed by content hash, embedded through their overview."""
    return [
        StoredRecord(
            id=record.hash,
            text=record.page_content,
            metadata=record.payload(),
            document_id=record.hash,
        )
        for record in records
    ]


def to_chunk_records(chunks: list[ChunkRecord]) -> list[StoredRecord]:
    return [
        StoredRecord(
            id=f"{chunk.hash}:{chunk.source}:{chunk.page}:{chunk.chunk_index}",
            text=chunk.text,
            metadata=dict(chunk.metadata),
            document_id=chunk.hash,
        )
        for chunk in chunks
    ]
