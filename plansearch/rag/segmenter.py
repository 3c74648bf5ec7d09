"""Chunking of loaded documents for embedding.

Every page of a ``SourceDocument`` is cut into overlapping windows measured
in characters (not tokens). Boundaries prefer paragraphs, then sentences,
then words, then single characters; no other semantic awareness is applied
and the same windowing is used for drawings and specifications alike.

Each chunk carries only its own location marker (page, chunk index) and
its source; document-level metadata is attached later by the enricher.
"""

import logging

from llama_index.core.node_parser import SentenceSplitter

from plansearch.core.config import settings
from plansearch.rag.models import SourceDocument
from plansearch.rag.schema import ChunkRecord

logger = logging.getLogger(__name__)


def build_splitter(chunk_size: int | None = None, chunk_overlap: int | None = None) -> SentenceSplitter:
    """
    Character-count splitter.

    ``SentenceSplitter`` measures size with its tokenizer; passing ``list``
    makes one character one unit.
    """
    return SentenceSplitter(
        chunk_size=chunk_size or settings.rag.chunk_size,
        chunk_overlap=settings.rag.chunk_overlap if chunk_overlap is None else chunk_overlap,
        tokenizer=list,
        paragraph_separator="\n\n",
    )


def split_document(
    document: SourceDocument,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> list[ChunkRecord]:
    """
    Split a document into embedding-ready chunks.

    Args:
        document: Loaded source document.
        chunk_size: Window size in characters (default ``settings.rag.chunk_size``).
        chunk_overlap: Overlap in characters (default ``settings.rag.chunk_overlap``).

    Returns:
        ChunkRecords in page order with minimal metadata
        ``{source, page, chunk_index}``.
    """
    splitter = build_splitter(chunk_size, chunk_overlap)
    chunks: list[ChunkRecord] = []

    for page in document.pages:
        if not page.text.strip():
            continue
        for index, text in enumerate(splitter.split_text(page.text)):
            chunks.append(
                ChunkRecord(
                    text=text,
                    source=document.source,
                    hash=document.hash,
                    page=page.page,
                    chunk_index=index,
                    metadata={"source": document.source, "page": page.page, "chunk_index": index},
                )
            )

    return chunks


def split_documents(
    documents: list[SourceDocument],
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> list[ChunkRecord]:
    """Split many documents, preserving document order."""
    chunks: list[ChunkRecord] = []
    for document in documents:
        chunks.extend(split_document(document, chunk_size, chunk_overlap))
    logger.info(f"Split {len(documents)} documents into {len(chunks)} chunks")
    return chunks
