"""Retrieval tools over the three vector collections.

Every tool follows the same recipe:
1. Embed the query and take the collection's top-k nearest neighbours
2. Keep only results whose metadata equals every supplied filter (AND)
3. Return them ranked by similarity (``1 - distance``)

Filtering happens AFTER the similarity search, so a narrow filter can
return fewer than k results, or none. An empty list is a valid answer.

Tools never raise: unknown filters, embedding failures and store errors
all come back as an error-flagged ``ToolResponse``.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from plansearch.llm.tracing import observe
from plansearch.rag.models import SearchResult, ToolResponse
from plansearch.rag.schema import FILTER_FIELDS
from plansearch.rag.store import StoreContext, VectorCollection

logger = logging.getLogger(__name__)

IMAGES_UNAVAILABLE = (
    "Image search is unavailable: no images have been indexed yet. "
    "Seed the images collection with: python -m plansearch.rag.ingest "
    "--files-dir <your_files_dir> --extract-images"
)


# =============================================================================
# FILTERING
# =============================================================================


def active_filters(filters: Mapping[str, Any]) -> dict[str, str]:
    """Drop unset filters; blank strings count as unset."""
    return {
        key: str(value).strip()
        for key, value in filters.items()
        if value is not None and str(value).strip()
    }


def matches_filters(metadata: Mapping[str, Any], filters: Mapping[str, str]) -> bool:
    """
    Conjunctive exact-match check.

    A record lacking a filtered-on field never matches.
    """
    for key, expected in filters.items():
        if key not in metadata or metadata[key] is None:
            return False
        if str(metadata[key]) != expected:
            return False
    return True


def _search(
    tool: str,
    collection: VectorCollection,
    query: str,
    filters: Mapping[str, Any],
    allowed: tuple[str, ...],
    top_k: int,
) -> ToolResponse:
    unsupported = sorted(set(filters) - set(allowed))
    if unsupported:
        return ToolResponse.failure(
            tool,
            f"Unsupported filter(s) for {tool}: {', '.join(unsupported)}. "
            f"Supported filters: {', '.join(allowed)}",
        )

    wanted = active_filters(filters)
    try:
        hits = collection.similarity_search(query, top_k)
    except Exception as e:
        logger.exception(f"{tool} failed for query {query!r}")
        return ToolResponse.failure(tool, f"Error executing {tool}: {e}")

    results = [
        SearchResult(content=hit.text, metadata=hit.metadata, similarity=hit.similarity)
        for hit in hits
        if matches_filters(hit.metadata, wanted)
    ]
    logger.info(
        f"{tool}: {len(hits)} neighbours, {len(results)} after filters {wanted or '(none)'}"
    )
    return ToolResponse(tool=tool, results=results)


# =============================================================================
# TOOLS
# =============================================================================

CATALOG_FILTERS = FILTER_FIELDS
CHUNKS_FILTERS = FILTER_FIELDS
ALL_CHUNKS_FILTERS: tuple[str, ...] = ("project", "discipline", "drawingType", "phase", "buildingArea")
IMAGE_FILTERS: tuple[str, ...] = (
    "source",
    "project",
    "discipline",
    "drawingType",
    "drawingNumber",
    "buildingArea",
)


@observe(name="catalog_search")
def catalog_search(ctx: StoreContext, query: str, **filters: Any) -> ToolResponse:
    """Find whole documents by their one-sentence overview."""
    return _search("catalog_search", ctx.catalog, query, filters, CATALOG_FILTERS, ctx.rag.top_k)


@observe(name="chunks_search")
def chunks_search(ctx: StoreContext, query: str, **filters: Any) -> ToolResponse:
    """Find text chunks, typically narrowed to one source or drawing."""
    return _search("chunks_search", ctx.chunks, query, filters, CHUNKS_FILTERS, ctx.rag.top_k)


@observe(name="all_chunks_search")
def all_chunks_search(ctx: StoreContext, query: str, **filters: Any) -> ToolResponse:
    """Find text chunks across all documents (no per-document filters)."""
    return _search(
        "all_chunks_search", ctx.chunks, query, filters, ALL_CHUNKS_FILTERS, ctx.rag.top_k
    )


@observe(name="image_search")
def image_search(ctx: StoreContext, query: str, **filters: Any) -> ToolResponse:
    """Find page images by a textual description of what they show."""
    if ctx.images is None:
        return ToolResponse.failure("image_search", IMAGES_UNAVAILABLE)
    return _search("image_search", ctx.images, query, filters, IMAGE_FILTERS, ctx.rag.top_k)


@dataclass(frozen=True)
class ToolEntry:
    """A retrieval tool and how it is advertised."""

    name: str
    description: str
    filters: tuple[str, ...]
    run: Callable[..., ToolResponse]


TOOLS: dict[str, ToolEntry] = {
    tool.name: tool
    for tool in (
        ToolEntry(
            "catalog_search",
            "Search for relevant documents in the catalog with metadata filtering",
            CATALOG_FILTERS,
            catalog_search,
        ),
        ToolEntry(
            "chunks_search",
            "Search for relevant document chunks in the vector store with metadata filtering",
            CHUNKS_FILTERS,
            chunks_search,
        ),
        ToolEntry(
            "all_chunks_search",
            "Search for relevant document chunks across all documents with optional metadata filtering",
            ALL_CHUNKS_FILTERS,
            all_chunks_search,
        ),
        ToolEntry(
            "image_search",
            "Search for drawing images by a textual description with metadata filtering",
            IMAGE_FILTERS,
            image_search,
        ),
    )
}


def run_tool(ctx: StoreContext, name: str, query: str, **filters: Any) -> ToolResponse:
    """Dispatch a tool by name. Unknown tools yield an error response."""
    tool = TOOLS.get(name)
    if tool is None:
        return ToolResponse.failure(name, f"Unknown tool: {name}. Available: {', '.join(TOOLS)}")
    return tool.run(ctx, query, **filters)
