"""Shared models for the indexing and retrieval pipeline.

This module contains the Pydantic models passed between components:
loaded source documents, AI extraction outcomes, catalog gate results,
ingestion reports and retrieval tool responses. Keeping them in one place
makes the data contracts clear and lets tests build them directly.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from plansearch.rag.schema import CatalogRecord, DocumentMetadata

# =============================================================================
# SOURCE DOCUMENTS
# =============================================================================


class PageText(BaseModel):
    """Text of a single PDF page."""

    page: int = Field(ge=1)
    text: str


class SourceDocument(BaseModel):
    """A loaded source file: raw-bytes hash plus per-page text."""

    source: str = Field(description="Absolute path of the source file")
    hash: str = Field(description="Lowercase hex SHA-256 of the raw file bytes")
    pages: list[PageText] = Field(default_factory=list)
    page_count: int = Field(default=0, ge=0)
    needs_splitting: bool = False
    extraction_error: str | None = Field(
        default=None,
        description="Set when text extraction failed and placeholder text was used",
    )

    @property
    def full_text(self) -> str:
        return " ".join(page.text for page in self.pages)


# =============================================================================
# AI METADATA EXTRACTION OUTCOME
# =============================================================================


class AIExtractionOk(BaseModel):
    """The model answered with parseable metadata (possibly empty)."""

    status: Literal["ok"] = "ok"
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


class AIExtractionFailed(BaseModel):
    """The model call failed or its answer could not be parsed."""

    status: Literal["failed"] = "failed"
    reason: str
    raw_output: str | None = None

    @property
    def metadata(self) -> DocumentMetadata:
        # A failed extraction contributes nothing to the merge
        return DocumentMetadata()


AIExtractionResult = AIExtractionOk | AIExtractionFailed


# =============================================================================
# INDEXING RESULTS
# =============================================================================


class CatalogGateResult(BaseModel):
    """Decisions made by the catalog gate for one indexing run."""

    skip_sources: set[str] = Field(
        default_factory=set,
        description="Sources whose content hash is already catalogued",
    )
    catalog_records: list[CatalogRecord] = Field(default_factory=list)
    failed_sources: list[str] = Field(
        default_factory=list,
        description="Sources whose catalog record could not be built",
    )


class IngestionReport(BaseModel):
    """Counts reported at the end of an indexing run."""

    new_catalog_records: int = 0
    skipped_sources: int = 0
    failed_sources: int = 0
    new_chunks: int = 0
    new_images: int = 0
    stale_records_removed: int = 0


# =============================================================================
# RETRIEVAL TOOL RESPONSES
# =============================================================================


class SearchResult(BaseModel):
    """A single similarity hit that passed the metadata filters."""

    content: str = Field(description="Chunk text, catalog overview or image description")
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity: float = Field(description="1 - vector distance")


class ToolResponse(BaseModel):
    """Uniform response of every retrieval tool.

    Tools never raise: failures come back with ``is_error`` set and an
    explanatory ``error`` message.
    """

    tool: str
    results: list[SearchResult] = Field(default_factory=list)
    is_error: bool = False
    error: str | None = None

    @classmethod
    def failure(cls, tool: str, message: str) -> "ToolResponse":
        return cls(tool=tool, is_error=True, error=message)
