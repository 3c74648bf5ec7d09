"""Document metadata schema for construction documents.

This module defines the records that flow through indexing:

1. DocumentMetadata: canonical fields for one source file (merged from
   path, content and AI extraction)
2. CatalogRecord: one record per source file, keyed by content hash
3. ChunkRecord: a fixed-size text window inheriting its parent's metadata
4. ImageRecord: a rendered page image described in text for embedding

Metadata enables exact-match filtering at query time ("only Structural
drawings of project X") and gives the assistant context for citations.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class DocumentType(str, Enum):
    """Kinds of source documents, derived from the folder taxonomy."""

    DRAWING = "Drawing"
    TEXT_DOC = "TextDoc"
    SPECIFICATION = "Specification"


# Fixed, closed set of metadata fields surfaced to callers and filters
METADATA_FIELDS: tuple[str, ...] = (
    "project",
    "discipline",
    "drawingNumber",
    "drawingType",
    "phase",
    "documentType",
    "section",
    "revision",
)

# Fields accepted as exact-match filters by the retrieval tools
FILTER_FIELDS: tuple[str, ...] = (
    "project",
    "discipline",
    "drawingNumber",
    "drawingType",
    "phase",
    "source",
    "buildingArea",
)

# Chunk-local keys that survive metadata enrichment
LOCATION_KEYS: tuple[str, ...] = ("page", "chunk_index")


class DocumentMetadata(BaseModel):
    """
    Canonical metadata for a single source document.

    Every field is optional. Present fields are non-empty trimmed strings;
    blank values are normalized to None so they never overwrite anything
    during a merge and are omitted when stored.
    """

    project: str | None = None
    discipline: str | None = None
    drawingNumber: str | None = None
    drawingType: str | None = None
    phase: str | None = None
    documentType: str | None = None
    revision: str | None = None
    buildingArea: str | None = None
    sheetNumber: str | None = None
    section: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, Enum):
            value = value.value
        if not isinstance(value, str):
            value = str(value)
        value = value.strip()
        return value or None

    def to_metadata(self) -> dict[str, str]:
        """Return only the fields that are set."""
        return self.model_dump(exclude_none=True)


class CatalogRecord(BaseModel):
    """One record per source document in the catalog collection."""

    source: str = Field(description="Absolute path of the source file")
    hash: str = Field(description="Lowercase hex SHA-256 of the raw file bytes")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    page_content: str = Field(description="One-sentence content overview")

    def payload(self) -> dict[str, Any]:
        """Flat metadata stored alongside the catalog embedding."""
        return {"source": self.source, "hash": self.hash, **self.metadata.to_metadata()}


class ChunkRecord(BaseModel):
    """A fixed-size text window of a source document."""

    text: str
    source: str
    hash: str
    page: int = Field(ge=1, description="1-based page the chunk was cut from")
    chunk_index: int = Field(ge=0, description="Position of the chunk within its page")
    metadata: dict[str, Any] = Field(default_factory=dict)

    def location(self) -> dict[str, int]:
        return {key: getattr(self, key) for key in LOCATION_KEYS}


class ImageRecord(BaseModel):
    """A page or region image, indexed through its textual description."""

    image_path: str
    source: str
    hash: str
    page: int = Field(ge=1)
    description: str = Field(description="Synthetic text used as the embedding input")
    project: str | None = None
    discipline: str | None = None
    drawingType: str | None = None
    drawingNumber: str | None = None
    buildingArea: str | None = None
    documentType: str | None = None

    def payload(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True, exclude={"description"})
        data["imagePath"] = data.pop("image_path")
        return data
