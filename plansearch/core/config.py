"""Application configuration using pydantic-settings.

This module centralizes all configuration for the indexer and query server.
Settings are organized into nested groups for clarity:

- paths: Input documents, persisted collections, temp working directory
- rag: Chunking, retrieval and embedding settings
- llm: Generation model settings (overviews, metadata extraction)
- pdf: Oversized-PDF gate and image extraction settings
- metadata: Path/content/AI metadata extraction settings

Environment variables use `__` as nested delimiter:
    RAG__TOP_K=10
    LLM__TEMPERATURE=0.0
    PATHS__INDEX_DIR=./custom/index

Or set them in .env file.
"""

from pathlib import Path

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# NESTED SETTINGS MODELS
# =============================================================================


class PathSettings(BaseModel):
    """Data directory paths."""

    files_dir: Path = Field(
        default=Path("data/InputDocs"),
        description="Directory tree containing the source PDF documents",
    )
    index_dir: Path = Field(
        default=Path("data/index"),
        description="Directory holding the persisted vector collections",
    )
    temp_dir_name: str = Field(
        default="_temp_processing",
        description="Name of the scratch directory created inside index_dir during a run",
    )


class RAGSettings(BaseModel):
    """Chunking, retrieval and embedding settings."""

    # Chunking (character counts, not tokens)
    chunk_size: int = Field(
        default=500,
        description="Characters per chunk",
        ge=50,
        le=8000,
    )
    chunk_overlap: int = Field(
        default=20,
        description="Characters of overlap between neighbouring chunks",
        ge=0,
        le=1000,
    )

    # Retrieval
    top_k: int = Field(
        default=4,
        description="Number of nearest neighbours fetched before metadata post-filtering",
        ge=1,
        le=100,
    )

    # Collections
    catalog_collection: str = Field(default="catalog", description="Catalog collection name")
    chunks_collection: str = Field(default="chunks", description="Chunks collection name")
    images_collection: str = Field(default="images", description="Images collection name")

    # Embedding
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model used for both indexing and querying",
    )
    strict_embedding_model: bool = Field(
        default=True,
        description="Reject collections stamped with a different embedding model "
        "(when False, only a warning is logged)",
    )

    # Re-indexing policy
    replace_stale_sources: bool = Field(
        default=True,
        description="Delete older catalog records and chunks of a source path "
        "when the file is re-indexed under a new content hash",
    )

    @model_validator(mode="after")
    def _overlap_smaller_than_chunk(self) -> "RAGSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class LLMSettings(BaseModel):
    """Generation model settings."""

    model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model for content overviews",
    )
    metadata_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model for AI metadata extraction and section detection",
    )
    temperature: float = Field(
        default=0.0,
        description="Sampling temperature (lower = more deterministic)",
        ge=0.0,
        le=2.0,
    )
    max_completion_tokens: int = Field(
        default=300,
        description="Maximum tokens in a generated response",
        ge=16,
        le=4000,
    )
    request_timeout: float = Field(
        default=60.0,
        description="Seconds before a single model call is abandoned",
        gt=0,
    )


class PDFSettings(BaseModel):
    """PDF processing settings."""

    max_size_mb: float = Field(
        default=10.0,
        description="File size above which a PDF is flagged as needing splitting",
        gt=0,
    )
    max_pages_per_chunk: int = Field(
        default=20,
        description="Page count above which a PDF is flagged as needing splitting",
        ge=1,
    )
    extract_first_page_only: bool = Field(
        default=False,
        description="Use only the first page as the metadata section",
    )
    use_ai_section_detection: bool = Field(
        default=False,
        description="Ask the model for logical section boundaries of oversized PDFs",
    )
    extract_images: bool = Field(
        default=False,
        description="Render page images and index them into the images collection",
    )
    image_resolution: int = Field(
        default=300,
        description="DPI used when rendering page images",
        ge=36,
        le=1200,
    )


class MetadataSettings(BaseModel):
    """Metadata extraction settings."""

    default_project: str = Field(
        default="PDFdrawings",
        description="Project name used when the path does not name one",
    )
    root_folder_name: str = Field(
        default="PDFdrawings-MCP",
        description="Application root folder; never treated as a project name",
    )
    enable_ai_extraction: bool = Field(
        default=True,
        description="Run the model-backed metadata extractor",
    )
    max_metadata_chars: int = Field(
        default=2000,
        description="Characters of the first section sent to the metadata extractor",
        ge=100,
    )
    max_summarization_chars: int = Field(
        default=4000,
        description="Characters of the document sent to the overview prompt",
        ge=100,
    )


class ObservabilitySettings(BaseModel):
    """Langfuse observability settings.

    When enabled, LLM calls, indexing runs and tool calls are traced to
    Langfuse. When disabled (default), everything is a no-op.
    """

    enabled: bool = Field(
        default=False,
        description="Enable Langfuse tracing (requires valid keys)",
    )
    langfuse_public_key: str = Field(default="", description="Langfuse public key (pk-...)")
    langfuse_secret_key: str = Field(default="", description="Langfuse secret key (sk-...)")
    langfuse_base_url: str = Field(
        default="https://us.cloud.langfuse.com",
        description="Langfuse base URL",
    )


# =============================================================================
# MAIN SETTINGS CLASS
# =============================================================================


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Nested settings can be overridden with `__` delimiter:
        RAG__CHUNK_SIZE=800
        PDF__MAX_SIZE_MB=25

    Or in .env file:
        OPENAI_API_KEY=sk-...
        PATHS__FILES_DIR=/srv/PDFdrawings-MCP/InputDocs
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    openai_api_key: str = Field(default="", description="OpenAI API key")

    app_name: str = Field(default="Plan Search", description="Application name")
    log_level: str = Field(default="INFO", description="Root log level for CLI entry points")

    paths: PathSettings = Field(default_factory=PathSettings)
    rag: RAGSettings = Field(default_factory=RAGSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    pdf: PDFSettings = Field(default_factory=PDFSettings)
    metadata: MetadataSettings = Field(default_factory=MetadataSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


# Singleton instance - import this in other modules
settings = Settings()
