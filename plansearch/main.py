"""FastAPI application exposing the retrieval tools."""

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from plansearch.core.config import settings
from plansearch.core.ssl_setup import configure_ssl
from plansearch.llm.client import get_embed_model
from plansearch.llm.tracing import init_tracing
from plansearch.rag.models import ToolResponse
from plansearch.rag.retriever import TOOLS, run_tool
from plansearch.rag.schema import METADATA_FIELDS
from plansearch.rag.store import CollectionNotFoundError, EmbeddingModelMismatchError, StoreContext

logger = logging.getLogger(__name__)

# Before any HTTP client is created (corporate proxies)
configure_ssl()

# Initialize Langfuse tracing (no-op when OBSERVABILITY__ENABLED=false)
init_tracing()

app = FastAPI(
    title=settings.app_name,
    description="Filtered similarity search over construction drawings and specifications",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# STORE CONTEXT
# =============================================================================
# Collections are opened once per process; the server never writes to them.


@lru_cache(maxsize=1)
def _open_store_context() -> StoreContext:
    return StoreContext.open(settings.paths.index_dir, get_embed_model())


def get_store_context() -> StoreContext:
    """FastAPI dependency. Missing or mismatched collections become a 503."""
    try:
        return _open_store_context()
    except (CollectionNotFoundError, EmbeddingModelMismatchError) as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================


class SearchRequest(BaseModel):
    """Request body shared by all tool endpoints.

    Filters are exact-match; a tool rejects filters it does not support.
    """

    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=1)
    project: str | None = None
    discipline: str | None = None
    drawingNumber: str | None = None
    drawingType: str | None = None
    phase: str | None = None
    source: str | None = None
    buildingArea: str | None = None

    def filters(self) -> dict[str, str]:
        return self.model_dump(exclude={"query"}, exclude_none=True)


class ToolInfo(BaseModel):
    name: str
    description: str
    filters: list[str]


class ToolsResponse(BaseModel):
    tools: list[ToolInfo]
    metadata_fields: list[str]


# =============================================================================
# ENDPOINTS
# =============================================================================


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/tools", response_model=ToolsResponse)
def list_tools() -> ToolsResponse:
    """Describe the available tools and the metadata fields they return."""
    return ToolsResponse(
        tools=[
            ToolInfo(name=tool.name, description=tool.description, filters=list(tool.filters))
            for tool in TOOLS.values()
        ],
        metadata_fields=list(METADATA_FIELDS),
    )


def _run(name: str, request: SearchRequest, ctx: StoreContext) -> ToolResponse:
    response = run_tool(ctx, name, request.query, **request.filters())
    if response.is_error:
        logger.warning(f"{name} returned an error: {response.error}")
    return response


@app.post("/tools/catalog_search", response_model=ToolResponse)
def catalog_search_endpoint(
    request: SearchRequest, ctx: StoreContext = Depends(get_store_context)
) -> ToolResponse:
    """Search document-level overviews."""
    return _run("catalog_search", request, ctx)


@app.post("/tools/chunks_search", response_model=ToolResponse)
def chunks_search_endpoint(
    request: SearchRequest, ctx: StoreContext = Depends(get_store_context)
) -> ToolResponse:
    """Search text chunks with metadata filters."""
    return _run("chunks_search", request, ctx)


@app.post("/tools/all_chunks_search", response_model=ToolResponse)
def all_chunks_search_endpoint(
    request: SearchRequest, ctx: StoreContext = Depends(get_store_context)
) -> ToolResponse:
    """Search text chunks across every document."""
    return _run("all_chunks_search", request, ctx)


@app.post("/tools/image_search", response_model=ToolResponse)
def image_search_endpoint(
    request: SearchRequest, ctx: StoreContext = Depends(get_store_context)
) -> ToolResponse:
    """Search page images by description."""
    return _run("image_search", request, ctx)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host="127.0.0.1", port=8000)
