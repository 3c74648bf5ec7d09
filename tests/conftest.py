"""Shared test fixtures and configuration."""

import re
import zlib
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from llama_index.core.base.embeddings.base import BaseEmbedding

from plansearch.llm.client import get_embed_model, get_llm_client, get_openai_client
from plansearch.rag.extractors import compute_file_hash
from plansearch.rag.models import PageText, SourceDocument

DRAWING_CONTENT = "PROJECT: Lift Station\nPHASE: Construction Documents"
CONCRETE_CONTENT = "SECTION 03 30 00 CAST-IN-PLACE CONCRETE\nConcrete mix design and reinforcement placement."


@pytest.fixture(autouse=True)
def _clear_client_caches() -> Generator[None]:
    """Clear the client lru_caches after every test.

    Prevents test pollution when one test mocks a client factory
    and the cached mock bleeds into subsequent tests.
    """
    yield
    get_llm_client.cache_clear()
    get_openai_client.cache_clear()
    get_embed_model.cache_clear()


# =============================================================================
# DETERMINISTIC EMBEDDINGS
# =============================================================================


class KeywordEmbedding(BaseEmbedding):
    """Hashed bag-of-words embedding.

    Texts sharing words end up close; the constant first component keeps
    every vector non-zero so cosine similarity is always defined.
    """

    dims: int = 64

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dims
        vector[0] = 0.1
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[1 + zlib.crc32(word.encode()) % (self.dims - 1)] += 1.0
        return vector

    def _get_query_embedding(self, query: str) -> list[float]:
        return self._vector(query)

    def _get_text_embedding(self, text: str) -> list[float]:
        return self._vector(text)

    async def _aget_query_embedding(self, query: str) -> list[float]:
        return self._vector(query)

    async def _aget_text_embedding(self, text: str) -> list[float]:
        return self._vector(text)


@pytest.fixture
def embed_model() -> KeywordEmbedding:
    return KeywordEmbedding(model_name="keyword-test")


# =============================================================================
# FAKE MODEL AND LOADER
# =============================================================================


def fake_generate(prompt: str) -> str:
    """Answer metadata prompts with an empty object and overviews by keyword."""
    if "JSON" in prompt:
        return "{}"
    if "Lift Station" in prompt:
        return "Structural plan sheet for the Lift Station project."
    return "Concrete specification covering cast-in-place work."


@pytest.fixture
def generate() -> Callable[[str], str]:
    return fake_generate


def load_text_document(path: Path) -> SourceDocument:
    """Loader for plain-text stand-ins of PDFs; form feeds separate pages."""
    data = path.read_bytes()
    pages = [
        PageText(page=number, text=text)
        for number, text in enumerate(data.decode("utf-8").split("\f"), start=1)
        if text.strip()
    ]
    return SourceDocument(
        source=str(path.resolve()),
        hash=compute_file_hash(data),
        pages=pages,
        page_count=len(pages),
    )


@pytest.fixture
def loader() -> Callable[[Path], SourceDocument]:
    return load_text_document


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    """Two-document tree: one structural drawing, one concrete specification."""
    files_dir = tmp_path / "InputDocs"
    (files_dir / "Drawings").mkdir(parents=True)
    (files_dir / "TextDocs").mkdir(parents=True)
    (files_dir / "Drawings" / "S-46-1001.pdf").write_text(DRAWING_CONTENT)
    (files_dir / "TextDocs" / "Division 03 - Concrete.pdf").write_text(CONCRETE_CONTENT)
    return files_dir
