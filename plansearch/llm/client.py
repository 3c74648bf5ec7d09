"""Centralized model clients with optional Langfuse tracing.

Three collaborators live here:

- ``get_openai_client()``: the chat-completions client. When observability
  is enabled it is ``langfuse.openai.OpenAI``, which auto-traces every call;
  otherwise the plain ``openai.OpenAI`` client.
- ``get_llm_client()``: the same client wrapped with instructor for
  structured Pydantic outputs.
- ``get_embed_model()``: the llama-index embedding model used identically at
  index time and query time.

``generate()`` is the text -> text function the indexer calls for content
overviews and AI metadata extraction.
"""

import logging
from collections.abc import Callable
from functools import lru_cache

import instructor
from llama_index.core.base.embeddings.base import BaseEmbedding
from llama_index.embeddings.openai import OpenAIEmbedding
from openai import OpenAI

from plansearch.core.config import settings

logger = logging.getLogger(__name__)

# A generation function: prompt in, completion text out
TextGenerator = Callable[[str], str]


@lru_cache(maxsize=1)
def get_openai_client() -> OpenAI:
    """Get a cached OpenAI client, Langfuse-instrumented when enabled.

    Falls back to the plain ``openai.OpenAI`` client when:
    - Observability is disabled (default)
    - Langfuse keys are missing (logs a warning)
    - Langfuse import fails (logs a warning)

    Every client carries ``settings.llm.request_timeout`` so a stuck call
    fails the single request instead of blocking the whole run.
    """
    timeout = settings.llm.request_timeout

    if settings.observability.enabled:
        obs = settings.observability
        if not obs.langfuse_public_key or not obs.langfuse_secret_key:
            logger.warning(
                "Observability enabled but Langfuse keys are missing. "
                "Falling back to plain OpenAI client."
            )
        else:
            try:
                from langfuse.openai import OpenAI as LangfuseOpenAI

                logger.info("Using Langfuse-instrumented OpenAI client")
                return LangfuseOpenAI(api_key=settings.openai_api_key, timeout=timeout)
            except ImportError:
                logger.warning(
                    "langfuse package not installed. Falling back to plain OpenAI client."
                )

    return OpenAI(api_key=settings.openai_api_key, timeout=timeout)


@lru_cache(maxsize=1)
def get_llm_client() -> instructor.Instructor:
    """Get a cached instructor-patched client for structured outputs."""
    return instructor.from_openai(get_openai_client())


@lru_cache(maxsize=1)
def get_embed_model() -> BaseEmbedding:
    """Get the cached embedding model.

    IMPORTANT: collections are stamped with this model's name at build time
    and refuse queries from a different model (see ``plansearch.rag.store``).
    """
    return OpenAIEmbedding(
        model=settings.rag.embedding_model,
        api_key=settings.openai_api_key,
        timeout=settings.llm.request_timeout,
    )


def generate(prompt: str, model: str | None = None, max_tokens: int | None = None) -> str:
    """Send a single-turn prompt and return the completion text.

    Args:
        prompt: The full prompt text.
        model: Model override (default ``settings.llm.model``).
        max_tokens: Completion budget override.

    Returns:
        The stripped completion text ("" when the model returned nothing).

    Raises:
        openai.OpenAIError: On transport, auth or timeout failures. Callers
            decide whether a failure is fatal for their unit of work.
    """
    response = get_openai_client().chat.completions.create(
        model=model or settings.llm.model,
        messages=[{"role": "user", "content": prompt}],
        temperature=settings.llm.temperature,
        max_completion_tokens=max_tokens or settings.llm.max_completion_tokens,
    )
    content = response.choices[0].message.content
    return (content or "").strip()
