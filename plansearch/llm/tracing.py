"""Langfuse tracing for indexing runs and retrieval tools.

Everything here degrades to a no-op when ``settings.observability.enabled``
is False (the default) or the ``langfuse`` package is not installed, so
tracing never decides whether an indexing run or a search succeeds.

- ``observe()``: decorator for pipeline steps, model calls and tools
- ``init_tracing()``: configures the Langfuse client at server start
- ``flush_tracing()``: pushes buffered spans before a batch run exits
"""

import logging
import os
from collections.abc import Callable
from typing import Any

from plansearch.core.config import ObservabilitySettings, settings

logger = logging.getLogger(__name__)

# OBSERVABILITY__* setting -> native variable read by the SDK on first import
_LANGFUSE_ENV = {
    "langfuse_public_key": "LANGFUSE_PUBLIC_KEY",
    "langfuse_secret_key": "LANGFUSE_SECRET_KEY",
    "langfuse_base_url": "LANGFUSE_HOST",
}


def export_langfuse_env(obs: ObservabilitySettings) -> None:
    """Expose configured keys under the SDK's names; explicit env vars win."""
    for attr, env_var in _LANGFUSE_ENV.items():
        value = getattr(obs, attr)
        if value:
            os.environ.setdefault(env_var, value)


if settings.observability.enabled:
    export_langfuse_env(settings.observability)


def observe(**kwargs: Any) -> Callable[..., Any]:
    """Wrap a function in a Langfuse span when observability is on.

    Args:
        **kwargs: Forwarded to ``langfuse.observe()`` (``name``, ``as_type``).

    Example::

        @observe(name="catalog_search")
        def catalog_search(ctx, query, **filters):
            ...
    """
    if not settings.observability.enabled:
        return _untraced

    try:
        from langfuse import observe as langfuse_observe
    except ImportError:
        logger.warning("langfuse not installed; @observe() is a no-op")
        return _untraced

    return langfuse_observe(**kwargs)  # type: ignore[no-any-return]


def _untraced(fn: Callable) -> Callable:
    return fn


def init_tracing() -> None:
    """Configure the Langfuse client once keys are known. Safe to repeat."""
    obs = settings.observability
    if not obs.enabled:
        logger.debug("Observability disabled; skipping Langfuse init")
        return

    if not (obs.langfuse_public_key and obs.langfuse_secret_key):
        logger.warning("Observability enabled but Langfuse keys are missing; no traces will be sent")
        return

    try:
        from langfuse import Langfuse
    except ImportError:
        logger.warning("langfuse package not installed; tracing not available")
        return

    try:
        Langfuse(
            public_key=obs.langfuse_public_key,
            secret_key=obs.langfuse_secret_key,
            base_url=obs.langfuse_base_url,
        )
    except Exception:
        logger.exception("Failed to initialize Langfuse tracing")
        return
    logger.info(f"Langfuse tracing initialized (base_url={obs.langfuse_base_url})")


def flush_tracing() -> None:
    """Send buffered spans now; the indexer exits before the background flush."""
    if not settings.observability.enabled:
        return

    try:
        from langfuse import get_client
    except ImportError:
        logger.debug("langfuse package not installed; nothing to flush")
        return

    try:
        get_client().flush()
    except Exception:
        logger.warning("Failed to flush Langfuse traces", exc_info=True)
