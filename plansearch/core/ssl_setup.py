"""Use the operating-system certificate store for outbound HTTPS.

The indexer and the query server both talk to the OpenAI API (overviews,
AI metadata, embeddings). Behind an SSL-inspecting proxy the proxy's CA is
trusted by the OS but not by ``certifi``, and every call fails with
SSL_CERTIFICATE_VERIFY_FAILED. ``truststore`` makes Python's ``ssl`` module
verify against the OS store instead.

Call ``configure_ssl()`` at the top of each entry point, before the first
HTTP client is created. The effect is process-wide and read-only.
"""

import logging

logger = logging.getLogger(__name__)

_injected = False


def configure_ssl() -> bool:
    """Inject truststore once per process.

    Returns:
        True if the OS certificate store is in use.
    """
    global _injected  # noqa: PLW0603
    if _injected:
        return True

    try:
        import truststore
    except ImportError:
        logger.debug("truststore not installed; HTTPS uses the certifi CA bundle")
        return False

    try:
        truststore.inject_into_ssl()
    except Exception:
        logger.warning("truststore injection failed; HTTPS uses the certifi CA bundle", exc_info=True)
        return False

    _injected = True
    logger.debug("truststore injected; HTTPS uses the OS certificate store")
    return True
