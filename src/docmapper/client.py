"""Process-wide storage backend handle.

Document classes resolve the backend through ``get_client()`` on every
operation, so a backend must be connected before any document is saved or
fetched.
"""

import structlog

from docmapper.config import get_settings
from docmapper.exceptions import ClientNotConnectedError
from docmapper.services.backend import StorageBackend
from docmapper.services.factory import create_backend

logger = structlog.get_logger(__name__)

_backend: StorageBackend | None = None


async def connect(url: str | None = None, backend: StorageBackend | None = None) -> StorageBackend:
    """Initialize a backend and install it as the active client.

    Args:
        url: Database URL; defaults to ``Settings.database_url``.
        backend: An already constructed backend, used instead of ``url``.
    """
    global _backend

    if backend is None:
        settings = get_settings()
        backend = create_backend(url or settings.database_url, sql_echo=settings.sql_echo)

    await backend.initialize()
    _backend = backend
    logger.info("client_connected", backend=type(backend).__name__)
    return backend


async def disconnect() -> None:
    """Close the active backend, if any."""
    global _backend

    if _backend is not None:
        await _backend.close()
        logger.info("client_disconnected", backend=type(_backend).__name__)
    _backend = None


def get_client() -> StorageBackend:
    """Get the active storage backend."""
    if _backend is None:
        raise ClientNotConnectedError("Storage backend not initialized. Call connect() first.")
    return _backend
