"""Factory functions for creating storage backends.

Provides a URL-driven production factory and a test factory that builds an
isolated in-memory backend.
"""

import structlog

from docmapper.services.backend import StorageBackend
from docmapper.services.memory_store import MemoryBackend
from docmapper.services.sqlite_store import SqliteBackend, create_async_engine_from_url

MEMORY_SCHEME = "memory://"
SQLITE_SCHEMES = ("sqlite://", "sqlite+aiosqlite://")


def create_backend(url: str, sql_echo: bool = False) -> StorageBackend:
    """Create a storage backend for a database URL.

    Args:
        url: ``memory://`` for the in-process backend, or a SQLite URL such as
            ``sqlite:///./app.db`` or ``sqlite+aiosqlite:///:memory:``.
        sql_echo: Log SQL emitted by the SQLite backend.

    Returns:
        An uninitialized backend; call ``initialize()`` (or ``connect()``) before use.

    Raises:
        ValueError: If the URL scheme is not supported.
    """
    logger = structlog.get_logger(__name__)

    if url == MEMORY_SCHEME or url.startswith(MEMORY_SCHEME):
        return MemoryBackend(logger=logger)

    if url.startswith(SQLITE_SCHEMES):
        engine = create_async_engine_from_url(url, echo=sql_echo)
        return SqliteBackend(engine=engine, logger=logger)

    raise ValueError(f"unsupported database URL: {url!r}")


def create_test_backend() -> MemoryBackend:
    """Create an isolated in-memory backend for tests."""
    return MemoryBackend(logger=structlog.get_logger(__name__))
