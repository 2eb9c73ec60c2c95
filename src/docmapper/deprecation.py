"""One-time deprecation notices for renamed APIs."""

import warnings

import structlog

logger = structlog.get_logger(__name__)

_emitted: set[str] = set()


def deprecate(message: str) -> None:
    """Warn about a deprecated call the first time it is made in this process."""
    if message in _emitted:
        return
    _emitted.add(message)
    logger.warning("deprecated_call", message=message)
    warnings.warn(message, DeprecationWarning, stacklevel=3)


def reset_deprecations() -> None:
    """Forget which notices were emitted so they fire again."""
    _emitted.clear()
