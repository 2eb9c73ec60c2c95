"""docmapper - an async document mapper built on pydantic models."""

from importlib.metadata import version, PackageNotFoundError

from docmapper.models import (
    Document,
    EmbeddedDocument,
    HookStage,
    Reference,
    format_values,
    hook,
    prop,
)
from docmapper.client import connect, disconnect, get_client
from docmapper.exceptions import (
    ClientNotConnectedError,
    DocMapperError,
    DocumentValidationError,
    DuplicateKeyError,
    SchemaError,
    StorageError,
    UnsupportedQueryError,
)

try:
    __version__ = version("docmapper")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    "__version__",
    "ClientNotConnectedError",
    "DocMapperError",
    "Document",
    "DocumentValidationError",
    "DuplicateKeyError",
    "EmbeddedDocument",
    "HookStage",
    "Reference",
    "SchemaError",
    "StorageError",
    "UnsupportedQueryError",
    "connect",
    "disconnect",
    "format_values",
    "get_client",
    "hook",
    "prop",
]
