"""Exceptions raised by the document mapper and its storage backends."""

from typing import Any


class DocMapperError(Exception):
    """Base exception for document mapper errors."""

    pass


class SchemaError(DocMapperError):
    """Raised when a document type is declared incorrectly.

    Surfaces when the class is defined, not when it is first used.
    """

    pass


class DocumentValidationError(DocMapperError):
    """Raised when a document fails type or constraint validation."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class StorageError(DocMapperError):
    """Raised when a storage backend operation fails."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class DuplicateKeyError(StorageError):
    """Raised when a write violates a unique index."""

    def __init__(
        self,
        collection: str,
        field: str,
        value: Any,
        original_error: Exception | None = None,
    ):
        message = f"{collection} with {field} '{value}' already exists"
        super().__init__(message, original_error)
        self.collection = collection
        self.field = field
        self.value = value


class UnsupportedQueryError(StorageError):
    """Raised when a backend receives a filter operator it cannot evaluate."""

    pass


class ClientNotConnectedError(DocMapperError, RuntimeError):
    """Raised when no storage backend has been connected."""

    pass
