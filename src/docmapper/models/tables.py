"""SQLModel table backing the SQLite storage backend.

Every collection shares one table; a record is addressed by
``(collection, record_id)`` and its fields are kept as a JSON object.
Unique indexes are partial expression indexes over ``json_extract(data, ...)``
restricted to one collection, created by ``SqliteBackend.create_index``.
"""

from typing import Any

from sqlalchemy import JSON
from sqlmodel import Field, SQLModel


class RecordRow(SQLModel, table=True):
    """One stored document record."""

    __tablename__ = "records"

    collection: str = Field(primary_key=True)
    record_id: str = Field(primary_key=True)
    data: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
