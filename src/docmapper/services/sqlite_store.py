"""SQLite storage backend.

Uses SQLAlchemy's native async support with aiosqlite. Records are stored as
JSON in a single table (see ``docmapper.models.tables``). Id lookups and
scalar equality or ``$in`` conditions narrow the rows in SQL; every
condition is then re-checked in Python, which also decides list membership.
"""

import re
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import delete as sql_delete
from sqlalchemy import ColumnElement, func, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlmodel import SQLModel

from docmapper.exceptions import DuplicateKeyError, StorageError
from docmapper.models.tables import RecordRow
from docmapper.services.backend import (
    ID_KEY,
    Query,
    Record,
    apply_find_options,
    check_query,
    equality_fields,
    is_operator_clause,
    is_uuid_str,
    match_query,
    new_id,
)

_INDEX_NAME_PATTERN = re.compile(r"index '([^']+)'")
_FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SCALAR_TYPES = (str, int, float, bool)


class SqliteBackend:
    """Persists document records to SQLite.

    Accepts an AsyncEngine via dependency injection to support both
    file-backed and in-memory databases.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)
        self._indexes: dict[str, tuple[str, str]] = {}

    async def initialize(self) -> None:
        """Create the records table if it doesn't exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._logger.info("sqlite_backend_initialized")

    async def close(self) -> None:
        await self._engine.dispose()

    def is_native_id(self, value: Any) -> bool:
        return is_uuid_str(value)

    async def save(self, collection: str, record_id: Any, record: Record) -> Any:
        """Insert or replace a record.

        Returns:
            The record id, generated when ``record_id`` is None.

        Raises:
            DuplicateKeyError: If the record violates a unique index.
        """
        record_id = str(record_id) if record_id is not None else new_id()
        data = _to_json({key: value for key, value in record.items() if key != ID_KEY})
        async with AsyncSession(self._engine) as session:
            existing = await session.get(RecordRow, {"collection": collection, "record_id": record_id})
            if existing:
                existing.data = data
            else:
                session.add(RecordRow(collection=collection, record_id=record_id, data=data))
            await self._commit(session, collection, data)
        self._logger.debug("record_saved", collection=collection, record_id=record_id)
        return record_id

    async def delete(self, collection: str, record_id: Any) -> int:
        if record_id is None:
            return 0
        async with AsyncSession(self._engine) as session:
            row = await session.get(RecordRow, {"collection": collection, "record_id": str(record_id)})
            if row is None:
                return 0
            await session.delete(row)
            await session.commit()
        return 1

    async def delete_one(self, collection: str, query: Query) -> int:
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            if not rows:
                return 0
            await session.delete(rows[0])
            await session.commit()
        return 1

    async def delete_many(self, collection: str, query: Query) -> int:
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            for row in rows:
                await session.delete(row)
            await session.commit()
        return len(rows)

    async def find_one(self, collection: str, query: Query) -> Record | None:
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            return _export(rows[0]) if rows else None

    async def find(self, collection: str, query: Query, options: Mapping[str, Any] | None = None) -> list[Record]:
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            records = [_export(row) for row in rows]
        return apply_find_options(records, options)

    async def find_one_and_update(
        self,
        collection: str,
        query: Query,
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> Record | None:
        """Merge ``values`` into the first matching record and return it updated.

        With ``upsert`` in options, a missing record is created from the
        query's equality conditions plus ``values``.
        """
        options = options or {}
        changes = _to_json(dict(values))
        changes.pop(ID_KEY, None)
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            if rows:
                row = rows[0]
                row.data = {**row.data, **changes}
            elif options.get("upsert"):
                seed = _to_json(equality_fields(query))
                record_id = seed.pop(ID_KEY, None)
                row = RecordRow(
                    collection=collection,
                    record_id=str(record_id) if record_id is not None else new_id(),
                    data={**seed, **changes},
                )
                session.add(row)
            else:
                return None
            exported = _export(row)
            await self._commit(session, collection, exported)
        return exported

    async def find_one_and_delete(
        self, collection: str, query: Query, options: Mapping[str, Any] | None = None
    ) -> Record | None:
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            if not rows:
                return None
            exported = _export(rows[0])
            await session.delete(rows[0])
            await session.commit()
        return exported

    async def count(self, collection: str, query: Query) -> int:
        async with AsyncSession(self._engine) as session:
            rows = await self._matching_rows(session, collection, query)
            return len(rows)

    async def create_index(self, collection: str, field: str, options: Mapping[str, Any]) -> None:
        """Create a partial expression index over one JSON field of a collection."""
        if not options.get("unique"):
            return
        name = "ux_" + re.sub(r"\W", "_", f"{collection}_{field}")
        path = _sql_literal(f"$.{field}")
        statement = text(
            f'CREATE UNIQUE INDEX IF NOT EXISTS "{name}" '
            f"ON records (json_extract(data, {path})) "
            f"WHERE collection = {_sql_literal(collection)}"
        )
        try:
            async with self._engine.begin() as conn:
                await conn.execute(statement)
        except IntegrityError as e:
            raise StorageError(f"cannot create unique index on {collection}.{field}", e) from e
        self._indexes[name] = (collection, field)
        self._logger.debug("index_created", collection=collection, field=field, index=name)

    async def clear_collection(self, collection: str) -> None:
        async with AsyncSession(self._engine) as session:
            await session.execute(sql_delete(RecordRow).where(RecordRow.collection == collection))
            await session.commit()
        self._logger.info("collection_cleared", collection=collection)

    async def _matching_rows(self, session: AsyncSession, collection: str, query: Query) -> list[RecordRow]:
        check_query(query)
        criteria = _to_json(dict(query))
        statement = select(RecordRow).where(RecordRow.collection == collection, *_sql_filters(criteria))
        result = await session.execute(statement)
        return [row for row in result.scalars().all() if match_query({ID_KEY: row.record_id, **row.data}, criteria)]

    async def _commit(self, session: AsyncSession, collection: str, data: Mapping[str, Any]) -> None:
        try:
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            match = _INDEX_NAME_PATTERN.search(str(e.orig))
            if match and match.group(1) in self._indexes:
                _, field = self._indexes[match.group(1)]
                raise DuplicateKeyError(collection, field, data.get(field), e) from e
            raise StorageError(f"write to {collection} failed", e) from e


def _sql_filters(criteria: Mapping[str, Any]) -> list[ColumnElement[bool]]:
    """WHERE clauses that keep at least every row ``match_query`` accepts."""
    filters = []
    for key, expected in criteria.items():
        if is_operator_clause(expected):
            candidates = list(expected["$in"])
        else:
            candidates = [expected]

        if key == ID_KEY:
            filters.append(RecordRow.record_id.in_([value for value in candidates if isinstance(value, str)]))
            continue
        if not _FIELD_NAME_PATTERN.match(key) or not all(isinstance(value, _SCALAR_TYPES) for value in candidates):
            continue

        path = f"$.{key}"
        # Arrays pass through; membership is decided by match_query.
        filters.append(
            or_(
                func.json_extract(RecordRow.data, path).in_(candidates),
                func.json_type(RecordRow.data, path) == "array",
            )
        )
    return filters


def _export(row: RecordRow) -> Record:
    return {ID_KEY: row.record_id, **row.data}


def _to_json(value: dict[str, Any]) -> dict[str, Any]:
    return to_jsonable_python(value)


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def create_async_engine_from_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async SQLAlchemy engine for a SQLite URL.

    Args:
        url: ``sqlite:///path``, ``sqlite+aiosqlite:///path`` or ``sqlite:///:memory:``.
        echo: Log emitted SQL.

    Returns:
        AsyncEngine configured for aiosqlite.
    """
    if url.startswith("sqlite://"):
        url = "sqlite+aiosqlite://" + url[len("sqlite://") :]
    return create_async_engine(url, echo=echo)
