"""In-process storage backend.

Keeps collections as dicts of deep-copied records. Useful for tests and
for applications that do not need durability.
"""

import copy
from collections.abc import Mapping
from typing import Any

import structlog

from docmapper.exceptions import DuplicateKeyError
from docmapper.services.backend import (
    ID_KEY,
    Query,
    Record,
    apply_find_options,
    check_query,
    equality_fields,
    is_uuid_str,
    match_query,
    new_id,
)


class MemoryBackend:
    """Stores records in memory, keyed by collection and id."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._collections: dict[str, dict[Any, Record]] = {}
        self._unique: dict[str, set[str]] = {}
        self._logger = logger or structlog.get_logger(__name__)

    async def initialize(self) -> None:
        self._logger.info("memory_backend_initialized")

    async def close(self) -> None:
        self._collections.clear()
        self._unique.clear()

    def is_native_id(self, value: Any) -> bool:
        return is_uuid_str(value)

    async def save(self, collection: str, record_id: Any, record: Record) -> Any:
        record_id = record_id if record_id is not None else new_id()
        data = copy.deepcopy({key: value for key, value in record.items() if key != ID_KEY})
        self._check_unique(collection, record_id, data)
        self._collection(collection)[record_id] = data
        self._logger.debug("record_saved", collection=collection, record_id=record_id)
        return record_id

    async def delete(self, collection: str, record_id: Any) -> int:
        removed = self._collection(collection).pop(record_id, None)
        return 0 if removed is None else 1

    async def delete_one(self, collection: str, query: Query) -> int:
        for record_id in self._matching_ids(collection, query):
            del self._collection(collection)[record_id]
            return 1
        return 0

    async def delete_many(self, collection: str, query: Query) -> int:
        record_ids = self._matching_ids(collection, query)
        for record_id in record_ids:
            del self._collection(collection)[record_id]
        return len(record_ids)

    async def find_one(self, collection: str, query: Query) -> Record | None:
        for record_id in self._matching_ids(collection, query):
            return self._export(record_id, self._collection(collection)[record_id])
        return None

    async def find(self, collection: str, query: Query, options: Mapping[str, Any] | None = None) -> list[Record]:
        records = [
            self._export(record_id, self._collection(collection)[record_id])
            for record_id in self._matching_ids(collection, query)
        ]
        return apply_find_options(records, options)

    async def find_one_and_update(
        self,
        collection: str,
        query: Query,
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> Record | None:
        options = options or {}
        matches = self._matching_ids(collection, query)
        if not matches:
            if not options.get("upsert"):
                return None
            seed = equality_fields(query)
            record_id = await self.save(collection, seed.pop(ID_KEY, None), {**seed, **values})
            return self._export(record_id, self._collection(collection)[record_id])

        record_id = matches[0]
        updated = {**self._collection(collection)[record_id], **copy.deepcopy(dict(values))}
        updated.pop(ID_KEY, None)
        self._check_unique(collection, record_id, updated)
        self._collection(collection)[record_id] = updated
        return self._export(record_id, updated)

    async def find_one_and_delete(
        self, collection: str, query: Query, options: Mapping[str, Any] | None = None
    ) -> Record | None:
        for record_id in self._matching_ids(collection, query):
            removed = self._collection(collection).pop(record_id)
            return self._export(record_id, removed)
        return None

    async def count(self, collection: str, query: Query) -> int:
        return len(self._matching_ids(collection, query))

    async def create_index(self, collection: str, field: str, options: Mapping[str, Any]) -> None:
        if options.get("unique"):
            self._unique.setdefault(collection, set()).add(field)
            self._logger.debug("index_created", collection=collection, field=field)

    async def clear_collection(self, collection: str) -> None:
        self._collections.pop(collection, None)
        self._logger.info("collection_cleared", collection=collection)

    def _collection(self, collection: str) -> dict[Any, Record]:
        return self._collections.setdefault(collection, {})

    def _matching_ids(self, collection: str, query: Query) -> list[Any]:
        check_query(query)
        return [
            record_id
            for record_id, data in self._collection(collection).items()
            if match_query({ID_KEY: record_id, **data}, query)
        ]

    def _check_unique(self, collection: str, record_id: Any, data: Record) -> None:
        for field in self._unique.get(collection, ()):
            value = data.get(field)
            if value is None:
                continue
            for other_id, other in self._collection(collection).items():
                if other_id != record_id and other.get(field) == value:
                    raise DuplicateKeyError(collection, field, value)

    @staticmethod
    def _export(record_id: Any, data: Record) -> Record:
        return {ID_KEY: record_id, **copy.deepcopy(data)}
