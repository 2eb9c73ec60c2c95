"""Shared fixtures: a connected in-memory backend that records every call."""

from collections.abc import Mapping
from typing import Any

import pytest

from docmapper import client
from docmapper.deprecation import reset_deprecations
from docmapper.models.registry import registry
from docmapper.services.memory_store import MemoryBackend


class RecordingBackend(MemoryBackend):
    """MemoryBackend that keeps a log of (method, collection, args) calls."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str, tuple[Any, ...]]] = []

    def calls_to(self, method: str, collection: str | None = None) -> list[tuple[Any, ...]]:
        return [
            args
            for name, coll, args in self.calls
            if name == method and (collection is None or coll == collection)
        ]

    def stored(self, collection: str) -> dict[Any, dict[str, Any]]:
        return self._collections.get(collection, {})

    async def save(self, collection: str, record_id: Any, record: dict[str, Any]) -> Any:
        self.calls.append(("save", collection, (record_id, dict(record))))
        return await super().save(collection, record_id, record)

    async def delete(self, collection: str, record_id: Any) -> int:
        self.calls.append(("delete", collection, (record_id,)))
        return await super().delete(collection, record_id)

    async def find_one(self, collection: str, query: Mapping[str, Any]) -> dict[str, Any] | None:
        self.calls.append(("find_one", collection, (dict(query),)))
        return await super().find_one(collection, query)

    async def find(self, collection: str, query: Mapping[str, Any], options: Mapping[str, Any] | None = None):
        self.calls.append(("find", collection, (dict(query), dict(options or {}))))
        return await super().find(collection, query, options)

    async def find_one_and_update(self, collection, query, values, options=None):
        self.calls.append(("find_one_and_update", collection, (dict(query), dict(values), dict(options or {}))))
        return await super().find_one_and_update(collection, query, values, options)

    async def find_one_and_delete(self, collection, query, options=None):
        self.calls.append(("find_one_and_delete", collection, (dict(query),)))
        return await super().find_one_and_delete(collection, query, options)

    async def create_index(self, collection: str, field: str, options: Mapping[str, Any]) -> None:
        self.calls.append(("create_index", collection, (field, dict(options))))
        await super().create_index(collection, field, options)


@pytest.fixture
async def backend():
    """Connect a fresh RecordingBackend as the active client."""
    recording = RecordingBackend()
    await client.connect(backend=recording)
    registry.reset_indexes()
    reset_deprecations()
    yield recording
    await client.disconnect()
