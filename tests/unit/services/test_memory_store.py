"""Unit tests for the MemoryBackend service."""

import pytest

from docmapper.exceptions import DuplicateKeyError, UnsupportedQueryError
from docmapper.services.backend import StorageBackend, apply_find_options, equality_fields, match_query
from docmapper.services.memory_store import MemoryBackend


@pytest.fixture
async def store() -> MemoryBackend:
    store = MemoryBackend()
    await store.initialize()
    return store


class TestMemoryBackendWrites:
    """Tests for save and delete operations."""

    async def test_implements_storage_backend(self, store: MemoryBackend) -> None:
        assert isinstance(store, StorageBackend)

    async def test_save_generates_native_id(self, store: MemoryBackend) -> None:
        record_id = await store.save("users", None, {"name": "ann"})

        assert store.is_native_id(record_id)
        assert await store.find_one("users", {"_id": record_id}) == {"_id": record_id, "name": "ann"}

    async def test_save_with_id_replaces_record(self, store: MemoryBackend) -> None:
        record_id = await store.save("users", None, {"name": "ann", "age": 1})
        await store.save("users", record_id, {"name": "ann"})

        assert await store.find_one("users", {"_id": record_id}) == {"_id": record_id, "name": "ann"}
        assert await store.count("users", {}) == 1

    async def test_records_are_copied(self, store: MemoryBackend) -> None:
        record = {"tags": ["a"]}
        record_id = await store.save("posts", None, record)
        record["tags"].append("b")

        found = await store.find_one("posts", {"_id": record_id})
        found["tags"].append("c")

        assert (await store.find_one("posts", {"_id": record_id}))["tags"] == ["a"]

    async def test_delete(self, store: MemoryBackend) -> None:
        record_id = await store.save("users", None, {"name": "ann"})

        assert await store.delete("users", record_id) == 1
        assert await store.delete("users", record_id) == 0

    async def test_delete_many(self, store: MemoryBackend) -> None:
        for name in ("ann", "ann", "ben"):
            await store.save("users", None, {"name": name})

        assert await store.delete_many("users", {"name": "ann"}) == 2
        assert await store.count("users", {}) == 1

    async def test_collections_are_isolated(self, store: MemoryBackend) -> None:
        await store.save("users", None, {"name": "ann"})

        assert await store.count("posts", {}) == 0

    async def test_clear_collection(self, store: MemoryBackend) -> None:
        await store.save("users", None, {"name": "ann"})

        await store.clear_collection("users")

        assert await store.find("users", {}) == []


class TestMemoryBackendUniqueIndexes:
    """Tests for unique index enforcement."""

    async def test_duplicate_save(self, store: MemoryBackend) -> None:
        await store.create_index("users", "email", {"unique": True})
        await store.save("users", None, {"email": "a@example.com"})

        with pytest.raises(DuplicateKeyError) as excinfo:
            await store.save("users", None, {"email": "a@example.com"})

        assert excinfo.value.collection == "users"
        assert excinfo.value.field == "email"
        assert excinfo.value.value == "a@example.com"

    async def test_resave_same_record(self, store: MemoryBackend) -> None:
        await store.create_index("users", "email", {"unique": True})
        record_id = await store.save("users", None, {"email": "a@example.com"})

        await store.save("users", record_id, {"email": "a@example.com", "name": "ann"})

    async def test_missing_values_do_not_collide(self, store: MemoryBackend) -> None:
        await store.create_index("users", "email", {"unique": True})
        await store.save("users", None, {"name": "ann"})
        await store.save("users", None, {"name": "ben", "email": None})

        assert await store.count("users", {}) == 2

    async def test_duplicate_update(self, store: MemoryBackend) -> None:
        await store.create_index("users", "email", {"unique": True})
        await store.save("users", None, {"email": "a@example.com"})
        await store.save("users", None, {"email": "b@example.com"})

        with pytest.raises(DuplicateKeyError):
            await store.find_one_and_update("users", {"email": "b@example.com"}, {"email": "a@example.com"})


class TestMemoryBackendFindAndModify:
    """Tests for find_one_and_update and find_one_and_delete."""

    async def test_update_merges_values(self, store: MemoryBackend) -> None:
        record_id = await store.save("users", None, {"name": "ann", "age": 1})

        updated = await store.find_one_and_update("users", {"name": "ann"}, {"age": 2})

        assert updated == {"_id": record_id, "name": "ann", "age": 2}

    async def test_update_without_match(self, store: MemoryBackend) -> None:
        assert await store.find_one_and_update("users", {"name": "ann"}, {"age": 2}) is None

    async def test_upsert_seeds_from_query(self, store: MemoryBackend) -> None:
        created = await store.find_one_and_update(
            "users", {"name": "ann", "role": {"$in": ["a", "b"]}}, {"age": 2}, {"upsert": True}
        )

        assert created["name"] == "ann"
        assert created["age"] == 2
        assert "role" not in created

    async def test_delete_returns_removed_record(self, store: MemoryBackend) -> None:
        record_id = await store.save("users", None, {"name": "ann"})

        removed = await store.find_one_and_delete("users", {"name": "ann"})

        assert removed == {"_id": record_id, "name": "ann"}
        assert await store.count("users", {}) == 0

    async def test_unsupported_operator_on_empty_collection(self, store: MemoryBackend) -> None:
        with pytest.raises(UnsupportedQueryError):
            await store.find("users", {"age": {"$gt": 1}})
        with pytest.raises(UnsupportedQueryError):
            await store.find_one_and_update("users", {"$or": []}, {"age": 1}, {"upsert": True})


class TestQueryHelpers:
    """Tests for the shared query and option helpers."""

    def test_equality(self) -> None:
        assert match_query({"name": "ann"}, {"name": "ann"})
        assert not match_query({"name": "ann"}, {"name": "ben"})

    def test_missing_field_matches_none(self) -> None:
        assert match_query({}, {"name": None})

    def test_list_membership(self) -> None:
        assert match_query({"tags": ["a", "b"]}, {"tags": "a"})
        assert match_query({"tags": ["a", "b"]}, {"tags": ["a", "b"]})
        assert not match_query({"tags": ["a", "b"]}, {"tags": "c"})

    def test_in_operator(self) -> None:
        assert match_query({"name": "ann"}, {"name": {"$in": ["ann", "ben"]}})
        assert match_query({"tags": ["x", "y"]}, {"tags": {"$in": ["y"]}})
        assert not match_query({"name": "cat"}, {"name": {"$in": ["ann"]}})

    @pytest.mark.parametrize("query", [{"age": {"$gt": 1}}, {"$or": []}, {"age": {"$in": [1], "$nin": [2]}}])
    def test_unsupported_operators(self, query) -> None:
        with pytest.raises(UnsupportedQueryError):
            match_query({"age": 1}, query)

    def test_embedded_mapping_is_compared_by_value(self) -> None:
        assert match_query({"address": {"city": "x"}}, {"address": {"city": "x"}})

    def test_equality_fields(self) -> None:
        assert equality_fields({"name": "ann", "_id": {"$in": [1]}, "$or": []}) == {"name": "ann"}

    def test_sort_multiple_keys(self) -> None:
        records = [{"a": 1, "b": 2}, {"a": 2, "b": 1}, {"a": 1, "b": 1}]

        result = apply_find_options(records, {"sort": ["a", "-b"]})

        assert result == [{"a": 1, "b": 2}, {"a": 1, "b": 1}, {"a": 2, "b": 1}]

    def test_none_sorts_first(self) -> None:
        result = apply_find_options([{"a": 2}, {}, {"a": 1}], {"sort": "a"})

        assert result == [{}, {"a": 1}, {"a": 2}]

    def test_skip_and_limit(self) -> None:
        result = apply_find_options([{"a": n} for n in range(5)], {"skip": 1, "limit": 2})

        assert result == [{"a": 1}, {"a": 2}]
