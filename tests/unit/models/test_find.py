"""Unit tests for querying, updating and deleting through Document class methods."""

import pytest

from docmapper.exceptions import SchemaError, UnsupportedQueryError
from docmapper.models.document import Document
from docmapper.models.fields import Reference, prop


class Member(Document):
    name: str = None
    score: int = None


class Tag(Document):
    label: str = None


class Note(Document):
    title: str = None
    owner: Reference[Member] = None
    tags: list[Reference[Tag]] = prop(default_factory=list)


async def _seed_notes() -> tuple[list[Member], list[Tag], list[Note]]:
    members = [await Member.create(name=name) for name in ("ann", "ben")]
    tags = [await Tag.create(label=label) for label in ("red", "blue", "green")]
    entries = [
        await Note.create(title="first", owner=members[0], tags=tags[:2]),
        await Note.create(title="second", owner=members[1], tags=[tags[2]]),
        await Note.create(title="third", owner=members[0], tags=[]),
    ]
    return members, tags, entries


class TestFindOne:
    """Tests for find_one and find_by_id."""

    async def test_returns_instance(self, backend) -> None:
        member = await Member.create(name="ann", score=3)

        found = await Member.find_one({"name": "ann"})

        assert isinstance(found, Member)
        assert found.id == member.id
        assert found.score == 3

    async def test_returns_none_when_missing(self, backend) -> None:
        assert await Member.find_one({"name": "nobody"}) is None

    async def test_empty_query(self, backend) -> None:
        await Member.create(name="ann")

        assert (await Member.find_one()).name == "ann"

    async def test_find_by_id(self, backend) -> None:
        member = await Member.create(name="ann")

        found = await Member.find_by_id(member.id)

        assert found.name == "ann"
        assert backend.calls_to("find_one", "members")[-1] == ({"_id": member.id},)


class TestFind:
    """Tests for Document.find."""

    async def test_returns_all_matches(self, backend) -> None:
        await Member.create(name="ann", score=1)
        await Member.create(name="ben", score=2)

        found = await Member.find({})

        assert sorted(member.name for member in found) == ["ann", "ben"]

    async def test_returns_empty_list(self, backend) -> None:
        assert await Member.find({"name": "nobody"}) == []

    async def test_sort_skip_limit(self, backend) -> None:
        for score in (3, 1, 2):
            await Member.create(name=f"m{score}", score=score)

        found = await Member.find({}, sort="-score", skip=1, limit=1)

        assert [member.score for member in found] == [2]

    async def test_in_operator(self, backend) -> None:
        ann = await Member.create(name="ann")
        await Member.create(name="ben")

        found = await Member.find({"_id": {"$in": [ann.id]}})

        assert [member.name for member in found] == ["ann"]

    async def test_unsupported_operator(self, backend) -> None:
        await Member.create(name="ann", score=1)

        with pytest.raises(UnsupportedQueryError):
            await Member.find({"score": {"$gt": 0}})


class TestPopulation:
    """Tests for populating references on read."""

    async def test_populates_references(self, backend) -> None:
        members, tags, _ = await _seed_notes()

        entry = await Note.find_one({"title": "first"})

        assert isinstance(entry.owner, Member)
        assert entry.owner.id == members[0].id
        assert [tag.label for tag in entry.tags] == ["red", "blue"]

    async def test_populate_false_issues_no_lookups(self, backend) -> None:
        await _seed_notes()
        backend.calls.clear()

        entries = await Note.find({}, populate=False)

        assert len(entries) == 3
        assert backend.calls_to("find", "members") == []
        assert backend.calls_to("find", "tags") == []
        assert all(isinstance(entry.owner, str) for entry in entries)

    async def test_one_lookup_per_reference_field(self, backend) -> None:
        members, tags, _ = await _seed_notes()
        backend.calls.clear()

        entries = await Note.find({})

        member_lookups = backend.calls_to("find", "members")
        tag_lookups = backend.calls_to("find", "tags")
        assert len(member_lookups) == 1
        assert len(tag_lookups) == 1
        assert sorted(member_lookups[0][0]["_id"]["$in"]) == sorted(member.id for member in members)
        assert sorted(tag_lookups[0][0]["_id"]["$in"]) == sorted(tag.id for tag in tags)
        assert all(isinstance(entry.owner, Member) for entry in entries)

    async def test_populate_selected_fields(self, backend) -> None:
        await _seed_notes()
        backend.calls.clear()

        entry = await Note.find_one({"title": "first"}, populate=["owner"])

        assert isinstance(entry.owner, Member)
        assert all(isinstance(tag, str) for tag in entry.tags)
        assert backend.calls_to("find", "tags") == []

    async def test_populate_unknown_field(self, backend) -> None:
        await _seed_notes()

        with pytest.raises(SchemaError):
            await Note.find({}, populate=["title"])

    async def test_dangling_reference_keeps_id(self, backend) -> None:
        members, _, _ = await _seed_notes()
        await members[1].delete()

        entry = await Note.find_one({"title": "second"})

        assert entry.owner == members[1].id

    async def test_populate_classmethod(self, backend) -> None:
        members, _, _ = await _seed_notes()
        entries = await Note.find({}, populate=False)

        populated = await Note.populate(entries, ["owner"])

        assert populated is entries
        assert {entry.owner.name for entry in entries} == {"ann", "ben"}
        assert members[0].id in {entry.owner.id for entry in entries}


class TestFindOneAndUpdate:
    """Tests for find_one_and_update and find_by_id_and_update."""

    async def test_updates_and_returns(self, backend) -> None:
        member = await Member.create(name="ann", score=1)

        updated = await Member.find_one_and_update({"name": "ann"}, {"score": 5})

        assert updated.id == member.id
        assert updated.score == 5
        assert backend.stored("members")[member.id]["score"] == 5

    async def test_returns_none_when_missing(self, backend) -> None:
        assert await Member.find_one_and_update({"name": "nobody"}, {"score": 5}) is None

    async def test_upsert(self, backend) -> None:
        created = await Member.find_one_and_update({"name": "zed"}, {"score": 9}, upsert=True)

        assert created.name == "zed"
        assert created.score == 9
        assert await Member.count() == 1

    async def test_flattens_reference_values(self, backend) -> None:
        members, _, entries = await _seed_notes()

        await Note.find_one_and_update({"_id": entries[2].id}, {"owner": members[1]})

        assert backend.stored("notes")[entries[2].id]["owner"] == members[1].id

    async def test_find_by_id_and_update(self, backend) -> None:
        member = await Member.create(name="ann", score=1)

        updated = await Member.find_by_id_and_update(member.id, {"score": 2})

        assert updated.score == 2

    def test_requires_query_and_values(self) -> None:
        with pytest.raises(TypeError):
            Member.find_one_and_update({"name": "ann"})


class TestDeleteVariants:
    """Tests for the delete verbs."""

    async def test_find_one_and_delete(self, backend) -> None:
        member = await Member.create(name="ann")

        deleted = await Member.find_one_and_delete({"name": "ann"})

        assert deleted.id == member.id
        assert await Member.count() == 0

    async def test_find_one_and_delete_does_not_populate(self, backend) -> None:
        _, _, entries = await _seed_notes()
        backend.calls.clear()

        deleted = await Note.find_one_and_delete({"_id": entries[0].id})

        assert isinstance(deleted.owner, str)
        assert backend.calls_to("find", "members") == []

    async def test_find_by_id_and_remove(self, backend) -> None:
        member = await Member.create(name="ann")

        removed = await Member.find_by_id_and_remove(member.id)

        assert removed.name == "ann"
        assert await Member.find_by_id(member.id) is None

    async def test_delete_one_and_many(self, backend) -> None:
        for name in ("ann", "ann", "ben"):
            await Member.create(name=name)

        assert await Member.delete_one({"name": "ann"}) == 1
        assert await Member.count({"name": "ann"}) == 1
        assert await Member.delete_many({}) == 2
        assert await Member.count() == 0

    async def test_clear_collection(self, backend) -> None:
        await Member.create(name="ann")

        await Member.clear_collection()

        assert await Member.count() == 0


class TestIndexes:
    """Tests for unique index creation."""

    async def test_create_indexes_is_idempotent(self, backend) -> None:
        class Account(Document):
            handle: str = prop(unique=True)
            email: str = prop(unique=True)
            bio: str = None

        first = await Account.create_indexes()
        second = await Account.create_indexes()

        assert sorted(first) == ["email", "handle"]
        assert second == []
        assert len(backend.calls_to("create_index", "accounts")) == 2
