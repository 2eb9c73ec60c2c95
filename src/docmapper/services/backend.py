"""Storage backend contract and helpers shared by the bundled backends.

The document layer only talks to a ``StorageBackend``. Records cross the
boundary as plain dicts; records returned by a backend carry their id
under ``_id``. Queries are opaque mappings; the bundled backends
understand equality, list membership and ``{"$in": [...]}``.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable
from uuid import UUID, uuid4

from docmapper.exceptions import UnsupportedQueryError

Record = dict[str, Any]
Query = Mapping[str, Any]

ID_KEY = "_id"


@runtime_checkable
class StorageBackend(Protocol):
    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    def is_native_id(self, value: Any) -> bool: ...

    async def save(self, collection: str, record_id: Any, record: Record) -> Any: ...

    async def delete(self, collection: str, record_id: Any) -> int: ...

    async def delete_one(self, collection: str, query: Query) -> int: ...

    async def delete_many(self, collection: str, query: Query) -> int: ...

    async def find_one(self, collection: str, query: Query) -> Record | None: ...

    async def find(self, collection: str, query: Query, options: Mapping[str, Any] | None = None) -> list[Record]: ...

    async def find_one_and_update(
        self,
        collection: str,
        query: Query,
        values: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> Record | None: ...

    async def find_one_and_delete(
        self, collection: str, query: Query, options: Mapping[str, Any] | None = None
    ) -> Record | None: ...

    async def count(self, collection: str, query: Query) -> int: ...

    async def create_index(self, collection: str, field: str, options: Mapping[str, Any]) -> None: ...

    async def clear_collection(self, collection: str) -> None: ...


def new_id() -> str:
    return str(uuid4())


def is_uuid_str(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def check_query(query: Query) -> None:
    """Reject a query that uses an operator other than ``$in``.

    Raises:
        UnsupportedQueryError: On the first unsupported operator.
    """
    for key, expected in query.items():
        if key.startswith("$"):
            raise UnsupportedQueryError(f"unsupported query operator '{key}'")
        if is_operator_clause(expected):
            operators = set(expected)
            if operators != {"$in"}:
                raise UnsupportedQueryError(f"unsupported query operators {sorted(operators - {'$in'})}")


def is_operator_clause(value: Any) -> bool:
    return isinstance(value, Mapping) and any(op.startswith("$") for op in value)


def match_query(record: Mapping[str, Any], query: Query) -> bool:
    """Return True when ``record`` satisfies every condition in ``query``.

    Raises:
        UnsupportedQueryError: If the query uses an operator other than ``$in``.
    """
    check_query(query)
    for key, expected in query.items():
        actual = record.get(key)

        if is_operator_clause(expected):
            candidates = list(expected["$in"])
            if isinstance(actual, list):
                matched = any(item in candidates for item in actual)
            else:
                matched = actual in candidates
        elif isinstance(actual, list) and not isinstance(expected, list):
            matched = expected in actual
        else:
            matched = actual == expected

        if not matched:
            return False
    return True


def equality_fields(query: Query) -> Record:
    """The plain ``field == value`` conditions of a query, used to seed upserts."""
    return {key: value for key, value in query.items() if not key.startswith("$") and not is_operator_clause(value)}


def apply_find_options(records: Sequence[Record], options: Mapping[str, Any] | None) -> list[Record]:
    """Apply ``sort``, ``skip`` and ``limit`` options to matched records.

    ``sort`` is a field name or list of field names; a leading ``-`` sorts
    that field descending.
    """
    results = list(records)
    if not options:
        return results

    sort = options.get("sort")
    if sort:
        keys = [sort] if isinstance(sort, str) else list(sort)
        # Stable sorts applied from the least significant key.
        for key in reversed(keys):
            descending = key.startswith("-")
            field = key.lstrip("-+")
            results.sort(key=lambda record: _sort_key(record.get(field)), reverse=descending)

    skip = options.get("skip") or 0
    limit = options.get("limit")
    if skip:
        results = results[skip:]
    if limit:
        results = results[:limit]
    return results


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is not None, value if value is not None else 0)
