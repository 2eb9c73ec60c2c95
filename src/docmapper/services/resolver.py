"""Reference and embedded-document resolution.

``flatten`` turns an in-memory document into a storage record: references
become ids and embedded documents become plain data. ``populate`` does the
reverse for references after a read, with one lookup per reference field
across all documents being populated.

Classification uses the kind recorded in the type's field specs. A list
field is homogeneous: every element has the declared kind.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from docmapper.exceptions import SchemaError
from docmapper.models.fields import FieldSpec
from docmapper.models.registry import registry
from docmapper.services.backend import ID_KEY

logger = structlog.get_logger(__name__)


def flatten(document: BaseModel) -> dict[str, Any]:
    """Build the storage record for a document, without its id."""
    fields = registry.get(type(document)).fields
    primitive = {name for name, spec in fields.items() if not spec.is_reference and not spec.is_embedded}
    record = document.model_dump(include=primitive)
    for name, spec in fields.items():
        if name in primitive:
            continue
        record[name] = flatten_value(spec, getattr(document, name, None))
    return record


def flatten_values(document_cls: type, values: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten the reference and embedded entries of an update payload."""
    fields = registry.get(document_cls).fields
    flattened = dict(values)
    for name, value in values.items():
        spec = fields.get(name)
        if spec is not None and (spec.is_reference or spec.is_embedded):
            flattened[name] = flatten_value(spec, value)
    return flattened


def flatten_value(spec: FieldSpec, value: Any) -> Any:
    if value is None:
        return None
    if spec.is_reference:
        if spec.many:
            return [_reference_id(item) for item in value]
        return _reference_id(value)
    if spec.is_embedded:
        if spec.many:
            return [_embedded_data(item) for item in value]
        return _embedded_data(value)
    return value


def _reference_id(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return getattr(value, "id", None)
    return value


def _embedded_data(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value._to_data()
    return value


def reference_fields(document_cls: type, which: Any) -> list[FieldSpec]:
    """Select the reference fields to populate.

    ``True`` selects every reference field, an iterable of names selects
    those, and ``False``, ``None`` or an empty iterable selects none.

    Raises:
        SchemaError: If a named field is not a reference field.
    """
    if which is None or which is False:
        return []
    references = {name: spec for name, spec in registry.get(document_cls).fields.items() if spec.is_reference}
    if which is True:
        return list(references.values())
    names = [which] if isinstance(which, str) else list(which)
    selected = []
    for name in names:
        if name not in references:
            raise SchemaError(f"{document_cls.__name__}.{name} is not a reference field")
        selected.append(references[name])
    return selected


async def populate(document_cls: Any, documents: Any, which: Any = True) -> Any:
    """Replace stored reference ids with live documents.

    Args:
        document_cls: Type of the documents being populated.
        documents: A single document, a list of documents, or None.
        which: Fields to populate (see ``reference_fields``).

    Returns:
        ``documents``, in the shape it was given.
    """
    if documents is None:
        return None
    docs = list(documents) if isinstance(documents, Iterable) and not isinstance(documents, BaseModel) else [documents]

    for spec in reference_fields(document_cls, which):
        ids = _unresolved_ids(spec, docs)
        if not ids:
            continue
        target = registry.reference_target(document_cls, spec)
        found = await target.find({ID_KEY: {"$in": ids}}, populate=False)
        by_id = {doc.id: doc for doc in found}
        missing = [record_id for record_id in ids if record_id not in by_id]
        if missing:
            logger.warning(
                "reference_not_found",
                document=document_cls.__name__,
                field=spec.name,
                missing=missing,
            )
        for doc in docs:
            value = getattr(doc, spec.name, None)
            if value is None:
                continue
            if spec.many:
                setattr(doc, spec.name, [_resolve(item, by_id) for item in value])
            else:
                setattr(doc, spec.name, _resolve(value, by_id))

    return documents


def _unresolved_ids(spec: FieldSpec, docs: list[Any]) -> list[Any]:
    """Stored ids still to be fetched, de-duplicated in first-seen order."""
    ids: dict[Any, None] = {}
    for doc in docs:
        value = getattr(doc, spec.name, None)
        if value is None:
            continue
        items = value if spec.many else [value]
        ids.update(dict.fromkeys(item for item in items if item is not None and not isinstance(item, BaseModel)))
    return list(ids)


def _resolve(value: Any, by_id: Mapping[Any, Any]) -> Any:
    if isinstance(value, BaseModel):
        return value
    return by_id.get(value, value)
