"""Per-type state for document classes.

Every document class is registered when it is defined. The registry owns
what used to be mutable class-level state: the resolved field specs, the
public schema descriptor, the hook lists, and whether indexes have been
declared to the backend.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator

import structlog

from docmapper.exceptions import SchemaError
from docmapper.models.enums import HookStage
from docmapper.models.fields import FieldSpec
from docmapper.models.hooks import Hook
from docmapper.models.schema import SchemaDescriptor

if TYPE_CHECKING:
    from docmapper.services.backend import StorageBackend

logger = structlog.get_logger(__name__)


@dataclass
class DocumentType:
    """Registered metadata for one document class."""

    document_cls: type
    fields: dict[str, FieldSpec]
    schema: SchemaDescriptor | None
    decorated_hooks: dict[HookStage, list[Hook]]
    added_hooks: dict[HookStage, list[Hook]] = field(default_factory=dict)
    indexes_created: bool = False

    @property
    def name(self) -> str:
        return self.document_cls.__name__


class TypeRegistry:
    """Registry of document classes keyed by class."""

    def __init__(self) -> None:
        self._types: dict[type, DocumentType] = {}

    def register(
        self,
        document_cls: type,
        fields: dict[str, FieldSpec],
        schema: SchemaDescriptor | None,
        decorated_hooks: dict[HookStage, list[Hook]],
    ) -> DocumentType:
        entry = DocumentType(
            document_cls=document_cls,
            fields=fields,
            schema=schema,
            decorated_hooks=decorated_hooks,
        )
        self._types[document_cls] = entry
        return entry

    def get(self, document_cls: type) -> DocumentType:
        try:
            return self._types[document_cls]
        except KeyError:
            raise SchemaError(f"{document_cls.__name__} is not a registered document type") from None

    def __iter__(self) -> Iterator[DocumentType]:
        return iter(list(self._types.values()))

    def __contains__(self, document_cls: object) -> bool:
        return document_cls in self._types

    def types_in_module(self, module_name: str) -> list[DocumentType]:
        return [entry for entry in self if entry.document_cls.__module__ == module_name]

    def add_hook(self, document_cls: type, stage: HookStage | str, fn: Hook) -> None:
        entry = self.get(document_cls)
        entry.added_hooks.setdefault(HookStage(stage), []).append(fn)

    def hooks_for(self, document_cls: type, stage: HookStage) -> list[Hook]:
        """Decorated hooks first, then hooks added to the class or its bases."""
        hooks = list(self.get(document_cls).decorated_hooks.get(stage, []))
        for klass in reversed(document_cls.__mro__):
            entry = self._types.get(klass)
            if entry is not None:
                hooks.extend(entry.added_hooks.get(stage, []))
        return hooks

    def reference_target(self, document_cls: type, spec: FieldSpec) -> type:
        """The document type a reference field points to.

        A target declared by name is looked up among registered document
        types, preferring the referencing type's module, and the resolved
        spec replaces the pending one.

        Raises:
            SchemaError: If the name matches no document type, or several.
        """
        if spec.target is not None:
            return spec.target

        target = self._lookup_document(spec.type, document_cls)
        resolved = spec.model_copy(update={"target": target})
        entry = self.get(document_cls)
        entry.fields[spec.name] = resolved
        if entry.schema is not None and spec.name in entry.schema.properties:
            entry.schema.properties[spec.name] = resolved
        logger.debug("reference_resolved", document=entry.name, field=spec.name, target=target.__name__)
        return target

    def _lookup_document(self, type_name: str, document_cls: type) -> type:
        candidates = [
            entry.document_cls
            for entry in self
            if type_name in (entry.name, f"{entry.document_cls.__module__}.{entry.document_cls.__qualname__}")
        ]
        if not candidates:
            raise SchemaError(f"{document_cls.__name__} references unknown document type '{type_name}'")

        same_module = [cls for cls in candidates if cls.__module__ == document_cls.__module__]
        if same_module:
            # A redefinition in the same module replaces the earlier class.
            target = same_module[-1]
        elif len(candidates) == 1:
            target = candidates[0]
        else:
            modules = sorted(cls.__module__ for cls in candidates)
            raise SchemaError(f"'{type_name}' is ambiguous for {document_cls.__name__}; defined in {modules}")

        if target.document_class() != "document":
            raise SchemaError(f"Reference target must be a Document subclass, got {target.__name__}")
        return target

    async def ensure_indexes(self, document_cls: Any, backend: "StorageBackend") -> list[str]:
        """Declare unique indexes for a type once.

        Returns the fields indexed by this call; empty when already done.
        """
        entry = self.get(document_cls)
        if entry.indexes_created:
            return []

        collection = document_cls.collection_name()
        unique_fields = [name for name, spec in entry.fields.items() if spec.unique]
        await asyncio.gather(
            *(backend.create_index(collection, name, {"unique": True}) for name in unique_fields)
        )
        entry.indexes_created = True
        logger.info("indexes_created", collection=collection, fields=unique_fields)
        return unique_fields

    def reset_indexes(self) -> None:
        """Mark every type as not yet indexed, e.g. after switching backends."""
        for entry in self._types.values():
            entry.indexes_created = False


registry = TypeRegistry()
