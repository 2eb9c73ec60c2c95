"""Active-record documents.

A ``Document`` subclass maps to one collection. Instances save and delete
themselves through the connected storage backend; class methods query the
collection and rehydrate records into instances.

    class User(Document):
        name: str = prop(required=True, trim=True, lowercase=True)
        email: str = prop(unique=True)

    user = await User.create(name="  Bob  ")
    found = await User.find_one({"name": "bob"})
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, ClassVar, Iterable, Type, TypeVar

import structlog
from pydantic import Field, PrivateAttr

from docmapper import client
from docmapper.deprecation import deprecate
from docmapper.models.base import BaseDocument, summarize
from docmapper.models.enums import HookStage
from docmapper.models.hooks import run_stage
from docmapper.models.registry import registry
from docmapper.models.schema import default_collection_name, format_values
from docmapper.services import resolver
from docmapper.services.backend import ID_KEY

T_Document = TypeVar("T_Document", bound="Document")

logger = structlog.get_logger(__name__)


class Document(BaseDocument):
    """A persisted document with an identity and a collection."""

    __excluded__: ClassVar[frozenset[str]] = frozenset({"id"})
    __reserved__: ClassVar[frozenset[str]] = frozenset({"id", "timestamp"})
    # Explicit collection name; derived from the class name when None.
    __collection__: ClassVar[str | None] = None

    id: Any = Field(default=None, alias=ID_KEY)
    timestamp: datetime | None = None

    _meta: dict[str, Any] | None = PrivateAttr(default=None)

    def __init__(self, _collection: str | None = None, /, **data: Any) -> None:
        super().__init__(**data)
        if _collection is not None:
            deprecate("Document(collection) - set __collection__ or override collection_name() instead")
            self._meta = {"collection": _collection}

    @classmethod
    def document_class(cls) -> str:
        return "document"

    @classmethod
    def resource_name(cls) -> str:
        return cls.__name__.lower()

    @classmethod
    def collection_name(cls) -> str:
        """``__collection__`` if set, else the pluralized lowercase class name."""
        return cls.__collection__ or default_collection_name(cls.__name__)

    @property
    def meta(self) -> dict[str, Any] | None:
        return self._meta

    @meta.setter
    def meta(self, meta: dict[str, Any] | None) -> None:
        deprecate("Document.meta - set __collection__ or override collection_name() instead")
        self._meta = meta

    def _collection_name(self) -> str:
        if self._meta and self._meta.get("collection"):
            return self._meta["collection"]
        return type(self).collection_name()

    def summary(self) -> dict[str, Any]:
        """Plain view of the document: ``id`` plus every persisted field."""
        summary: dict[str, Any] = {"id": self.id}
        for name in self._field_specs():
            summary[name] = summarize(getattr(self, name, None))
        return summary

    @classmethod
    def convert_to_json(cls, documents: Iterable["Document"]) -> list[dict[str, Any]]:
        return [document.summary() for document in documents]

    async def save(self: T_Document) -> T_Document:
        """Validate and upsert this document.

        Stages run strictly in order; hooks within a stage run concurrently.
        The id is assigned by the first successful save and never replaced.

        Returns:
            This document.

        Raises:
            DocumentValidationError: If validation fails; nothing is written.
        """
        await run_stage(self._hooks(HookStage.PRE_VALIDATE), self)

        for name in self._field_specs():
            if getattr(self, name, None) is None:
                setattr(self, name, self.get_default(name))

        self.validate()
        self.canonicalize()
        await run_stage(self._hooks(HookStage.POST_VALIDATE), self)

        await run_stage(self._hooks(HookStage.PRE_SAVE), self)

        collection = self._collection_name()
        record_id = await client.get_client().save(collection, self.id, self._to_data())
        if self.id is None:
            self.id = record_id
        logger.debug("document_saved", collection=collection, document_id=self.id)

        await run_stage(self._hooks(HookStage.POST_SAVE), self)
        return self

    async def delete(self) -> Any:
        """Delete this document's record.

        ``post_delete`` hooks are called as ``hook(document, result)``.

        Returns:
            The backend's delete result (number of records removed).
        """
        await run_stage(self._hooks(HookStage.PRE_DELETE), self)
        collection = self._collection_name()
        result = await client.get_client().delete(collection, self.id)
        logger.debug("document_deleted", collection=collection, document_id=self.id, result=result)
        await run_stage(self._hooks(HookStage.POST_DELETE), self, result)
        return result

    @classmethod
    async def create(cls: Type[T_Document], params: Mapping[str, Any] | None = None, **values: Any) -> T_Document:
        """Build, normalize and save a new document.

        String values are formatted according to the type's ``opts``; missing
        values take the property default. The document is stamped with the
        current UTC time.
        """
        params = {**(params or {}), **values}
        instance = cls.model_construct()
        schema = cls.schema()
        if schema is None:
            return await instance.save()

        if schema.opts:
            params = format_values(params, schema.opts)

        for name in schema.properties:
            value = params.get(name)
            setattr(instance, name, value if value is not None else instance.get_default(name))

        instance.timestamp = datetime.now(timezone.utc)
        return await instance.save()

    @classmethod
    async def populate(cls, documents: Any, which: Any = True) -> Any:
        """Resolve reference ids on one document or a list of documents."""
        return await resolver.populate(cls, documents, which)

    @classmethod
    async def _pre_fetch(cls, query: Mapping[str, Any]) -> None:
        await run_stage(cls._hooks(HookStage.PRE_FETCH), cls, query)

    @classmethod
    async def _hydrate(cls, data: Mapping[str, Any] | None, populate: Any) -> Any:
        if not data:
            return None
        document = cls._from_data(data)
        return await cls.populate(document, populate)

    @classmethod
    async def find_one(cls: Type[T_Document], query: Mapping[str, Any] | None = None, *, populate: Any = True) -> T_Document | None:
        """Find the first document matching ``query``.

        Args:
            query: Backend filter; ``{}`` when None.
            populate: True for every reference field, a list of field names, or False.

        Returns:
            The document, or None if nothing matched.
        """
        query = query if query is not None else {}
        await cls._pre_fetch(query)
        data = await client.get_client().find_one(cls.collection_name(), query)
        return await cls._hydrate(data, populate)

    @classmethod
    async def find_by_id(cls: Type[T_Document], id: Any, *, populate: Any = True) -> T_Document | None:
        return await cls.find_one({ID_KEY: id}, populate=populate)

    @classmethod
    async def find(
        cls: Type[T_Document],
        query: Mapping[str, Any] | None = None,
        *,
        populate: Any = True,
        **options: Any,
    ) -> list[T_Document]:
        """Find every document matching ``query``.

        Args:
            query: Backend filter; ``{}`` when None.
            populate: True for every reference field, a list of field names, or False.
            **options: Passed to the backend (``sort``, ``skip``, ``limit``).

        Returns:
            A list, empty when nothing matched.
        """
        query = query if query is not None else {}
        await cls._pre_fetch(query)
        records = await client.get_client().find(cls.collection_name(), query, options)
        documents = cls._from_data(list(records or []))
        return list(await cls.populate(documents, populate))

    @classmethod
    async def find_one_and_update(
        cls: Type[T_Document],
        query: Mapping[str, Any],
        values: Mapping[str, Any],
        *,
        populate: Any = True,
        **options: Any,
    ) -> T_Document | None:
        """Update the first matching document and return it.

        ``values`` is formatted with the type's ``opts`` and its references and
        embedded documents flattened before it reaches the backend.

        Args:
            query: Backend filter.
            values: Fields to set.
            populate: True for every reference field, a list of field names, or False.
            **options: Passed to the backend (e.g. ``upsert=True``).

        Returns:
            The updated document, or None if nothing matched.
        """
        schema = cls.schema()
        if schema is not None and schema.opts:
            values = format_values(values, schema.opts)
        values = resolver.flatten_values(cls, values)

        await cls._pre_fetch(query)
        data = await client.get_client().find_one_and_update(cls.collection_name(), query, values, options)
        return await cls._hydrate(data, populate)

    @classmethod
    async def find_by_id_and_update(
        cls: Type[T_Document],
        id: Any,
        values: Mapping[str, Any],
        *,
        populate: Any = True,
        **options: Any,
    ) -> T_Document | None:
        return await cls.find_one_and_update({ID_KEY: id}, values, populate=populate, **options)

    @classmethod
    async def find_one_and_delete(cls: Type[T_Document], query: Mapping[str, Any], **options: Any) -> T_Document | None:
        """Delete the first matching document and return it as it was stored."""
        await cls._pre_fetch(query)
        data = await client.get_client().find_one_and_delete(cls.collection_name(), query, options)
        return await cls._hydrate(data, populate=False)

    @classmethod
    async def find_by_id_and_remove(cls: Type[T_Document], id: Any, **options: Any) -> T_Document | None:
        return await cls.find_one_and_delete({ID_KEY: id}, **options)

    @classmethod
    async def delete_one(cls, query: Mapping[str, Any]) -> int:
        return await client.get_client().delete_one(cls.collection_name(), query)

    @classmethod
    async def delete_many(cls, query: Mapping[str, Any] | None = None) -> int:
        return await client.get_client().delete_many(cls.collection_name(), query if query is not None else {})

    @classmethod
    async def count(cls, query: Mapping[str, Any] | None = None) -> int:
        return await client.get_client().count(cls.collection_name(), query if query is not None else {})

    @classmethod
    async def create_indexes(cls) -> list[str]:
        """Declare unique indexes for this type once per process.

        Returns:
            The fields indexed by this call; empty if already declared.
        """
        return await registry.ensure_indexes(cls, client.get_client())

    @classmethod
    async def clear_collection(cls) -> None:
        await client.get_client().clear_collection(cls.collection_name())

    @classmethod
    def load_one(cls, query: Mapping[str, Any] | None = None, **options: Any):
        """Deprecated: use ``find_one``."""
        deprecate("load_one - use find_one instead")
        return cls.find_one(query, **options)

    @classmethod
    def load_many(cls, query: Mapping[str, Any] | None = None, **options: Any):
        """Deprecated: use ``find``."""
        deprecate("load_many - use find instead")
        return cls.find(query, **options)

    @classmethod
    def load_one_and_update(cls, query: Mapping[str, Any], values: Mapping[str, Any], **options: Any):
        """Deprecated: use ``find_one_and_update``."""
        deprecate("load_one_and_update - use find_one_and_update instead")
        return cls.find_one_and_update(query, values, **options)

    @classmethod
    def load_one_and_delete(cls, query: Mapping[str, Any], **options: Any):
        """Deprecated: use ``find_one_and_delete``."""
        deprecate("load_one_and_delete - use find_one_and_delete instead")
        return cls.find_one_and_delete(query, **options)
