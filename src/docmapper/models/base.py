from collections.abc import Mapping
from typing import Any, ClassVar, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from docmapper import client
from docmapper.exceptions import DocumentValidationError
from docmapper.models.enums import HookStage
from docmapper.models.fields import FieldSpec
from docmapper.models.hooks import Hook, collect_hooks
from docmapper.models.registry import registry
from docmapper.models.schema import SchemaDescriptor, build_field_specs, build_schema
from docmapper.services import resolver

T_Model = TypeVar("T_Model", bound="BaseDocument")


class BaseDocument(BaseModel):
    """Validation and serialization layer shared by documents and embedded documents.

    Subclasses are registered with the type registry when they are defined;
    their field specs, schema descriptor and hooks are resolved once, then.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, arbitrary_types_allowed=True)

    # Per-property string formatting, flat or nested under "default":
    #   opts = {"email": {"lowercase": True, "trim": True}}
    opts: ClassVar[Mapping[str, Any]] = {}

    # Fields never written into the record body.
    __excluded__: ClassVar[frozenset[str]] = frozenset()
    # Fields owned by the mapper rather than declared by the application.
    __reserved__: ClassVar[frozenset[str]] = frozenset()

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        fields = build_field_specs(cls.model_fields, cls.opts, exclude=cls.__excluded__)
        registry.register(
            cls,
            fields=fields,
            schema=build_schema(fields, reserved=cls.__reserved__),
            decorated_hooks=collect_hooks(reversed(cls.__mro__)),
        )

    @classmethod
    def document_class(cls) -> str | None:
        """Either "document" or "embedded"; None for the abstract base."""
        return None

    @classmethod
    def schema(cls) -> SchemaDescriptor | None:  # type: ignore[override]
        """The type's schema descriptor, or None when it declares no properties."""
        return registry.get(cls).schema

    @classmethod
    def add_hook(cls, stage: HookStage | str, fn: Hook) -> None:
        """Attach a standalone hook to this type (and its subclasses)."""
        registry.add_hook(cls, stage, fn)

    @classmethod
    def _hooks(cls, stage: HookStage) -> list[Hook]:
        return registry.hooks_for(cls, stage)

    @classmethod
    def _field_specs(cls) -> dict[str, FieldSpec]:
        return registry.get(cls).fields

    def get_default(self, name: str) -> Any:
        info = type(self).model_fields[name]
        if info.is_required():
            return None
        return info.get_default(call_default_factory=True)

    def validate(self) -> None:  # type: ignore[override]
        """Check types, then required, choices, min/max and reference values.

        Raises:
            DocumentValidationError: On the first failing field.
        """
        values = self._coerced_values()
        for name, spec in self._field_specs().items():
            _check_field(type(self), spec, values.get(name))

    def canonicalize(self) -> None:
        """Store values in the encoding their declared types produce (e.g. "5" -> 5)."""
        for name, value in self._coerced_values().items():
            setattr(self, name, value)
        for spec in self._field_specs().values():
            if spec.is_embedded:
                for item in _items(getattr(self, spec.name, None)):
                    if isinstance(item, BaseDocument):
                        item.canonicalize()

    def _coerced_values(self) -> dict[str, Any]:
        data = {name: getattr(self, name, None) for name in type(self).model_fields}
        data = {name: value for name, value in data.items() if value is not None}
        try:
            validated = type(self).model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else None
            raise DocumentValidationError(
                f"{type(self).__name__}.{field}: {error['msg']}" if field else error["msg"],
                field=field,
            ) from e
        return {name: getattr(validated, name) for name in data}

    def summary(self) -> dict[str, Any]:
        return self._to_data()

    def _to_data(self) -> dict[str, Any]:
        return resolver.flatten(self)

    @classmethod
    def _from_data(cls: Type[T_Model], data: Any) -> Any:
        """Rehydrate one record or a list of records, keeping the input shape."""
        if isinstance(data, Mapping):
            return cls.model_validate({key: value for key, value in data.items() if value is not None})
        return [cls._from_data(item) for item in data]


def _items(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple, set, frozenset)) else [value]


def _check_field(document_cls: type, spec: FieldSpec, value: Any) -> None:
    if spec.required and (value is None or value == ""):
        raise DocumentValidationError(f"{spec.name} is required", field=spec.name)
    if value is None:
        return

    items = _items(value)

    if spec.is_reference:
        target = registry.reference_target(document_cls, spec)
        backend = client.get_client()
        for item in items:
            if isinstance(item, BaseDocument):
                if not isinstance(item, target):
                    raise DocumentValidationError(
                        f"{spec.name} must reference {spec.type}, got {type(item).__name__}", field=spec.name
                    )
            elif item is not None and not backend.is_native_id(item):
                raise DocumentValidationError(f"{spec.name} must reference {spec.type}, got {item!r}", field=spec.name)

    if spec.is_embedded:
        for item in items:
            if isinstance(item, BaseDocument):
                item.validate()

    if spec.choices is not None:
        for item in items:
            if item not in spec.choices:
                raise DocumentValidationError(
                    f"{spec.name} must be one of {list(spec.choices)}, got {item!r}", field=spec.name
                )

    try:
        for item in items:
            if spec.min is not None and item < spec.min:
                raise DocumentValidationError(f"{spec.name} must be at least {spec.min}", field=spec.name)
            if spec.max is not None and item > spec.max:
                raise DocumentValidationError(f"{spec.name} must be at most {spec.max}", field=spec.name)
    except TypeError as e:
        raise DocumentValidationError(f"{spec.name} cannot be compared with its bounds", field=spec.name) from e


def summarize(value: Any) -> Any:
    if isinstance(value, BaseDocument):
        return value.summary()
    if isinstance(value, list):
        return [summarize(item) for item in value]
    return value
