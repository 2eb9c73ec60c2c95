"""Schema descriptors and value normalization for document types.

A descriptor is built once, when a document class is defined, from its
pydantic fields. Annotations are resolved to a kind (primitive, reference,
embedded) and a canonical type name; anything that cannot be resolved is a
declaration error and raises ``SchemaError`` immediately.
"""

import types
from collections.abc import Mapping
from typing import Annotated, Any, ForwardRef, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict
from pydantic.fields import FieldInfo

from docmapper.exceptions import SchemaError
from docmapper.models.enums import FieldKind
from docmapper.models.fields import FORMAT_OPTIONS, PROP_OPTIONS, FieldSpec, ReferenceTo

_SEQUENCE_ORIGINS = (list, tuple, set, frozenset)


class SchemaDescriptor(BaseModel):
    """Introspectable description of a document type's declared properties."""

    model_config = ConfigDict(frozen=True)

    properties: dict[str, FieldSpec]
    opts: dict[str, dict[str, bool]]

    def get(self, name: str) -> FieldSpec | None:
        return self.properties.get(name)

    def references(self) -> dict[str, FieldSpec]:
        return {name: spec for name, spec in self.properties.items() if spec.is_reference}

    def unique_fields(self) -> list[str]:
        return [name for name, spec in self.properties.items() if spec.unique]


def resolve_annotation(annotation: Any, metadata: list[Any] | tuple[Any, ...] = ()) -> tuple[FieldKind, str, type | None, bool]:
    """Resolve a field annotation to ``(kind, type_name, target, many)``.

    Raises:
        SchemaError: If the annotation cannot be resolved to a concrete type.
    """
    for item in metadata:
        if isinstance(item, ReferenceTo):
            target = _reference_target(item)
            if isinstance(target, str):
                # Resolved by name through the registry on first use.
                return FieldKind.REFERENCE, target, None, False
            return FieldKind.REFERENCE, target.__name__, target, False

    annotation = _strip_optional(annotation)
    origin = get_origin(annotation)

    if origin is Annotated:
        inner, *extra = get_args(annotation)
        return resolve_annotation(inner, extra)

    if origin in _SEQUENCE_ORIGINS:
        args = [arg for arg in get_args(annotation) if arg is not Ellipsis]
        if len(args) == 1:
            kind, type_name, target, _ = resolve_annotation(args[0])
            if kind is not FieldKind.PRIMITIVE:
                return kind, type_name, target, True
        return FieldKind.PRIMITIVE, origin.__name__, None, False

    if origin is not None:
        return FieldKind.PRIMITIVE, getattr(origin, "__name__", str(origin)), None, False

    if annotation is Any:
        return FieldKind.PRIMITIVE, "Any", None, False

    if isinstance(annotation, (str, ForwardRef)):
        raise SchemaError(f"unresolved type annotation {annotation!r}")

    if isinstance(annotation, type):
        document_class = _document_class(annotation)
        if document_class == "embedded":
            return FieldKind.EMBEDDED, annotation.__name__, annotation, False
        if document_class == "document":
            raise SchemaError(
                f"{annotation.__name__} is a document type; declare the field as Reference[{annotation.__name__}]"
            )
        return FieldKind.PRIMITIVE, annotation.__name__, None, False

    raise SchemaError(f"cannot resolve type annotation {annotation!r}")


def _strip_optional(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _document_class(annotation: type) -> str | None:
    if issubclass(annotation, BaseModel) and callable(getattr(annotation, "document_class", None)):
        return annotation.document_class()
    return None


def _reference_target(reference: ReferenceTo) -> type | str:
    target = reference.target
    if isinstance(target, ForwardRef):
        target = target.__forward_arg__
    if isinstance(target, str):
        if not target:
            raise SchemaError("Reference target name must not be empty")
        return target
    if not isinstance(target, type) or _document_class(target) != "document":
        raise SchemaError(f"Reference target must be a Document subclass, got {target!r}")
    return target


def build_field_specs(
    model_fields: Mapping[str, FieldInfo],
    opts: Mapping[str, Any] | None = None,
    exclude: set[str] | frozenset[str] = frozenset(),
) -> dict[str, FieldSpec]:
    """Build a ``FieldSpec`` for every persisted field.

    Per-property entries in ``opts`` override the options given on the field.
    """
    specs: dict[str, FieldSpec] = {}
    for name, info in model_fields.items():
        if name in exclude:
            continue
        try:
            kind, type_name, target, many = resolve_annotation(info.annotation, info.metadata)
        except SchemaError as exc:
            raise SchemaError(f"property '{name}': {exc}") from exc

        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
        options = {key: extra[key] for key in PROP_OPTIONS if key in extra}
        if info.is_required():
            options["required"] = True
            default = None
        else:
            default = info.get_default(call_default_factory=True)

        specs[name] = FieldSpec(
            name=name,
            type=type_name,
            kind=kind,
            target=target,
            many=many,
            default=default,
            **options,
        )

    for name, options in normalize_opts(opts).items():
        if name not in specs:
            raise SchemaError(f"opts refers to unknown property '{name}'")
        unknown = set(options) - set(FORMAT_OPTIONS)
        if unknown:
            raise SchemaError(f"opts for '{name}' has unsupported keys: {sorted(unknown)}")
        specs[name] = specs[name].model_copy(update={key: bool(value) for key, value in options.items()})

    return specs


def build_schema(specs: Mapping[str, FieldSpec], reserved: set[str] | frozenset[str] = frozenset()) -> SchemaDescriptor | None:
    """Build the public descriptor, or None when nothing is declared."""
    properties = {name: spec for name, spec in specs.items() if name not in reserved}
    if not properties:
        return None
    opts = {name: spec.format_options() for name, spec in properties.items() if spec.has_formatting()}
    return SchemaDescriptor(properties=properties, opts=opts)


def normalize_opts(raw: Mapping[str, Any] | None) -> dict[str, dict[str, Any]]:
    """Accept both ``{field: {...}}`` and ``{"default": {field: {...}}}``."""
    if not raw:
        return {}
    nested = raw.get("default")
    if isinstance(nested, Mapping):
        raw = nested
    return {name: dict(options) for name, options in raw.items()}


def format_values(values: Mapping[str, Any], schema_opts: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
    """Apply lowercase, uppercase and trim rules, in that order, to string values.

    Returns a new dict; ``values`` is not modified.
    """
    formatted = dict(values)
    for key, options in schema_opts.items():
        value = values.get(key)
        if not isinstance(value, str):
            continue
        if options.get("lowercase"):
            value = value.lower()
        if options.get("uppercase"):
            value = value.upper()
        if options.get("trim"):
            value = value.strip()
        formatted[key] = value
    return formatted


def default_collection_name(type_name: str) -> str:
    resource = type_name.lower()
    if resource.endswith(("s", "z")):
        return f"{resource}es"
    return f"{resource}s"
