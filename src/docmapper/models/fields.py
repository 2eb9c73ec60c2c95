"""Property declarations for document types.

Properties are ordinary pydantic fields. ``prop()`` adds the persistence
options (uniqueness, constraints, string formatting) that the schema
builder reads back, and ``Reference[...]`` marks a field as a pointer to
another document type. The target may be named by string when it is the
type being declared or is defined later.

    class Post(Document):
        title: str = prop(required=True, trim=True)
        author: Reference[User] = None
        tags: list[Reference[Tag]] = prop(default_factory=list)
        reply_to: Reference["Post"] = None
"""

from dataclasses import dataclass
from typing import Annotated, Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from docmapper.models.enums import FieldKind

FORMAT_OPTIONS: tuple[str, ...] = ("lowercase", "uppercase", "trim")
PROP_OPTIONS: tuple[str, ...] = ("unique", "required", "choices", "min", "max", *FORMAT_OPTIONS)


@dataclass(frozen=True)
class ReferenceTo:
    """Annotation metadata naming the document type a field points to."""

    target: Any


class Reference:
    """``Reference[User]`` declares a field holding a ``User`` or its id.

    ``Reference["User"]`` defers the lookup until the target is first needed.
    """

    def __class_getitem__(cls, target: Any) -> Any:
        return Annotated[Any, ReferenceTo(target)]


def prop(
    default: Any = None,
    *,
    default_factory: Callable[[], Any] | None = None,
    unique: bool = False,
    required: bool = False,
    choices: list[Any] | tuple[Any, ...] | None = None,
    min: Any = None,
    max: Any = None,
    lowercase: bool = False,
    uppercase: bool = False,
    trim: bool = False,
    **field_kwargs: Any,
) -> Any:
    """Declare a document property with persistence options.

    Every property defaults to ``None`` so that documents can be built empty
    and filled in before saving; ``required`` is enforced by ``validate()``.
    """
    options = {
        "unique": unique,
        "required": required,
        "choices": tuple(choices) if choices is not None else None,
        "min": min,
        "max": max,
        "lowercase": lowercase,
        "uppercase": uppercase,
        "trim": trim,
    }
    extra = dict(field_kwargs.pop("json_schema_extra", None) or {})
    extra.update({key: value for key, value in options.items() if value is not None and value is not False})
    if default_factory is not None:
        return Field(default_factory=default_factory, json_schema_extra=extra, **field_kwargs)
    return Field(default=default, json_schema_extra=extra, **field_kwargs)


class FieldSpec(BaseModel):
    """Resolved description of one persisted property."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    # None for a reference declared by name until the registry resolves it.
    target: type | None = None
    type: str
    kind: FieldKind = FieldKind.PRIMITIVE
    many: bool = False
    default: Any = None
    unique: bool = False
    required: bool = False
    choices: tuple[Any, ...] | None = None
    min: Any = None
    max: Any = None
    lowercase: bool = False
    uppercase: bool = False
    trim: bool = False

    @property
    def is_reference(self) -> bool:
        return self.kind is FieldKind.REFERENCE

    @property
    def is_pending(self) -> bool:
        return self.is_reference and self.target is None

    @property
    def is_embedded(self) -> bool:
        return self.kind is FieldKind.EMBEDDED

    def format_options(self) -> dict[str, bool]:
        return {option: getattr(self, option) for option in FORMAT_OPTIONS}

    def has_formatting(self) -> bool:
        return any(self.format_options().values())
