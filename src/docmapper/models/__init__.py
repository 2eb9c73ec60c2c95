from docmapper.models.document import Document
from docmapper.models.embedded import EmbeddedDocument
from docmapper.models.enums import FieldKind, HookStage
from docmapper.models.fields import FieldSpec, Reference, prop
from docmapper.models.hooks import hook
from docmapper.models.schema import SchemaDescriptor, format_values

__all__ = [
    "Document",
    "EmbeddedDocument",
    "FieldKind",
    "FieldSpec",
    "HookStage",
    "Reference",
    "SchemaDescriptor",
    "format_values",
    "hook",
    "prop",
]
