from docmapper.models.base import BaseDocument


class EmbeddedDocument(BaseDocument):
    """A document stored inline inside its parent's record.

    Embedded documents have no id and no collection; they are validated and
    flattened as part of the document that holds them.
    """

    @classmethod
    def document_class(cls) -> str:
        return "embedded"
