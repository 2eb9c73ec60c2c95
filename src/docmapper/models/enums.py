from enum import StrEnum


class HookStage(StrEnum):
    PRE_VALIDATE = "pre_validate"
    POST_VALIDATE = "post_validate"
    PRE_SAVE = "pre_save"
    POST_SAVE = "post_save"
    PRE_DELETE = "pre_delete"
    POST_DELETE = "post_delete"
    PRE_FETCH = "pre_fetch"


class FieldKind(StrEnum):
    PRIMITIVE = "primitive"
    REFERENCE = "reference"
    EMBEDDED = "embedded"
