# rally/errors.py

from enum import Enum


class RallyError(Exception):
    pass


class ParseErrorKind(str, Enum):
    MISSING_FIELD = "missing_field"
    INVALID_LIMIT = "invalid_limit"


class ParseError(RallyError):
    """
    The message text is not a valid rally record.
    """

    def __init__(self, kind: ParseErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)


class CommandError(RallyError):
    """
    A creation or admin command failed its grammar.
    The message is meant to be shown to the user as-is.
    """


class AuthorizationError(RallyError):
    pass


class CapacityError(RallyError):
    pass


class TransportError(RallyError):
    pass
