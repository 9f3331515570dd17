"""
Error taxonomy for the heartlink core.

Every failure a caller can observe is one of these. The facade turns them into
failed envelopes and the HTTP adapter maps ``kind`` to a status code.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable failure category."""

    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_ROLE = "invalid_role"
    STORE_UNAVAILABLE = "store_unavailable"


class HeartlinkError(Exception):
    """Base class for expected, caller-facing failures."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, object]:
        """Extra structured context safe to return to the caller."""
        return {}


class InvalidInputError(HeartlinkError):
    kind = ErrorKind.INVALID_INPUT


class ConflictError(HeartlinkError):
    kind = ErrorKind.CONFLICT


class NotFoundError(HeartlinkError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(HeartlinkError):
    kind = ErrorKind.UNAUTHORIZED


class InvalidRoleError(HeartlinkError):
    """An edge endpoint does not carry the role its position requires."""

    kind = ErrorKind.INVALID_ROLE

    def __init__(self, message: str, endpoint: str, expected: str, actual: str) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.expected = expected
        self.actual = actual

    def details(self) -> dict[str, object]:
        return {"endpoint": self.endpoint, "expected": self.expected, "actual": self.actual}


class StoreUnavailableError(HeartlinkError):
    """The relational store failed. The original exception stays on ``__cause__``."""

    kind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, message: str = "Server error.") -> None:
        super().__init__(message)
