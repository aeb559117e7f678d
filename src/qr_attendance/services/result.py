from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INPUT_ERROR = "input_error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    TOKEN_INVALID = "token_invalid"
    LOCATION_REJECTED = "location_rejected"
    STORAGE_ERROR = "storage_error"
    PERMISSION_DENIED = "permission_denied"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.STORAGE_ERROR


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INPUT_ERROR: "The request is missing required information.",
    ErrorKind.UNAUTHORIZED: "Only the session's teacher can do that.",
    ErrorKind.NOT_FOUND: "That attendance session could not be found.",
    ErrorKind.TOKEN_INVALID: "This QR code has expired or was replaced. Ask for a fresh code and scan again.",
    ErrorKind.LOCATION_REJECTED: "You are outside the allowed area for this session.",
    ErrorKind.STORAGE_ERROR: "Attendance could not be saved right now. Please try again.",
    ErrorKind.PERMISSION_DENIED: "Camera or location access was denied.",
}


class ResultError(RuntimeError):
    """Raised by :meth:`Result.unwrap` on a failed result."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Outcome of a service operation: a value, or an error kind with a user-facing message."""

    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str | None = None) -> "Result[T]":
        return cls(error=kind, message=message or DEFAULT_MESSAGES[kind])

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ResultError(self.error, self.message)
        return self.value  # type: ignore[return-value]
