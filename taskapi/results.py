from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "bad_request"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM = "internal_error"

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self]


STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UPSTREAM: 500,
}


@dataclass(frozen=True)
class Success:
    body: dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return self.kind.status_code


Result = Success | Failure


def validation_error(message: str, **details: Any) -> Failure:
    return Failure(ErrorKind.VALIDATION, message, details)


def not_found(message: str, **details: Any) -> Failure:
    return Failure(ErrorKind.NOT_FOUND, message, details)


def conflict(message: str, **details: Any) -> Failure:
    return Failure(ErrorKind.CONFLICT, message, details)


def unauthorized(message: str, **details: Any) -> Failure:
    return Failure(ErrorKind.UNAUTHORIZED, message, details)


def upstream_failure(message: str, **details: Any) -> Failure:
    return Failure(ErrorKind.UPSTREAM, message, details)
