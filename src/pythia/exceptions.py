"""Error types raised by controllers, middleware, pipes and the compiler.

Every error carries an :class:`ErrorKind` discriminant. The exception mapper
turns an error into a response by looking its ``kind`` up in a table, so the
named subclasses below are conveniences for constructing errors, not types
the dispatcher matches against.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from .http import ensure_status


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    CONFLICT = "conflict"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UNPROCESSABLE_ENTITY = "unprocessable_entity"
    INTERNAL = "internal"
    CONFIGURATION = "configuration"
    # Explicit status supplied by the raiser.
    HTTP = "http"


class PythiaError(Exception):
    """Base error type."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ConfigurationError(PythiaError):
    """Contradictory or incomplete controller metadata, detected at compile time."""

    kind = ErrorKind.CONFIGURATION


class HTTPError(PythiaError):
    """Structured HTTP error.

    ``status`` is only consulted for :attr:`ErrorKind.HTTP`; every other kind
    has a fixed status in the mapper's table.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        status: int | None = None,
        errors: Sequence[Any] | None = None,
    ) -> None:
        if kind is ErrorKind.HTTP and status is None:
            raise ValueError("HTTPError of kind HTTP requires an explicit status")
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = ensure_status(status) if status is not None else None
        self.errors = tuple(errors or ())


class ValidationError(HTTPError):
    """A parameter failed to extract or transform.

    Pipes raise it with a short predicate (``"must be a number"``); the
    parameter resolver re-raises it with :meth:`for_parameter` so the message
    names the offending source and key.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        key: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.source = source
        self.key = key
        self.detail = detail if detail is not None else message
        errors = ({"source": source, "key": key, "message": self.detail},) if source is not None else ()
        super().__init__(ErrorKind.VALIDATION, message, errors=errors)

    def for_parameter(self, source: str, key: str | None) -> "ValidationError":
        label = f"{source} '{key}'" if key else source
        return ValidationError(f"{label} {self.detail}", source=source, key=key, detail=self.detail)


def BadRequest(message: str | None = None, *, errors: Sequence[Any] | None = None) -> HTTPError:
    return HTTPError(ErrorKind.BAD_REQUEST, message, errors=errors)


def Unauthorized(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.UNAUTHORIZED, message)


def Forbidden(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.FORBIDDEN, message)


def NotFound(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.NOT_FOUND, message)


def MethodNotAllowed(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.METHOD_NOT_ALLOWED, message)


def Conflict(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.CONFLICT, message)


def PayloadTooLarge(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.PAYLOAD_TOO_LARGE, message)


def UnprocessableEntity(message: str | None = None, *, errors: Sequence[Any] | None = None) -> HTTPError:
    return HTTPError(ErrorKind.UNPROCESSABLE_ENTITY, message, errors=errors)


def InternalServerError(message: str | None = None) -> HTTPError:
    return HTTPError(ErrorKind.INTERNAL, message)


__all__ = [
    "BadRequest",
    "ConfigurationError",
    "Conflict",
    "ErrorKind",
    "Forbidden",
    "HTTPError",
    "InternalServerError",
    "MethodNotAllowed",
    "NotFound",
    "PayloadTooLarge",
    "PythiaError",
    "Unauthorized",
    "UnprocessableEntity",
    "ValidationError",
]
