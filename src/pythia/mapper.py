"""Translate errors into status codes and JSON bodies."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Mapping

import msgspec

from .exceptions import ErrorKind
from .http import Status, ensure_status, is_server_error, reason_phrase

logger = logging.getLogger(__name__)

DEFAULT_STATUSES: Mapping[ErrorKind, int] = MappingProxyType(
    {
        ErrorKind.BAD_REQUEST: int(Status.BAD_REQUEST),
        ErrorKind.VALIDATION: int(Status.BAD_REQUEST),
        ErrorKind.UNAUTHORIZED: int(Status.UNAUTHORIZED),
        ErrorKind.FORBIDDEN: int(Status.FORBIDDEN),
        ErrorKind.NOT_FOUND: int(Status.NOT_FOUND),
        ErrorKind.METHOD_NOT_ALLOWED: int(Status.METHOD_NOT_ALLOWED),
        ErrorKind.CONFLICT: int(Status.CONFLICT),
        ErrorKind.PAYLOAD_TOO_LARGE: int(Status.PAYLOAD_TOO_LARGE),
        ErrorKind.UNPROCESSABLE_ENTITY: int(Status.UNPROCESSABLE_ENTITY),
        ErrorKind.INTERNAL: int(Status.INTERNAL_SERVER_ERROR),
        ErrorKind.CONFIGURATION: int(Status.INTERNAL_SERVER_ERROR),
    }
)

# Kinds whose message describes the server, not the request.
_SUPPRESSED_KINDS = frozenset({ErrorKind.CONFIGURATION})


class MappedError(msgspec.Struct, frozen=True):
    status_code: int
    body: dict[str, Any]


class ExceptionMapper:
    """Map errors to ``(status_code, body)`` by their :class:`ErrorKind`."""

    def __init__(
        self,
        *,
        expose_internal_errors: bool = False,
        statuses: Mapping[ErrorKind, int] | None = None,
    ) -> None:
        self.expose_internal_errors = expose_internal_errors
        self._statuses = dict(DEFAULT_STATUSES)
        if statuses:
            self._statuses.update(statuses)

    def status_for(self, error: BaseException) -> int | None:
        kind = getattr(error, "kind", None)
        if not isinstance(kind, ErrorKind):
            return None
        if kind is ErrorKind.HTTP:
            status = getattr(error, "status", None)
        else:
            status = self._statuses.get(kind)
        if status is None:
            return None
        try:
            return ensure_status(status)
        except (TypeError, ValueError):
            return None

    def to_response(self, error: BaseException) -> MappedError:
        status = self.status_for(error)
        if status is None:
            return self._unhandled(error)
        kind = getattr(error, "kind")
        if kind in _SUPPRESSED_KINDS:
            logger.error("Configuration error surfaced at request time", exc_info=error)
            return self._unhandled_body(status, error)
        message = getattr(error, "message", None) or reason_phrase(status)
        body: dict[str, Any] = {"statusCode": status, "message": message}
        errors = getattr(error, "errors", ())
        if errors:
            body["errors"] = list(errors)
        if is_server_error(status):
            logger.error("Request failed with %s: %s", status, message, exc_info=error)
        return MappedError(status_code=status, body=body)

    def _unhandled(self, error: BaseException) -> MappedError:
        logger.error("Unhandled error while dispatching request", exc_info=error)
        return self._unhandled_body(int(Status.INTERNAL_SERVER_ERROR), error)

    def _unhandled_body(self, status: int, error: BaseException) -> MappedError:
        body: dict[str, Any] = {"statusCode": status, "message": reason_phrase(status)}
        if self.expose_internal_errors:
            body["message"] = str(error) or type(error).__name__
            body["error"] = type(error).__name__
        return MappedError(status_code=status, body=body)


__all__ = ["DEFAULT_STATUSES", "ExceptionMapper", "MappedError"]
