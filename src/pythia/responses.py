"""Response primitives."""

from __future__ import annotations

from typing import Any, AsyncIterable, Iterable

import msgspec

from .http import Status, ensure_status
from .serialization import json_encode

Headers = tuple[tuple[str, str], ...]


class Response(msgspec.Struct, frozen=True):
    """Immutable response handed back to the host runtime.

    ``stream`` is set for download routes whose body is produced lazily; hosts
    send ``body`` first when ``stream`` is ``None``.
    """

    status: int = int(Status.OK)
    headers: Headers = ()
    body: bytes = b""
    stream: AsyncIterable[bytes] | None = None

    def header(self, name: str, default: str | None = None) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return default

    def with_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        """Return a new response with ``headers`` appended."""

        return Response(
            status=self.status,
            headers=self.headers + tuple(headers),
            body=self.body,
            stream=self.stream,
        )


class FileDownload(msgspec.Struct, frozen=True):
    """Return value of a download route."""

    filename: str
    contents: Any
    content_type: str = "application/octet-stream"


class ResponseContext:
    """Mutable response shared by middleware, the handler method and the dispatcher.

    Writing a body through :meth:`json`, :meth:`send`, :meth:`stream` or
    :meth:`end` marks the response as sent; the dispatcher then leaves it
    alone instead of serializing the handler's return value.
    """

    __slots__ = ("_body", "_headers", "_json_content_type", "_sent", "_stream", "status_code")

    def __init__(self, *, status_code: int = int(Status.OK), json_content_type: str = "application/json") -> None:
        self.status_code = status_code
        self._headers: dict[str, tuple[str, str]] = {}
        self._body = b""
        self._stream: AsyncIterable[bytes] | None = None
        self._sent = False
        self._json_content_type = json_content_type

    @property
    def sent(self) -> bool:
        return self._sent

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def headers(self) -> Headers:
        return tuple(self._headers.values())

    def status(self, code: int | Status) -> "ResponseContext":
        self.status_code = ensure_status(code)
        return self

    def set_header(self, name: str, value: str) -> "ResponseContext":
        self._headers[name.lower()] = (name, str(value))
        return self

    def get_header(self, name: str) -> str | None:
        entry = self._headers.get(name.lower())
        return None if entry is None else entry[1]

    def remove_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    def json(self, data: Any) -> "ResponseContext":
        self.set_header("content-type", self._json_content_type)
        return self._finish(json_encode(data))

    def text(self, text: str) -> "ResponseContext":
        if self.get_header("content-type") is None:
            self.set_header("content-type", "text/plain; charset=utf-8")
        return self._finish(text.encode("utf-8"))

    def send(self, data: bytes | str) -> "ResponseContext":
        if isinstance(data, str):
            return self.text(data)
        if self.get_header("content-type") is None:
            self.set_header("content-type", "application/octet-stream")
        return self._finish(bytes(data))

    def stream(self, chunks: AsyncIterable[bytes]) -> "ResponseContext":
        self._stream = chunks
        return self._finish(b"")

    def end(self) -> "ResponseContext":
        return self._finish(self._body)

    def adopt(self, response: Response) -> "ResponseContext":
        """Write a prebuilt :class:`Response` into this context."""

        self.status(response.status)
        for name, value in response.headers:
            self.set_header(name, value)
        self._stream = response.stream
        return self._finish(response.body)

    def clear(self) -> None:
        """Drop any written body so the response can be rewritten."""

        self._body = b""
        self._stream = None
        self._sent = False
        self.remove_header("content-type")
        self.remove_header("content-disposition")

    def _finish(self, body: bytes) -> "ResponseContext":
        self._body = body
        self._sent = True
        return self

    def to_response(self) -> Response:
        return Response(status=self.status_code, headers=self.headers, body=self._body, stream=self._stream)


def PlainTextResponse(
    text: str,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a plain text response."""

    default_headers = (("content-type", "text/plain; charset=utf-8"),)
    return Response(status=status, headers=default_headers + tuple(headers or ()), body=text.encode("utf-8"))


def JSONResponse(
    data: Any,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    """Create a JSON response encoded via :mod:`msgspec`."""

    default_headers = (("content-type", "application/json"),)
    return Response(status=status, headers=default_headers + tuple(headers or ()), body=json_encode(data))


__all__ = [
    "FileDownload",
    "Headers",
    "JSONResponse",
    "PlainTextResponse",
    "Response",
    "ResponseContext",
]
