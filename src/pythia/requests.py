"""Request primitives."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, MutableMapping, Sequence
from urllib.parse import parse_qsl

import msgspec

from .exceptions import BadRequest, PayloadTooLarge, ValidationError
from .serialization import json_decode

BodyLoader = Callable[[], Awaitable[bytes | bytearray | memoryview | None]]

_MAX_QUERY_PARAMS = 1024
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class FileUpload(msgspec.Struct, frozen=True):
    """An uploaded file as handed over by the host's multipart parser.

    ``content`` is whatever reference the host provides: the raw bytes, a
    temporary path or a file object.
    """

    filename: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    content: Any = None
    field: str | None = None


class Request:
    """View of an incoming request built by the host runtime."""

    __slots__ = (
        "_body",
        "_body_loader",
        "_body_lock",
        "_parsed_body",
        "_query_params",
        "_raw_query",
        "files",
        "headers",
        "max_body_bytes",
        "method",
        "path",
        "path_params",
    )

    def __init__(
        self,
        *,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        path_params: Mapping[str, str] | None = None,
        query_string: str | None = None,
        body: bytes | None = None,
        body_loader: BodyLoader | None = None,
        parsed_body: Any = msgspec.UNSET,
        files: Mapping[str, Sequence[FileUpload]] | None = None,
        max_body_bytes: int | None = None,
    ) -> None:
        if body is not None and body_loader is not None:
            raise ValueError("Request body and body_loader are mutually exclusive")
        self.method = method.upper()
        self.path = path
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.path_params = dict(path_params or {})
        self._raw_query = query_string or ""
        self._body: bytes | None = body
        self._body_loader = body_loader
        self._body_lock = asyncio.Lock()
        self._parsed_body = parsed_body
        self._query_params: MutableMapping[str, list[str]] | None = None
        self.files = {field: tuple(uploads) for field, uploads in (files or {}).items()}
        self.max_body_bytes = max_body_bytes

    @staticmethod
    def _parse_query(raw: str) -> MutableMapping[str, list[str]]:
        parsed: MutableMapping[str, list[str]] = {}
        try:
            pairs = parse_qsl(raw, keep_blank_values=True, max_num_fields=_MAX_QUERY_PARAMS)
        except ValueError as exc:
            raise BadRequest("Too many query parameters") from exc
        for key, value in pairs:
            parsed.setdefault(key, []).append(value)
        return parsed

    @property
    def query_params(self) -> MutableMapping[str, list[str]]:
        if self._query_params is None:
            self._query_params = self._parse_query(self._raw_query)
        return self._query_params

    @property
    def raw_query(self) -> str:
        return self._raw_query

    @property
    def content_type(self) -> str:
        raw = self.headers.get("content-type", "")
        return raw.split(";", 1)[0].strip().lower()

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def query(self, name: str, default: str | None = None) -> str | None:
        """Return the last value supplied for query key ``name``."""

        values = self.query_params.get(name)
        if not values:
            return default
        return values[-1]

    def with_path_params(self, params: Mapping[str, str]) -> "Request":
        self.path_params = dict(params)
        return self

    async def _ensure_body(self) -> bytes:
        if self._body is None:
            loader = self._body_loader
            if loader is None:
                self._body = b""
            else:
                async with self._body_lock:
                    if self._body is None:
                        raw = await loader()
                        if raw is None:
                            self._body = b""
                        elif isinstance(raw, bytes):
                            self._body = raw
                        else:
                            self._body = bytes(raw)
                        self._body_loader = None
        body = self._body
        assert body is not None
        if self.max_body_bytes is not None and len(body) > self.max_body_bytes:
            raise PayloadTooLarge(f"Request body exceeds {self.max_body_bytes} bytes")
        return body

    async def body(self) -> bytes:
        return await self._ensure_body()

    async def text(self) -> str:
        body = await self._ensure_body()
        try:
            return body.decode()
        except UnicodeDecodeError as exc:
            raise ValidationError("Malformed body", source="body", detail="must be valid UTF-8") from exc

    async def json(self) -> Any:
        """Decode the JSON body using :mod:`msgspec`."""

        body = await self._ensure_body()
        if not body:
            return None
        try:
            return json_decode(body)
        except msgspec.DecodeError as exc:
            raise ValidationError("Malformed JSON body", source="body", detail="must be valid JSON") from exc

    async def parsed_body(self) -> Any:
        """Return the request payload decoded according to its content type.

        A host that already parsed the payload passes it as ``parsed_body``;
        that value is returned untouched.
        """

        if self._parsed_body is msgspec.UNSET:
            content_type = self.content_type
            if content_type == "application/json" or content_type.endswith("+json"):
                self._parsed_body = await self.json()
            elif content_type == _FORM_CONTENT_TYPE:
                text = await self.text()
                self._parsed_body = dict(parse_qsl(text, keep_blank_values=True))
            elif content_type.startswith("text/"):
                self._parsed_body = await self.text() or None
            else:
                body = await self._ensure_body()
                self._parsed_body = body or None
        return self._parsed_body


__all__ = ["BodyLoader", "FileUpload", "Request"]
