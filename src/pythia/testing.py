"""Testing helpers."""

from __future__ import annotations

from typing import Any, Mapping, Sequence
from urllib.parse import urlencode

import msgspec

from .handler import CompiledHandler
from .requests import FileUpload, Request
from .responses import Response
from .serialization import json_decode, json_encode


class TestClient:
    """Async test client that executes requests in-process."""

    __test__ = False

    def __init__(self, handler: CompiledHandler, *, headers: Mapping[str, str] | None = None) -> None:
        self.handler = handler
        self.default_headers = dict(headers or {})

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        content: bytes | str | None = None,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        files: Mapping[str, Sequence[FileUpload]] | None = None,
        parsed_body: Any = msgspec.UNSET,
    ) -> Response:
        payload = b""
        request_headers = {**self.default_headers, **(headers or {})}
        if json is not None:
            payload = json_encode(json)
            request_headers.setdefault("content-type", "application/json")
        elif content is not None:
            payload = content.encode("utf-8") if isinstance(content, str) else content
        request = Request(
            method=method,
            path=path,
            headers=request_headers,
            query_string=urlencode(query or {}, doseq=True),
            body=payload,
            parsed_body=parsed_body,
            files=files,
        )
        return await self.handler(request)

    async def get(
        self,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("GET", path, query=query, headers=headers)

    async def post(
        self,
        path: str,
        *,
        json: Any | None = None,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        files: Mapping[str, Sequence[FileUpload]] | None = None,
    ) -> Response:
        return await self.request("POST", path, json=json, query=query, headers=headers, files=files)

    async def put(
        self,
        path: str,
        *,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("PUT", path, json=json, headers=headers)

    async def delete(
        self,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> Response:
        return await self.request("DELETE", path, headers=headers)


async def read_body(response: Response) -> bytes:
    """Return the full body of ``response``, draining its stream if it has one."""

    if response.stream is None:
        return response.body
    chunks = [response.body]
    async for chunk in response.stream:
        chunks.append(chunk)
    return b"".join(chunks)


async def read_json(response: Response) -> Any:
    return json_decode(await read_body(response))


__all__ = ["TestClient", "read_body", "read_json"]
