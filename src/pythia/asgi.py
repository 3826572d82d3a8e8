"""Serve a compiled handler over ASGI."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, Awaitable, Callable, Mapping

from .handler import CompiledHandler
from .requests import Request
from .responses import Response

Receive = Callable[[], Awaitable[Mapping[str, Any]]]
Send = Callable[[Mapping[str, Any]], Awaitable[None]]

logger = logging.getLogger(__name__)


class ASGIAdapter:
    """ASGI application wrapping a :class:`~pythia.handler.CompiledHandler`.

    Multipart parsing is left to the host; uploaded files are only available
    when a request is built directly with ``files``.
    """

    def __init__(self, handler: CompiledHandler) -> None:
        self.handler = handler

    async def __call__(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        scope_type = scope.get("type")
        if scope_type == "http":
            await self._handle_http(scope, receive, send)
            return
        if scope_type == "lifespan":
            await _handle_lifespan(receive, send)
            return
        raise RuntimeError("ASGIAdapter only supports HTTP and lifespan scopes")

    async def _handle_http(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        headers = {key.decode("latin-1").lower(): value.decode("latin-1") for key, value in scope.get("headers", [])}
        body_state: dict[str, Any] = {"buffer": bytearray(), "done": False, "disconnected": False}

        async def load_body() -> bytes:
            while not body_state["done"]:
                message = await receive()
                message_type = message.get("type")
                if message_type == "http.disconnect":
                    body_state["disconnected"] = True
                    raise asyncio.CancelledError("client disconnected while sending the request body")
                if message_type != "http.request":
                    continue
                chunk = message.get("body", b"")
                if chunk:
                    body_state["buffer"].extend(chunk)
                if not message.get("more_body", False):
                    body_state["done"] = True
            return bytes(body_state["buffer"])

        request = Request(
            method=scope["method"],
            path=scope["path"],
            headers=headers,
            query_string=(scope.get("query_string") or b"").decode("latin-1"),
            body_loader=load_body,
        )
        try:
            response = await self.handler(request)
        except asyncio.CancelledError:
            if not body_state["disconnected"]:
                raise
            logger.info("Client disconnected before %s %s was read; request abandoned", request.method, request.path)
            return
        await send(
            {
                "type": "http.response.start",
                "status": response.status,
                "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in response.headers],
            }
        )
        await _send_response_body(response, send)


async def _handle_lifespan(receive: Receive, send: Send) -> None:
    while True:
        message = await receive()
        message_type = message.get("type")
        if message_type == "lifespan.startup":
            await send({"type": "lifespan.startup.complete"})
        elif message_type == "lifespan.shutdown":
            await send({"type": "lifespan.shutdown.complete"})
            return


async def _send_response_body(response: Response, send: Send) -> None:
    stream = response.stream
    if stream is None:
        await send({"type": "http.response.body", "body": response.body})
        return
    iterator = _ensure_async_iterator(stream)
    try:
        chunk = await anext(iterator)
    except StopAsyncIteration:
        await send({"type": "http.response.body", "body": response.body, "more_body": False})
        return
    await send({"type": "http.response.body", "body": response.body + chunk, "more_body": True})
    async for chunk in iterator:
        await send({"type": "http.response.body", "body": chunk, "more_body": True})
    await send({"type": "http.response.body", "body": b"", "more_body": False})


def _ensure_async_iterator(stream: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    if isinstance(stream, AsyncIterator):
        return stream
    return stream.__aiter__()


__all__ = ["ASGIAdapter"]
