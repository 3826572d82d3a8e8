"""Compile a decorated controller class into per-verb request dispatchers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

import msgspec

from .config import HandlerConfig
from .exceptions import ConfigurationError, NotFound
from .http import Status, reason_phrase
from .mapper import ExceptionMapper
from .metadata import (
    CatchBinding,
    ControllerMetadata,
    MetadataRegistry,
    MethodMetadata,
    ParameterDescriptor,
    RouteDescriptor,
    collect_controller,
)
from .middleware import MiddlewareBinding, Outcome, combine, run_chain
from .parameters import resolve_arguments
from .requests import Request
from .responses import FileDownload, Response, ResponseContext
from .routing import RouteTable, join_path

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


@dataclass(slots=True, frozen=True)
class CompiledRoute:
    descriptor: RouteDescriptor
    path: str
    endpoint: Callable[..., Any]
    parameters: tuple[ParameterDescriptor, ...]
    before: tuple[MiddlewareBinding, ...]
    after: tuple[MiddlewareBinding, ...]
    catchers: tuple[CatchBinding, ...]


class VerbDispatcher:
    """Entry point the host calls for every request using one HTTP verb.

    Holds only compile-time state, so one instance serves concurrent requests.
    """

    __slots__ = ("_config", "_mapper", "_table", "verb")

    def __init__(
        self,
        verb: str,
        table: RouteTable[CompiledRoute],
        *,
        config: HandlerConfig,
        mapper: ExceptionMapper,
    ) -> None:
        self.verb = verb
        self._table = table
        self._config = config
        self._mapper = mapper

    @property
    def routes(self) -> tuple[CompiledRoute, ...]:
        return tuple(route.endpoint for route in self._table.routes)

    async def __call__(self, request: Request) -> Response:
        response = ResponseContext(
            status_code=self._config.default_status,
            json_content_type=self._config.json_content_type,
        )
        if request.max_body_bytes is None:
            request.max_body_bytes = self._config.max_body_bytes
        try:
            match = self._table.find(request.path)
        except LookupError:
            _write_error(self._mapper, NotFound(f"Cannot {request.method} {request.path}"), response)
            return response.to_response()
        route = match.route.endpoint
        request.with_path_params(match.params)
        try:
            await self._run(route, request, response)
        except asyncio.CancelledError:
            logger.info("Request %s %s cancelled during dispatch", request.method, request.path)
            raise
        except Exception as exc:
            await self._handle_error(exc, route, request, response)
        return response.to_response()

    async def _run(self, route: CompiledRoute, request: Request, response: ResponseContext) -> None:
        if await run_chain(route.before, request, response) is Outcome.TERMINATED:
            return
        args, kwargs = await resolve_arguments(route.parameters, request, response)
        result = route.endpoint(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        _write_result(route.descriptor, result, response)
        await run_chain(route.after, request, response)

    async def _handle_error(
        self,
        error: Exception,
        route: CompiledRoute,
        request: Request,
        response: ResponseContext,
    ) -> None:
        for binding in route.catchers:
            if not binding.matches(error):
                continue
            response.clear()
            try:
                result = binding.handler(error, request, response)
                if inspect.isawaitable(result):
                    result = await result
                if response.sent:
                    return
                if result is None:
                    response.end()
                else:
                    response.json(result)
            except Exception as handler_error:
                error = handler_error
                break
            return
        _write_error(self._mapper, error, response)


class CompiledHandler:
    """Result of :func:`create_handler`.

    ``dispatchers`` holds one :class:`VerbDispatcher` per verb the controller
    declares. Calling the handler itself routes by ``request.method``.
    """

    def __init__(
        self,
        controller: type,
        instance: Any,
        metadata: ControllerMetadata,
        dispatchers: Mapping[str, VerbDispatcher],
        *,
        config: HandlerConfig,
        mapper: ExceptionMapper,
    ) -> None:
        self.controller = controller
        self.instance = instance
        self.metadata = metadata
        self.dispatchers: Mapping[str, VerbDispatcher] = MappingProxyType(dict(dispatchers))
        self.config = config
        self.mapper = mapper

    @property
    def verbs(self) -> tuple[str, ...]:
        return tuple(self.dispatchers)

    def __getitem__(self, verb: str) -> VerbDispatcher:
        return self.dispatchers[verb.upper()]

    async def __call__(self, request: Request) -> Response:
        dispatcher = self.dispatchers.get(request.method)
        if dispatcher is not None:
            return await dispatcher(request)
        response = ResponseContext(
            status_code=self.config.default_status,
            json_content_type=self.config.json_content_type,
        )
        _write_error(self.mapper, NotFound(f"Cannot {request.method} {request.path}"), response)
        return response.to_response()


def create_handler(
    controller: type,
    *,
    config: HandlerConfig | Mapping[str, Any] | None = None,
    mapper: ExceptionMapper | None = None,
    registry: MetadataRegistry | None = None,
) -> CompiledHandler:
    """Compile ``controller`` into a :class:`CompiledHandler`.

    Raises :class:`ConfigurationError` for contradictory metadata; no handler
    is returned in that case.
    """

    resolved_config = HandlerConfig.from_mapping(config) if config is not None else HandlerConfig()
    resolved_mapper = mapper or ExceptionMapper(expose_internal_errors=resolved_config.expose_internal_errors)
    try:
        instance = controller()
    except TypeError as exc:
        raise ConfigurationError(f"{controller.__qualname__} must be constructible without arguments") from exc
    metadata = collect_controller(controller, registry)
    tables: dict[str, RouteTable[CompiledRoute]] = {}
    for method in metadata.methods.values():
        compiled = _compile_route(controller, instance, metadata, method)
        table = tables.setdefault(
            compiled.descriptor.verb.value,
            RouteTable(strict_slashes=resolved_config.strict_slashes),
        )
        table.add(compiled.path, compiled)
    dispatchers = {
        verb: VerbDispatcher(verb, table, config=resolved_config, mapper=resolved_mapper)
        for verb, table in tables.items()
    }
    logger.debug(
        "Compiled %s: %d route(s) for %s",
        controller.__qualname__,
        sum(len(table) for table in tables.values()),
        ", ".join(dispatchers) or "no verbs",
    )
    return CompiledHandler(
        controller,
        instance,
        metadata,
        dispatchers,
        config=resolved_config,
        mapper=resolved_mapper,
    )


def _compile_route(
    controller: type,
    instance: Any,
    metadata: ControllerMetadata,
    method: MethodMetadata,
) -> CompiledRoute:
    qualified = f"{controller.__qualname__}.{method.name}"
    endpoint = getattr(instance, method.name, None)
    if endpoint is None or not callable(endpoint):
        raise ConfigurationError(f"{qualified} is not a callable method")
    _check_signature(qualified, endpoint, method.parameters)
    return CompiledRoute(
        descriptor=method.route,
        path=join_path(metadata.prefix, method.route.path),
        endpoint=endpoint,
        parameters=method.parameters,
        before=combine(metadata.before, method.before),
        after=combine(metadata.after, method.after),
        catchers=method.catchers + metadata.catchers,
    )


def _check_signature(qualified: str, endpoint: Callable[..., Any], descriptors: tuple[ParameterDescriptor, ...]) -> None:
    positional = 0
    keyword: set[str] = set()
    for parameter in inspect.signature(endpoint).parameters.values():
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
        elif parameter.kind is inspect.Parameter.KEYWORD_ONLY:
            keyword.add(parameter.name)
    declared_positional = sum(1 for descriptor in descriptors if not descriptor.keyword_only)
    if positional != declared_positional:
        raise ConfigurationError(
            f"{qualified} takes {positional} positional parameter(s) but {declared_positional} are described"
        )
    missing = {descriptor.name for descriptor in descriptors if descriptor.keyword_only} - keyword
    if missing:
        raise ConfigurationError(f"{qualified} has no keyword-only parameter(s) {sorted(missing)}")


def _write_error(mapper: ExceptionMapper, error: BaseException, response: ResponseContext) -> None:
    mapped = mapper.to_response(error)
    response.clear()
    try:
        response.status(mapped.status_code).json(mapped.body)
    except (TypeError, msgspec.EncodeError):
        logger.exception("Could not encode the error body for %s", type(error).__name__)
        status = int(Status.INTERNAL_SERVER_ERROR)
        response.status(status).json({"statusCode": status, "message": reason_phrase(status)})


def _write_result(descriptor: RouteDescriptor, result: Any, response: ResponseContext) -> None:
    for name, value in descriptor.response_headers:
        if response.get_header(name) is None:
            response.set_header(name, value)
    if response.sent:
        return
    if descriptor.status_code is not None:
        response.status(descriptor.status_code)
    if descriptor.download:
        _write_download(result, response)
    elif isinstance(result, Response):
        response.adopt(result)
    elif result is None:
        response.end()
    elif isinstance(result, str):
        response.text(result)
    elif isinstance(result, (bytes, bytearray, memoryview)):
        response.send(bytes(result))
    else:
        response.json(result)


def _write_download(result: Any, response: ResponseContext) -> None:
    contents = result
    if isinstance(result, FileDownload):
        contents = result.contents
        response.set_header("content-type", result.content_type)
        filename = result.filename.replace("\\", "\\\\").replace('"', '\\"')
        response.set_header("content-disposition", f'attachment; filename="{filename}"')
    if isinstance(result, Response):
        response.adopt(result)
        return
    if response.get_header("content-type") is None:
        response.set_header("content-type", "application/octet-stream")
    if contents is None:
        response.end()
    elif isinstance(contents, (bytes, bytearray, memoryview)):
        response.send(bytes(contents))
    elif isinstance(contents, str):
        response.send(contents.encode("utf-8"))
    elif hasattr(contents, "__aiter__"):
        response.stream(_encode_chunks(contents))
    elif hasattr(contents, "read"):
        response.stream(_read_chunks(contents))
    elif isinstance(contents, Iterable):
        response.stream(_iterate_chunks(contents))
    else:
        raise TypeError(f"Download route returned unsupported value of type {type(contents).__name__}")


def _as_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


async def _encode_chunks(chunks: Any) -> AsyncIterator[bytes]:
    async for chunk in chunks:
        yield _as_bytes(chunk)


async def _iterate_chunks(chunks: Iterable[Any]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield _as_bytes(chunk)


async def _read_chunks(handle: Any) -> AsyncIterator[bytes]:
    try:
        while True:
            chunk = handle.read(_CHUNK_SIZE)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            if not chunk:
                break
            yield _as_bytes(chunk)
    finally:
        close = getattr(handle, "close", None)
        if close is not None:
            closed = close()
            if inspect.isawaitable(closed):
                await closed


__all__ = ["CompiledHandler", "CompiledRoute", "VerbDispatcher", "create_handler"]
