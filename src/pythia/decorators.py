"""Decorators and parameter sources used to declare controllers.

Example::

    @controller("/users")
    @use_before(authenticate)
    class UserController:
        @get("/:id")
        async def show(self, user_id: Annotated[str, param("id")]) -> dict[str, str]:
            ...

        @post("/")
        @http_code(201)
        async def create(self, payload: Annotated[NewUser, body(validation_pipe(NewUser))]) -> dict[str, str]:
            ...
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from .exceptions import ErrorKind
from .http import HttpVerb, ensure_status
from .metadata import (
    METADATA_ATTR,
    CatchBinding,
    ControllerPrefix,
    DownloadMarker,
    ParameterDescriptor,
    ParameterSource,
    Partial,
    ResponseHeader,
    RouteMapping,
    StatusCode,
)
from .middleware import Middleware, MiddlewareBinding, MiddlewarePosition
from .pipes import Pipe

T = TypeVar("T")
Decorator = Callable[[T], T]


def _attach(target: T, partials: tuple[Partial, ...], *, prepend: bool = False) -> T:
    owner: Any = target
    if isinstance(owner, (staticmethod, classmethod)):
        owner = owner.__func__
    if isinstance(owner, type):
        existing = tuple(owner.__dict__.get(METADATA_ATTR, ()))
    else:
        existing = tuple(getattr(owner, METADATA_ATTR, ()))
    # Stacked decorators evaluate bottom-up; prepending keeps accumulating
    # metadata in the order it is written.
    updated = partials + existing if prepend else existing + partials
    setattr(owner, METADATA_ATTR, updated)
    return target


def controller(prefix: str = "") -> Callable[[type[T]], type[T]]:
    """Set the base path shared by every route of the decorated class."""

    def decorator(cls: type[T]) -> type[T]:
        return _attach(cls, (ControllerPrefix(prefix),))

    return decorator


def route(verb: HttpVerb | str, path: str = "/") -> Decorator:
    mapping = RouteMapping(verb=HttpVerb.parse(verb), path=path)

    def decorator(func: T) -> T:
        return _attach(func, (mapping,))

    return decorator


def get(path: str = "/") -> Decorator:
    return route(HttpVerb.GET, path)


def post(path: str = "/") -> Decorator:
    return route(HttpVerb.POST, path)


def put(path: str = "/") -> Decorator:
    return route(HttpVerb.PUT, path)


def patch(path: str = "/") -> Decorator:
    return route(HttpVerb.PATCH, path)


def delete(path: str = "/") -> Decorator:
    return route(HttpVerb.DELETE, path)


def http_code(status: int) -> Decorator:
    """Override the status code of a successful response."""

    marker = StatusCode(ensure_status(status))

    def decorator(func: T) -> T:
        return _attach(func, (marker,))

    return decorator


def set_header(name: str, value: str) -> Decorator:
    marker = ResponseHeader(name, str(value))

    def decorator(func: T) -> T:
        return _attach(func, (marker,))

    return decorator


def download(func: T) -> T:
    """Send the return value as a raw byte stream instead of JSON."""

    return _attach(func, (DownloadMarker(),))


def _middleware_decorator(position: MiddlewarePosition, middlewares: tuple[Middleware, ...]) -> Decorator:
    bindings = tuple(MiddlewareBinding(position, fn) for fn in middlewares)

    def decorator(target: T) -> T:
        return _attach(target, bindings, prepend=True)

    return decorator


def use_before(*middlewares: Middleware) -> Decorator:
    """Run ``middlewares`` before parameter resolution, on a class or a single route."""

    return _middleware_decorator(MiddlewarePosition.BEFORE, middlewares)


def use_after(*middlewares: Middleware) -> Decorator:
    """Run ``middlewares`` after the route method returns successfully."""

    return _middleware_decorator(MiddlewarePosition.AFTER, middlewares)


def create_middleware_decorator(
    middleware: Middleware,
    position: MiddlewarePosition = MiddlewarePosition.BEFORE,
) -> Decorator:
    """Turn ``middleware`` into a reusable class/method decorator."""

    decorator = _middleware_decorator(MiddlewarePosition(position), (middleware,))
    decorator.__name__ = getattr(middleware, "__name__", "middleware")
    decorator.__doc__ = getattr(middleware, "__doc__", None)
    return decorator


def catch(handler: Callable[..., Any], *targets: type[BaseException] | ErrorKind) -> Decorator:
    """Handle matching errors with ``handler(error, request, response)``.

    Without ``targets`` every error is handled. Route-level handlers are
    consulted before controller-level ones.
    """

    binding = CatchBinding(handler=handler, targets=tuple(targets))

    def decorator(target: T) -> T:
        return _attach(target, (binding,), prepend=True)

    return decorator


def _source(source: ParameterSource, key: str | Pipe | None, pipes: tuple[Pipe, ...]) -> ParameterDescriptor:
    if key is not None and not isinstance(key, str):
        pipes = (key,) + pipes
        key = None
    return ParameterDescriptor(source=source, key=key, pipes=pipes)


def body(key: str | Pipe | None = None, *pipes: Pipe) -> ParameterDescriptor:
    """The parsed request payload, or its ``key`` field."""

    return _source(ParameterSource.BODY, key, pipes)


def query(key: str | Pipe | None = None, *pipes: Pipe) -> ParameterDescriptor:
    return _source(ParameterSource.QUERY, key, pipes)


def param(key: str | Pipe | None = None, *pipes: Pipe) -> ParameterDescriptor:
    """A named path segment, e.g. ``id`` for ``/users/:id``."""

    return _source(ParameterSource.PARAM, key, pipes)


def header(key: str | Pipe | None = None, *pipes: Pipe) -> ParameterDescriptor:
    return _source(ParameterSource.HEADER, key, pipes)


def req() -> ParameterDescriptor:
    return ParameterDescriptor(source=ParameterSource.REQ)


def res() -> ParameterDescriptor:
    return ParameterDescriptor(source=ParameterSource.RES)


def uploaded_file(key: str | Pipe | None = None, *pipes: Pipe) -> ParameterDescriptor:
    return _source(ParameterSource.UPLOADED_FILE, key, pipes)


def uploaded_files(key: str | Pipe | None = None, *pipes: Pipe) -> ParameterDescriptor:
    return _source(ParameterSource.UPLOADED_FILES, key, pipes)


__all__ = [
    "body",
    "catch",
    "controller",
    "create_middleware_decorator",
    "delete",
    "download",
    "get",
    "header",
    "http_code",
    "param",
    "patch",
    "post",
    "put",
    "query",
    "req",
    "res",
    "route",
    "set_header",
    "uploaded_file",
    "uploaded_files",
    "use_after",
    "use_before",
]
