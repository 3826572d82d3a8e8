"""Controller metadata: descriptors, the registry and class collection.

Decorators never write to shared state. They attach partial metadata to the
function or class they decorate, and :func:`collect_controller` replays those
partials into an explicit :class:`MetadataRegistry` before freezing them into
a :class:`ControllerMetadata` snapshot.

Python evaluates stacked decorators bottom-up. For metadata that overwrites
(verb, status code, a header of the same name) the last evaluation wins, so
the topmost decorator takes effect. Middleware and exception handlers
accumulate instead, in the order they are written.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Callable, Iterator, Mapping, Union, get_args, get_origin, get_type_hints

from .exceptions import ConfigurationError, ErrorKind
from .http import HttpVerb
from .middleware import MiddlewareBinding, MiddlewarePosition
from .pipes import Pipe

METADATA_ATTR = "__pythia_metadata__"


class ParameterSource(str, Enum):
    BODY = "body"
    QUERY = "query"
    PARAM = "param"
    HEADER = "header"
    REQ = "req"
    RES = "res"
    UPLOADED_FILE = "file"
    UPLOADED_FILES = "files"


@dataclass(slots=True, frozen=True)
class ParameterDescriptor:
    source: ParameterSource
    key: str | None = None
    pipes: tuple[Pipe, ...] = ()
    index: int = -1
    name: str | None = None
    keyword_only: bool = False


@dataclass(slots=True, frozen=True)
class RouteMapping:
    verb: HttpVerb
    path: str


@dataclass(slots=True, frozen=True)
class StatusCode:
    status_code: int


@dataclass(slots=True, frozen=True)
class ResponseHeader:
    name: str
    value: str


@dataclass(slots=True, frozen=True)
class DownloadMarker:
    pass


@dataclass(slots=True, frozen=True)
class ControllerPrefix:
    prefix: str


@dataclass(slots=True, frozen=True)
class CatchBinding:
    """Exception handler bound to a controller or a single route.

    ``targets`` holds exception types and/or :class:`ErrorKind` members; an
    empty tuple matches every error.
    """

    handler: Callable[..., Any]
    targets: tuple[type[BaseException] | ErrorKind, ...] = ()

    def matches(self, error: BaseException) -> bool:
        if not self.targets:
            return True
        kind = getattr(error, "kind", None)
        for target in self.targets:
            if isinstance(target, ErrorKind):
                if kind is target:
                    return True
            elif isinstance(error, target):
                return True
        return False


Partial = Union[
    RouteMapping,
    StatusCode,
    ResponseHeader,
    DownloadMarker,
    ControllerPrefix,
    ParameterDescriptor,
    MiddlewareBinding,
    CatchBinding,
]


@dataclass(slots=True, frozen=True)
class RouteDescriptor:
    verb: HttpVerb
    path: str
    handler_name: str
    status_code: int | None = None
    response_headers: tuple[tuple[str, str], ...] = ()
    download: bool = False


@dataclass(slots=True, frozen=True)
class MethodMetadata:
    name: str
    route: RouteDescriptor
    parameters: tuple[ParameterDescriptor, ...]
    before: tuple[MiddlewareBinding, ...]
    after: tuple[MiddlewareBinding, ...]
    catchers: tuple[CatchBinding, ...]


@dataclass(slots=True, frozen=True)
class ControllerMetadata:
    controller: type
    prefix: str
    methods: Mapping[str, MethodMetadata]
    before: tuple[MiddlewareBinding, ...]
    after: tuple[MiddlewareBinding, ...]
    catchers: tuple[CatchBinding, ...]


@dataclass(slots=True)
class _MethodDraft:
    route: RouteMapping | None = None
    status_code: int | None = None
    headers: dict[str, tuple[str, str]] = field(default_factory=dict)
    download: bool = False
    parameters: dict[int, ParameterDescriptor] = field(default_factory=dict)
    before: list[MiddlewareBinding] = field(default_factory=list)
    after: list[MiddlewareBinding] = field(default_factory=list)
    catchers: list[CatchBinding] = field(default_factory=list)


@dataclass(slots=True)
class _ControllerDraft:
    prefix: str = ""
    methods: dict[str, _MethodDraft] = field(default_factory=dict)
    before: list[MiddlewareBinding] = field(default_factory=list)
    after: list[MiddlewareBinding] = field(default_factory=list)
    catchers: list[CatchBinding] = field(default_factory=list)


class MetadataRegistry:
    """Accumulates metadata per controller until it is finalized."""

    def __init__(self) -> None:
        self._drafts: dict[type, _ControllerDraft] = {}
        self._snapshots: dict[type, ControllerMetadata] = {}

    def register(self, controller: type, method_name: str | None, partial: Partial) -> None:
        """Merge ``partial`` into the entry for ``controller`` (and ``method_name``).

        ``method_name=None`` targets the controller itself.
        """

        if controller in self._snapshots:
            raise ConfigurationError(
                f"Metadata for {controller.__qualname__} is finalized; cannot register {partial!r}"
            )
        draft = self._drafts.setdefault(controller, _ControllerDraft())
        if method_name is None:
            self._register_controller(controller, draft, partial)
        else:
            method = draft.methods.setdefault(method_name, _MethodDraft())
            self._register_method(controller, method_name, method, partial)

    @staticmethod
    def _register_controller(controller: type, draft: _ControllerDraft, partial: Partial) -> None:
        if isinstance(partial, ControllerPrefix):
            draft.prefix = partial.prefix
        elif isinstance(partial, MiddlewareBinding):
            _bindings_for(draft, partial.position).append(partial)
        elif isinstance(partial, CatchBinding):
            draft.catchers.append(partial)
        else:
            raise ConfigurationError(f"{partial!r} cannot be applied to controller {controller.__qualname__}")

    @staticmethod
    def _register_method(controller: type, name: str, draft: _MethodDraft, partial: Partial) -> None:
        if isinstance(partial, RouteMapping):
            draft.route = partial
        elif isinstance(partial, StatusCode):
            draft.status_code = partial.status_code
        elif isinstance(partial, ResponseHeader):
            draft.headers[partial.name.lower()] = (partial.name, partial.value)
        elif isinstance(partial, DownloadMarker):
            draft.download = True
        elif isinstance(partial, ParameterDescriptor):
            if partial.index < 0:
                raise ConfigurationError(f"Parameter descriptor for {controller.__qualname__}.{name} has no index")
            draft.parameters[partial.index] = partial
        elif isinstance(partial, MiddlewareBinding):
            _bindings_for(draft, partial.position).append(partial)
        elif isinstance(partial, CatchBinding):
            draft.catchers.append(partial)
        else:
            raise ConfigurationError(f"{partial!r} cannot be applied to {controller.__qualname__}.{name}")

    def finalize(self, controller: type) -> ControllerMetadata:
        """Freeze and return the metadata for ``controller``."""

        snapshot = self._snapshots.get(controller)
        if snapshot is not None:
            return snapshot
        draft = self._drafts.pop(controller, None) or _ControllerDraft()
        methods = {name: _freeze_method(controller, name, method) for name, method in draft.methods.items()}
        snapshot = ControllerMetadata(
            controller=controller,
            prefix=draft.prefix,
            methods=MappingProxyType(methods),
            before=tuple(draft.before),
            after=tuple(draft.after),
            catchers=tuple(draft.catchers),
        )
        self._snapshots[controller] = snapshot
        return snapshot

    def is_finalized(self, controller: type) -> bool:
        return controller in self._snapshots


def _bindings_for(draft: _MethodDraft | _ControllerDraft, position: MiddlewarePosition) -> list[MiddlewareBinding]:
    return draft.before if position is MiddlewarePosition.BEFORE else draft.after


def _freeze_method(controller: type, name: str, draft: _MethodDraft) -> MethodMetadata:
    qualified = f"{controller.__qualname__}.{name}"
    if draft.route is None:
        raise ConfigurationError(f"{qualified} carries route metadata but no verb decorator")
    indices = sorted(draft.parameters)
    if indices != list(range(len(indices))):
        raise ConfigurationError(f"{qualified} parameter indices must be contiguous from 0, got {indices}")
    route = RouteDescriptor(
        verb=draft.route.verb,
        path=draft.route.path,
        handler_name=name,
        status_code=draft.status_code,
        response_headers=tuple(draft.headers.values()),
        download=draft.download,
    )
    return MethodMetadata(
        name=name,
        route=route,
        parameters=tuple(draft.parameters[index] for index in indices),
        before=tuple(draft.before),
        after=tuple(draft.after),
        catchers=tuple(draft.catchers),
    )


def attached_metadata(target: Any) -> tuple[Partial, ...]:
    if isinstance(target, type):
        return tuple(target.__dict__.get(METADATA_ATTR, ()))
    return tuple(getattr(target, METADATA_ATTR, ()))


def _unwrap(attribute: Any) -> tuple[Callable[..., Any] | None, int]:
    """Return the underlying function and how many leading parameters are implicit."""

    if isinstance(attribute, staticmethod):
        return attribute.__func__, 0
    if isinstance(attribute, classmethod):
        return attribute.__func__, 1
    if inspect.isfunction(attribute):
        return attribute, 1
    return None, 0


def _routed_members(controller: type) -> Iterator[tuple[str, Callable[..., Any], int]]:
    members: dict[str, tuple[Callable[..., Any], int]] = {}
    for klass in reversed(controller.__mro__):
        for name, attribute in vars(klass).items():
            func, implicit = _unwrap(attribute)
            if func is not None and attached_metadata(func):
                members[name] = (func, implicit)
            elif name in members:
                del members[name]
    for name, (func, implicit) in members.items():
        yield name, func, implicit


def parameter_descriptors(controller: type, name: str, func: Callable[..., Any], implicit: int) -> list[ParameterDescriptor]:
    """Read the parameter sources declared through ``Annotated`` hints."""

    qualified = f"{controller.__qualname__}.{name}"
    try:
        hints = get_type_hints(func, include_extras=True)
    except Exception as exc:
        raise ConfigurationError(f"Cannot resolve annotations of {qualified}: {exc}") from exc
    descriptors: list[ParameterDescriptor] = []
    parameters = list(inspect.signature(func).parameters.values())[implicit:]
    for parameter in parameters:
        if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            raise ConfigurationError(f"{qualified} cannot route into *args or **kwargs ({parameter.name})")
        hint = hints.get(parameter.name)
        markers = []
        if get_origin(hint) is Annotated:
            markers = [item for item in get_args(hint)[1:] if isinstance(item, ParameterDescriptor)]
        if len(markers) != 1:
            raise ConfigurationError(
                f"{qualified} parameter {parameter.name!r} needs exactly one parameter source, found {len(markers)}"
            )
        descriptors.append(
            replace(
                markers[0],
                index=len(descriptors),
                name=parameter.name,
                keyword_only=parameter.kind is inspect.Parameter.KEYWORD_ONLY,
            )
        )
    return descriptors


def collect_controller(controller: type, registry: MetadataRegistry | None = None) -> ControllerMetadata:
    """Replay the metadata attached to ``controller`` into ``registry`` and finalize it."""

    registry = registry or MetadataRegistry()
    if registry.is_finalized(controller):
        return registry.finalize(controller)
    for klass in reversed(controller.__mro__):
        for partial in attached_metadata(klass):
            registry.register(controller, None, partial)
    for name, func, implicit in _routed_members(controller):
        for partial in attached_metadata(func):
            registry.register(controller, name, partial)
        for descriptor in parameter_descriptors(controller, name, func, implicit):
            registry.register(controller, name, descriptor)
    return registry.finalize(controller)


__all__ = [
    "CatchBinding",
    "ControllerMetadata",
    "ControllerPrefix",
    "DownloadMarker",
    "METADATA_ATTR",
    "MetadataRegistry",
    "MethodMetadata",
    "ParameterDescriptor",
    "ParameterSource",
    "Partial",
    "ResponseHeader",
    "RouteDescriptor",
    "RouteMapping",
    "StatusCode",
    "attached_metadata",
    "collect_controller",
    "parameter_descriptors",
]
