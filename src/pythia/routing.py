"""Route tables.

Paths are written with ``:name`` or ``{name}`` segments. Routes are matched
most-specific first: at the first position where two patterns differ, a
literal segment outranks a named one. Ties keep registration order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Generic, Mapping, MutableMapping, TypeVar
from urllib.parse import unquote

from .exceptions import ConfigurationError

T = TypeVar("T")

_PATH_PARAM_PATTERN = re.compile(r"^(?::([a-zA-Z_][a-zA-Z0-9_]*)|\{([a-zA-Z_][a-zA-Z0-9_]*)\})$")

_LITERAL = 0
_NAMED = 1


@dataclass(slots=True)
class Route(Generic[T]):
    path: str
    pattern: re.Pattern[str]
    param_names: tuple[str, ...]
    rank: tuple[int, ...]
    shape: tuple[str | None, ...]
    endpoint: T


@dataclass(slots=True)
class RouteMatch(Generic[T]):
    route: Route[T]
    params: Mapping[str, str]


def join_path(prefix: str, path: str) -> str:
    """Join ``prefix`` and ``path`` into a normalized ``/a/b`` path."""

    segments = [segment for part in (prefix, path) for segment in part.split("/") if segment]
    return "/" + "/".join(segments)


class RouteTable(Generic[T]):
    """Routes registered for one HTTP verb."""

    def __init__(self, *, strict_slashes: bool = False) -> None:
        self._routes: list[Route[T]] = []
        self._strict_slashes = strict_slashes

    def __len__(self) -> int:
        return len(self._routes)

    @property
    def routes(self) -> tuple[Route[T], ...]:
        return tuple(self._routes)

    def add(self, path: str, endpoint: T) -> Route[T]:
        route = _compile_path(join_path("", path), endpoint, strict_slashes=self._strict_slashes)
        for existing in self._routes:
            if existing.shape == route.shape:
                raise ConfigurationError(f"Route {route.path!r} conflicts with {existing.path!r}")
        self._routes.append(route)
        # sorted() is stable, so equally specific routes keep registration order.
        self._routes = sorted(self._routes, key=lambda item: item.rank)
        return route

    def find(self, path: str) -> RouteMatch[T]:
        for route in self._routes:
            captures = route.pattern.match(path)
            if captures is None:
                continue
            params: MutableMapping[str, str] = {}
            for name in route.param_names:
                group = captures.group(name)
                if group is None:
                    continue
                params[name] = unquote(group)
            return RouteMatch(route=route, params=params)
        raise LookupError(f"No route matches {path}")


def _compile_path(path: str, endpoint: Any, *, strict_slashes: bool) -> Route[Any]:
    param_names: list[str] = []
    parts: list[str] = []
    rank: list[int] = []
    shape: list[str | None] = []
    for segment in path.strip("/").split("/"):
        if not segment:
            continue
        match = _PATH_PARAM_PATTERN.match(segment)
        if match is None:
            parts.append(re.escape(segment))
            rank.append(_LITERAL)
            shape.append(segment)
            continue
        name = match.group(1) or match.group(2)
        if name in param_names:
            raise ConfigurationError(f"Duplicate path parameter {name!r} in {path!r}")
        param_names.append(name)
        parts.append(f"(?P<{name}>[^/]+)")
        rank.append(_NAMED)
        shape.append(None)
    trailing = "" if strict_slashes or not parts else "/?"
    pattern = "^/" + "/".join(parts) + trailing + "$"
    return Route(
        path=path,
        pattern=re.compile(pattern),
        param_names=tuple(param_names),
        rank=tuple(rank),
        shape=tuple(shape),
        endpoint=endpoint,
    )


__all__ = ["Route", "RouteMatch", "RouteTable", "join_path"]
