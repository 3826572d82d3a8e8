"""Before/after middleware chains.

Middleware follows the ``(request, response, next)`` convention. It may be a
plain function or a coroutine function. Calling ``next()`` hands control to
the next middleware once this one returns; returning without calling it (or
after writing the response) terminates the chain. ``next(exc)`` raises
``exc`` into the chain after the middleware returns.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Iterator, Sequence

from .requests import Request
from .responses import ResponseContext

logger = logging.getLogger(__name__)


class MiddlewarePosition(str, Enum):
    BEFORE = "before"
    AFTER = "after"


class Outcome(str, Enum):
    CONTINUE = "continue"
    TERMINATED = "terminated"


NextFunction = Callable[..., Awaitable[None]]
Middleware = Callable[[Request, ResponseContext, NextFunction], Awaitable[Any] | Any]


@dataclass(slots=True, frozen=True)
class MiddlewareBinding:
    position: MiddlewarePosition
    fn: Middleware

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", None) or repr(self.fn)


class _Resolved:
    """Awaitable that completes immediately, so ``await next()`` and ``next()`` both work."""

    __slots__ = ()

    def __await__(self) -> Iterator[None]:
        return iter(())


_RESOLVED = _Resolved()


class _Next:
    __slots__ = ("called", "error")

    def __init__(self) -> None:
        self.called = False
        self.error: BaseException | None = None

    def __call__(self, error: BaseException | None = None) -> _Resolved:
        if error is not None:
            self.error = error
        else:
            self.called = True
        return _RESOLVED


async def run_chain(
    bindings: Sequence[MiddlewareBinding],
    request: Request,
    response: ResponseContext,
) -> Outcome:
    """Run ``bindings`` in order, each fully awaited before the next starts."""

    for binding in bindings:
        proceed = _Next()
        already_sent = response.sent
        result = binding.fn(request, response, proceed)
        if inspect.isawaitable(result):
            await result
        if proceed.error is not None:
            raise proceed.error
        if not proceed.called or (response.sent and not already_sent):
            logger.debug(
                "Middleware %s terminated the %s chain for %s %s",
                binding.name,
                binding.position.value,
                request.method,
                request.path,
            )
            return Outcome.TERMINATED
    return Outcome.CONTINUE


def combine(
    controller_bindings: Iterable[MiddlewareBinding],
    route_bindings: Iterable[MiddlewareBinding],
) -> tuple[MiddlewareBinding, ...]:
    """Controller-level bindings run first, each group keeping its own order."""

    return tuple(controller_bindings) + tuple(route_bindings)


__all__ = [
    "Middleware",
    "MiddlewareBinding",
    "MiddlewarePosition",
    "NextFunction",
    "Outcome",
    "combine",
    "run_chain",
]
