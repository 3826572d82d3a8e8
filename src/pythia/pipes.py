"""Value transforms applied to extracted parameters.

A pipe is any callable taking the current value and returning the next one;
it may be a coroutine function. Pipes run left to right and report bad input
by raising :class:`~pythia.exceptions.ValidationError` with a short predicate
such as ``"must be a number"``. The parameter resolver prefixes that predicate
with the parameter's source and key.
"""

from __future__ import annotations

import inspect
import math
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import msgspec

from .exceptions import ValidationError

Pipe = Callable[[Any], Awaitable[Any] | Any]
T = TypeVar("T")


async def apply_pipes(value: Any, pipes: Sequence[Pipe]) -> Any:
    for pipe in pipes:
        value = pipe(value)
        if inspect.isawaitable(value):
            value = await value
    return value


def parse_boolean(value: Any) -> Any:
    """Map the literals ``"true"`` and ``"false"``; pass anything else through unchanged."""

    if value == "true":
        return True
    if value == "false":
        return False
    return value


def _required(value: Any, nullable: bool) -> bool:
    """Return ``True`` when ``value`` is absent and allowed to be."""

    if value is not None:
        return False
    if nullable:
        return True
    raise ValidationError("is required")


def parse_number(*, nullable: bool = False) -> Pipe:
    """Convert a numeric string to ``int`` when integral, ``float`` otherwise."""

    def pipe(value: Any) -> int | float | None:
        if _required(value, nullable):
            return None
        if isinstance(value, bool):
            raise ValidationError("must be a number")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError as exc:
            raise ValidationError("must be a number") from exc
        if not math.isfinite(number):
            raise ValidationError("must be a finite number")
        return number

    return pipe


def parse_date(*, nullable: bool = False) -> Pipe:
    """Parse an ISO-8601 date or datetime string."""

    def pipe(value: Any) -> datetime | None:
        if _required(value, nullable):
            return None
        if isinstance(value, datetime):
            return value
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError("must be an ISO-8601 date") from exc

    return pipe


def parse_uuid(*, nullable: bool = False) -> Pipe:
    def pipe(value: Any) -> uuid.UUID | None:
        if _required(value, nullable):
            return None
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError as exc:
            raise ValidationError("must be a UUID") from exc

    return pipe


def default_value(default: Any) -> Pipe:
    """Substitute ``default`` when the parameter is absent."""

    def pipe(value: Any) -> Any:
        return default if value is None else value

    return pipe


def validate_enum(enum_type: type[Enum], *, nullable: bool = False) -> Pipe:
    """Accept a member value (or member name) of ``enum_type``."""

    def pipe(value: Any) -> Enum | None:
        if _required(value, nullable):
            return None
        try:
            return enum_type(value)
        except ValueError:
            pass
        for member in enum_type:
            if str(member.value) == str(value) or member.name == value:
                return member
        allowed = ", ".join(str(member.value) for member in enum_type)
        raise ValidationError(f"must be one of: {allowed}")

    return pipe


def validation_pipe(model: type[T], *, nullable: bool = False) -> Pipe:
    """Convert the value into ``model`` with :func:`msgspec.convert`.

    Conversion is lax so string query and header values coerce to the
    model's numeric and boolean fields.
    """

    def pipe(value: Any) -> T | None:
        if _required(value, nullable):
            return None
        try:
            return msgspec.convert(value, type=model, strict=False)
        except msgspec.ValidationError as exc:
            raise ValidationError(f"failed validation: {exc}") from exc

    return pipe


__all__ = [
    "Pipe",
    "apply_pipes",
    "default_value",
    "parse_boolean",
    "parse_date",
    "parse_number",
    "parse_uuid",
    "validate_enum",
    "validation_pipe",
]
