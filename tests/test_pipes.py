from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

import msgspec
import pytest

from pythia.exceptions import ValidationError
from pythia.pipes import (
    apply_pipes,
    default_value,
    parse_boolean,
    parse_date,
    parse_number,
    parse_uuid,
    validate_enum,
    validation_pipe,
)


class Color(str, Enum):
    RED = "red"
    BLUE = "blue"


class Filters(msgspec.Struct):
    limit: int
    active: bool = False


def test_parse_boolean_maps_literals() -> None:
    assert parse_boolean("true") is True
    assert parse_boolean("false") is False


@pytest.mark.parametrize("value", ["TRUE", "False", "", "1", "0", "yes", "test"])
def test_parse_boolean_passes_other_strings_through(value: str) -> None:
    assert parse_boolean(value) == value
    assert type(parse_boolean(value)) is str


def test_parse_boolean_passes_non_strings_through() -> None:
    assert parse_boolean(None) is None
    assert parse_boolean(True) is True


def test_parse_number_converts_integers_and_floats() -> None:
    pipe = parse_number()
    assert pipe("42") == 42
    assert isinstance(pipe("42"), int)
    assert pipe(" 2.5 ") == 2.5
    assert pipe(7) == 7


@pytest.mark.parametrize("value", ["abc", "", "nan", "inf", True])
def test_parse_number_rejects_non_numbers(value: object) -> None:
    with pytest.raises(ValidationError) as info:
        parse_number()(value)
    assert "number" in info.value.detail


def test_parse_number_requires_value_unless_nullable() -> None:
    with pytest.raises(ValidationError) as info:
        parse_number()(None)
    assert info.value.detail == "is required"
    assert parse_number(nullable=True)(None) is None


def test_parse_date_accepts_iso_strings() -> None:
    pipe = parse_date()
    assert pipe("2024-03-01") == datetime(2024, 3, 1)
    assert pipe("2024-03-01T10:30:00Z") == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        pipe("yesterday")


def test_parse_uuid() -> None:
    value = uuid.uuid4()
    assert parse_uuid()(str(value)) == value
    with pytest.raises(ValidationError):
        parse_uuid()("not-a-uuid")
    assert parse_uuid(nullable=True)(None) is None


def test_default_value_only_fills_absent_values() -> None:
    pipe = default_value("10")
    assert pipe(None) == "10"
    assert pipe("") == ""
    assert pipe("3") == "3"


def test_validate_enum_accepts_values_and_names() -> None:
    pipe = validate_enum(Color)
    assert pipe("red") is Color.RED
    assert pipe("BLUE") is Color.BLUE
    with pytest.raises(ValidationError) as info:
        pipe("green")
    assert info.value.detail == "must be one of: red, blue"


def test_validation_pipe_converts_loosely() -> None:
    pipe = validation_pipe(Filters)
    filters = pipe({"limit": "5", "active": "true"})
    assert filters == Filters(limit=5, active=True)
    with pytest.raises(ValidationError) as info:
        pipe({"limit": "many"})
    assert info.value.detail.startswith("failed validation")


@pytest.mark.asyncio
async def test_apply_pipes_runs_left_to_right() -> None:
    seen: list[object] = []

    def record(value: object) -> object:
        seen.append(value)
        return value

    async def double(value: int) -> int:
        return value * 2

    result = await apply_pipes("21", [record, parse_number(), record, double, record])
    assert result == 42
    assert seen == ["21", 21, 42]


@pytest.mark.asyncio
async def test_apply_pipes_without_pipes_returns_raw_value() -> None:
    assert await apply_pipes("raw", ()) == "raw"
