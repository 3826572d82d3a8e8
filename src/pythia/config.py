"""Handler configuration objects."""

from __future__ import annotations

from typing import Any, Mapping

import msgspec
from msgspec import Struct


class HandlerConfig(Struct, frozen=True):
    """Typed configuration for a compiled controller handler."""

    expose_internal_errors: bool = False
    max_body_bytes: int | None = 1_048_576
    default_status: int = 200
    strict_slashes: bool = False
    json_content_type: str = "application/json"

    @classmethod
    def from_mapping(cls, config: "HandlerConfig | Mapping[str, Any]") -> "HandlerConfig":
        if isinstance(config, HandlerConfig):
            return config
        return msgspec.convert(config, type=HandlerConfig)
