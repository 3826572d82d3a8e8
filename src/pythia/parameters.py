"""Parameter extraction for route methods."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from .exceptions import ValidationError
from .metadata import ParameterDescriptor, ParameterSource
from .pipes import apply_pipes
from .requests import Request
from .responses import ResponseContext


async def extract(descriptor: ParameterDescriptor, request: Request, response: ResponseContext) -> Any:
    """Return the raw value ``descriptor`` points at, ``None`` when absent."""

    source = descriptor.source
    key = descriptor.key
    if source is ParameterSource.BODY:
        payload = await request.parsed_body()
        if key is None:
            return payload
        if isinstance(payload, Mapping):
            return payload.get(key)
        return None
    if source is ParameterSource.QUERY:
        if key is None:
            return {name: values[-1] for name, values in request.query_params.items() if values}
        return request.query(key)
    if source is ParameterSource.HEADER:
        if key is None:
            return dict(request.headers)
        return request.header(key)
    if source is ParameterSource.PARAM:
        if key is None:
            return dict(request.path_params)
        return request.path_params.get(key)
    if source is ParameterSource.REQ:
        return request
    if source is ParameterSource.RES:
        return response
    if source is ParameterSource.UPLOADED_FILE:
        uploads = _uploads(request, key)
        return uploads[0] if uploads else None
    if source is ParameterSource.UPLOADED_FILES:
        return list(_uploads(request, key))
    raise ValueError(f"Unsupported parameter source: {source!r}")


def _uploads(request: Request, key: str | None) -> Sequence[Any]:
    if key is not None:
        return request.files.get(key, ())
    return [upload for uploads in request.files.values() for upload in uploads]


async def resolve(descriptor: ParameterDescriptor, request: Request, response: ResponseContext) -> Any:
    """Extract the value for ``descriptor`` and run it through its pipes."""

    try:
        value = await extract(descriptor, request, response)
        return await apply_pipes(value, descriptor.pipes)
    except ValidationError as exc:
        raise exc.for_parameter(descriptor.source.value, descriptor.key or descriptor.name) from exc


async def resolve_arguments(
    descriptors: Sequence[ParameterDescriptor],
    request: Request,
    response: ResponseContext,
) -> tuple[list[Any], dict[str, Any]]:
    """Resolve every parameter in declaration order, stopping at the first failure."""

    args: list[Any] = []
    kwargs: dict[str, Any] = {}
    for descriptor in descriptors:
        value = await resolve(descriptor, request, response)
        if descriptor.keyword_only:
            kwargs[descriptor.name or ""] = value
        else:
            args.append(value)
    return args, kwargs


__all__ = ["extract", "resolve", "resolve_arguments"]
