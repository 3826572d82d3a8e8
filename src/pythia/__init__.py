"""Pythia: compile decorated controller classes into HTTP request dispatchers."""

from .asgi import ASGIAdapter
from .config import HandlerConfig
from .decorators import (
    body,
    catch,
    controller,
    create_middleware_decorator,
    delete,
    download,
    get,
    header,
    http_code,
    param,
    patch,
    post,
    put,
    query,
    req,
    res,
    route,
    set_header,
    uploaded_file,
    uploaded_files,
    use_after,
    use_before,
)
from .exceptions import (
    BadRequest,
    ConfigurationError,
    Conflict,
    ErrorKind,
    Forbidden,
    HTTPError,
    InternalServerError,
    MethodNotAllowed,
    NotFound,
    PayloadTooLarge,
    PythiaError,
    Unauthorized,
    UnprocessableEntity,
    ValidationError,
)
from .handler import CompiledHandler, VerbDispatcher, create_handler
from .http import HttpVerb, Status
from .mapper import ExceptionMapper, MappedError
from .metadata import MetadataRegistry, ParameterDescriptor, ParameterSource
from .middleware import Middleware, MiddlewarePosition
from .pipes import (
    Pipe,
    default_value,
    parse_boolean,
    parse_date,
    parse_number,
    parse_uuid,
    validate_enum,
    validation_pipe,
)
from .requests import FileUpload, Request
from .responses import FileDownload, JSONResponse, PlainTextResponse, Response, ResponseContext
from .testing import TestClient

__all__ = [
    "ASGIAdapter",
    "BadRequest",
    "CompiledHandler",
    "ConfigurationError",
    "Conflict",
    "ErrorKind",
    "ExceptionMapper",
    "FileDownload",
    "FileUpload",
    "Forbidden",
    "HTTPError",
    "HandlerConfig",
    "HttpVerb",
    "InternalServerError",
    "JSONResponse",
    "MappedError",
    "MetadataRegistry",
    "MethodNotAllowed",
    "Middleware",
    "MiddlewarePosition",
    "NotFound",
    "ParameterDescriptor",
    "ParameterSource",
    "PayloadTooLarge",
    "Pipe",
    "PlainTextResponse",
    "PythiaError",
    "Request",
    "Response",
    "ResponseContext",
    "Status",
    "TestClient",
    "Unauthorized",
    "UnprocessableEntity",
    "ValidationError",
    "VerbDispatcher",
    "body",
    "catch",
    "controller",
    "create_handler",
    "create_middleware_decorator",
    "default_value",
    "delete",
    "download",
    "get",
    "header",
    "http_code",
    "param",
    "parse_boolean",
    "parse_date",
    "parse_number",
    "parse_uuid",
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
    "validate_enum",
    "validation_pipe",
]
