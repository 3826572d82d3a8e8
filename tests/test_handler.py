import asyncio
import io
import logging
from typing import Annotated

import msgspec
import pytest

from pythia import (
    BadRequest,
    ConfigurationError,
    ErrorKind,
    FileDownload,
    Forbidden,
    HTTPError,
    HandlerConfig,
    MiddlewarePosition,
    NotFound,
    Request,
    Response,
    ResponseContext,
    TestClient,
    ValidationError,
    body,
    catch,
    controller,
    create_handler,
    create_middleware_decorator,
    delete,
    download,
    get,
    header,
    http_code,
    param,
    post,
    put,
    query,
    req,
    res,
    set_header,
    use_after,
    use_before,
    validation_pipe,
)
from pythia.pipes import parse_boolean, parse_number
from pythia.testing import read_body, read_json


class NewUser(msgspec.Struct):
    name: str
    age: int


EVENTS: list[str] = []


def record(name: str):
    async def middleware(request, response, next):
        EVENTS.append(name)
        await next()

    middleware.__qualname__ = f"record:{name}"
    return middleware


async def deny(request, response, next):
    EVENTS.append("deny")
    response.status(403).json({"message": "denied"})


@controller("/users")
@use_before(record("controller-before"))
@use_after(record("controller-after"))
class UserController:
    @get("/active")
    def active(self):
        return {"route": "active"}

    @get("/:id")
    @use_before(record("route-before"))
    @use_after(record("route-after"))
    async def show(self, user_id: Annotated[str, param("id")]):
        EVENTS.append("handler")
        return {"route": "show", "id": user_id}

    @get("/")
    def search(
        self,
        a: Annotated[str | None, query("a")],
        b: Annotated[str | None, header("b")],
        active: Annotated[object, query("active", parse_boolean)],
    ):
        return {"args": [a, b], "active": active}

    @post("/")
    @http_code(201)
    @set_header("Location", "/users/new")
    async def create(self, payload: Annotated[NewUser, body(validation_pipe(NewUser))]):
        return {"name": payload.name, "age": payload.age}

    @put("/:id/age")
    def update_age(self, age: Annotated[int, query("age", parse_number())]):
        return {"age": age}

    @delete("/:id")
    @use_before(deny)
    def remove(self, user_id: Annotated[str, param("id")]):
        EVENTS.append("handler")
        return None

    @get("/:id/boom")
    def boom(self, user_id: Annotated[str, param("id")]):
        raise RuntimeError(f"secret failure for {user_id}")

    @get("/:id/missing")
    def missing(self, user_id: Annotated[str, param("id")]):
        raise NotFound(f"user {user_id} not found")


@pytest.fixture(autouse=True)
def reset_events():
    EVENTS.clear()
    yield
    EVENTS.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_handler(UserController))


def test_dispatchers_exist_only_for_declared_verbs() -> None:
    handler = create_handler(UserController)
    assert set(handler.verbs) == {"GET", "POST", "PUT", "DELETE"}
    assert "PATCH" not in handler.dispatchers
    assert handler["get"] is handler.dispatchers["GET"]


@pytest.mark.asyncio
async def test_undeclared_verb_is_not_found_without_middleware(client: TestClient) -> None:
    response = await client.request("PATCH", "/users/1")
    assert response.status == 404
    assert EVENTS == []


@pytest.mark.asyncio
async def test_unmatched_path_is_not_found_without_middleware(client: TestClient) -> None:
    response = await client.get("/accounts")
    assert response.status == 404
    assert msgspec.json.decode(response.body) == {"statusCode": 404, "message": "Cannot GET /accounts"}
    assert EVENTS == []


@pytest.mark.asyncio
async def test_pipeline_order(client: TestClient) -> None:
    response = await client.get("/users/42")
    assert response.status == 200
    assert msgspec.json.decode(response.body) == {"route": "show", "id": "42"}
    assert response.header("content-type") == "application/json"
    assert EVENTS == ["controller-before", "route-before", "handler", "controller-after", "route-after"]


@pytest.mark.asyncio
async def test_literal_route_beats_parameterized_route(client: TestClient) -> None:
    response = await client.get("/users/active")
    assert msgspec.json.decode(response.body) == {"route": "active"}


@pytest.mark.asyncio
async def test_argument_order_follows_declaration(client: TestClient) -> None:
    response = await client.get("/users", query={"a": "query-a", "active": "true"}, headers={"B": "header-b"})
    assert msgspec.json.decode(response.body) == {"args": ["query-a", "header-b"], "active": True}

    response = await client.get("/users", query={"active": "TRUE"})
    assert msgspec.json.decode(response.body) == {"args": [None, None], "active": "TRUE"}


@pytest.mark.asyncio
async def test_status_code_and_headers(client: TestClient) -> None:
    response = await client.post("/users", json={"name": "Ada", "age": 36})
    assert response.status == 201
    assert response.header("location") == "/users/new"
    assert msgspec.json.decode(response.body) == {"name": "Ada", "age": 36}


@pytest.mark.asyncio
async def test_body_validation_failure_is_400(client: TestClient) -> None:
    response = await client.post("/users", json={"name": "Ada"})
    assert response.status == 400
    payload = msgspec.json.decode(response.body)
    assert payload["statusCode"] == 400
    assert payload["message"].startswith("body 'payload' failed validation")
    assert response.header("location") is None


@pytest.mark.asyncio
async def test_validation_error_names_parameter(client: TestClient) -> None:
    response = await client.request("PUT", "/users/1/age", query={"age": "old"})
    assert response.status == 400
    payload = msgspec.json.decode(response.body)
    assert "age" in payload["message"]
    assert payload["errors"] == [{"source": "query", "key": "age", "message": "must be a number"}]
    assert EVENTS == ["controller-before"]


@pytest.mark.asyncio
async def test_short_circuit_skips_handler_and_after_chain(client: TestClient) -> None:
    response = await client.delete("/users/1")
    assert response.status == 403
    assert msgspec.json.decode(response.body) == {"message": "denied"}
    assert EVENTS == ["controller-before", "deny"]


@pytest.mark.asyncio
async def test_unhandled_errors_are_500_without_detail(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR):
        response = await client.get("/users/7/boom")
    assert response.status == 500
    assert msgspec.json.decode(response.body) == {"statusCode": 500, "message": "Internal Server Error"}
    assert b"secret" not in response.body
    assert "controller-after" not in EVENTS
    assert any("secret failure" in str(record.exc_info[1]) for record in caplog.records if record.exc_info)


@pytest.mark.asyncio
async def test_declared_http_errors_keep_their_status(client: TestClient) -> None:
    response = await client.get("/users/7/missing")
    assert response.status == 404
    assert msgspec.json.decode(response.body) == {"statusCode": 404, "message": "user 7 not found"}


@pytest.mark.asyncio
async def test_compiling_twice_behaves_identically() -> None:
    first = TestClient(create_handler(UserController))
    second = TestClient(create_handler(UserController))
    for path in ("/users/42", "/users/active", "/users/7/boom", "/nowhere"):
        a = await first.get(path)
        b = await second.get(path)
        assert (a.status, a.headers, a.body) == (b.status, b.headers, b.body)


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_share_state(client: TestClient) -> None:
    responses = await asyncio.gather(*(client.get(f"/users/{index}") for index in range(20)))
    assert [msgspec.json.decode(r.body)["id"] for r in responses] == [str(index) for index in range(20)]


@pytest.mark.asyncio
async def test_return_value_serialization() -> None:
    class Values:
        @get("/none")
        def nothing(self):
            return None

        @get("/text")
        def text(self):
            return "pong"

        @get("/bytes")
        def raw(self):
            return b"\x00\x01"

        @get("/response")
        def prebuilt(self):
            return Response(status=202, headers=(("x-custom", "1"),), body=b"ok")

        @get("/manual")
        def manual(self, response: Annotated[ResponseContext, res()]):
            response.status(209).send("written")
            return {"ignored": True}

        @get("/struct")
        def struct(self):
            return NewUser(name="Ada", age=36)

    client = TestClient(create_handler(Values))
    nothing = await client.get("/none")
    assert (nothing.status, nothing.body) == (200, b"")
    text = await client.get("/text")
    assert text.body == b"pong"
    assert text.header("content-type") == "text/plain; charset=utf-8"
    raw = await client.get("/bytes")
    assert raw.body == b"\x00\x01"
    assert raw.header("content-type") == "application/octet-stream"
    prebuilt = await client.get("/response")
    assert (prebuilt.status, prebuilt.header("x-custom"), prebuilt.body) == (202, "1", b"ok")
    manual = await client.get("/manual")
    assert (manual.status, manual.body) == (209, b"written")
    struct = await client.get("/struct")
    assert msgspec.json.decode(struct.body) == {"name": "Ada", "age": 36}


@pytest.mark.asyncio
async def test_download_routes_stream_raw_content() -> None:
    async def chunks():
        yield b"a,b\n"
        yield "1,2\n"

    class Reports:
        @get("/report.csv")
        @download
        def report(self):
            return FileDownload(filename="report.csv", contents=chunks(), content_type="text/csv")

        @get("/blob")
        @download
        def blob(self):
            return b"binary"

        @get("/file")
        @download
        def file(self):
            return FileDownload(filename='we"ird.txt', contents=io.BytesIO(b"from a file"))

        @get("/lines")
        @download
        def lines(self):
            return ["x", b"y"]

    client = TestClient(create_handler(Reports))
    report = await client.get("/report.csv")
    assert report.header("content-type") == "text/csv"
    assert report.header("content-disposition") == 'attachment; filename="report.csv"'
    assert await read_body(report) == b"a,b\n1,2\n"

    blob = await client.get("/blob")
    assert blob.body == b"binary"
    assert blob.header("content-type") == "application/octet-stream"

    file = await client.get("/file")
    assert file.header("content-disposition") == 'attachment; filename="we\\"ird.txt"'
    assert await read_body(file) == b"from a file"

    lines = await client.get("/lines")
    assert await read_body(lines) == b"xy"


@pytest.mark.asyncio
async def test_custom_middleware_decorator_positions() -> None:
    seen: list[str] = []

    def stamp(request, response, next):
        seen.append(f"stamp:{response.sent}")
        response.set_header("x-stamp", "1")
        next()

    stamped = create_middleware_decorator(stamp, MiddlewarePosition.AFTER)

    def authenticate(request, response, next):
        if request.header("authorization") != "Bearer ok":
            raise Forbidden("bad token")
        next()

    authenticated = create_middleware_decorator(authenticate)

    @authenticated
    class Secure:
        @get("/")
        @stamped
        def index(self, request: Annotated[Request, req()]):
            return {"path": request.path}

    client = TestClient(create_handler(Secure))
    denied = await client.get("/")
    assert denied.status == 403
    assert seen == []

    allowed = await client.get("/", headers={"Authorization": "Bearer ok"})
    assert allowed.status == 200
    assert allowed.header("x-stamp") == "1"
    assert seen == ["stamp:True"]


@pytest.mark.asyncio
async def test_after_middleware_errors_are_mapped() -> None:
    def explode(request, response, next):
        raise ValueError("after failure")

    class Fragile:
        @get("/")
        @use_after(explode)
        def index(self):
            return {"ok": True}

    response = await TestClient(create_handler(Fragile)).get("/")
    assert response.status == 500
    assert msgspec.json.decode(response.body) == {"statusCode": 500, "message": "Internal Server Error"}


@pytest.mark.asyncio
async def test_catch_handlers() -> None:
    def handle_key_error(error, request, response):
        response.status(410).json({"gone": str(error)})

    def handle_not_found(error, request, response):
        return {"fallback": True}

    def broken_handler(error, request, response):
        raise Forbidden("handler refused")

    @catch(handle_not_found, ErrorKind.NOT_FOUND)
    class Guarded:
        @get("/key")
        @catch(handle_key_error, KeyError)
        def key(self):
            raise KeyError("k")

        @get("/missing")
        def missing(self):
            raise NotFound()

        @get("/broken")
        @catch(broken_handler)
        def broken(self):
            raise RuntimeError("original")

        @get("/other")
        def other(self):
            raise ValidationError("nope")

    client = TestClient(create_handler(Guarded))
    key = await client.get("/key")
    assert key.status == 410
    assert msgspec.json.decode(key.body) == {"gone": "'k'"}

    missing = await client.get("/missing")
    assert missing.status == 200
    assert msgspec.json.decode(missing.body) == {"fallback": True}

    broken = await client.get("/broken")
    assert broken.status == 403
    assert msgspec.json.decode(broken.body)["message"] == "handler refused"

    other = await client.get("/other")
    assert other.status == 400


@pytest.mark.asyncio
async def test_keyword_only_parameters_and_sync_handlers() -> None:
    class Paging:
        @get("/items")
        def items(
            self,
            request: Annotated[Request, req()],
            *,
            limit: Annotated[int, query("limit", parse_number())],
        ):
            return {"limit": limit, "path": request.path}

    response = await TestClient(create_handler(Paging)).get("/items", query={"limit": "5"})
    assert msgspec.json.decode(response.body) == {"limit": 5, "path": "/items"}


@pytest.mark.asyncio
async def test_config_controls_status_and_error_exposure() -> None:
    class Plain:
        @get("/")
        def index(self):
            return None

        @get("/fail")
        def fail(self):
            raise KeyError("detail")

    handler = create_handler(Plain, config={"default_status": 204, "expose_internal_errors": True})
    client = TestClient(handler)
    assert (await client.get("/")).status == 204
    failure = await read_json(await client.get("/fail"))
    assert failure["error"] == "KeyError"
    assert isinstance(handler.config, HandlerConfig)


@pytest.mark.asyncio
async def test_cancellation_propagates() -> None:
    class Slow:
        @get("/")
        async def index(self):
            await asyncio.sleep(10)

    client = TestClient(create_handler(Slow))
    task = asyncio.create_task(client.get("/"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_controller_requires_no_argument_constructor() -> None:
    class NeedsArgs:
        def __init__(self, service):
            self.service = service

        @get("/")
        def index(self):
            return None

    with pytest.raises(ConfigurationError, match="without arguments"):
        create_handler(NeedsArgs)


def test_conflicting_routes_fail_at_compile_time() -> None:
    class Conflicting:
        @get("/:id")
        def first(self, value: Annotated[str, param("id")]):
            return value

        @get("/:name")
        def second(self, value: Annotated[str, param("name")]):
            return value

    with pytest.raises(ConfigurationError):
        create_handler(Conflicting)


def test_undescribed_parameters_fail_at_compile_time() -> None:
    class Partial:
        @get("/")
        def index(self, value: str):
            return value

    with pytest.raises(ConfigurationError):
        create_handler(Partial)


class Unencodable:
    pass


class OddStatus(Exception):
    kind = ErrorKind.HTTP
    status = 999
    message = "odd"


@pytest.mark.asyncio
async def test_invalid_explicit_status_becomes_generic_500() -> None:
    class Statuses:
        @get("/constructed")
        def constructed(self):
            raise HTTPError(ErrorKind.HTTP, "odd", status=999)

        @get("/foreign")
        def foreign(self):
            raise OddStatus()

    client = TestClient(create_handler(Statuses))
    for path in ("/constructed", "/foreign"):
        response = await client.get(path)
        assert response.status == 500
        assert await read_json(response) == {"statusCode": 500, "message": "Internal Server Error"}


@pytest.mark.asyncio
async def test_unencodable_error_bodies_fall_back_to_generic_500(caplog: pytest.LogCaptureFixture) -> None:
    def unencodable_result(error, request, response):
        return {"value": Unencodable()}

    class Encoding:
        @get("/bad-errors")
        def bad_errors(self):
            raise BadRequest("x", errors=[Unencodable()])

        @get("/bad-catch")
        @catch(unencodable_result)
        def bad_catch(self):
            raise RuntimeError("boom")

    client = TestClient(create_handler(Encoding))
    with caplog.at_level(logging.ERROR):
        bad_errors = await client.get("/bad-errors")
        bad_catch = await client.get("/bad-catch")
    for response in (bad_errors, bad_catch):
        assert response.status == 500
        assert response.header("content-type") == "application/json"
        assert await read_json(response) == {"statusCode": 500, "message": "Internal Server Error"}
    assert any("Could not encode the error body" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_undecodable_bodies_are_client_errors() -> None:
    class Forms:
        @post("/form")
        def form(self, payload: Annotated[dict, body()]):
            return payload

        @post("/note")
        def note(self, text: Annotated[str, body()]):
            return text

    client = TestClient(create_handler(Forms))
    form = await client.request(
        "POST",
        "/form",
        content=b"a=\xff\xfe",
        headers={"content-type": "application/x-www-form-urlencoded"},
    )
    assert form.status == 400
    assert await read_json(form) == {
        "statusCode": 400,
        "message": "body 'payload' must be valid UTF-8",
        "errors": [{"source": "body", "key": "payload", "message": "must be valid UTF-8"}],
    }

    note = await client.request("POST", "/note", content=b"\xff", headers={"content-type": "text/plain"})
    assert note.status == 400
    assert (await read_json(note))["message"] == "body 'text' must be valid UTF-8"
