from __future__ import annotations

import asyncio
import base64
from typing import Any, Dict

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from percy_supervisor.config import BrowserStackCredentials, PercyOptions
from percy_supervisor.project_token import TokenFetcher, build_token_query, mask_token
from percy_supervisor.types import SessionState

CREDENTIALS = BrowserStackCredentials(username="alice", access_key="secret")


class StubAsyncClient:
    def __init__(self, *, responses: list[Any], exc: Exception | None = None) -> None:
        self._responses = responses
        self._exc = exc
        self.calls: list[Dict[str, Any]] = []

    async def __aenter__(self) -> "StubAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def get(self, url: str, params=None, auth=None) -> httpx.Response:
        self.calls.append({"url": url, "params": params, "auth": auth})
        if self._exc:
            raise self._exc
        return self._responses.pop(0)


def patch_async_client(
    monkeypatch: pytest.MonkeyPatch, client: StubAsyncClient
) -> None:
    class _Factory:
        def __init__(self, stub: StubAsyncClient) -> None:
            self._stub = stub

        def __call__(self, *args, **kwargs) -> StubAsyncClient:
            return self._stub

    monkeypatch.setattr(httpx, "AsyncClient", _Factory(client))


def make_token_app(status_code: int, payload: Any) -> FastAPI:
    app = FastAPI()
    app.state.requests = []

    @app.get("/api/app_percy/get_project_token")
    async def get_project_token(request: Request) -> JSONResponse:
        app.state.requests.append(
            {
                "query": str(request.url.query),
                "authorization": request.headers.get("authorization"),
            }
        )
        return JSONResponse(status_code=status_code, content=payload)

    return app


def test_query_includes_every_field() -> None:
    options = PercyOptions(percy=True, percy_capture_mode="manual", app="bs://app")

    params = build_token_query(options, "checkout")

    assert params == [
        ("name", "checkout"),
        ("type", "app"),
        ("percy_capture_mode", "manual"),
        ("percy", "true"),
    ]


def test_query_skips_optional_fields() -> None:
    params = build_token_query(PercyOptions(), None)

    assert params == [("type", "automate"), ("percy", "false")]


def test_mask_token_hides_middle() -> None:
    assert mask_token("abcdefghijkl") == "abcd...ijkl"
    assert mask_token("short") == "*****"


def test_fetch_records_vendor_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    state = SessionState()
    response = httpx.Response(
        status_code=200,
        json={"token": "t1", "success": True, "percy_capture_mode": "auto"},
    )
    stub = StubAsyncClient(responses=[response])
    patch_async_client(monkeypatch, stub)
    fetcher = TokenFetcher(state, api_base_url="https://api.example.test/")

    token = asyncio.run(
        fetcher.fetch(PercyOptions(percy_capture_mode="auto"), CREDENTIALS, "shop")
    )

    assert token == "t1"
    assert state.capture_mode == "auto"
    assert state.percy_enabled is True
    assert state.auto_enabled is True
    assert stub.calls[0]["url"] == (
        "https://api.example.test/api/app_percy/get_project_token"
    )
    assert stub.calls[0]["auth"] == ("alice", "secret")


def test_fetch_does_not_flag_auto_when_percy_explicit(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    state = SessionState()
    response = httpx.Response(
        status_code=200,
        json={"token": "t2", "success": True, "percy_capture_mode": "manual"},
    )
    patch_async_client(monkeypatch, StubAsyncClient(responses=[response]))

    token = asyncio.run(
        TokenFetcher(state).fetch(PercyOptions(percy=True), CREDENTIALS, None)
    )

    assert token == "t2"
    assert state.auto_enabled is False
    assert state.capture_mode == "manual"


def test_fetch_transport_failure_returns_none(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    state = SessionState(capture_mode="auto")
    exc = httpx.ConnectError("boom", request=httpx.Request("GET", "http://test"))
    patch_async_client(monkeypatch, StubAsyncClient(responses=[], exc=exc))

    token = asyncio.run(TokenFetcher(state).fetch(PercyOptions(), CREDENTIALS, None))

    assert token is None
    assert state.capture_mode == "auto"
    assert state.percy_enabled is False


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_fetch_sends_basic_auth_and_query() -> None:
    app = make_token_app(
        200, {"token": "t3", "success": False, "percy_capture_mode": None}
    )
    fetcher = TokenFetcher(
        SessionState(),
        api_base_url="http://bstack.test",
        transport=httpx.ASGITransport(app=app),
    )

    token = await fetcher.fetch(
        PercyOptions(percy=False, percy_capture_mode="auto"), CREDENTIALS, "my-shop"
    )

    assert token == "t3"
    request = app.state.requests[0]
    expected = base64.b64encode(b"alice:secret").decode("ascii")
    assert request["authorization"] == f"Basic {expected}"
    assert request["query"] == (
        "name=my-shop&type=automate&percy_capture_mode=auto&percy=false"
    )


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("status_code", "payload"),
    [
        (401, {"error": "unauthorized"}),
        (200, {"success": True}),
        (200, {"token": "", "success": True}),
        (200, ["not", "an", "object"]),
    ],
)
async def test_fetch_rejects_bad_responses(status_code: int, payload: Any) -> None:
    app = make_token_app(status_code, payload)
    fetcher = TokenFetcher(
        SessionState(),
        api_base_url="http://bstack.test",
        transport=httpx.ASGITransport(app=app),
    )

    assert await fetcher.fetch(PercyOptions(), CREDENTIALS, None) is None
