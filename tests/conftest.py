import os

# Set test environment before the application is imported
os.environ["BACKEND_BASE_URL"] = "http://hubuum.test"
os.environ["VALKEY_URL"] = ""
os.environ["APP_ENV"] = "test"

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from hubuum_console.config import Settings
from hubuum_console.main import create_app
from hubuum_console.session_store import SessionStore

BACKEND_BASE_URL = "http://hubuum.test"


class StubUpstream:
    """Records every upstream call and answers from a small route table."""

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.error: Optional[Exception] = None

    def respond(
            self,
            method: str,
            path: str,
            status_code: int = 200,
            json: Any = None,
            content: Optional[bytes] = None,
            headers: Optional[dict[str, str]] = None,
    ) -> None:
        if json is not None:
            response = httpx.Response(status_code, json=json, headers=headers)
        else:
            response = httpx.Response(status_code, content=content or b"", headers=headers)
        self.routes[(method.upper(), path)] = response

    def fail_with(self, error: Exception) -> None:
        self.error = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"error": "NotFound", "message": "no stub route"})
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [call for call in self.calls if call.url.path == path]


def make_settings(**overrides: Any) -> Settings:
    values = {
        "BACKEND_BASE_URL": BACKEND_BASE_URL,
        "VALKEY_URL": None,
        "APP_ENV": "test",
        "SESSION_TTL_SECONDS": 3600,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def upstream() -> StubUpstream:
    stub = StubUpstream()
    stub.respond("POST", "/api/v0/auth/login", json={"token": "abc123"})
    stub.respond("GET", "/api/v0/auth/logout", json={"message": "Logged out"})
    return stub


@pytest.fixture
def standalone_settings() -> Settings:
    return make_settings()


@pytest.fixture
def distributed_settings() -> Settings:
    return make_settings(VALKEY_URL="memory://")


@pytest.fixture
def make_client(upstream: StubUpstream) -> Callable:
    """Build an app around the stub upstream and yield a client for it."""

    @asynccontextmanager
    async def _make(
            settings: Settings,
            base_url: str = "http://testserver",
            store: Optional[SessionStore] = None,
            raise_app_exceptions: bool = True,
    ) -> AsyncGenerator[AsyncClient, None]:
        app = create_app(settings, store=store, transport=upstream.transport)
        transport = ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
        async with AsyncClient(transport=transport, base_url=base_url) as ac:
            ac.app = app
            yield ac
        await app.state.context.aclose()

    return _make


@pytest_asyncio.fixture
async def standalone_client(make_client, standalone_settings) -> AsyncGenerator[AsyncClient, None]:
    async with make_client(standalone_settings) as ac:
        yield ac


@pytest_asyncio.fixture
async def distributed_client(make_client, distributed_settings) -> AsyncGenerator[AsyncClient, None]:
    async with make_client(distributed_settings) as ac:
        yield ac


@pytest.fixture(params=["standalone", "distributed"])
def mode(request) -> str:
    return request.param


@pytest_asyncio.fixture
async def client(make_client, mode) -> AsyncGenerator[AsyncClient, None]:
    """A client in each session mode."""
    settings = make_settings(VALKEY_URL="memory://" if mode == "distributed" else None)
    async with make_client(settings) as ac:
        yield ac


async def login(ac: AsyncClient, username: str = "alice", password: str = "hunter2", **kwargs) -> httpx.Response:
    return await ac.post("/api/auth/login", json={"username": username, "password": password}, **kwargs)


def set_cookie_header(response: httpx.Response, name: str) -> Optional[str]:
    for header in response.headers.get_list("set-cookie"):
        if header.split("=", 1)[0] == name:
            return header
    return None


def cookie_attributes(header: str) -> set[str]:
    return {part.strip().split("=", 1)[0].lower() for part in header.split(";")[1:]}
