"""
Shared fixtures for the polling client tests.

HTTP is faked with `httpx.MockTransport`: a ScriptedServer replays queued
responses in order, records every request it sees, and falls back to a
default response once the script runs out.
"""
import asyncio
from collections import deque
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from hospital_polling.client.polling_client import PollingClient
from hospital_polling.shared.config import PollingSettings

BASE_URL = "http://testserver/api"

Reply = Callable[[httpx.Request], httpx.Response]


def ok(data: dict | None = None, recommended: int | None = None) -> Reply:
    body: dict[str, Any] = {"success": True, "data": data if data is not None else {}}
    if recommended is not None:
        body["pollingInfo"] = {"recommendedInterval": recommended}
    return lambda request: httpx.Response(200, json=body)


def status(code: int, body: Any = None) -> Reply:
    if body is None:
        return lambda request: httpx.Response(code)
    return lambda request: httpx.Response(code, json=body)


def network_down(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class ScriptedServer:
    def __init__(self, default: Reply | None = None):
        self.requests: list[httpx.Request] = []
        self.script: deque[Reply] = deque()
        self.default = default or ok()

    def queue(self, *replies: Reply) -> "ScriptedServer":
        self.script.extend(replies)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.script.popleft() if self.script else self.default
        return reply(request)

    def requests_for(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings() -> PollingSettings:
    return PollingSettings(
        BASE_URL=BASE_URL,
        DEFAULT_INTERVAL_MS=20,
        MIN_INTERVAL_MS=10,
        MAX_INTERVAL_MS=60000,
        MAX_RETRIES=2,
        AUTH_TOKEN=None,
    )


@pytest.fixture
def server() -> ScriptedServer:
    return ScriptedServer()


@pytest_asyncio.fixture
async def client(settings, server):
    polling_client = PollingClient(settings, transport=httpx.MockTransport(server))
    yield polling_client
    await polling_client.aclose()
