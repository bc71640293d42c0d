import json
import time
from collections.abc import Callable
from fnmatch import fnmatch
from typing import Any

import httpx
import jwt
import pytest

import uma_client as m


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeServer:
    """
    Scripted HTTP peer for httpx.MockTransport.

    Each route is (method, url) -> handler or list of responses consumed in
    order. Every request is recorded in `calls`.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, url: str, *responses: httpx.Response | Callable[[httpx.Request], httpx.Response]):
        self.routes[(method.upper(), url)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, str(request.url))
        queue = self.routes.get(key)
        assert queue, f"Unexpected request {key}"
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(response):
            return response(request)
        return response

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [c for c in self.calls if str(c.url) == url]

    @staticmethod
    def body(request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content)


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


class StubSession:
    """Minimal IdentitySession for driving the negotiation loop directly."""

    def __init__(self, transport: httpx.MockTransport, resolvers=(), id_token: str | None = "id-token"):
        self._client = httpx.AsyncClient(transport=transport)
        self._resolvers = list(resolvers)
        self._id_token = id_token

    def get_transport(self) -> httpx.AsyncClient:
        return self._client

    async def create_claim_token(self) -> str:
        if not self._id_token:
            raise m.MissingIdentityToken("no id token")
        return self._id_token

    def get_claim_resolvers(self) -> list[m.ClaimResolverDefinition]:
        return list(self._resolvers)


@pytest.fixture
def make_stub_session() -> Callable[..., StubSession]:
    return StubSession


@pytest.fixture
def make_id_token() -> Callable[..., str]:
    """
    Factory fixture that returns an HS256-signed ID token.

    Usage in tests:
        token = make_id_token(webid="https://alice.example/profile#me")
    """

    def _make(*, sub: str = "alice", webid: str | None = None, secret: str = "supersecret-key-for-tests-only!!") -> str:
        claims: dict[str, Any] = {"sub": sub, "iat": int(time.time())}
        if webid:
            claims["webid"] = webid
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make


class FakeRedis:
    """
    Minimal redis.asyncio stub for RedisUmaTokenCache tests.
    Stores bytes under keys and supports set/setex/delete/scan_iter, plus
    eval for the compare-and-delete script only.
    """

    def __init__(self):
        self._store: dict[str, tuple[bytes, float | None]] = {}
        self.setex_calls: list[tuple[str, int]] = []
        self.eval_calls: list[tuple[str, str]] = []

    def _read(self, key: str) -> bytes | None:
        item = self._store.get(key)
        if item is None:
            return None
        data, expires_at = item
        if expires_at is not None and time.time() >= expires_at:
            self._store.pop(key, None)
            return None
        return data

    async def get(self, key: str):
        return self._read(key)

    async def set(self, key: str, value: str | bytes):
        if isinstance(value, str):
            value = value.encode("utf-8")
        self._store[key] = (value, None)

    async def setex(self, key: str, ttl_seconds: int, value: str | bytes):
        if isinstance(value, str):
            value = value.encode("utf-8")
        self.setex_calls.append((key, int(ttl_seconds)))
        self._store[key] = (value, time.time() + int(ttl_seconds))

    async def delete(self, *keys: str):
        removed = 0
        for key in keys:
            removed += self._store.pop(key, None) is not None
        return removed

    async def eval(self, script: str, numkeys: int, key: str, access_token: str):
        self.eval_calls.append((key, access_token))
        raw = self._read(key)
        if raw is None:
            return 0
        try:
            entry = json.loads(raw)
        except ValueError:
            return 0
        if entry.get("access_token") != access_token:
            return 0
        return await self.delete(key)

    async def scan_iter(self, match: str = "*"):
        for key in list(self._store):
            if fnmatch(key, match):
                yield key


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
