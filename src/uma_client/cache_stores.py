"""Cache store implementations for UMA access tokens.

This module provides implementations of the UmaTokenStore protocol for caching
tokens obtained by negotiation, so repeated requests to the same protected
resource can skip the ticket round trip.

Implementations:
- InMemoryUmaTokenCache: Simple in-process caching (good for dev/single-instance)
- RedisUmaTokenCache: Distributed caching via ``redis.asyncio`` (good for multi-instance)

Every store operation is a coroutine so a network-backed store never blocks
the event loop the interceptor runs on.

Both implementations support:
- Keys of the form ``"<METHOD> <resource_url>"`` with the method upper-cased
- Lazy eviction of expired entries on read
- Conditional delete: passing ``access_token`` removes the entry only while it
  still holds that token, so a concurrent ``put`` is never lost to an eviction
- Last-write-wins overwrite when concurrent negotiations store the same key

Expiry Note:
    A token stored without ``expires_in`` gets ``expires_at=None`` and is
    treated as valid indefinitely, unless the store was built with a
    ``default_ttl_seconds``. Resource servers answer a stale token with a
    fresh 401 challenge, at which point the interceptor evicts it.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from .models import TokenResponse

logger = logging.getLogger(__name__)

_DEFAULT_PREFIX: Final[str] = "uma-token:"
"""Default Redis key prefix for cached UMA tokens."""

_COMPARE_AND_DELETE: Final[str] = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return 0
end
local ok, entry = pcall(cjson.decode, raw)
if ok and entry['access_token'] == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""
"""Delete KEYS[1] only if its cached entry still holds access token ARGV[1]."""


def build_token_key(resource_url: str, method: str = "GET") -> str:
    return f"{method.upper()} {resource_url}"


@dataclass(frozen=True, slots=True)
class UmaTokenCacheEntry:
    """Cached UMA access token.

    Attributes:
        token_type: Token type, typically ``Bearer``.
        access_token: The token itself.
        expires_at: Unix timestamp after which the entry is stale, or None
            for a non-expiring entry.
    """

    token_type: str
    access_token: str
    expires_at: float | None = None

    @classmethod
    def from_token(
        cls, token: TokenResponse, *, default_ttl_seconds: float | None = None
    ) -> UmaTokenCacheEntry:
        ttl = token.expires_in if token.expires_in else default_ttl_seconds
        return cls(
            token_type=token.token_type,
            access_token=token.access_token,
            expires_at=time.time() + ttl if ttl else None,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UmaTokenCacheEntry:
        return cls(
            token_type=data["token_type"],
            access_token=data["access_token"],
            expires_at=data.get("expires_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) > self.expires_at

    @property
    def authorization(self) -> str:
        return f"{self.token_type} {self.access_token}"


class InMemoryUmaTokenCache:
    """In-process memory cache for UMA access tokens.

    Thread Safety:
        Every operation holds an internal lock, so the read-check-evict
        sequence in ``get`` is atomic per key and a stale entry cannot
        survive past its expiry under concurrent access. The lock is never
        held across an ``await``.

    Example:
        ```python
        cache = InMemoryUmaTokenCache()

        await cache.put("https://pod.example/doc", "get", token)
        entry = await cache.get("https://pod.example/doc")  # method defaults to GET
        ```

    Attributes:
        _store: Internal dict mapping key -> UmaTokenCacheEntry.
    """

    def __init__(self, default_ttl_seconds: float | None = None) -> None:
        """Initialize an empty in-memory cache.

        Args:
            default_ttl_seconds: Lifetime applied to tokens stored without
                ``expires_in``. None keeps such tokens indefinitely.
        """
        self._default_ttl = default_ttl_seconds
        self._lock = threading.Lock()
        self._store: dict[str, UmaTokenCacheEntry] = {}

    async def get(self, resource_url: str, method: str = "GET") -> UmaTokenCacheEntry | None:
        key = build_token_key(resource_url, method)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                # Lazy removal of expired entry
                del self._store[key]
                logger.debug("Evicted expired UMA token for %s", key)
                return None
            return entry

    async def put(self, resource_url: str, method: str, token: TokenResponse) -> UmaTokenCacheEntry:
        entry = UmaTokenCacheEntry.from_token(token, default_ttl_seconds=self._default_ttl)
        with self._lock:
            self._store[build_token_key(resource_url, method)] = entry
        return entry

    async def delete(
        self, resource_url: str, method: str = "GET", *, access_token: str | None = None
    ) -> None:
        key = build_token_key(resource_url, method)
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return
            if access_token is None or entry.access_token == access_token:
                del self._store[key]

    async def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store


class RedisUmaTokenCache:
    """Redis-backed distributed cache for UMA access tokens.

    Entries are stored as JSON. Entries with an expiry are written with
    ``SETEX`` so Redis drops them on its own; ``get`` still checks
    ``expires_at`` because Redis TTLs are whole seconds. Evictions run as a
    server-side compare-and-delete script, so they never remove a token that
    another caller stored in the meantime.

    Dependencies:
        Requires redis package: pip install redis

    Example:
        ```python
        import redis.asyncio as aioredis

        client = aioredis.Redis(host='localhost', port=6379, decode_responses=True)
        cache = RedisUmaTokenCache(redis_client=client)
        ```

    Attributes:
        _client: Async Redis client instance (``redis.asyncio.Redis``).
        _prefix: Key prefix separating UMA tokens from other data.
    """

    def __init__(
        self,
        redis_client: Any,
        *,
        prefix: str = _DEFAULT_PREFIX,
        default_ttl_seconds: float | None = None,
    ) -> None:
        """Initialize Redis cache.

        Args:
            redis_client: Async Redis client. Must support awaitable get(),
                set(), setex(), delete(), eval() and an async scan_iter().
            prefix: Key prefix for every cached token.
            default_ttl_seconds: Lifetime applied to tokens stored without
                ``expires_in``.

        Note:
            The type is Any to avoid hard dependency on redis package types.
            Users can pass any client with the ``redis.asyncio`` interface.
        """
        self._client = redis_client
        self._prefix = prefix
        self._default_ttl = default_ttl_seconds

    def _key(self, resource_url: str, method: str) -> str:
        return f"{self._prefix}{build_token_key(resource_url, method)}"

    async def get(self, resource_url: str, method: str = "GET") -> UmaTokenCacheEntry | None:
        """Retrieve a live cached token.

        Raises:
            RuntimeError: If deserialization fails (corrupted cache data).
        """
        key = self._key(resource_url, method)
        data = await self._client.get(key)
        if data is None:
            return None

        try:
            entry = UmaTokenCacheEntry.from_dict(json.loads(data))
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            raise RuntimeError("Failed to deserialize cached UMA token") from e

        if entry.is_expired():
            await self._client.eval(_COMPARE_AND_DELETE, 1, key, entry.access_token)
            return None
        return entry

    async def put(self, resource_url: str, method: str, token: TokenResponse) -> UmaTokenCacheEntry:
        """Cache a token.

        Raises:
            RuntimeError: If the Redis operation fails.
        """
        entry = UmaTokenCacheEntry.from_token(token, default_ttl_seconds=self._default_ttl)
        key = self._key(resource_url, method)
        payload = json.dumps(entry.to_dict())
        try:
            if entry.expires_at is None:
                await self._client.set(key, payload)
            else:
                ttl = max(1, math.ceil(entry.expires_at - time.time()))
                await self._client.setex(key, ttl, payload)
        except Exception as e:
            raise RuntimeError("Failed to cache UMA token in Redis") from e
        return entry

    async def delete(
        self, resource_url: str, method: str = "GET", *, access_token: str | None = None
    ) -> None:
        key = self._key(resource_url, method)
        if access_token is None:
            await self._client.delete(key)
        else:
            await self._client.eval(_COMPARE_AND_DELETE, 1, key, access_token)

    async def clear(self) -> None:
        keys = [key async for key in self._client.scan_iter(match=f"{self._prefix}*")]
        if keys:
            await self._client.delete(*keys)
