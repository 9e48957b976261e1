"""
Key-value store abstraction with an in-memory and a Redis backend.

Contract: get / set (with optional TTL in seconds) / delete, values are
JSON-compatible Python objects. There is deliberately no atomic increment:
callers do read-modify-write, so concurrent requests for the same key can
lose an update. Counters built on this store are best-effort.
(Upgrade path if exact enforcement is ever needed: add an
``incr_with_ttl`` primitive backed by Redis INCR + EXPIRE.)

Architecture: one store instance per process, held by the StoreClient
singleton below and handed to components through FastAPI dependency
injection (get_store). Tests swap store_client.store for a fresh
MemoryStore.

Any backend failure surfaces as StoreUnavailable; whether that fails a
request open or closed is decided by the gate, not here.
"""

import copy
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from safemessage.core.config import settings
from safemessage.core.errors import StoreUnavailable
from safemessage.core.keys import StoreKey

logger = logging.getLogger(__name__)

Key = StoreKey | str


class KVStore(ABC):
    backend: str = "abstract"

    @abstractmethod
    async def get(self, key: Key) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: Key, value: Any, ttl: Optional[int] = None) -> None:
        """Store *value*; with *ttl* the record disappears after that many seconds."""

    @abstractmethod
    async def delete(self, key: Key) -> None:
        """Remove the record. Deleting a missing key is not an error."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ── In-memory backend ─────────────────────────────────────────────────────────

class MemoryStore(KVStore):
    """
    Dict-backed store for local development and tests.

    Not durable across restarts and not shared between worker processes.
    Expiry is evaluated lazily on read against *clock* so tests can move
    time forward without sleeping.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[Any, Optional[float]]] = {}

    async def get(self, key: Key) -> Optional[Any]:
        entry = self._data.get(str(key))
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[str(key)]
            return None
        return copy.deepcopy(value)

    async def set(self, key: Key, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._data[str(key)] = (copy.deepcopy(value), expires_at)

    async def delete(self, key: Key) -> None:
        self._data.pop(str(key), None)

    def __len__(self) -> int:
        return len(self._data)


# ── Redis backend ─────────────────────────────────────────────────────────────

@contextmanager
def _store_errors(operation: str, key: Key):
    try:
        yield
    except (RedisError, OSError, ValueError) as exc:
        raise StoreUnavailable(operation, str(key), exc) from exc


class RedisStore(KVStore):
    """Durable production store. Values are JSON strings; TTL uses SET ... EX."""

    backend = "redis"

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 5.0) -> "RedisStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return cls(client)

    async def get(self, key: Key) -> Optional[Any]:
        with _store_errors("get", key):
            raw = await self._client.get(str(key))
            if raw is None:
                return None
            return json.loads(raw)

    async def set(self, key: Key, value: Any, ttl: Optional[int] = None) -> None:
        with _store_errors("set", key):
            await self._client.set(str(key), json.dumps(value), ex=int(ttl) if ttl else None)

    async def delete(self, key: Key) -> None:
        with _store_errors("delete", key):
            await self._client.delete(str(key))

    async def ping(self) -> bool:
        with _store_errors("ping", "-"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


# ── Process-wide holder ───────────────────────────────────────────────────────

class StoreClient:
    """Holds the active store so tests can replace .store directly."""

    store: KVStore | None = None


# Module-level singleton — all app code reaches the store through get_store()
store_client = StoreClient()


async def connect_store() -> None:
    """
    Open the configured store at startup.

    With REDIS_URL set we ping Redis and use it; if it is unreachable we
    log a warning and fall back to memory so the API still boots (the
    health check reports the backend in use).
    """
    if not settings.redis_url:
        logger.info("REDIS_URL not set — using in-memory store (not durable)")
        store_client.store = MemoryStore()
        return

    logger.info("Connecting to Redis at %s", _redact_url(settings.redis_url))
    store = RedisStore.from_url(settings.redis_url, timeout=settings.redis_timeout_seconds)
    try:
        await store.ping()
    except StoreUnavailable as exc:
        logger.warning(
            "Redis unavailable at startup: %s. Falling back to in-memory store.", exc
        )
        await store.close()
        store_client.store = MemoryStore()
        return
    store_client.store = store
    logger.info("Redis connection established")


async def close_store() -> None:
    if store_client.store is not None:
        await store_client.store.close()
        logger.info("Store closed (%s)", store_client.store.backend)


def get_store() -> KVStore:
    """FastAPI dependency — the process-wide store, created lazily if needed."""
    if store_client.store is None:
        store_client.store = MemoryStore()
    return store_client.store


def _redact_url(url: str) -> str:
    """Strip credentials from URL before logging."""
    return re.sub(r"://[^@/]*@", "://<redacted>@", url)
