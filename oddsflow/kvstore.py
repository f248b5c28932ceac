"""Key-value access for presence counters, with an in-memory fallback."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from oddsflow.entities import FeedScope
from oddsflow.log_utils import LoggerHelper

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

SIMULATED_OFFSET_KEY = "simulated_user_offset"


def _to_bytes(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return str(value).encode("utf-8")


def presence_key(feed_name: str, scope: FeedScope) -> str:
    suffix = "global" if scope is None else str(scope)
    return f"oddsflow:presence:{feed_name}:{suffix}"


class InMemoryKV:
    """Minimal Redis-like store used when Redis is unavailable."""

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str):
        return _to_bytes(self._values.get(key))

    def set(self, key: str, value: Any, **kwargs: Any):
        self._values[key] = value
        return True

    def incrby(self, key: str, amount: int):
        current = int(self._values.get(key, 0)) + amount
        self._values[key] = current
        return current

    def decrby(self, key: str, amount: int):
        return self.incrby(key, -amount)

    def delete(self, key: str):
        if key in self._values:
            del self._values[key]
            return 1
        return 0


class ResilientKV:
    """Async Redis wrapper that switches to :class:`InMemoryKV` after a Redis error."""

    def __init__(self, backend: Optional[redis.Redis] = None) -> None:
        self._backend = backend
        self._fallback = InMemoryKV()

    @classmethod
    def from_config(cls, cfg) -> "ResilientKV":
        return cls(
            redis.Redis(
                host=cfg.REDIS_HOST,
                port=cfg.REDIS_PORT,
                db=cfg.REDIS_DB,
                password=cfg.REDIS_PASS or None,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_keepalive=True,
            )
        )

    @property
    def using_fallback(self) -> bool:
        return self._backend is None

    async def _call(self, method: str, *args: Any, **kwargs: Any):
        if self._backend is not None:
            func = getattr(self._backend, method, None)
            if func is not None:
                try:
                    return await func(*args, **kwargs)
                except RedisError as exc:
                    log_helper.warn(
                        "KVFallback",
                        "Redis failed, using in-memory store",
                        method=method,
                        error=str(exc),
                    )
                    self._backend = None
        return getattr(self._fallback, method)(*args, **kwargs)

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.aclose()

    async def ping(self):
        return await self._call("ping")

    async def get(self, key: str):
        return await self._call("get", key)

    async def set(self, key: str, value: Any, **kwargs: Any):
        return await self._call("set", key, value, **kwargs)

    async def incrby(self, key: str, amount: int):
        return await self._call("incrby", key, amount)

    async def decrby(self, key: str, amount: int):
        return await self._call("decrby", key, amount)

    async def delete(self, key: str):
        return await self._call("delete", key)

    # ------------------------------------------------------------------
    # Presence helpers
    # ------------------------------------------------------------------

    async def join_presence(self, feed_name: str, scope: FeedScope) -> int:
        """Count one more viewer of ``(feed_name, scope)``."""

        return int(await self.incrby(presence_key(feed_name, scope), 1))

    async def leave_presence(self, feed_name: str, scope: FeedScope) -> int:
        """Count one viewer less; the counter never goes below zero."""

        key = presence_key(feed_name, scope)
        remaining = int(await self.decrby(key, 1))
        if remaining <= 0:
            await self.delete(key)
            return 0
        return remaining

    async def presence_count(self, feed_name: str, scope: FeedScope) -> int:
        raw = await self.get(presence_key(feed_name, scope))
        if raw is None:
            return 0
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            return 0


def ensure_kv(kv: Optional[Any]) -> ResilientKV:
    """Wrap ``kv`` (a Redis client, store or ``None``) in :class:`ResilientKV`."""

    if isinstance(kv, ResilientKV):
        return kv
    if kv is None:
        return ResilientKV()
    if isinstance(kv, InMemoryKV):
        store = ResilientKV()
        store._fallback = kv
        return store
    return ResilientKV(kv)


async def online_count(kv: ResilientKV, backend, feed_name: str, scope: FeedScope) -> int:
    """Viewers currently connected plus the configured simulated offset."""

    offset = 0
    if backend is not None:
        try:
            offset = int(await backend.fetch_config_int(SIMULATED_OFFSET_KEY))
        except Exception as exc:
            log_helper.warn(
                "OnlineCount",
                "Could not read simulated offset",
                feed=feed_name,
                error=str(exc),
            )
            offset = 0
    return max(0, await kv.presence_count(feed_name, scope) + offset)
