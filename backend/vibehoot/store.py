from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Tuple

import redis.asyncio as aioredis

from .db import Settings
from .utils import now_ts

logger = logging.getLogger(__name__)


class SessionStore:
    """Key-value persistence for serialized game state, one entry per join code."""

    key_prefix = "session:"

    def key(self, join_code: str) -> str:
        return f"{self.key_prefix}{join_code}"

    async def get(self, join_code: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, join_code: str, value: str, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    async def delete(self, join_code: str) -> None:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        return 0

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, join_code: str) -> Optional[str]:
        key = self.key(join_code)
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= now_ts():
                del self._entries[key]
                return None
            return value

    async def set(self, join_code: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = now_ts() + ttl if ttl else None
        async with self._lock:
            self._entries[self.key(join_code)] = (value, expires_at)

    async def delete(self, join_code: str) -> None:
        async with self._lock:
            self._entries.pop(self.key(join_code), None)

    async def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = now_ts()
        async with self._lock:
            expired = [k for k, (_, exp) in self._entries.items() if exp is not None and exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)


class RedisSessionStore(SessionStore):
    def __init__(self, url: str | None = None, client: aioredis.Redis | None = None):
        if client is None:
            if not url:
                raise RuntimeError("Redis session store requires REDIS_URL")
            client = aioredis.from_url(url, decode_responses=True)
        self._redis = client

    async def get(self, join_code: str) -> Optional[str]:
        return await self._redis.get(self.key(join_code))

    async def set(self, join_code: str, value: str, ttl: Optional[int] = None) -> None:
        await self._redis.set(self.key(join_code), value, ex=ttl or None)

    async def delete(self, join_code: str) -> None:
        await self._redis.delete(self.key(join_code))

    async def close(self) -> None:
        await self._redis.aclose()


async def purge_periodically(store: SessionStore, interval: float) -> None:
    """Drop expired entries every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await store.purge_expired()
        except Exception:
            logger.exception("Session store purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


def build_session_store(config: Settings) -> SessionStore:
    if config.REDIS_URL:
        logger.info("Using Redis session store")
        return RedisSessionStore(config.REDIS_URL)
    logger.info("Using in-memory session store")
    return InMemorySessionStore()
