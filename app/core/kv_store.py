"""
Key-Value Store - הפשטה מעל מצב השיחה וטבלאות ה-spam guard.

שני מימושים:
- InMemoryKeyValueStore: dict בתהליך עם TTL, ברירת המחדל לשרת יחיד ולבדיקות.
- RedisKeyValueStore: Redis משותף, כאשר STATE_BACKEND=redis.

KeyedLock מספק נעילה לפי מפתח (sender id) כך ששתי הודעות של אותו שולח
לא משנות את אותו מצב במקביל.
"""
from __future__ import annotations

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import KeyValueStoreError
from app.core.logging import get_logger
from app.core.redis_client import get_redis

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """ממשק get/set/delete עם TTL אופציונלי. ערכים הם מחרוזות (JSON)."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """ערך המפתח, או None אם לא קיים / פג תוקף."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """כתיבה (דורסת ערך קיים)."""

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        """כתיבה אטומית רק אם המפתח לא קיים. מחזיר True אם נכתב."""

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """מחיקת מפתחות (מפתח חסר מתעלמים ממנו)."""

    @abstractmethod
    async def scan_keys(self, prefix: str) -> list[str]:
        """כל המפתחות החיים שמתחילים ב-prefix."""


class InMemoryKeyValueStore(KeyValueStore):
    """מימוש בזיכרון התהליך. clock ניתן להזרקה לבדיקות חלונות זמן."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _alive(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: float | None) -> float | None:
        return self._clock() + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> str | None:
        return self._alive(key)

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        self._data[key] = (value, self._expiry(ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        if self._alive(key) is not None:
            return False
        self._data[key] = (value, self._expiry(ttl_seconds))
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def scan_keys(self, prefix: str) -> list[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._alive(key) is not None]

    def purge_expired(self) -> int:
        """מחיקת כל הרשומות שפג תוקפן. מחזיר כמה נמחקו."""
        now = self._clock()
        expired = [
            key for key, (_, expires_at) in self._data.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)


class RedisKeyValueStore(KeyValueStore):
    """מימוש מעל Redis. כל שגיאת Redis נעטפת ב-KeyValueStoreError."""

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[aioredis.Redis]] | None = None,
    ) -> None:
        self._client_factory = client_factory or get_redis

    @staticmethod
    def _ttl_ms(ttl_seconds: float | None) -> int | None:
        return max(1, int(ttl_seconds * 1000)) if ttl_seconds else None

    async def _client(self, operation: str) -> aioredis.Redis:
        try:
            return await self._client_factory()
        except (RedisError, OSError) as exc:
            raise KeyValueStoreError(operation, str(exc)) from exc

    async def get(self, key: str) -> str | None:
        client = await self._client("get")
        try:
            return await client.get(key)
        except (RedisError, OSError) as exc:
            raise KeyValueStoreError("get", str(exc)) from exc

    async def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        client = await self._client("set")
        try:
            await client.set(key, value, px=self._ttl_ms(ttl_seconds))
        except (RedisError, OSError) as exc:
            raise KeyValueStoreError("set", str(exc)) from exc

    async def set_if_absent(self, key: str, value: str, ttl_seconds: float | None = None) -> bool:
        client = await self._client("set_if_absent")
        try:
            return bool(await client.set(key, value, nx=True, px=self._ttl_ms(ttl_seconds)))
        except (RedisError, OSError) as exc:
            raise KeyValueStoreError("set_if_absent", str(exc)) from exc

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        client = await self._client("delete")
        try:
            await client.delete(*keys)
        except (RedisError, OSError) as exc:
            raise KeyValueStoreError("delete", str(exc)) from exc

    async def scan_keys(self, prefix: str) -> list[str]:
        client = await self._client("scan")
        try:
            return [key async for key in client.scan_iter(match=f"{prefix}*")]
        except (RedisError, OSError) as exc:
            raise KeyValueStoreError("scan", str(exc)) from exc


class KeyedLock:
    """
    נעילה לפי מפתח. נעילות נוצרות לפי דרישה ונמחקות כשאין מי שממתין להן,
    כך שהמילון לא גדל עם כל שולח חד-פעמי.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


_store: KeyValueStore | None = None
_store_lock = threading.Lock()


def get_kv_store() -> KeyValueStore:
    """KV store משותף לפי STATE_BACKEND"""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                if settings.STATE_BACKEND == "redis":
                    _store = RedisKeyValueStore()
                else:
                    _store = InMemoryKeyValueStore()
                logger.info(
                    "Key-value store initialized",
                    extra_data={"backend": settings.STATE_BACKEND},
                )
    return _store


def reset_kv_store() -> None:
    """איפוס - לשימוש בבדיקות בלבד"""
    global _store
    with _store_lock:
        _store = None
