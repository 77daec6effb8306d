"""
Redis Client - async singleton.

בשימוש רק כאשר STATE_BACKEND=redis: sessions ומפתחות ה-spam guard
נשמרים ב-Redis ומשותפים בין מופעי השרת.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _safe_redis_url(url: str) -> str:
    """REDIS_URL ללוג, בלי סיסמה"""
    parsed = urlparse(url)
    if not parsed.password:
        return url
    return url.replace(f":{parsed.password}@", ":****@")


async def get_redis() -> aioredis.Redis:
    """מחזיר Redis client משותף (connection pool), מאתחל בפעם הראשונה"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is None:
            client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
            await client.ping()
            _redis_client = client
            logger.info(
                "Redis client initialized",
                extra_data={"url": _safe_redis_url(settings.REDIS_URL)},
            )
    return _redis_client


async def close_redis() -> None:
    """סגירת החיבור ב-shutdown"""
    global _redis_client
    if _redis_client is None:
        return
    await _redis_client.aclose()
    _redis_client = None
    logger.info("Redis connection closed")
