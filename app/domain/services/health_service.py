"""
שירות בדיקת בריאות - readiness של התלויות (DB, key-value store).

liveness (/health) לא בודק תלויות; readiness (/health/ready) כן.
"""
from typing import Any

from sqlalchemy import text

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis_client import get_redis
from app.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# הודעות שגיאה מסוננות - בלי פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_KV_STORE = "error: kv_store_unavailable"


async def _check_db() -> str:
    """SELECT 1 מול מסד הנתונים"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות DB נכשלה", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_kv_store() -> str:
    """PING ל-Redis כש-sessions וה-spam guard יושבים עליו; store בזיכרון תמיד זמין"""
    if settings.STATE_BACKEND != "redis":
        return _CHECK_OK
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות Redis נכשלה", extra_data={"error": str(e)})
        return _ERROR_KV_STORE


async def check_readiness() -> dict[str, Any]:
    """
    status: "healthy" אם הכל תקין, "degraded" אם תלות כלשהי נכשלה.
    db / kv_store: "ok" או "error: ...".
    """
    checks = {
        "db": await _check_db(),
        "kv_store": await _check_kv_store(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("בדיקת מוכנות - המערכת במצב degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
