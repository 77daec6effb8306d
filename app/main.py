"""
Clinic Bot - Main FastAPI Application
"""
import asyncio
import contextlib
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import AsyncSessionLocal, engine, Base
from app.domain.services.clinic_settings_service import (
    get_clinic_profile,
    load_clinic_profile,
    set_clinic_profile,
)
from app.domain.services.conversation_service import get_spam_guard
from app.domain.services.health_service import check_readiness

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "webhooks", "description": "WhatsApp Cloud API: אימות ה-webhook וקבלת הודעות."},
    {"name": "bookings", "description": "צפייה בתורים שנקבעו דרך הבוט (X-Admin-API-Key)."},
    {"name": "Health", "description": "Liveness ו-status."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="בוט WhatsApp למרפאת שיניים: קביעת תורים, ביטול, מידע ומענה AI.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-API-Key", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")

_cleanup_task: asyncio.Task | None = None


@app.on_event("startup")
async def startup() -> None:
    """טבלאות, פרופיל המרפאה ולולאת הניקוי של ה-spam guard"""
    global _cleanup_task

    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    async with AsyncSessionLocal() as db:
        set_clinic_profile(await load_clinic_profile(db))

    _cleanup_task = asyncio.create_task(
        get_spam_guard().run_cleanup_loop(settings.SPAM_CLEANUP_INTERVAL_SECONDS)
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    global _cleanup_task

    logger.info("Shutting down application")
    if _cleanup_task is not None:
        _cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _cleanup_task
        _cleanup_task = None

    # סגירת חיבור Redis
    from app.core.redis_client import close_redis
    await close_redis()
    # סגירת חיבורי מסד הנתונים למניעת connection pool exhaustion
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get("/", summary="Status", tags=["Health"])
async def root() -> dict[str, str]:
    return {
        "status": "ok",
        "clinic": get_clinic_profile().clinic_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description="התהליך חי ומגיב. לא בודק DB / Redis כדי למנוע restart מיותר.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description="DB ו-Redis (כש-STATE_BACKEND=redis). 200 כשהכל תקין, 503 עם פירוט אחרת.",
    responses={
        200: {"content": {"application/json": {"example": {"status": "healthy", "db": "ok", "kv_store": "ok"}}}},
        503: {"content": {"application/json": {"example": {
            "status": "degraded", "db": "ok", "kv_store": "error: kv_store_unavailable",
        }}}},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
