"""
מפתח API לצפייה בתורים (GET /api/bookings).

    @router.get("", dependencies=[Depends(require_admin_api_key)])
"""
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

ADMIN_API_KEY_HEADER = "X-Admin-API-Key"

_api_key_header = APIKeyHeader(name=ADMIN_API_KEY_HEADER, auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    401 כשה-header חסר, 403 כשהמפתח שגוי.
    ADMIN_API_KEY ריק בסביבה חוסם את ה-endpoint לגמרי (403).
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Bookings endpoint blocked: ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access is not configured",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {ADMIN_API_KEY_HEADER} header",
        )

    if not secrets.compare_digest(api_key, settings.ADMIN_API_KEY):
        logger.warning("Bookings endpoint rejected an invalid admin API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key",
        )
