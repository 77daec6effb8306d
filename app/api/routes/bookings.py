"""
Booking API Routes - צפייה בתורים שנקבעו דרך הבוט (לצוות המרפאה)
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.db.database import get_db
from app.domain.services.booking_store import BookingRecord, SqlBookingStore

router = APIRouter()


class BookingListResponse(BaseModel):
    total: int
    bookings: list[BookingRecord]


@router.get(
    "",
    response_model=BookingListResponse,
    summary="List bookings",
    description="כל התורים, החדש ראשון. דורש header: X-Admin-API-Key.",
    dependencies=[Depends(require_admin_api_key)],
)
async def list_bookings(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> BookingListResponse:
    store = SqlBookingStore(db)
    bookings = await store.list_bookings(limit=limit, offset=offset)
    total = await store.count_bookings()
    return BookingListResponse(total=total, bookings=bookings)
