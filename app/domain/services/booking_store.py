"""
Booking Store - שמירה, איתור וביטול של תורים.

BookingStore הוא החוזה שהזרימות צורכות; SqlBookingStore מממש אותו מעל
SQLAlchemy. כל פעולה רצה תחת מגבלת זמן, וכל כשל (DB / timeout) נזרק
כ-BookingStoreError כדי שהזרימה תחליט מה המשתמש רואה.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, TypeVar

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.circuit_breaker import run_with_timeout
from app.core.config import settings
from app.core.exceptions import (
    BookingNotFoundError,
    BookingStoreError,
    ServiceTimeoutError,
)
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.db.models.booking import Booking, BookingAction, BookingHistory, BookingStatus

logger = get_logger(__name__)

T = TypeVar("T")

CREATED_NOTE = "Booking created via WhatsApp"
CANCELED_NOTE = "Booking canceled via WhatsApp"


class BookingCreate(BaseModel):
    """שדות טיוטה שהושלמה"""

    name: str
    phone: str
    service: str
    appointment: str
    sender_id: str | None = None


class BookingRecord(BaseModel):
    """Persisted booking as seen by the flows and the admin API"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    phone: str
    service: str
    appointment: str
    status: BookingStatus
    created_at: datetime
    canceled_at: datetime | None = None


class BookingStore(ABC):
    """insert / find_active_by_phone / cancel"""

    @abstractmethod
    async def insert(self, booking: BookingCreate) -> int:
        """שמירת תור חדש (status=new). מחזיר את ה-id."""

    @abstractmethod
    async def find_active_by_phone(self, phone: str) -> BookingRecord | None:
        """התור הפעיל האחרון שנוצר עבור הטלפון, או None."""

    @abstractmethod
    async def cancel(self, booking_id: int) -> BookingRecord:
        """סימון התור כ-canceled."""

    @abstractmethod
    async def list_bookings(self, limit: int = 100, offset: int = 0) -> list[BookingRecord]:
        """כל התורים, החדש ראשון."""


class SqlBookingStore(BookingStore):
    """BookingStore over the async SQLAlchemy session"""

    def __init__(self, db: AsyncSession, timeout_seconds: float | None = None):
        self.db = db
        self.timeout_seconds = timeout_seconds or settings.STORE_TIMEOUT_SECONDS

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await run_with_timeout("booking_store", awaitable, self.timeout_seconds)
        except (SQLAlchemyError, ServiceTimeoutError) as exc:
            await self.db.rollback()
            logger.error(
                f"Booking store {operation} failed",
                extra_data={"operation": operation, "error": str(exc)},
                exc_info=True,
            )
            raise BookingStoreError(operation, str(exc)) from exc

    async def insert(self, booking: BookingCreate) -> int:
        return await self._run("insert", self._insert(booking))

    async def _insert(self, data: BookingCreate) -> int:
        booking = Booking(
            sender_id=data.sender_id,
            name=data.name,
            phone=data.phone,
            service=data.service,
            appointment=data.appointment,
            status=BookingStatus.NEW,
        )
        self.db.add(booking)
        await self.db.flush()  # Get booking ID

        self.db.add(BookingHistory(
            booking_id=booking.id,
            action=BookingAction.CREATED,
            note=CREATED_NOTE,
        ))
        # תור והיסטוריה באותה טרנזקציה - כשל מגלגל את שניהם אחורה
        await self.db.commit()

        logger.info(
            "Booking created",
            extra_data={
                "booking_id": booking.id,
                "phone": PhoneNumberValidator.mask(data.phone),
                "appointment": data.appointment,
            },
        )
        return booking.id

    async def find_active_by_phone(self, phone: str) -> BookingRecord | None:
        return await self._run("find_active_by_phone", self._find_active_by_phone(phone))

    async def _find_active_by_phone(self, phone: str) -> BookingRecord | None:
        result = await self.db.execute(
            select(Booking)
            .where(Booking.phone == phone, Booking.status == BookingStatus.NEW)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .limit(1)
        )
        booking = result.scalar_one_or_none()
        return BookingRecord.model_validate(booking) if booking else None

    async def cancel(self, booking_id: int) -> BookingRecord:
        return await self._run("cancel", self._cancel(booking_id))

    async def _cancel(self, booking_id: int) -> BookingRecord:
        result = await self.db.execute(select(Booking).where(Booking.id == booking_id))
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError(booking_id)

        if booking.status != BookingStatus.CANCELED:
            booking.status = BookingStatus.CANCELED
            booking.canceled_at = datetime.now(timezone.utc)
            self.db.add(BookingHistory(
                booking_id=booking.id,
                action=BookingAction.CANCELED,
                note=CANCELED_NOTE,
            ))
            await self.db.commit()
            await self.db.refresh(booking)

            logger.info(
                "Booking canceled",
                extra_data={"booking_id": booking.id, "phone": PhoneNumberValidator.mask(booking.phone)},
            )

        return BookingRecord.model_validate(booking)

    async def list_bookings(self, limit: int = 100, offset: int = 0) -> list[BookingRecord]:
        return await self._run("list_bookings", self._list_bookings(limit, offset))

    async def _list_bookings(self, limit: int, offset: int) -> list[BookingRecord]:
        result = await self.db.execute(
            select(Booking)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [BookingRecord.model_validate(row) for row in result.scalars().all()]

    async def count_bookings(self) -> int:
        return await self._run("count_bookings", self._count_bookings())

    async def _count_bookings(self) -> int:
        result = await self.db.execute(select(func.count(Booking.id)))
        return result.scalar_one()

    async def get_history(self, booking_id: int) -> list[BookingHistory]:
        """שורות ההיסטוריה של תור (לבדיקות ול-audit)"""
        result = await self.db.execute(
            select(BookingHistory)
            .where(BookingHistory.booking_id == booking_id)
            .order_by(BookingHistory.id)
        )
        return list(result.scalars().all())
