"""
Booking Models - תורים שנקבעו דרך WhatsApp והיסטוריית השינויים שלהם
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from app.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, enum.Enum):
    NEW = "new"
    CANCELED = "canceled"


class BookingAction(str, enum.Enum):
    CREATED = "created"
    CANCELED = "canceled"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    # שמירת הערך ("new") ולא שם החבר ("NEW") בעמודה
    return [member.value for member in enum_cls]


class Booking(Base):
    """תור של מטופל"""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)

    # מזהה השיחה ב-WhatsApp שממנה נקבע התור
    sender_id = Column(String(50), nullable=True)

    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False, index=True)
    service = Column(String(100), nullable=False)
    # "<ISO day> <time label>", לדוגמה "2025-06-01 6 PM"
    appointment = Column(String(50), nullable=False)

    status = Column(
        SQLEnum(BookingStatus, name="booking_status", values_callable=_enum_values),
        default=BookingStatus.NEW,
        nullable=False,
        index=True,
    )

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    canceled_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    history = relationship(
        "BookingHistory",
        back_populates="booking",
        order_by="BookingHistory.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_bookings_phone_status_created", "phone", "status", "created_at"),
    )


class BookingHistory(Base):
    """שורת audit לכל יצירה / ביטול של תור"""

    __tablename__ = "booking_history"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(
        SQLEnum(BookingAction, name="booking_action", values_callable=_enum_values),
        nullable=False,
    )
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    booking = relationship("Booking", back_populates="history")
