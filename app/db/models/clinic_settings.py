"""
Clinic Settings Model - פרופיל המרפאה (שם, שעות, שירותים, מיקום)

נטען פעם אחת בעליית השרת; בהיעדר שורה משתמשים בערכי ברירת המחדל מה-config.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, JSON, Text

from app.db.database import Base


class ClinicSettings(Base):
    __tablename__ = "clinic_settings"

    clinic_id = Column(String(50), primary_key=True)
    clinic_name = Column(String(200), nullable=False)
    clinic_name_en = Column(String(200), nullable=True)
    # רשימות JSON: ["3 PM", "6 PM", "9 PM"]
    booking_times = Column(JSON, nullable=True)
    services = Column(JSON, nullable=True)
    location_ar = Column(Text, nullable=True)
    location_en = Column(Text, nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
