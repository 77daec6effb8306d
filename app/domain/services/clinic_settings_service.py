"""
Clinic Settings Service - פרופיל המרפאה לקריאה בלבד.

נטען פעם אחת ב-startup מטבלת clinic_settings. אם השורה חסרה או שה-DB לא
זמין, הבוט ממשיך לעבוד עם ערכי ברירת המחדל מה-config.
"""
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import DoctorProfile, Settings, settings
from app.core.logging import get_logger, log_async_operation
from app.db.models.clinic_settings import ClinicSettings

logger = get_logger(__name__)


class ClinicProfile(BaseModel):
    """Clinic configuration the conversation flows read"""

    clinic_id: str = "default"
    clinic_name: str
    clinic_name_en: str | None = None
    time_slots: list[str]
    services: list[str]
    location_ar: str = ""
    location_en: str = ""
    timezone: str = "Asia/Amman"
    days_ahead: int = 5
    doctors: list[DoctorProfile] = []
    offer_images: list[str] = []

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "ClinicProfile":
        return cls(
            clinic_id=config.CLINIC_ID,
            clinic_name=config.CLINIC_NAME,
            clinic_name_en=config.CLINIC_NAME_EN,
            time_slots=list(config.CLINIC_TIME_SLOTS),
            services=list(config.CLINIC_SERVICES),
            location_ar=config.CLINIC_LOCATION_AR,
            location_en=config.CLINIC_LOCATION_EN,
            timezone=config.CLINIC_TIMEZONE,
            days_ahead=config.BOOKING_DAYS_AHEAD,
            doctors=list(config.CLINIC_DOCTORS),
            offer_images=list(config.CLINIC_OFFER_IMAGES),
        )

    def name_for(self, lang: str) -> str:
        if lang == "en" and self.clinic_name_en:
            return self.clinic_name_en
        return self.clinic_name

    def location_for(self, lang: str) -> str:
        return self.location_en if lang == "en" and self.location_en else self.location_ar


def _merge_row(fallback: ClinicProfile, row: ClinicSettings) -> ClinicProfile:
    """ערכים מה-DB גוברים; שדה ריק בשורה נופל לברירת המחדל"""
    return fallback.model_copy(update={
        "clinic_name": row.clinic_name or fallback.clinic_name,
        "clinic_name_en": row.clinic_name_en or fallback.clinic_name_en,
        "time_slots": [s for s in (row.booking_times or []) if s] or fallback.time_slots,
        "services": [s for s in (row.services or []) if s] or fallback.services,
        "location_ar": row.location_ar or fallback.location_ar,
        "location_en": row.location_en or fallback.location_en,
    })


@log_async_operation("load_clinic_profile")
async def load_clinic_profile(db: AsyncSession, config: Settings = settings) -> ClinicProfile:
    """טעינת הפרופיל מה-DB עם fallback ל-config"""
    fallback = ClinicProfile.from_settings(config)
    try:
        result = await db.execute(
            select(ClinicSettings).where(ClinicSettings.clinic_id == config.CLINIC_ID)
        )
        row = result.scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.warning(
            "Clinic settings unavailable, using configured defaults",
            extra_data={"clinic_id": config.CLINIC_ID, "error": str(exc)},
        )
        return fallback

    if row is None:
        logger.info(
            "No clinic_settings row, using configured defaults",
            extra_data={"clinic_id": config.CLINIC_ID},
        )
        return fallback

    profile = _merge_row(fallback, row)
    logger.info(
        "Clinic settings loaded",
        extra_data={
            "clinic_id": config.CLINIC_ID,
            "time_slots": profile.time_slots,
            "services_count": len(profile.services),
        },
    )
    return profile


_profile: ClinicProfile | None = None


def get_clinic_profile() -> ClinicProfile:
    """הפרופיל שנטען ב-startup (או ברירת המחדל אם עוד לא נטען)"""
    global _profile
    if _profile is None:
        _profile = ClinicProfile.from_settings()
    return _profile


def set_clinic_profile(profile: ClinicProfile | None) -> None:
    global _profile
    _profile = profile
