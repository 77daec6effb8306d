"""
Database Models
"""
from app.db.models.booking import Booking, BookingHistory, BookingStatus, BookingAction
from app.db.models.clinic_settings import ClinicSettings
from app.db.models.webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "Booking",
    "BookingHistory",
    "BookingStatus",
    "BookingAction",
    "ClinicSettings",
    "WebhookEvent",
    "WebhookEventStatus",
]
