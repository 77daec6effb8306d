"""
Webhook Event Model - idempotency להודעות WhatsApp נכנסות.

Meta מבטיחה at-least-once, לכן כל message_id נרשם לפני העיבוד.
רק status=completed חוסם עיבוד חוזר; processing ישן (תהליך שקרס)
או failed מאפשרים ניסיון נוסף.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Index

from app.db.database import Base


class WebhookEventStatus:
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookEvent(Base):
    """הודעה אחת שהתקבלה מה-webhook, לפי ה-wamid של Meta"""

    __tablename__ = "webhook_events"

    message_id = Column(String(200), primary_key=True)
    platform = Column(String(20), nullable=False, default="whatsapp")
    status = Column(String(20), nullable=False, default=WebhookEventStatus.PROCESSING)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )
