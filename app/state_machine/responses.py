"""
Outbound message shapes - מה שהזרימות מחזירות, לפני שליחה ל-WhatsApp
"""
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ReplyOption:
    """כפתור / שורת רשימה עם מזהה אטום (day_2025-06-01, slot_6 PM, service_...)"""

    id: str
    title: str
    description: str | None = None


@dataclass
class MessageResponse:
    """Response to be sent to user"""

    text: str
    options: list[ReplyOption] | None = None
    # כותרת כפתור הרשימה כשיש יותר מ-3 אפשרויות
    button_title: str | None = None
    media_url: str | None = None
    media_type: str = "image"
    # השהיה לפני השליחה (בין תמונות רצופות)
    delay_seconds: float = 0.0

    @property
    def is_media(self) -> bool:
        return self.media_url is not None


@dataclass
class DispatchResult:
    """התוצאה של עיבוד הודעה אחת"""

    responses: list[MessageResponse] = field(default_factory=list)
    # לאיזה ענף הדיספצ'ר הלך (ללוגים ולבדיקות)
    action: str = "none"
    dropped: bool = False
    drop_reason: str | None = None

    @classmethod
    def drop(cls, reason: str) -> "DispatchResult":
        return cls(action="dropped", dropped=True, drop_reason=reason)
