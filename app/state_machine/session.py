"""
Session Models - מצב שיחה לכל שולח וטיוטת התור שבתהליך.

הטיוטה מחזיקה שלב מפורש (BookingStep) וערכים. ה-validator אוכף שהשדות
מולאו משמאל לימין (day -> time -> name -> phone -> service) ושהם תואמים
לשלב, כך שמצב כמו "phone בלי name" לא ניתן לבנייה.
"""
from datetime import date
from typing import Any

from pydantic import BaseModel, ValidationError, model_validator

from app.core.exceptions import InvalidDraftError, InvalidStateTransitionError
from app.state_machine.states import (
    BOOKING_FIELD_ORDER,
    BOOKING_STEP_FIELDS,
    BookingStep,
    SessionMode,
    is_valid_booking_transition,
)


def build_appointment(day: date, time_label: str) -> str:
    """צורת התור הקנונית: '2025-06-01 6 PM'"""
    return f"{day.isoformat()} {time_label}"


def _expected_filled(step: BookingStep) -> int:
    """כמה שדות (מתוך BOOKING_FIELD_ORDER) אמורים להיות מלאים בשלב הנתון"""
    if step == BookingStep.NOT_STARTED:
        return 0
    if step == BookingStep.COMPLETED:
        return len(BOOKING_FIELD_ORDER)
    return BOOKING_FIELD_ORDER.index(BOOKING_STEP_FIELDS[step])


class BookingDraft(BaseModel):
    """Booking-in-progress"""

    step: BookingStep = BookingStep.NOT_STARTED
    day: date | None = None
    time: str | None = None
    appointment: str | None = None
    name: str | None = None
    phone: str | None = None
    service: str | None = None

    @model_validator(mode="after")
    def check_field_order(self) -> "BookingDraft":
        values = [getattr(self, field) for field in BOOKING_FIELD_ORDER]

        seen_gap = False
        for field, value in zip(BOOKING_FIELD_ORDER, values):
            if value is None:
                seen_gap = True
            elif seen_gap:
                raise ValueError(f"'{field}' is set while an earlier field is missing")

        filled = sum(1 for value in values if value is not None)
        if filled != _expected_filled(self.step):
            raise ValueError(
                f"step {self.step.value} expects {_expected_filled(self.step)} fields, got {filled}"
            )

        if self.day is not None and self.time is not None:
            expected = build_appointment(self.day, self.time)
            if self.appointment != expected:
                raise ValueError("appointment must combine day and time")
        elif self.appointment is not None:
            raise ValueError("appointment requires day and time")

        return self

    def advance(self, target: BookingStep, **fields: Any) -> "BookingDraft":
        """
        מחזיר טיוטה חדשה בשלב target עם השדות שנוספו.

        Raises:
            InvalidStateTransitionError: מעבר שלא ב-BOOKING_TRANSITIONS
            InvalidDraftError: הטיוטה שנוצרת מפרה את סדר השדות
        """
        if not is_valid_booking_transition(self.step, target):
            raise InvalidStateTransitionError(self.step.value, target.value)

        data = self.model_dump()
        data.update(fields)
        data["step"] = target
        if data.get("day") is not None and data.get("time") is not None:
            data["appointment"] = build_appointment(data["day"], data["time"])

        try:
            return BookingDraft.model_validate(data)
        except ValidationError as exc:
            raise InvalidDraftError(
                "Booking draft would break the field order",
                details={"target_step": target.value, "errors": exc.errors(include_url=False)},
            ) from exc

    def to_booking_fields(self) -> dict[str, str]:
        """השדות שנשמרים ב-store (רק לטיוטה שהושלמה)"""
        if self.step != BookingStep.COMPLETED:
            raise InvalidDraftError(
                "Only a completed draft can be persisted",
                details={"step": self.step.value},
            )
        return {
            "name": self.name,
            "phone": self.phone,
            "service": self.service,
            "appointment": self.appointment,
        }


class ChatSession(BaseModel):
    """מצב שיחה של שולח אחד"""

    sender_id: str
    mode: SessionMode = SessionMode.IDLE
    draft: BookingDraft | None = None
    last_intent: str | None = None
    # שפת השיחה האחרונה שזוהתה; ספרות בלבד לא משנות אותה
    language: str = "ar"
    updated_at: float = 0.0

    @model_validator(mode="after")
    def check_draft_presence(self) -> "ChatSession":
        if (self.mode == SessionMode.BOOKING) != (self.draft is not None):
            raise ValueError("draft must be present exactly while mode is BOOKING")
        return self

    @property
    def booking_in_progress(self) -> bool:
        return self.mode == SessionMode.BOOKING

    @classmethod
    def fresh(cls, sender_id: str, language: str = "ar") -> "ChatSession":
        return cls(sender_id=sender_id, language=language)

    def start_booking(self, draft: BookingDraft) -> "ChatSession":
        return ChatSession(
            sender_id=self.sender_id,
            mode=SessionMode.BOOKING,
            draft=draft,
            last_intent=self.last_intent,
            language=self.language,
            updated_at=self.updated_at,
        )

    def with_mode(self, mode: SessionMode) -> "ChatSession":
        """מעבר למצב ללא טיוטה (IDLE / AWAITING_CANCEL_PHONE / LOCKED)"""
        return ChatSession(
            sender_id=self.sender_id,
            mode=mode,
            draft=None,
            last_intent=self.last_intent,
            language=self.language,
            updated_at=self.updated_at,
        )

    def with_draft(self, draft: BookingDraft) -> "ChatSession":
        return self.start_booking(draft)
