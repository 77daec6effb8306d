"""
Booking Flow - יום -> שעה -> שם -> טלפון -> שירות -> אישור.

כל handler מקבל את ה-session והקלט (טקסט ו/או payload של כפתור) ומחזיר
session חדש ואת ההודעות לשליחה. קלט לא תקין משאיר את הטיוטה באותו שלב
עם הודעת שגיאה; כשלון של שירות חיצוני מטופל כאן לפי מדיניות השלב.
"""
import re
from datetime import date, datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

from app.core.exceptions import ExternalServiceException, InvalidStateTransitionError
from app.core.logging import get_logger
from app.core.validation import NameValidator, PhoneNumberValidator, TextSanitizer, normalize_digits
from app.domain.services.ai_service import AIOracle
from app.domain.services.booking_store import BookingCreate, BookingStore
from app.domain.services.clinic_settings_service import ClinicProfile
from app.state_machine.intents import normalize_text
from app.state_machine.responses import MessageResponse, ReplyOption
from app.state_machine.session import BookingDraft, ChatSession
from app.state_machine.states import BookingStep, SessionMode
from app.state_machine.texts import WEEKDAY_NAMES, day_label, render

logger = get_logger(__name__)

FlowOutcome = tuple[ChatSession, list[MessageResponse]]

DAY_PREFIX = "day_"
SLOT_PREFIX = "slot_"
SERVICE_PREFIX = "service_"

_ISO_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")
_TODAY_WORDS = {normalize_text(w) for w in ("today", "اليوم", "النهارده", "النهاردة")}
_TOMORROW_WORDS = {normalize_text(w) for w in ("tomorrow", "بكرا", "بكره", "بكرة", "غدا", "غدًا", "غداً")}


def clinic_today(profile: ClinicProfile) -> date:
    """התאריך הנוכחי באזור הזמן של המרפאה"""
    return datetime.now(ZoneInfo(profile.timezone)).date()


def _compact(value: str) -> str:
    """'6 PM' / '6pm' / ' 6 pm ' -> '6pm'"""
    return normalize_text(value).replace(" ", "")


class BookingFlowHandler:
    """Handles the booking conversation steps"""

    def __init__(
        self,
        store: BookingStore,
        ai: AIOracle,
        profile: ClinicProfile,
        today_provider: Callable[[], date] | None = None,
    ):
        self.store = store
        self.ai = ai
        self.profile = profile
        self._today = today_provider or (lambda: clinic_today(profile))

    # ==================== Entry points ====================

    async def start(self, session: ChatSession, lang: str) -> FlowOutcome:
        """NotStarted -> AwaitingDay: מציג את חלון הימים"""
        draft = BookingDraft().advance(BookingStep.AWAITING_DAY)
        logger.info(
            "Booking started",
            extra_data={"sender_id": PhoneNumberValidator.mask(session.sender_id)},
        )
        return session.start_booking(draft), [self._day_prompt(lang)]

    async def handle(
        self,
        session: ChatSession,
        text: str,
        payload_id: str | None,
        lang: str,
    ) -> FlowOutcome:
        """מזין את הקלט לשלב הנוכחי של הטיוטה"""
        if session.draft is None:
            raise InvalidStateTransitionError(
                session.mode.value, BookingStep.AWAITING_DAY.value, session.sender_id
            )

        handler = self._get_handler(session.draft.step)
        return await handler(session, session.draft, text or "", payload_id, lang)

    def _get_handler(self, step: BookingStep):
        handlers = {
            BookingStep.AWAITING_DAY: self._handle_day,
            BookingStep.AWAITING_TIME: self._handle_time,
            BookingStep.AWAITING_NAME: self._handle_name,
            BookingStep.AWAITING_PHONE: self._handle_phone,
            BookingStep.AWAITING_SERVICE: self._handle_service,
        }
        handler = handlers.get(step)
        if handler is None:
            raise InvalidStateTransitionError(step.value, "next")
        return handler

    # ==================== Day ====================

    def offered_days(self) -> list[date]:
        today = self._today()
        return [today + timedelta(days=offset) for offset in range(self.profile.days_ahead)]

    def _day_prompt(self, lang: str, error: bool = False) -> MessageResponse:
        options = [
            ReplyOption(id=f"{DAY_PREFIX}{day.isoformat()}", title=day_label(day, offset, lang))
            for offset, day in enumerate(self.offered_days())
        ]
        return MessageResponse(
            text=render("invalid_day" if error else "pick_day", lang),
            options=options,
            button_title=render("pick_day_button", lang),
        )

    def parse_day(self, text: str, payload_id: str | None) -> date | None:
        """
        payload day_YYYY-MM-DD, תאריך ISO, היום / מחר, או שם יום בשבוע.
        רק ימים מתוך החלון המוצע.
        """
        offered = self.offered_days()
        candidate = payload_id or text
        normalized = normalize_text(candidate)

        chosen: date | None = None
        iso_match = _ISO_DATE_RE.search(normalized)
        if iso_match:
            try:
                chosen = date.fromisoformat(iso_match.group(1))
            except ValueError:
                return None
        elif normalized in _TODAY_WORDS:
            chosen = offered[0]
        elif normalized in _TOMORROW_WORDS and len(offered) > 1:
            chosen = offered[1]
        else:
            for day in offered:
                names = {normalize_text(table[day.weekday()]) for table in WEEKDAY_NAMES.values()}
                if normalized in names:
                    chosen = day
                    break

        return chosen if chosen in offered else None

    async def _handle_day(self, session, draft, text, payload_id, lang) -> FlowOutcome:
        day = self.parse_day(text, payload_id)
        if day is None:
            logger.debug("Invalid day selection", extra_data={"input": text[:30]})
            return session, [self._day_prompt(lang, error=True)]

        new_draft = draft.advance(BookingStep.AWAITING_TIME, day=day)
        return session.with_draft(new_draft), [self._slot_prompt(day, lang)]

    # ==================== Time ====================

    def _slot_prompt(self, day: date, lang: str, error: bool = False) -> MessageResponse:
        options = [ReplyOption(id=f"{SLOT_PREFIX}{slot}", title=slot) for slot in self.profile.time_slots]
        text = render("invalid_time", lang) if error else render("pick_time", lang, day=day.isoformat())
        return MessageResponse(text=text, options=options, button_title=render("pick_day_button", lang))

    def parse_slot(self, text: str, payload_id: str | None) -> str | None:
        """slot_<label>, התווית עצמה ('6 PM' / '6pm'), או ספרת השעה ('6')"""
        candidate = payload_id or text
        if candidate.startswith(SLOT_PREFIX):
            candidate = candidate[len(SLOT_PREFIX):]

        compact = _compact(candidate)
        if not compact:
            return None

        for slot in self.profile.time_slots:
            if _compact(slot) == compact:
                return slot

        if compact.isdigit():
            for slot in self.profile.time_slots:
                match = re.match(r"\s*(\d{1,2})", normalize_digits(slot))
                if match and match.group(1) == compact:
                    return slot
        return None

    async def _handle_time(self, session, draft, text, payload_id, lang) -> FlowOutcome:
        slot = self.parse_slot(text, payload_id)
        if slot is None:
            logger.debug("Invalid time slot", extra_data={"input": text[:30]})
            return session, [self._slot_prompt(draft.day, lang, error=True)]

        new_draft = draft.advance(BookingStep.AWAITING_NAME, time=slot)
        return session.with_draft(new_draft), [MessageResponse(text=render("ask_name", lang))]

    # ==================== Name ====================

    async def _handle_name(self, session, draft, text, payload_id, lang) -> FlowOutcome:
        name = TextSanitizer.sanitize(text)
        is_valid, error = NameValidator.validate(name)
        if not is_valid:
            logger.debug("Name rejected by local check", extra_data={"reason": error})
            return session, [MessageResponse(text=render("invalid_name", lang))]

        try:
            verdict = await self.ai.validate_name(name)
        except ExternalServiceException as exc:
            logger.warning(
                "Name validation unavailable",
                extra_data={"service": exc.service_name, "error": exc.message},
            )
            return session, [MessageResponse(text=render("name_check_failed", lang))]

        if not verdict:
            logger.debug("Name rejected by AI")
            return session, [MessageResponse(text=render("invalid_name", lang))]

        new_draft = draft.advance(BookingStep.AWAITING_PHONE, name=name)
        return session.with_draft(new_draft), [MessageResponse(text=render("ask_phone", lang))]

    # ==================== Phone ====================

    async def _handle_phone(self, session, draft, text, payload_id, lang) -> FlowOutcome:
        if not PhoneNumberValidator.validate(text):
            logger.debug("Invalid booking phone")
            return session, [MessageResponse(text=render("invalid_phone", lang))]

        phone = PhoneNumberValidator.normalize(text)
        new_draft = draft.advance(BookingStep.AWAITING_SERVICE, phone=phone)
        return session.with_draft(new_draft), [self._service_prompt(lang)]

    # ==================== Service ====================

    def _service_prompt(self, lang: str, key: str = "pick_service") -> MessageResponse:
        options = [
            ReplyOption(id=f"{SERVICE_PREFIX}{service}", title=service)
            for service in self.profile.services
        ]
        return MessageResponse(
            text=render(key, lang),
            options=options,
            button_title=render("pick_service_button", lang),
        )

    def parse_service(self, text: str, payload_id: str | None) -> str | None:
        """service_<name>, שם השירות, או המיקום שלו ברשימה (1-based)"""
        candidate = payload_id or text
        if candidate.startswith(SERVICE_PREFIX):
            candidate = candidate[len(SERVICE_PREFIX):]

        normalized = normalize_text(candidate)
        if not normalized:
            return None

        for service in self.profile.services:
            if normalize_text(service) == normalized:
                return service

        if normalized.isdigit():
            index = int(normalized)
            if 1 <= index <= len(self.profile.services):
                return self.profile.services[index - 1]
        return None

    async def _handle_service(self, session, draft, text, payload_id, lang) -> FlowOutcome:
        service = self.parse_service(text, payload_id)
        if service is None:
            logger.debug("Invalid service selection", extra_data={"input": text[:30]})
            return session, [self._service_prompt(lang, key="invalid_service")]

        completed = draft.advance(BookingStep.COMPLETED, service=service)
        booking = BookingCreate(**completed.to_booking_fields(), sender_id=session.sender_id)

        try:
            booking_id = await self.store.insert(booking)
        except ExternalServiceException as exc:
            # הטיוטה נשארת ב-AwaitingService; בחירה חוזרת של שירות מנסה שוב
            logger.error(
                "Booking insert failed, draft kept for retry",
                extra_data={
                    "sender_id": PhoneNumberValidator.mask(session.sender_id),
                    "error": exc.message,
                },
            )
            return session, [self._service_prompt(lang, key="booking_save_failed")]

        logger.info(
            "Booking completed",
            extra_data={
                "booking_id": booking_id,
                "sender_id": PhoneNumberValidator.mask(session.sender_id),
                "appointment": completed.appointment,
            },
        )
        confirmation = render(
            "booking_confirmed",
            lang,
            name=completed.name,
            phone=completed.phone,
            service=completed.service,
            appointment=completed.appointment,
        )
        return session.with_mode(SessionMode.IDLE), [MessageResponse(text=confirmation)]
