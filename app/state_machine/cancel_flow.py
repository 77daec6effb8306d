"""
Cancellation Flow - ביטול התור הפעיל האחרון לפי מספר טלפון.

start מבטל כל טיוטת הזמנה ועובר ל-AWAITING_CANCEL_PHONE.
handle_phone: פחות מ-8 ספרות -> בקשה חוזרת; אחרת חיפוש התור הפעיל
העדכני ביותר, ביטול, ונעילת השיחה עד reset.
"""
from app.core.exceptions import ExternalServiceException, InvalidStateTransitionError, NotFoundException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, digits_only
from app.domain.services.booking_store import BookingStore
from app.state_machine.responses import MessageResponse
from app.state_machine.session import ChatSession
from app.state_machine.states import CancelStep, SessionMode, is_valid_cancel_transition
from app.state_machine.texts import render

logger = get_logger(__name__)

FlowOutcome = tuple[ChatSession, list[MessageResponse]]


def cancel_step_for(session: ChatSession) -> CancelStep:
    if session.mode == SessionMode.AWAITING_CANCEL_PHONE:
        return CancelStep.AWAITING_PHONE
    if session.mode == SessionMode.LOCKED:
        return CancelStep.COMPLETED
    return CancelStep.NOT_STARTED


class CancelFlowHandler:
    """Handles the cancellation conversation"""

    def __init__(self, store: BookingStore):
        self.store = store

    async def start(self, session: ChatSession, lang: str) -> FlowOutcome:
        # cancel זמין מכל מצב, כולל LOCKED אחרי ביטול קודם
        if session.draft is not None:
            logger.info(
                "Booking draft discarded by cancel",
                extra_data={
                    "sender_id": PhoneNumberValidator.mask(session.sender_id),
                    "step": session.draft.step.value,
                },
            )
        new_session = session.with_mode(SessionMode.AWAITING_CANCEL_PHONE)
        return new_session, [MessageResponse(text=render("cancel_ask_phone", lang))]

    async def handle_phone(self, session: ChatSession, text: str, lang: str) -> FlowOutcome:
        current = cancel_step_for(session)
        if not is_valid_cancel_transition(current, CancelStep.COMPLETED):
            raise InvalidStateTransitionError(
                current.value, CancelStep.COMPLETED.value, session.sender_id
            )

        if len(digits_only(text)) < PhoneNumberValidator.MIN_CANCEL_DIGITS:
            return session, [MessageResponse(text=render("cancel_invalid_phone", lang))]

        phone = PhoneNumberValidator.normalize(text)
        phone_masked = PhoneNumberValidator.mask(phone)
        idle = session.with_mode(SessionMode.IDLE)

        try:
            booking = await self.store.find_active_by_phone(phone)
        except ExternalServiceException as exc:
            logger.error(
                "Booking lookup failed during cancel",
                extra_data={"phone": phone_masked, "error": exc.message},
            )
            return idle, [MessageResponse(text=render("cancel_failed", lang))]

        if booking is None:
            logger.info("No active booking to cancel", extra_data={"phone": phone_masked})
            return idle, [MessageResponse(text=render("cancel_not_found", lang))]

        try:
            await self.store.cancel(booking.id)
        except (ExternalServiceException, NotFoundException) as exc:
            logger.error(
                "Booking cancel failed",
                extra_data={"booking_id": booking.id, "phone": phone_masked, "error": exc.message},
            )
            return idle, [MessageResponse(text=render("cancel_failed", lang))]

        logger.info(
            "Booking canceled",
            extra_data={"booking_id": booking.id, "phone": phone_masked},
        )
        done = render(
            "cancel_done",
            lang,
            name=booking.name,
            service=booking.service,
            appointment=booking.appointment,
        )
        return session.with_mode(SessionMode.LOCKED), [MessageResponse(text=done)]
