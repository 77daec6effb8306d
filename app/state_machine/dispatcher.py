"""
Message Dispatcher - החלטה אחת לכל הודעה שעברה את ה-spam guard.

סדר עדיפויות:
1. reset -> מחיקת session וברכה
2. מילים אסורות -> הודעת כבוד, בלי לגעת ב-session
3. cancel -> תהליך ביטול (מכל מצב, טיוטה נמחקת)
4. AWAITING_CANCEL_PHONE -> שלב הטלפון של הביטול
5. בלי הזמנה פעילה: ברכה / רופאים / מבצעים / מיקום
6. booking (או payload של יום/שעה/שירות) בלי הזמנה פעילה -> התחלת הזמנה
7. הזמנה פעילה -> השלב הנוכחי
8. אחרת AI, חוץ ממצב LOCKED אחרי ביטול

כל ההודעה מעובדת בתוך הנעילה של השולח, כך ששתי הודעות של אותו שולח
לא משנות את הטיוטה במקביל.
"""
from app.core.exceptions import AppException, ExternalServiceException
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, detect_language
from app.domain.services.ai_service import AIOracle
from app.domain.services.clinic_settings_service import ClinicProfile
from app.state_machine.booking_flow import (
    DAY_PREFIX,
    SERVICE_PREFIX,
    SLOT_PREFIX,
    BookingFlowHandler,
)
from app.state_machine.cancel_flow import CancelFlowHandler
from app.state_machine.intents import Intent, IntentClassifier, contains_ban_words
from app.state_machine.responses import DispatchResult, MessageResponse
from app.state_machine.session import ChatSession
from app.state_machine.session_store import SessionStore
from app.state_machine.states import SessionMode
from app.state_machine.texts import render

logger = get_logger(__name__)

_BOOKING_PAYLOAD_PREFIXES = (DAY_PREFIX, SLOT_PREFIX, SERVICE_PREFIX)


class MessageDispatcher:
    """Routes one inbound message to exactly one handler"""

    def __init__(
        self,
        sessions: SessionStore,
        classifier: IntentClassifier,
        booking_flow: BookingFlowHandler,
        cancel_flow: CancelFlowHandler,
        ai: AIOracle,
        profile: ClinicProfile,
        media_delay_seconds: float = 1.0,
    ):
        self.sessions = sessions
        self.classifier = classifier
        self.booking_flow = booking_flow
        self.cancel_flow = cancel_flow
        self.ai = ai
        self.profile = profile
        self.media_delay_seconds = media_delay_seconds

    async def dispatch(
        self,
        sender_id: str,
        text: str | None,
        payload_id: str | None = None,
    ) -> DispatchResult:
        text = text or ""
        async with self.sessions.lock(sender_id):
            lang = "ar"
            try:
                session = await self.sessions.get(sender_id)
                lang = detect_language(text) or session.language
                return await self._route(session, text, payload_id, lang)
            except Exception as exc:
                # ה-session לא נשמר - ההודעה הבאה ממשיכה מאותו מצב
                logger.error(
                    "Unexpected error while dispatching message",
                    extra_data={
                        "sender_id": PhoneNumberValidator.mask(sender_id),
                        "error": exc.message if isinstance(exc, AppException) else str(exc),
                    },
                    exc_info=True,
                )
                return DispatchResult(
                    responses=[MessageResponse(text=render("generic_error", lang))],
                    action="error",
                )

    async def _route(
        self,
        session: ChatSession,
        text: str,
        payload_id: str | None,
        lang: str,
    ) -> DispatchResult:
        if payload_id and payload_id.startswith(_BOOKING_PAYLOAD_PREFIXES):
            # בחירה מכפתור - בלי סיווג של טקסט חופשי
            return await self._route_booking_payload(session, text, payload_id, lang)

        intent = self.classifier.classify(text, booking_in_progress=session.booking_in_progress)
        logger.debug(
            "Message classified",
            extra_data={
                "sender_id": PhoneNumberValidator.mask(session.sender_id),
                "intent": intent.value,
                "mode": session.mode.value,
            },
        )

        if intent == Intent.RESET:
            await self.sessions.reset(session.sender_id)
            return self._reply("reset", render("greeting", lang, clinic=self.profile.name_for(lang)))

        if contains_ban_words(text):
            return self._reply("respect", render("respect_notice", lang))

        if intent == Intent.CANCEL:
            new_session, responses = await self.cancel_flow.start(session, lang)
            return await self._commit(new_session, responses, "cancel_start", lang, intent)

        if session.mode == SessionMode.AWAITING_CANCEL_PHONE:
            new_session, responses = await self.cancel_flow.handle_phone(session, text, lang)
            return await self._commit(new_session, responses, "cancel_phone", lang, intent)

        if not session.booking_in_progress:
            info = self._info_responses(intent, lang)
            if info is not None:
                action, responses = info
                return await self._commit(session, responses, action, lang, intent)

            if intent == Intent.BOOKING:
                new_session, responses = await self.booking_flow.start(session, lang)
                return await self._commit(new_session, responses, "booking_start", lang, intent)

        if session.booking_in_progress:
            new_session, responses = await self.booking_flow.handle(session, text, payload_id, lang)
            return await self._commit(new_session, responses, "booking_step", lang, intent)

        if session.mode == SessionMode.LOCKED:
            logger.info(
                "Conversation locked after cancellation, AI fallback skipped",
                extra_data={"sender_id": PhoneNumberValidator.mask(session.sender_id)},
            )
            return await self._commit(session, [], "locked", lang, intent)

        if intent == Intent.NONE:
            return DispatchResult(action="ignored")

        return await self._ask_ai(session, text, lang, intent)

    async def _route_booking_payload(
        self,
        session: ChatSession,
        text: str,
        payload_id: str,
        lang: str,
    ) -> DispatchResult:
        if session.mode == SessionMode.AWAITING_CANCEL_PHONE:
            # כפתור ישן מהזמנה קודמת בזמן שמחכים לטלפון לביטול - הכותרת אינה טלפון
            responses = [MessageResponse(text=render("cancel_ask_phone", lang))]
            return await self._commit(session, responses, "cancel_phone", lang, Intent.NONE)

        if session.booking_in_progress:
            new_session, responses = await self.booking_flow.handle(session, text, payload_id, lang)
            return await self._commit(new_session, responses, "booking_step", lang, Intent.BOOKING)

        new_session, responses = await self.booking_flow.start(session, lang)
        if payload_id.startswith(DAY_PREFIX):
            # day_ מרשימה שנשלחה קודם - מדלגים ישר לבחירת השעה
            new_session, responses = await self.booking_flow.handle(new_session, text, payload_id, lang)
        return await self._commit(new_session, responses, "booking_start", lang, Intent.BOOKING)

    # ==================== Info replies ====================

    def _info_responses(self, intent: Intent, lang: str) -> tuple[str, list[MessageResponse]] | None:
        if intent == Intent.GREETING:
            return "greeting", [
                MessageResponse(text=render("greeting", lang, clinic=self.profile.name_for(lang)))
            ]

        if intent == Intent.DOCTOR_INFO:
            responses = [MessageResponse(text=render("doctors_intro", lang))]
            for index, doctor in enumerate(self.profile.doctors):
                responses.append(
                    MessageResponse(
                        text=f"{doctor.name}\n{doctor.specialization}",
                        media_url=doctor.image_url,
                        delay_seconds=self.media_delay_seconds if index else 0.0,
                    )
                )
            return "doctors", responses

        if intent == Intent.OFFERS:
            responses = [MessageResponse(text=render("offers_intro", lang))]
            for index, image_url in enumerate(self.profile.offer_images):
                responses.append(
                    MessageResponse(
                        text="",
                        media_url=image_url,
                        delay_seconds=self.media_delay_seconds if index else 0.0,
                    )
                )
            responses.append(
                MessageResponse(
                    text=render("offers_validity", lang),
                    delay_seconds=self.media_delay_seconds,
                )
            )
            return "offers", responses

        if intent == Intent.LOCATION:
            text = render(
                "location",
                lang,
                clinic=self.profile.name_for(lang),
                location=self.profile.location_for(lang),
            )
            return "location", [MessageResponse(text=text)]

        return None

    # ==================== AI fallback ====================

    async def _ask_ai(self, session: ChatSession, text: str, lang: str, intent: Intent) -> DispatchResult:
        try:
            reply = await self.ai.ask(text)
        except ExternalServiceException as exc:
            logger.warning(
                "AI fallback failed",
                extra_data={
                    "sender_id": PhoneNumberValidator.mask(session.sender_id),
                    "service": exc.service_name,
                    "error": exc.message,
                },
            )
            return await self._commit(
                session, [MessageResponse(text=render("ai_error", lang))], "ai_error", lang, intent
            )
        return await self._commit(session, [MessageResponse(text=reply)], "ai", lang, intent)

    # ==================== Helpers ====================

    @staticmethod
    def _reply(action: str, text: str) -> DispatchResult:
        return DispatchResult(responses=[MessageResponse(text=text)], action=action)

    async def _commit(
        self,
        session: ChatSession,
        responses: list[MessageResponse],
        action: str,
        lang: str,
        intent: Intent,
    ) -> DispatchResult:
        """שמירת ה-session (עם השפה וה-intent האחרונים) והחזרת התוצאה"""
        session.language = lang
        session.last_intent = intent.value
        await self.sessions.save(session)
        return DispatchResult(responses=responses, action=action)
