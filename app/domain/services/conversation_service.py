"""
Conversation Service - הצינור של הודעה נכנסת אחת.

spam guard -> (תמלול להודעה קולית) -> dispatcher.

ה-session store, ה-spam guard וה-KV store משותפים לכל התהליך (הנעילות לפי
שולח חייבות להיות אותו אובייקט לכל הבקשות). ה-booking store נבנה לכל
בקשה מעל ה-AsyncSession שלה.
"""
import threading
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ExternalServiceException, KeyValueStoreError
from app.core.kv_store import get_kv_store
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator, TextSanitizer
from app.domain.services.ai_service import AIOracle, AnthropicAIService
from app.domain.services.booking_store import BookingStore, SqlBookingStore
from app.domain.services.clinic_settings_service import ClinicProfile, get_clinic_profile
from app.domain.services.spam_guard import SpamGuard
from app.domain.services.transcription_service import Transcriber, WhisperTranscriptionService
from app.state_machine.booking_flow import BookingFlowHandler
from app.state_machine.cancel_flow import CancelFlowHandler
from app.state_machine.dispatcher import MessageDispatcher
from app.state_machine.intents import IntentClassifier, quick_slot_digits
from app.state_machine.responses import DispatchResult, MessageResponse
from app.state_machine.session_store import SessionStore
from app.state_machine.texts import render

logger = get_logger(__name__)


class MessageType:
    TEXT = "text"
    INTERACTIVE = "interactive"
    AUDIO = "audio"
    OTHER = "other"


@dataclass
class InboundMessage:
    """הודעה נכנסת אחרי פענוח מעטפת ה-webhook"""

    sender_id: str
    message_id: str
    type: str = MessageType.TEXT
    text: str | None = None
    # מזהה הכפתור / שורת הרשימה שנבחרו
    payload_id: str | None = None
    media_id: str | None = None

    @property
    def guard_text(self) -> str | None:
        """הטקסט שבודקים מולו כפילות - payload לכפתורים, None לקול"""
        if self.type == MessageType.INTERACTIVE:
            return self.payload_id or self.text
        if self.type == MessageType.TEXT:
            return self.text
        return None


class ConversationService:
    """Runs one inbound message through the guard and the dispatcher"""

    def __init__(
        self,
        dispatcher: MessageDispatcher,
        guard: SpamGuard,
        transcriber: Transcriber | None = None,
    ):
        self.dispatcher = dispatcher
        self.guard = guard
        self.transcriber = transcriber

    async def process(self, message: InboundMessage) -> DispatchResult:
        async with self.guard.screen(message.sender_id, message.message_id, message.guard_text) as verdict:
            if verdict.drop:
                return DispatchResult.drop(verdict.reason)

            if message.type == MessageType.AUDIO:
                return await self._process_audio(message)

            if message.type not in (MessageType.TEXT, MessageType.INTERACTIVE):
                logger.info(
                    "Unsupported message type acknowledged",
                    extra_data={
                        "sender_id": PhoneNumberValidator.mask(message.sender_id),
                        "message_id": message.message_id,
                    },
                )
                return DispatchResult(action="unsupported")

            return await self.dispatcher.dispatch(
                message.sender_id,
                TextSanitizer.sanitize(message.text or ""),
                message.payload_id,
            )

    async def _process_audio(self, message: InboundMessage) -> DispatchResult:
        transcript: str | None = None
        if self.transcriber is not None and message.media_id:
            try:
                transcript = await self.transcriber.transcribe(message.media_id)
            except ExternalServiceException as exc:
                logger.warning(
                    "Voice note transcription failed",
                    extra_data={
                        "sender_id": PhoneNumberValidator.mask(message.sender_id),
                        "media_id": message.media_id,
                        "service": exc.service_name,
                        "error": exc.message,
                    },
                )

        if not transcript:
            lang = await self._session_language(message.sender_id)
            return DispatchResult(
                responses=[MessageResponse(text=render("audio_error", lang))],
                action="audio_error",
            )

        return await self.dispatcher.dispatch(message.sender_id, TextSanitizer.sanitize(transcript))

    async def _session_language(self, sender_id: str) -> str:
        try:
            session = await self.dispatcher.sessions.get(sender_id)
        except KeyValueStoreError:
            return "ar"
        return session.language


# ==================== Process-wide wiring ====================

_session_store: SessionStore | None = None
_spam_guard: SpamGuard | None = None
_wiring_lock = threading.Lock()


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        with _wiring_lock:
            if _session_store is None:
                _session_store = SessionStore(
                    get_kv_store(),
                    ttl_seconds=settings.SESSION_TTL_SECONDS,
                    key_prefix=settings.STATE_KEY_PREFIX,
                )
    return _session_store


def get_spam_guard() -> SpamGuard:
    global _spam_guard
    if _spam_guard is None:
        with _wiring_lock:
            if _spam_guard is None:
                _spam_guard = SpamGuard.from_settings(get_kv_store())
    return _spam_guard


def reset_conversation_state() -> None:
    """איפוס ה-singletons - לשימוש בבדיקות בלבד"""
    global _session_store, _spam_guard
    with _wiring_lock:
        _session_store = None
        _spam_guard = None


def build_conversation_service(
    db: AsyncSession | None = None,
    *,
    store: BookingStore | None = None,
    ai: AIOracle | None = None,
    transcriber: Transcriber | None = None,
    profile: ClinicProfile | None = None,
) -> ConversationService:
    """
    הרכבת הצינור לבקשה אחת.

    Args:
        db: ה-session של הבקשה, עבור SqlBookingStore (אם store לא סופק)
        store / ai / transcriber / profile: החלפות לבדיקות
    """
    if store is None:
        if db is None:
            raise ValueError("either db or store is required")
        store = SqlBookingStore(db)

    profile = profile or get_clinic_profile()
    ai = ai or AnthropicAIService(clinic_name=profile.clinic_name)
    transcriber = transcriber or WhisperTranscriptionService()

    dispatcher = MessageDispatcher(
        sessions=get_session_store(),
        classifier=IntentClassifier(quick_slots=quick_slot_digits(profile.time_slots)),
        booking_flow=BookingFlowHandler(store=store, ai=ai, profile=profile),
        cancel_flow=CancelFlowHandler(store),
        ai=ai,
        profile=profile,
        media_delay_seconds=settings.WHATSAPP_MEDIA_DELAY_SECONDS,
    )
    return ConversationService(dispatcher, get_spam_guard(), transcriber)
