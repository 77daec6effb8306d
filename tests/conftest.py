"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, aiosqlite in memory)
- Fakes for the external interfaces (booking store, AI oracle, transcription, WhatsApp)
- Injectable clock / "today" for window boundaries
"""
# הגדרות סביבה לפני ייבוא app - Settings נטען פעם אחת בייבוא
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STATE_BACKEND", "memory")
os.environ.setdefault("WHATSAPP_CLOUD_API_TOKEN", "test-token")
os.environ.setdefault("WHATSAPP_CLOUD_API_PHONE_ID", "1234567890")
os.environ.setdefault("WHATSAPP_CLOUD_API_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("AI_API_KEY", "test-ai-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from datetime import date, datetime, timezone
from typing import AsyncGenerator
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import DoctorProfile
from app.core.exceptions import AIServiceError, BookingNotFoundError, BookingStoreError
from app.core.kv_store import InMemoryKeyValueStore, KeyedLock, reset_kv_store
from app.db.database import Base, get_db
from app.db.models.booking import BookingStatus
from app.domain.services.ai_service import AIOracle
from app.domain.services.booking_store import BookingCreate, BookingRecord, BookingStore
from app.domain.services.clinic_settings_service import ClinicProfile, set_clinic_profile
from app.domain.services.conversation_service import ConversationService, reset_conversation_state
from app.domain.services.spam_guard import SpamGuard
from app.domain.services.transcription_service import Transcriber
from app.domain.services.whatsapp import BaseWhatsAppProvider, reset_providers
from app.main import app
from app.state_machine.booking_flow import BookingFlowHandler
from app.state_machine.cancel_flow import CancelFlowHandler
from app.state_machine.dispatcher import MessageDispatcher
from app.state_machine.intents import IntentClassifier, quick_slot_digits
from app.state_machine.session_store import SessionStore


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# היום המדומה של המרפאה - כל תרחישי ההזמנה בוחרים את 2025-06-01
TEST_TODAY = date(2025, 6, 1)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Clock / clinic profile
# ============================================================================


class FakeClock:
    """שעון ידני - time.time() שמתקדם רק כשמבקשים"""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def today() -> date:
    return TEST_TODAY


@pytest.fixture
def clinic_profile() -> ClinicProfile:
    return ClinicProfile(
        clinic_name="عيادة ابتسامة",
        clinic_name_en="Smile Clinic",
        time_slots=["3 PM", "6 PM", "9 PM"],
        services=["Checkup", "Teeth Cleaning", "Whitening", "Filling"],
        location_ar="عمّان - شارع الجامعة",
        location_en="Amman - University Street",
        doctors=[
            DoctorProfile(name="Dr. Dalal", specialization="General dentist", image_url="https://img.test/d1.jpg"),
            DoctorProfile(name="Dr. Hamad", specialization="Orthodontist", image_url="https://img.test/d2.jpg"),
        ],
        offer_images=["https://img.test/o1.jpg", "https://img.test/o2.jpg"],
    )


# ============================================================================
# Fakes for the external interfaces
# ============================================================================


class FakeBookingStore(BookingStore):
    """BookingStore בזיכרון שרושם כל קריאה"""

    def __init__(self) -> None:
        self.records: dict[int, BookingRecord] = {}
        self.inserted: list[BookingCreate] = []
        self.canceled: list[int] = []
        self.fail_insert = False
        self.fail_lookup = False
        self.fail_cancel = False
        self._next_id = 1

    def seed(self, name: str, phone: str, service: str, appointment: str) -> BookingRecord:
        record = BookingRecord(
            id=self._next_id,
            name=name,
            phone=phone,
            service=service,
            appointment=appointment,
            status=BookingStatus.NEW,
            created_at=datetime.now(timezone.utc),
        )
        self.records[record.id] = record
        self._next_id += 1
        return record

    async def insert(self, booking: BookingCreate) -> int:
        if self.fail_insert:
            raise BookingStoreError("insert", "database unavailable")
        self.inserted.append(booking)
        return self.seed(booking.name, booking.phone, booking.service, booking.appointment).id

    async def find_active_by_phone(self, phone: str) -> BookingRecord | None:
        if self.fail_lookup:
            raise BookingStoreError("find_active_by_phone", "database unavailable")
        active = [
            r for r in self.records.values()
            if r.phone == phone and r.status == BookingStatus.NEW
        ]
        return max(active, key=lambda r: r.id) if active else None

    async def cancel(self, booking_id: int) -> BookingRecord:
        if self.fail_cancel:
            raise BookingStoreError("cancel", "database unavailable")
        if booking_id not in self.records:
            raise BookingNotFoundError(booking_id)
        record = self.records[booking_id].model_copy(
            update={"status": BookingStatus.CANCELED, "canceled_at": datetime.now(timezone.utc)}
        )
        self.records[booking_id] = record
        self.canceled.append(booking_id)
        return record

    async def list_bookings(self, limit: int = 100, offset: int = 0) -> list[BookingRecord]:
        ordered = sorted(self.records.values(), key=lambda r: r.id, reverse=True)
        return ordered[offset:offset + limit]


class FakeAI(AIOracle):
    def __init__(self) -> None:
        self.reply = "نحن نعمل من 3 حتى 9 مساءً"
        self.name_verdict = True
        self.fail_ask = False
        self.fail_validate = False
        self.questions: list[str] = []
        self.names: list[str] = []

    async def ask(self, text: str) -> str:
        self.questions.append(text)
        if self.fail_ask:
            raise AIServiceError("status 529")
        return self.reply

    async def validate_name(self, name: str) -> bool:
        self.names.append(name)
        if self.fail_validate:
            raise AIServiceError("status 529")
        return self.name_verdict


class FakeTranscriber(Transcriber):
    def __init__(self, transcript: str | None = "بدي احجز موعد") -> None:
        self.transcript = transcript
        self.error: Exception | None = None
        self.media_ids: list[str] = []

    async def transcribe(self, media_id: str) -> str | None:
        self.media_ids.append(media_id)
        if self.error is not None:
            raise self.error
        return self.transcript


class RecordingProvider(BaseWhatsAppProvider):
    """ספק WhatsApp שרק רושם מה נשלח"""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send_text(self, to, text, options=None, button_title=None) -> None:
        self.sent.append({"to": to, "kind": "text", "text": text, "options": options, "button_title": button_title})

    async def send_media(self, to, media_url, media_type="image", caption=None) -> None:
        self.sent.append({"to": to, "kind": "media", "media_url": media_url, "caption": caption})

    def normalize_phone(self, phone: str) -> str:
        return phone

    @property
    def provider_name(self) -> str:
        return "recording"


@pytest.fixture
def booking_store() -> FakeBookingStore:
    return FakeBookingStore()


@pytest.fixture
def fake_ai() -> FakeAI:
    return FakeAI()


@pytest.fixture
def fake_transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def recording_provider() -> RecordingProvider:
    return RecordingProvider()


# ============================================================================
# Conversation wiring
# ============================================================================


@pytest.fixture
def kv(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def session_store(kv: InMemoryKeyValueStore, clock: FakeClock) -> SessionStore:
    return SessionStore(kv, ttl_seconds=3600, clock=clock)


@pytest.fixture
def spam_guard(kv: InMemoryKeyValueStore, clock: FakeClock) -> SpamGuard:
    return SpamGuard(kv, clock=clock, locks=KeyedLock())


@pytest.fixture
def booking_flow(booking_store, fake_ai, clinic_profile, today) -> BookingFlowHandler:
    return BookingFlowHandler(
        store=booking_store,
        ai=fake_ai,
        profile=clinic_profile,
        today_provider=lambda: today,
    )


@pytest.fixture
def dispatcher(session_store, booking_flow, booking_store, fake_ai, clinic_profile) -> MessageDispatcher:
    return MessageDispatcher(
        sessions=session_store,
        classifier=IntentClassifier(quick_slots=quick_slot_digits(clinic_profile.time_slots)),
        booking_flow=booking_flow,
        cancel_flow=CancelFlowHandler(booking_store),
        ai=fake_ai,
        profile=clinic_profile,
        media_delay_seconds=1.0,
    )


@pytest.fixture
def conversation(dispatcher, spam_guard, fake_transcriber) -> ConversationService:
    return ConversationService(dispatcher, spam_guard, fake_transcriber)


# ============================================================================
# Global state reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from app.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_singletons():
    """KV store, sessions, guard, ספק WhatsApp ופרופיל המרפאה - חדשים לכל בדיקה"""
    reset_kv_store()
    reset_conversation_state()
    reset_providers()
    set_clinic_profile(None)
    yield
    reset_kv_store()
    reset_conversation_state()
    reset_providers()
    set_clinic_profile(None)


class FakeRedis:
    """תחליף ל-Redis לבדיקות - in-memory dict עם NX / PX ו-SCAN"""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(
        self,
        key: str,
        value: str,
        nx: bool = False,
        px: int | None = None,
        ex: int | None = None,
    ) -> bool | None:
        """SET עם NX (רק אם לא קיים) ו-PX / EX"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if px is not None:
            self._ttls[key] = px
        elif ex is not None:
            self._ttls[key] = ex * 1000
        else:
            self._ttls.pop(key, None)
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def scan_iter(self, match: str | None = None):
        prefix = (match or "*").rstrip("*")
        for key in list(self._store):
            if key.startswith(prefix):
                yield key

    def ttl_ms(self, key: str) -> int | None:
        return self._ttls.get(key)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """מחליף את get_redis ב-FakeRedis לכל הבדיקות."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.core.kv_store.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake
