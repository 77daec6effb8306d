"""
Session Store - מצב שיחה לכל sender id מעל KeyValueStore.

get יוצר session ריק (IDLE) אם אין, save כותב עם TTL של חוסר פעילות,
reset מוחק. כל read-modify-write של שולח רץ בתוך lock(sender_id).
"""
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from pydantic import ValidationError

from app.core.kv_store import KeyValueStore, KeyedLock
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.state_machine.session import ChatSession

logger = get_logger(__name__)


class SessionStore:
    """Per-sender conversation state"""

    def __init__(
        self,
        kv: KeyValueStore,
        ttl_seconds: float | None = None,
        key_prefix: str = "clinic_bot:",
        clock: Callable[[], float] = time.time,
        locks: KeyedLock | None = None,
    ):
        self.kv = kv
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self._clock = clock
        self._locks = locks or KeyedLock()

    def _key(self, sender_id: str) -> str:
        return f"{self.key_prefix}session:{sender_id}"

    @asynccontextmanager
    async def lock(self, sender_id: str) -> AsyncIterator[None]:
        """נעילת השולח לכל אורך עיבוד הודעה אחת"""
        async with self._locks.hold(sender_id):
            yield

    async def get(self, sender_id: str) -> ChatSession:
        raw = await self.kv.get(self._key(sender_id))
        if raw is None:
            return ChatSession.fresh(sender_id)

        try:
            return ChatSession.model_validate_json(raw)
        except ValidationError as exc:
            # session פגום (גרסה ישנה / כתיבה חלקית) - מתחילים מחדש
            logger.warning(
                "Corrupt session payload, starting fresh",
                extra_data={
                    "sender_id": PhoneNumberValidator.mask(sender_id),
                    "errors": exc.error_count(),
                },
            )
            return ChatSession.fresh(sender_id)

    async def save(self, session: ChatSession) -> None:
        session.updated_at = self._clock()
        await self.kv.set(
            self._key(session.sender_id),
            session.model_dump_json(),
            ttl_seconds=self.ttl_seconds,
        )

    async def reset(self, sender_id: str) -> None:
        await self.kv.delete(self._key(sender_id))
        logger.debug(
            "Session reset",
            extra_data={"sender_id": PhoneNumberValidator.mask(sender_id)},
        )
