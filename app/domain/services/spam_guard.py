"""
Spam / Rate Guard - בדיקות לפני הדיספצ'ר.

סדר הבדיקות לכל הודעה:
1. in-flight: אותו (sender, message_id) כבר בעיבוד או עובד לאחרונה -> drop
2. טקסט כפול: אותו טקסט כמו ההודעה הקודמת בתוך חלון קצר -> drop
   (ההודעה האחרונה מתעדכנת תמיד, גם כשנזרקת)
3. rate limit: N הודעות ומעלה בחלון הזמן -> drop שקט

הגארד advisory בלבד: כשל ב-KV store מאפשר את ההודעה (fail open).
"""
import asyncio
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from app.core.config import Settings, settings
from app.core.exceptions import KeyValueStoreError
from app.core.kv_store import InMemoryKeyValueStore, KeyValueStore, KeyedLock
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator

logger = get_logger(__name__)


class DropReason:
    IN_FLIGHT = "in_flight"
    DUPLICATE = "duplicate"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class GuardVerdict:
    drop: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> "GuardVerdict":
        return cls(drop=False)


class SpamGuard:
    """Per-sender duplicate suppression, sliding-window rate limit and in-flight dedup"""

    def __init__(
        self,
        kv: KeyValueStore,
        duplicate_window_seconds: float = 5.0,
        max_messages: int = 10,
        rate_window_seconds: float = 30.0,
        in_flight_ttl_seconds: float = 60.0,
        key_prefix: str = "clinic_bot:",
        clock: Callable[[], float] = time.time,
        locks: KeyedLock | None = None,
    ):
        self.kv = kv
        self.duplicate_window = duplicate_window_seconds
        self.max_messages = max_messages
        self.rate_window = rate_window_seconds
        self.in_flight_ttl = in_flight_ttl_seconds
        self.prefix = f"{key_prefix}guard:"
        self._clock = clock
        self._locks = locks or KeyedLock()

    @classmethod
    def from_settings(
        cls,
        kv: KeyValueStore,
        config: Settings = settings,
        locks: KeyedLock | None = None,
    ) -> "SpamGuard":
        return cls(
            kv,
            duplicate_window_seconds=config.SPAM_DUPLICATE_WINDOW_SECONDS,
            max_messages=config.SPAM_MAX_MESSAGES_PER_WINDOW,
            rate_window_seconds=config.SPAM_RATE_WINDOW_SECONDS,
            in_flight_ttl_seconds=config.SPAM_IN_FLIGHT_TTL_SECONDS,
            key_prefix=config.STATE_KEY_PREFIX,
            locks=locks,
        )

    # ==================== Keys ====================

    def _last_key(self, sender_id: str) -> str:
        return f"{self.prefix}last:{sender_id}"

    def _rate_key(self, sender_id: str) -> str:
        return f"{self.prefix}rate:{sender_id}"

    def _in_flight_key(self, sender_id: str, message_id: str) -> str:
        return f"{self.prefix}inflight:{sender_id}:{message_id}"

    def _seen_key(self, sender_id: str, message_id: str) -> str:
        return f"{self.prefix}seen:{sender_id}:{message_id}"

    # ==================== Checks ====================

    async def should_drop(self, sender_id: str, message_id: str, text: str | None) -> GuardVerdict:
        """
        מריץ את שלוש הבדיקות. הודעה שעוברת מסומנת in-flight, והקורא חייב
        לקרוא ל-release בסיום (או להשתמש ב-screen).
        """
        acquired = False
        try:
            async with self._locks.hold(sender_id):
                now = self._clock()

                if await self.kv.get(self._seen_key(sender_id, message_id)) is not None:
                    return self._log_drop(sender_id, message_id, DropReason.IN_FLIGHT)

                acquired = await self.kv.set_if_absent(
                    self._in_flight_key(sender_id, message_id),
                    str(now),
                    ttl_seconds=self.in_flight_ttl,
                )
                if not acquired:
                    return self._log_drop(sender_id, message_id, DropReason.IN_FLIGHT)

                if text is not None and await self._is_duplicate(sender_id, text, now):
                    await self._release(sender_id, message_id)
                    acquired = False
                    return self._log_drop(sender_id, message_id, DropReason.DUPLICATE)

                if not await self._record_rate(sender_id, now):
                    await self._release(sender_id, message_id)
                    acquired = False
                    return self._log_drop(sender_id, message_id, DropReason.RATE_LIMITED)

                return GuardVerdict.allow()
        except (KeyValueStoreError, ValueError) as exc:
            logger.warning(
                "Spam guard store unavailable, allowing message",
                extra_data={
                    "sender_id": PhoneNumberValidator.mask(sender_id),
                    "message_id": message_id,
                    "error": str(exc),
                },
            )
            if acquired:
                await self._safe_release(sender_id, message_id)
            return GuardVerdict.allow()

    async def _is_duplicate(self, sender_id: str, text: str, now: float) -> bool:
        key = self._last_key(sender_id)
        normalized = text.strip()
        raw = await self.kv.get(key)

        duplicate = False
        if raw is not None:
            last = json.loads(raw)
            duplicate = last.get("text") == normalized and now - float(last.get("ts", 0)) < self.duplicate_window

        await self.kv.set(
            key,
            json.dumps({"text": normalized, "ts": now}, ensure_ascii=False),
            ttl_seconds=max(self.duplicate_window, self.rate_window),
        )
        return duplicate

    def _fresh_timestamps(self, raw: str | None, now: float) -> list[float]:
        if raw is None:
            return []
        return [ts for ts in json.loads(raw) if now - ts < self.rate_window]

    async def _record_rate(self, sender_id: str, now: float) -> bool:
        """True אם ההודעה נכנסת למכסה (ונרשמה), False אם חורגת"""
        key = self._rate_key(sender_id)
        timestamps = self._fresh_timestamps(await self.kv.get(key), now)

        if len(timestamps) >= self.max_messages:
            return False

        timestamps.append(now)
        await self.kv.set(key, json.dumps(timestamps), ttl_seconds=self.rate_window)
        return True

    def _log_drop(self, sender_id: str, message_id: str, reason: str) -> GuardVerdict:
        logger.info(
            "Message dropped by spam guard",
            extra_data={
                "sender_id": PhoneNumberValidator.mask(sender_id),
                "message_id": message_id,
                "reason": reason,
            },
        )
        return GuardVerdict(drop=True, reason=reason)

    # ==================== In-flight release ====================

    async def _release(self, sender_id: str, message_id: str) -> None:
        await self.kv.delete(self._in_flight_key(sender_id, message_id))

    async def _safe_release(self, sender_id: str, message_id: str) -> None:
        try:
            await self._release(sender_id, message_id)
        except KeyValueStoreError as exc:
            # המפתח ייפול ב-TTL
            logger.warning(
                "Failed to release in-flight marker",
                extra_data={"message_id": message_id, "error": str(exc)},
            )

    async def release(self, sender_id: str, message_id: str) -> None:
        """סיום עיבוד: מוחק את סימון ה-in-flight ורושם את ההודעה כמעובדת"""
        try:
            async with self._locks.hold(sender_id):
                await self.kv.set(
                    self._seen_key(sender_id, message_id),
                    "1",
                    ttl_seconds=self.in_flight_ttl,
                )
                await self._release(sender_id, message_id)
        except KeyValueStoreError as exc:
            logger.warning(
                "Failed to release in-flight marker",
                extra_data={"message_id": message_id, "error": str(exc)},
            )

    @asynccontextmanager
    async def screen(
        self,
        sender_id: str,
        message_id: str,
        text: str | None,
    ) -> AsyncIterator[GuardVerdict]:
        """
        async with guard.screen(sender, mid, text) as verdict:
            if not verdict.drop: ...

        ה-in-flight משוחרר ביציאה גם כשהעיבוד זרק חריגה.
        """
        verdict = await self.should_drop(sender_id, message_id, text)
        try:
            yield verdict
        finally:
            if not verdict.drop:
                await self.release(sender_id, message_id)

    # ==================== Cleanup ====================

    async def cleanup(self) -> int:
        """
        מחיקת רשומות שעברו את החלון שלהן. רץ תחת אותה נעילה לפי שולח
        כמו הבדיקות. מחזיר כמה מפתחות נמחקו.
        """
        removed = 0
        now = self._clock()

        for key in await self.kv.scan_keys(f"{self.prefix}last:"):
            sender_id = key[len(f"{self.prefix}last:"):]
            async with self._locks.hold(sender_id):
                raw = await self.kv.get(key)
                if raw is not None and now - float(json.loads(raw).get("ts", 0)) >= self.duplicate_window:
                    await self.kv.delete(key)
                    removed += 1

        for key in await self.kv.scan_keys(f"{self.prefix}rate:"):
            sender_id = key[len(f"{self.prefix}rate:"):]
            async with self._locks.hold(sender_id):
                raw = await self.kv.get(key)
                if raw is None:
                    continue
                timestamps = self._fresh_timestamps(raw, now)
                if timestamps:
                    await self.kv.set(key, json.dumps(timestamps), ttl_seconds=self.rate_window)
                else:
                    await self.kv.delete(key)
                    removed += 1

        # in-flight / seen נשמרים עם TTL; בזיכרון צריך למחוק אותם ידנית
        if isinstance(self.kv, InMemoryKeyValueStore):
            removed += self.kv.purge_expired()

        if removed:
            logger.debug("Spam guard cleanup", extra_data={"removed": removed})
        return removed

    async def run_cleanup_loop(self, interval_seconds: float) -> None:
        """לולאת ניקוי ל-asyncio task שנפתח ב-startup"""
        logger.info("Spam guard cleanup loop started", extra_data={"interval_seconds": interval_seconds})
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.cleanup()
            except (KeyValueStoreError, ValueError) as exc:
                logger.warning("Spam guard cleanup failed", extra_data={"error": str(exc)})
