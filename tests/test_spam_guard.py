"""
בדיקות ל-SpamGuard: טקסט כפול, rate limit בחלון נע, in-flight, fail-open וניקוי
"""
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.core.kv_store import InMemoryKeyValueStore, RedisKeyValueStore
from app.domain.services.spam_guard import DropReason, SpamGuard

SENDER = "962790000000"


async def _pass(guard: SpamGuard, message_id: str, text: str | None, sender: str = SENDER):
    """הודעה שעוברת את כל הבדיקות ומשוחררת מיד (כמו screen)"""
    verdict = await guard.should_drop(sender, message_id, text)
    if not verdict.drop:
        await guard.release(sender, message_id)
    return verdict


class TestDuplicateText:
    @pytest.mark.unit
    async def test_same_text_inside_window_is_dropped(self, spam_guard: SpamGuard, clock):
        assert not (await _pass(spam_guard, "m1", "hello")).drop

        clock.advance(4.9)
        verdict = await _pass(spam_guard, "m2", "hello")

        assert verdict.drop
        assert verdict.reason == DropReason.DUPLICATE

    @pytest.mark.unit
    async def test_same_text_at_window_edge_is_allowed(self, spam_guard: SpamGuard, clock):
        await _pass(spam_guard, "m1", "hello")

        clock.advance(5.0)

        assert not (await _pass(spam_guard, "m2", "hello")).drop

    @pytest.mark.unit
    async def test_dropped_duplicate_refreshes_last_message(self, spam_guard: SpamGuard, clock):
        """ההודעה האחרונה מתעדכנת גם כשנזרקת, כך שהצפה רציפה נחסמת"""
        await _pass(spam_guard, "m1", "hello")
        clock.advance(4)
        assert (await _pass(spam_guard, "m2", "hello")).drop
        clock.advance(4)
        assert (await _pass(spam_guard, "m3", "hello")).drop

    @pytest.mark.unit
    async def test_different_text_is_allowed(self, spam_guard: SpamGuard, clock):
        await _pass(spam_guard, "m1", "hello")
        clock.advance(1)
        assert not (await _pass(spam_guard, "m2", "book")).drop

    @pytest.mark.unit
    async def test_whitespace_is_ignored(self, spam_guard: SpamGuard, clock):
        await _pass(spam_guard, "m1", "hello")
        clock.advance(1)
        assert (await _pass(spam_guard, "m2", "  hello ")).drop

    @pytest.mark.unit
    async def test_audio_skips_duplicate_check(self, spam_guard: SpamGuard, clock):
        await _pass(spam_guard, "m1", None)
        clock.advance(1)
        assert not (await _pass(spam_guard, "m2", None)).drop


class TestRateLimit:
    @pytest.mark.unit
    async def test_n_messages_allowed_n_plus_one_dropped(self, spam_guard: SpamGuard, clock):
        for i in range(10):
            assert not (await _pass(spam_guard, f"m{i}", f"message {i}")).drop
            clock.advance(1)

        verdict = await _pass(spam_guard, "m10", "message 10")

        assert verdict.drop
        assert verdict.reason == DropReason.RATE_LIMITED

    @pytest.mark.unit
    async def test_window_slides(self, spam_guard: SpamGuard, clock):
        start = clock.now
        for i in range(10):
            await _pass(spam_guard, f"m{i}", f"message {i}")
            clock.advance(1)

        # הראשונה יוצאת מהחלון בדיוק אחרי 30 שניות
        clock.now = start + 29.9
        assert (await _pass(spam_guard, "late-1", "late 1")).drop

        clock.now = start + 30
        assert not (await _pass(spam_guard, "late-2", "late 2")).drop

    @pytest.mark.unit
    async def test_dropped_messages_do_not_count(self, spam_guard: SpamGuard, clock):
        start = clock.now
        for i in range(10):
            await _pass(spam_guard, f"m{i}", f"message {i}")
        for i in range(5):
            assert (await _pass(spam_guard, f"x{i}", f"extra {i}")).drop

        clock.now = start + 30
        for i in range(10):
            assert not (await _pass(spam_guard, f"n{i}", f"next {i}")).drop

    @pytest.mark.unit
    async def test_senders_are_independent(self, spam_guard: SpamGuard):
        for i in range(10):
            await _pass(spam_guard, f"m{i}", f"message {i}")

        assert not (await _pass(spam_guard, "other-1", "hello", sender="962791111111")).drop


class TestInFlight:
    @pytest.mark.unit
    async def test_redelivery_while_processing_is_dropped(self, spam_guard: SpamGuard):
        first = await spam_guard.should_drop(SENDER, "wamid.1", "hello")
        assert not first.drop

        redelivered = await spam_guard.should_drop(SENDER, "wamid.1", "hello")

        assert redelivered.drop
        assert redelivered.reason == DropReason.IN_FLIGHT

    @pytest.mark.unit
    async def test_redelivery_after_processing_is_dropped(self, spam_guard: SpamGuard, clock):
        await _pass(spam_guard, "wamid.1", "hello")
        clock.advance(10)

        verdict = await spam_guard.should_drop(SENDER, "wamid.1", "hello")

        assert verdict.drop
        assert verdict.reason == DropReason.IN_FLIGHT

    @pytest.mark.unit
    async def test_marker_expires(self, spam_guard: SpamGuard, clock):
        await spam_guard.should_drop(SENDER, "wamid.1", "hello")

        clock.advance(61)

        assert not (await spam_guard.should_drop(SENDER, "wamid.1", "hello")).drop

    @pytest.mark.unit
    async def test_rejected_message_releases_marker(self, spam_guard: SpamGuard, clock, kv):
        await _pass(spam_guard, "m1", "hello")
        clock.advance(1)
        await _pass(spam_guard, "m2", "hello")  # duplicate

        assert await kv.get("clinic_bot:guard:inflight:962790000000:m2") is None

    @pytest.mark.unit
    async def test_screen_releases_on_exception(self, spam_guard: SpamGuard, kv):
        with pytest.raises(RuntimeError):
            async with spam_guard.screen(SENDER, "m1", "hello") as verdict:
                assert not verdict.drop
                raise RuntimeError("dispatcher crashed")

        assert await kv.get("clinic_bot:guard:inflight:962790000000:m1") is None
        assert await kv.get("clinic_bot:guard:seen:962790000000:m1") is not None


class TestFailOpen:
    @pytest.mark.unit
    async def test_store_errors_allow_message(self):
        async def broken_client():
            raise RedisConnectionError("connection refused")

        guard = SpamGuard(RedisKeyValueStore(client_factory=broken_client))

        verdict = await guard.should_drop(SENDER, "m1", "hello")
        assert not verdict.drop

        # release לא זורק גם כשה-store למטה
        await guard.release(SENDER, "m1")

    @pytest.mark.unit
    async def test_corrupt_rate_record_allows_message(self, spam_guard: SpamGuard, kv):
        await kv.set("clinic_bot:guard:rate:962790000000", "not json")
        assert not (await spam_guard.should_drop(SENDER, "m1", "hello")).drop


class TestCleanup:
    @pytest.mark.unit
    async def test_cleanup_removes_stale_records(self, spam_guard: SpamGuard, clock, kv):
        start = clock.now
        await _pass(spam_guard, "m1", "hello")

        clock.now = start + 10
        assert await spam_guard.cleanup() == 1
        assert await kv.get("clinic_bot:guard:last:962790000000") is None
        assert await kv.get("clinic_bot:guard:rate:962790000000") is not None

        clock.now = start + 35
        assert await spam_guard.cleanup() == 1
        assert await kv.get("clinic_bot:guard:rate:962790000000") is None

    @pytest.mark.unit
    async def test_cleanup_keeps_fresh_records(self, spam_guard: SpamGuard, clock, kv):
        await _pass(spam_guard, "m1", "hello")
        clock.advance(1)

        assert await spam_guard.cleanup() == 0
        assert await kv.get("clinic_bot:guard:last:962790000000") is not None

    @pytest.mark.unit
    async def test_cleanup_purges_expired_markers(self, clock):
        kv = InMemoryKeyValueStore(clock=clock)
        guard = SpamGuard(kv, clock=clock)
        await guard.should_drop(SENDER, "m1", None)

        clock.advance(61)

        assert await guard.cleanup() >= 1
        assert len(kv) == 0
