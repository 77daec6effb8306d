"""
בדיקות ל-IntentClassifier: טבלת מילות המפתח, סדר העדיפויות וקיצורי השעה
"""
import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import integers, sampled_from, text

from app.state_machine.intents import (
    Intent,
    IntentClassifier,
    contains_ban_words,
    normalize_text,
    quick_slot_digits,
)


@pytest.fixture
def classifier() -> IntentClassifier:
    return IntentClassifier(quick_slots=quick_slot_digits(["3 PM", "6 PM", "9 PM"]))


class TestKeywordTable:
    """כל intent מזוהה בערבית ובאנגלית"""

    @pytest.mark.unit
    @pytest.mark.parametrize("message,expected", [
        ("reset", Intent.RESET),
        ("Restart please", Intent.RESET),
        ("ابدأ من جديد", Intent.RESET),
        ("cancel", Intent.CANCEL),
        ("إلغاء", Intent.CANCEL),
        ("ابغى الغي الموعد", Intent.CANCEL),
        ("hello", Intent.GREETING),
        ("Good morning!", Intent.GREETING),
        ("مرحبا", Intent.GREETING),
        ("السلام عليكم", Intent.GREETING),
        ("doctors", Intent.DOCTOR_INFO),
        ("who is the dentist?", Intent.DOCTOR_INFO),
        ("مين الدكاترة", Intent.DOCTOR_INFO),
        ("book", Intent.BOOKING),
        ("I need an appointment", Intent.BOOKING),
        ("بدي احجز", Intent.BOOKING),
        ("any offers?", Intent.OFFERS),
        ("في عروض؟", Intent.OFFERS),
        ("where are you", Intent.LOCATION),
        ("وينكم", Intent.LOCATION),
        ("what is your address", Intent.LOCATION),
        ("how much is whitening?", Intent.QUESTION),
        ("كم سعر التنظيف", Intent.QUESTION),
    ])
    def test_classify(self, classifier: IntentClassifier, message: str, expected: Intent):
        assert classifier.classify(message) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("message", ["", "   ", "\n"])
    def test_empty_text_is_none(self, classifier: IntentClassifier, message: str):
        assert classifier.classify(message) == Intent.NONE


class TestPrecedence:
    @pytest.mark.unit
    def test_reset_beats_everything(self, classifier: IntentClassifier):
        assert classifier.classify("reset and cancel my booking") == Intent.RESET

    @pytest.mark.unit
    def test_cancel_beats_booking(self, classifier: IntentClassifier):
        assert classifier.classify("cancel my booking") == Intent.CANCEL

    @pytest.mark.unit
    def test_greeting_beats_booking(self, classifier: IntentClassifier):
        assert classifier.classify("hi, I want to book") == Intent.GREETING

    @pytest.mark.unit
    def test_greeting_only_at_start(self, classifier: IntentClassifier):
        assert classifier.classify("I already said hello") == Intent.QUESTION

    @pytest.mark.unit
    def test_greeting_skipped_during_booking(self, classifier: IntentClassifier):
        assert classifier.classify("hello", booking_in_progress=True) == Intent.QUESTION
        assert classifier.classify("hi, I want to book", booking_in_progress=True) == Intent.BOOKING


class TestWordBoundaries:
    """מילים לטיניות נתפסות רק בתחילת מילה"""

    @pytest.mark.unit
    def test_dr_inside_address_is_not_doctor(self, classifier: IntentClassifier):
        assert not classifier.matches(Intent.DOCTOR_INFO, "address")

    @pytest.mark.unit
    def test_hi_inside_word_is_not_greeting(self, classifier: IntentClassifier):
        assert classifier.classify("history of my treatment") == Intent.QUESTION

    @pytest.mark.unit
    def test_case_insensitive(self, classifier: IntentClassifier):
        assert classifier.classify("CANCEL") == Intent.CANCEL
        assert classifier.classify("Book") == Intent.BOOKING


class TestQuickSlots:
    @pytest.mark.unit
    def test_quick_slot_digits(self):
        assert quick_slot_digits(["3 PM", "6 PM", "9 PM", "noon"]) == frozenset({"3", "6", "9"})
        assert quick_slot_digits(["١٠ صباحاً"]) == frozenset({"10"})

    @pytest.mark.unit
    @pytest.mark.parametrize("message", ["3", "6", " 9 ", "٦"])
    def test_quick_slot_starts_booking_when_idle(self, classifier: IntentClassifier, message: str):
        assert classifier.classify(message) == Intent.BOOKING

    @pytest.mark.unit
    def test_quick_slot_is_plain_input_during_booking(self, classifier: IntentClassifier):
        assert classifier.classify("6", booking_in_progress=True) == Intent.QUESTION

    @pytest.mark.unit
    def test_other_digits_are_questions(self, classifier: IntentClassifier):
        assert classifier.classify("7") == Intent.QUESTION
        assert classifier.classify("0790000000") == Intent.QUESTION


class TestCustomKeywords:
    @pytest.mark.unit
    def test_override_replaces_table_entry(self):
        custom = IntentClassifier(keywords={Intent.OFFERS: ["sale"]})
        assert custom.classify("big sale") == Intent.OFFERS
        assert custom.classify("any offers") == Intent.QUESTION


class TestNormalization:
    @pytest.mark.unit
    def test_alef_variants_and_tatweel(self):
        assert normalize_text("إلغــاء") == "الغاء"
        assert normalize_text("  Hello   World ") == "hello world"

    @pytest.mark.unit
    def test_ban_words(self):
        assert contains_ban_words("this is SPAM")
        assert not contains_ban_words("hello")
        assert not contains_ban_words(None)


# ============================================================================
# property-based
# ============================================================================


class TestClassifierProperties:
    @pytest.mark.unit
    @h_settings(max_examples=200)
    @given(message=text(max_size=80), in_progress=sampled_from([True, False]))
    def test_total_function(self, message: str, in_progress: bool):
        """כל קלט מקבל intent אחד, בלי חריגות"""
        classifier = IntentClassifier(quick_slots={"3", "6", "9"})
        assert isinstance(classifier.classify(message, booking_in_progress=in_progress), Intent)

    @pytest.mark.unit
    @h_settings(max_examples=200)
    @given(suffix=text(max_size=60))
    def test_reset_prefix_always_wins(self, suffix: str):
        classifier = IntentClassifier()
        assert classifier.classify("reset " + suffix) == Intent.RESET

    @pytest.mark.unit
    @given(number=integers(min_value=10, max_value=10**12))
    def test_long_numbers_never_start_booking(self, number: int):
        classifier = IntentClassifier(quick_slots={"3", "6", "9"})
        assert classifier.classify(str(number)) == Intent.QUESTION
