"""
Intent Classifier - סיווג טקסט חופשי לקטגוריה לפי טבלת מילות מפתח.

פונקציה טהורה: אין גישה ל-session או ל-I/O. הדיספצ'ר מחליט מתי להתייעץ
בה (תמיד עבור reset / cancel, ושאר ה-intents רק כשאין זרימה פעילה).

התאמה:
- מילים לטיניות: case-insensitive, בתחילת מילה ("dr" לא נתפס בתוך "address").
- מילים בערבית: substring אחרי נרמול אלף וטטוויל.
- ברכה: רק בתחילת ההודעה.
"""
import re
from enum import Enum
from typing import Iterable, Mapping

from app.core.validation import normalize_digits


class Intent(str, Enum):
    RESET = "reset"
    CANCEL = "cancel"
    GREETING = "greeting"
    DOCTOR_INFO = "doctor_info"
    BOOKING = "booking"
    OFFERS = "offers"
    LOCATION = "location"
    QUESTION = "question"
    NONE = "none"


DEFAULT_KEYWORDS: dict[Intent, tuple[str, ...]] = {
    Intent.RESET: (
        "reset", "start", "restart", "begin", "menu",
        "عيد من اول", "ابدا من جديد", "ابدأ من جديد", "من البداية", "بداية جديدة", "القائمة",
    ),
    Intent.CANCEL: (
        "cancel", "cancel booking", "cancel appointment",
        "الغاء", "إلغاء", "الغي", "كنسل", "ابغى الغي", "ابي الغي",
    ),
    Intent.GREETING: (
        "hi", "hello", "hey", "morning", "evening", "good", "welcome",
        "هلا", "مرحبا", "السلام", "اهلا", "أهلاً", "اهلين", "هاي", "شلونك", "صباح", "مساء",
    ),
    Intent.DOCTOR_INFO: (
        "doctor", "doctors", "dr", "dentist",
        "الأطباء", "اطباء", "أطباء", "الدكاترة", "دكاترة", "دكتور", "طبيب", "طاقم طبي", "فريق طبي",
    ),
    Intent.BOOKING: (
        "book", "booking", "appointment", "reserve",
        "حجز", "احجز", "موعد", "ابي احجز", "ابغى احجز",
    ),
    Intent.OFFERS: (
        "offer", "offers", "discount", "deal", "promo",
        "عروض", "عرض", "خصم", "خصومات", "تخفيض", "باقات", "باكيج", "بكج",
    ),
    Intent.LOCATION: (
        "location", "where", "address", "maps",
        "موقع", "مكان", "عنوان", "وين", "فين", "أين", "وينكم", "فينكم",
    ),
}

# סדר העדיפויות כשכמה intents מתאימים (הגבוה ראשון)
PRECEDENCE: tuple[Intent, ...] = (
    Intent.RESET,
    Intent.CANCEL,
    Intent.GREETING,
    Intent.DOCTOR_INFO,
    Intent.BOOKING,
    Intent.OFFERS,
    Intent.LOCATION,
)

_BAN_WORDS_RE = re.compile(r"(spam|abuse)", re.IGNORECASE)

_ALEF_VARIANTS = str.maketrans({"أ": "ا", "إ": "ا", "آ": "ا", "ـ": None})
_LEADING_NUMBER_RE = re.compile(r"^\s*(\d{1,2})")


def normalize_text(text: str) -> str:
    """lower-case, ספרות ASCII, אלף אחידה, בלי טטוויל ורווחים כפולים"""
    text = normalize_digits(text or "").lower().translate(_ALEF_VARIANTS)
    return re.sub(r"\s+", " ", text).strip()


def _is_latin(keyword: str) -> bool:
    return keyword.isascii()


def _compile(keywords: Iterable[str], prefix_only: bool = False) -> re.Pattern:
    latin: list[str] = []
    arabic: list[str] = []
    for keyword in keywords:
        normalized = normalize_text(keyword)
        if not normalized:
            continue
        (latin if _is_latin(normalized) else arabic).append(re.escape(normalized))

    alternatives = []
    if prefix_only:
        if latin:
            alternatives.append(rf"(?:{'|'.join(latin)})(?![a-z])")
        if arabic:
            alternatives.append(rf"(?:{'|'.join(arabic)})")
        return re.compile(rf"^[\W_]*(?:{'|'.join(alternatives)})" if alternatives else r"(?!)")

    if latin:
        alternatives.append(rf"(?<![a-z0-9])(?:{'|'.join(latin)})")
    if arabic:
        alternatives.append(rf"(?:{'|'.join(arabic)})")
    return re.compile("|".join(alternatives) if alternatives else r"(?!)")


def quick_slot_digits(slot_labels: Iterable[str]) -> frozenset[str]:
    """'3 PM' -> '3'. הספרות שמשתמש יכול לשלוח כקיצור לשעה"""
    digits = set()
    for label in slot_labels:
        match = _LEADING_NUMBER_RE.match(normalize_digits(label))
        if match:
            digits.add(match.group(1))
    return frozenset(digits)


class IntentClassifier:
    """Keyword-table classifier with fixed precedence"""

    def __init__(
        self,
        keywords: Mapping[Intent, Iterable[str]] | None = None,
        quick_slots: Iterable[str] = (),
    ):
        table = dict(DEFAULT_KEYWORDS)
        if keywords:
            table.update({intent: tuple(words) for intent, words in keywords.items()})

        self._patterns: dict[Intent, re.Pattern] = {
            intent: _compile(words, prefix_only=(intent == Intent.GREETING))
            for intent, words in table.items()
        }
        self.quick_slots = frozenset(quick_slots)

    def matches(self, intent: Intent, text: str) -> bool:
        pattern = self._patterns.get(intent)
        return bool(pattern and pattern.search(normalize_text(text)))

    def classify(self, text: str, booking_in_progress: bool = False) -> Intent:
        """
        Classify a message.

        Args:
            text: raw message text
            booking_in_progress: ברכה לא נחשבת ו-"3"/"6"/"9" לא פותחים הזמנה
                כשכבר יש טיוטה
        """
        normalized = normalize_text(text)
        if not normalized:
            return Intent.NONE

        for intent in PRECEDENCE:
            if intent == Intent.GREETING and booking_in_progress:
                continue
            pattern = self._patterns.get(intent)
            if pattern and pattern.search(normalized):
                return intent
            if intent == Intent.BOOKING and not booking_in_progress and normalized in self.quick_slots:
                return Intent.BOOKING

        return Intent.QUESTION


def contains_ban_words(text: str) -> bool:
    return bool(_BAN_WORDS_RE.search(text or ""))
