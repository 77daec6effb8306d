"""
Input Validation Utilities

- נרמול מספרי טלפון ירדניים (07XXXXXXXX) כולל ספרות ערביות-הודיות
- בדיקה מקדימה לשמות לפני פנייה ל-AI
- ניקוי טקסט נכנס
"""
import re

# ספרות ערביות-הודיות ופרסיות -> ASCII
_DIGIT_TRANSLATION = str.maketrans(
    "٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹",
    "01234567890123456789",
)


class ValidationPatterns:
    """Regex patterns for validation"""

    # Jordanian mobile, local form: 07X XXX XXXX
    PHONE_JORDAN_LOCAL = re.compile(r"^07\d{8}$")

    # Arabic and Latin letters, spaces, hyphen, apostrophe, dot
    NAME = re.compile(r"^[؀-ۿa-zA-Z\s\-\'\.]{2,60}$")

    ARABIC_LETTER = re.compile(r"[؀-ۿ]")
    LATIN_LETTER = re.compile(r"[A-Za-z]")


def normalize_digits(text: str) -> str:
    """המרת ספרות ערביות-הודיות לספרות ASCII"""
    return (text or "").translate(_DIGIT_TRANSLATION)


def digits_only(text: str) -> str:
    """רק הספרות מהקלט, אחרי נרמול ספרות ערביות"""
    return re.sub(r"\D", "", normalize_digits(text))


class PhoneNumberValidator:
    """Phone number validation and normalization (Jordan)"""

    MIN_CANCEL_DIGITS = 8

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize phone number to the local Jordanian form.

        00962 / +962 / 962 prefixes collapse to a leading 0:
        +962 79 000 0000 -> 0790000000, 790000000 -> 0790000000.
        קלט שלא נראה כמו מספר ירדני מוחזר כספרות בלבד.
        """
        cleaned = digits_only(phone)

        if cleaned.startswith("00962"):
            cleaned = "0" + cleaned[5:]
        elif cleaned.startswith("962"):
            cleaned = "0" + cleaned[3:]
        elif len(cleaned) == 9 and cleaned.startswith("7"):
            cleaned = "0" + cleaned

        return cleaned

    @staticmethod
    def validate(phone: str) -> bool:
        """האם המספר (אחרי נרמול) הוא נייד ירדני תקין"""
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_JORDAN_LOCAL.match(PhoneNumberValidator.normalize(phone)))

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., 079000****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class NameValidator:
    """בדיקה מקומית זולה לפני שאלת ה-AI"""

    MIN_LENGTH = 2
    MAX_LENGTH = 60

    @staticmethod
    def validate(name: str) -> tuple[bool, str | None]:
        if not name:
            return False, "Name is required"

        name = name.strip()

        if len(name) < NameValidator.MIN_LENGTH:
            return False, f"Name too short (minimum {NameValidator.MIN_LENGTH} characters)"

        if len(name) > NameValidator.MAX_LENGTH:
            return False, f"Name too long (maximum {NameValidator.MAX_LENGTH} characters)"

        if not ValidationPatterns.NAME.match(name):
            return False, "Name contains invalid characters"

        return True, None


class TextSanitizer:
    """Text sanitization for incoming messages"""

    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        Trim, enforce max length, drop control characters and collapse spaces.
        לא מבצע HTML escape - הטקסט חוזר רק ל-WhatsApp.
        """
        if not text:
            return ""

        sanitized = "".join(
            char for char in text
            if char >= " " or char in "\n\t"
        )
        sanitized = re.sub(r"[ \t]+", " ", sanitized).strip()
        return sanitized[:max_length]


def detect_language(text: str) -> str | None:
    """
    'ar' אם יש יותר אותיות ערביות, 'en' אם אותיות לטיניות שולטות,
    None כשאין אותיות בכלל (מספר טלפון, ספרת שעה).
    """
    if not text:
        return None
    arabic = len(ValidationPatterns.ARABIC_LETTER.findall(text))
    latin = len(ValidationPatterns.LATIN_LETTER.findall(text))
    if arabic == 0 and latin == 0:
        return None
    return "en" if latin > arabic else "ar"
