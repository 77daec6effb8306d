"""
הודעות הבוט בערבית ובאנגלית.

ערבית היא ברירת המחדל; אנגלית כשהאותיות הלטיניות שולטות בהודעה
(ראו app.core.validation.detect_language).
"""
from datetime import date

DEFAULT_LANGUAGE = "ar"
SUPPORTED_LANGUAGES = ("ar", "en")

TEXTS: dict[str, dict[str, str]] = {
    "greeting": {
        "ar": "👋 مرحباً بك في {clinic}!\n\nكيف يمكنني مساعدتك اليوم؟",
        "en": "👋 Hello! Welcome to {clinic}!\n\nHow can I help you today?",
    },
    "respect_notice": {
        "ar": "⚠️ يرجى الحفاظ على الاحترام في المحادثة.",
        "en": "⚠️ Please keep the conversation respectful.",
    },
    # ---- booking ----
    "pick_day": {
        "ar": "📅 اختر اليوم المناسب:",
        "en": "📅 Please choose a day:",
    },
    "pick_day_button": {"ar": "اختر اليوم", "en": "Choose day"},
    "invalid_day": {
        "ar": "⚠️ يرجى اختيار يوم من الأيام المتاحة:",
        "en": "⚠️ Please choose one of the available days:",
    },
    "pick_time": {
        "ar": "⏰ اختر الوقت ليوم {day}:",
        "en": "⏰ Choose a time for {day}:",
    },
    "invalid_time": {
        "ar": "⚠️ يرجى اختيار أحد الأوقات المتاحة:",
        "en": "⚠️ Please choose one of the available times:",
    },
    "ask_name": {
        "ar": "👍 تم اختيار الموعد! الآن أرسل اسمك:",
        "en": "👍 Time selected! Now please send your name:",
    },
    "invalid_name": {
        "ar": "⚠️ الرجاء إدخال اسم صحيح:",
        "en": "⚠️ Please enter a valid name:",
    },
    "name_check_failed": {
        "ar": "⚠️ تعذر التحقق من الاسم حالياً. أرسل اسمك مرة أخرى:",
        "en": "⚠️ We could not verify the name right now. Please send your name again:",
    },
    "ask_phone": {
        "ar": "📱 أرسل رقم الجوال:",
        "en": "📱 Please send your mobile number:",
    },
    "invalid_phone": {
        "ar": "⚠️ رقم الجوال غير صحيح. أرسل رقماً يبدأ بـ 07 ويتكون من 10 أرقام:",
        "en": "⚠️ Invalid mobile number. Send a 10 digit number starting with 07:",
    },
    "pick_service": {
        "ar": "💊 اختر الخدمة المطلوبة:",
        "en": "💊 Please choose a service:",
    },
    "pick_service_button": {"ar": "عرض الخدمات", "en": "View services"},
    "invalid_service": {
        "ar": "⚠️ يرجى اختيار خدمة من القائمة:",
        "en": "⚠️ Please choose a service from the list:",
    },
    "booking_confirmed": {
        "ar": "✅ تم تأكيد الحجز:\n👤 الاسم: {name}\n📱 الجوال: {phone}\n💊 الخدمة: {service}\n📅 الموعد: {appointment}",
        "en": "✅ Booking confirmed:\n👤 Name: {name}\n📱 Phone: {phone}\n💊 Service: {service}\n📅 Appointment: {appointment}",
    },
    "booking_save_failed": {
        "ar": "⚠️ حدث خطأ في حفظ الحجز. اختر الخدمة مرة أخرى للمحاولة من جديد.",
        "en": "⚠️ We could not save your booking. Choose the service again to retry.",
    },
    # ---- cancellation ----
    "cancel_ask_phone": {
        "ar": "📌 أرسل رقم الجوال المستخدم في الحجز:",
        "en": "📌 Please send the mobile number used for the booking:",
    },
    "cancel_invalid_phone": {
        "ar": "⚠️ رقم الجوال غير صحيح. حاول مجددًا:",
        "en": "⚠️ Invalid mobile number. Please try again:",
    },
    "cancel_not_found": {
        "ar": "❌ لا يوجد حجز مرتبط بهذا الرقم.",
        "en": "❌ No booking was found for this number.",
    },
    "cancel_done": {
        "ar": "🟣 تم إلغاء الحجز:\n👤 {name}\n💊 {service}\n📅 {appointment}",
        "en": "🟣 Booking canceled:\n👤 {name}\n💊 {service}\n📅 {appointment}",
    },
    "cancel_failed": {
        "ar": "⚠️ حدث خطأ أثناء الإلغاء. حاول لاحقًا.",
        "en": "⚠️ Something went wrong while canceling. Please try later.",
    },
    # ---- media / info ----
    "doctors_intro": {
        "ar": "👨‍⚕️ فريق الأطباء لدينا:",
        "en": "👨‍⚕️ Meet our doctors:",
    },
    "offers_intro": {
        "ar": "🎁 عروضنا الحالية:",
        "en": "🎁 Our current offers:",
    },
    "offers_validity": {
        "ar": "⏰ العروض سارية حتى نهاية الشهر",
        "en": "⏰ Offers are valid until the end of the month",
    },
    "location": {
        "ar": "📍 موقع {clinic}\n\n{location}",
        "en": "📍 {clinic} location\n\n{location}",
    },
    # ---- errors ----
    "ai_error": {
        "ar": "⚠️ عذراً، لم أتمكن من الإجابة الآن. حاول مرة أخرى لاحقاً.",
        "en": "⚠️ Sorry, I could not answer right now. Please try again later.",
    },
    "audio_error": {
        "ar": "⚠️ عذراً، حدث خطأ في معالجة الرسالة الصوتية.",
        "en": "⚠️ Sorry, we could not process your voice message.",
    },
    "generic_error": {
        "ar": "⚠️ حدث خطأ غير متوقع. حاول مرة أخرى.",
        "en": "⚠️ An unexpected error occurred. Please try again.",
    },
}

DAY_WORDS = {
    "today": {"ar": "اليوم", "en": "Today"},
    "tomorrow": {"ar": "بكرا", "en": "Tomorrow"},
}

# Monday=0 כמו date.weekday()
WEEKDAY_NAMES = {
    "ar": ("الاثنين", "الثلاثاء", "الأربعاء", "الخميس", "الجمعة", "السبت", "الأحد"),
    "en": ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"),
}


def resolve_language(lang: str | None) -> str:
    return lang if lang in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def render(key: str, lang: str | None = None, **params: object) -> str:
    """הודעה מתורגמת. מפתח לא מוכר הוא באג ולכן KeyError"""
    template = TEXTS[key][resolve_language(lang)]
    return template.format(**params) if params else template


def day_label(day: date, offset: int, lang: str | None = None) -> str:
    """'اليوم (2025-06-01)', 'بكرا (2025-06-02)', 'الأربعاء (2025-06-04)'"""
    lang = resolve_language(lang)
    if offset == 0:
        word = DAY_WORDS["today"][lang]
    elif offset == 1:
        word = DAY_WORDS["tomorrow"][lang]
    else:
        word = WEEKDAY_NAMES[lang][day.weekday()]
    return f"{word} ({day.isoformat()})"
