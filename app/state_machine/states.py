"""
State Definitions for the clinic conversation: session modes, booking and cancellation steps
"""
from enum import Enum


class SessionMode(str, Enum):
    """מצב השיחה ברמת ה-session"""

    IDLE = "IDLE"
    BOOKING = "BOOKING"
    AWAITING_CANCEL_PHONE = "CANCEL.AWAITING_PHONE"
    # אחרי ביטול מוצלח: ללא תשובות AI עד reset
    LOCKED = "LOCKED"


class BookingStep(str, Enum):
    """States for the booking flow"""

    NOT_STARTED = "BOOKING.NOT_STARTED"
    AWAITING_DAY = "BOOKING.AWAITING_DAY"
    AWAITING_TIME = "BOOKING.AWAITING_TIME"
    AWAITING_NAME = "BOOKING.AWAITING_NAME"
    AWAITING_PHONE = "BOOKING.AWAITING_PHONE"
    AWAITING_SERVICE = "BOOKING.AWAITING_SERVICE"
    COMPLETED = "BOOKING.COMPLETED"


class CancelStep(str, Enum):
    """States for the cancellation flow"""

    NOT_STARTED = "CANCEL.NOT_STARTED"
    AWAITING_PHONE = "CANCEL.AWAITING_PHONE"
    COMPLETED = "CANCEL.COMPLETED"


# Valid state transitions. השלבים מתקדמים משמאל לימין בלבד;
# חזרה להתחלה (reset / cancel) לא עוברת כאן אלא מוחקת את הטיוטה.
BOOKING_TRANSITIONS = {
    BookingStep.NOT_STARTED: [BookingStep.AWAITING_DAY],
    BookingStep.AWAITING_DAY: [BookingStep.AWAITING_TIME],
    BookingStep.AWAITING_TIME: [BookingStep.AWAITING_NAME],
    BookingStep.AWAITING_NAME: [BookingStep.AWAITING_PHONE],
    BookingStep.AWAITING_PHONE: [BookingStep.AWAITING_SERVICE],
    BookingStep.AWAITING_SERVICE: [BookingStep.COMPLETED],
    BookingStep.COMPLETED: [],
}

CANCEL_TRANSITIONS = {
    CancelStep.NOT_STARTED: [CancelStep.AWAITING_PHONE],
    CancelStep.AWAITING_PHONE: [CancelStep.COMPLETED],
    CancelStep.COMPLETED: [],
}

# השדה שכל שלב ממלא, לפי סדר המילוי
BOOKING_STEP_FIELDS = {
    BookingStep.AWAITING_DAY: "day",
    BookingStep.AWAITING_TIME: "time",
    BookingStep.AWAITING_NAME: "name",
    BookingStep.AWAITING_PHONE: "phone",
    BookingStep.AWAITING_SERVICE: "service",
}

BOOKING_FIELD_ORDER = ("day", "time", "name", "phone", "service")


def is_valid_booking_transition(current: BookingStep, target: BookingStep) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, [])


def is_valid_cancel_transition(current: CancelStep, target: CancelStep) -> bool:
    return target in CANCEL_TRANSITIONS.get(current, [])
