"""
Custom Exception Hierarchy

כל שגיאה של האפליקציה יורשת מ-AppException. שירותים חיצוניים (store, AI,
תמלול, WhatsApp) זורקים ExternalServiceException, והזרימות מחליטות מה
המשתמש רואה.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses and logs"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    NOT_FOUND = "ERR_1002"

    # Booking errors (2xxx)
    BOOKING_NOT_FOUND = "ERR_2001"
    BOOKING_STORE_ERROR = "ERR_2002"

    # Conversation state errors (3xxx)
    STATE_STORE_ERROR = "ERR_3001"

    # External service errors (5xxx)
    WHATSAPP_ERROR = "ERR_5002"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"
    AI_SERVICE_ERROR = "ERR_5005"
    TRANSCRIPTION_ERROR = "ERR_5006"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"
    INVALID_DRAFT = "ERR_6004"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class BookingNotFoundError(NotFoundException):
    """Raised when a booking id does not exist in the store"""

    def __init__(self, booking_id: int):
        super().__init__("Booking", booking_id, error_code=ErrorCode.BOOKING_NOT_FOUND)


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.service_name = service_name
        self.details["service"] = service_name


class WhatsAppError(ExternalServiceException):
    """Raised when WhatsApp Cloud API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="whatsapp",
            message=f"WhatsApp API error: {message}",
            error_code=ErrorCode.WHATSAPP_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "WhatsAppError":
        """
        יצירת WhatsAppError מתוך HTTP response בצורה עקבית.

        Args:
            operation: שם הפעולה (לדוגמה: media_url, media_download)
            response: אובייקט response (httpx.Response)
            message: הודעת שגיאה מותאמת (אם לא סופקה, נבנית אוטומטית)
            max_response_chars: אורך מקסימלי של response_text שנשמר
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class AIServiceError(ExternalServiceException):
    """Raised when the AI oracle fails or returns an unusable answer"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="ai",
            message=f"AI service error: {message}",
            error_code=ErrorCode.AI_SERVICE_ERROR,
            details=details
        )


class TranscriptionError(ExternalServiceException):
    """Raised when a voice note cannot be transcribed"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="transcription",
            message=f"Transcription error: {message}",
            error_code=ErrorCode.TRANSCRIPTION_ERROR,
            details=details
        )


class BookingStoreError(ExternalServiceException):
    """Raised when the booking store cannot read or write"""

    def __init__(self, operation: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="booking_store",
            message=f"Booking store {operation} failed: {message}",
            error_code=ErrorCode.BOOKING_STORE_ERROR,
            details=details
        )
        self.details["operation"] = operation


class KeyValueStoreError(ExternalServiceException):
    """Raised when the session / guard key-value store is unreachable"""

    def __init__(self, operation: str, message: str):
        super().__init__(
            service_name="kv_store",
            message=f"Key-value store {operation} failed: {message}",
            error_code=ErrorCode.STATE_STORE_ERROR,
            details={"operation": operation}
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class StateMachineException(AppException):
    """Base exception for state machine errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )


class InvalidStateTransitionError(StateMachineException):
    """Raised when state transition is not allowed"""

    def __init__(self, current_state: str, target_state: str, sender_id: str | None = None):
        super().__init__(
            message=f"Invalid transition from '{current_state}' to '{target_state}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "current_state": current_state,
                "target_state": target_state,
                "sender_id": sender_id
            }
        )


class InvalidDraftError(StateMachineException):
    """Raised when a booking draft would break the field ordering"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_DRAFT,
            details=details
        )
