"""
Circuit Breaker + timeouts לקריאות לשירותים חיצוניים.

כל oracle חיצוני (AI, תמלול, WhatsApp) עטוף ב-breaker משלו, כך שנפילה של
שירות אחד לא מעכבת את שאר הבוט. run_with_timeout מגביל כל קריאה בזמן.
"""
import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar, ParamSpec

from app.core.exceptions import CircuitBreakerOpenError, ServiceTimeoutError
from app.core.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Normal operation, requests pass through
    OPEN = "open"            # Failing, requests blocked
    HALF_OPEN = "half_open"  # Probing whether the service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker"""
    failure_threshold: int = 5      # Failures before opening
    success_threshold: int = 2      # Successes in half-open to close
    timeout_seconds: float = 30.0   # Time before trying half-open
    half_open_max_calls: int = 3    # Max probe calls in half-open state


class CircuitBreaker:
    """
    Circuit breaker לשירות חיצוני יחיד.

    CLOSED סופר כשלונות, OPEN חוסם עד שעובר timeout_seconds,
    HALF_OPEN מאפשר מספר קריאות ניסיון וחוזר ל-CLOSED אחרי success_threshold.
    """

    _instances: dict[str, "CircuitBreaker"] = {}
    _instances_lock = threading.Lock()

    def __init__(
        self,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._last_failure_time = 0.0
        self._lock = threading.Lock()

    @classmethod
    def get_instance(
        cls,
        service_name: str,
        config: CircuitBreakerConfig | None = None
    ) -> "CircuitBreaker":
        """Get or create the breaker of a service (singleton per name)"""
        if service_name not in cls._instances:
            with cls._instances_lock:
                if service_name not in cls._instances:
                    cls._instances[service_name] = cls(service_name, config)
        return cls._instances[service_name]

    @classmethod
    def reset_all(cls) -> None:
        """Reset all circuit breakers (for testing)"""
        with cls._instances_lock:
            cls._instances.clear()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _set_state(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state

        if new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._success_count = 0
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0

        logger.info(
            f"Circuit breaker '{self.service_name}' transitioned",
            extra_data={
                "service": self.service_name,
                "old_state": old_state.value,
                "new_state": new_state.value
            }
        )

    def can_execute(self) -> bool:
        """האם מותר לבצע קריאה עכשיו"""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if time.time() - self._last_failure_time >= self.config.timeout_seconds:
                    self._set_state(CircuitState.HALF_OPEN)
                    self._half_open_calls = 1
                    return True
                return False

            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = time.time()

            logger.warning(
                f"Circuit breaker '{self.service_name}' recorded failure",
                extra_data={
                    "service": self.service_name,
                    "failure_count": self._failure_count,
                    "threshold": self.config.failure_threshold,
                    "error": str(error) if error else None
                }
            )

            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
            elif self._failure_count >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    def get_retry_after(self) -> float:
        """Seconds until the breaker may let a probe call through"""
        if self._state != CircuitState.OPEN:
            return 0.0
        remaining = self.config.timeout_seconds - (time.time() - self._last_failure_time)
        return max(0.0, remaining)

    async def execute(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs
    ) -> T:
        """
        Execute an async callable under breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        if not self.can_execute():
            raise CircuitBreakerOpenError(self.service_name, self.get_retry_after())

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result


async def run_with_timeout(
    service_name: str,
    awaitable: Awaitable[T],
    timeout_seconds: float,
) -> T:
    """מריץ קריאה חיצונית עם מגבלת זמן. חריגה נזרקת כ-ServiceTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.warning(
            f"{service_name} call timed out",
            extra_data={"service": service_name, "timeout_seconds": timeout_seconds},
        )
        raise ServiceTimeoutError(service_name, timeout_seconds) from exc


def get_whatsapp_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker for WhatsApp Cloud API sends"""
    return CircuitBreaker.get_instance(
        "whatsapp",
        CircuitBreakerConfig(failure_threshold=5, success_threshold=2, timeout_seconds=30.0)
    )


def get_ai_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker for the AI oracle"""
    return CircuitBreaker.get_instance(
        "ai",
        CircuitBreakerConfig(failure_threshold=3, success_threshold=1, timeout_seconds=60.0)
    )


def get_transcription_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker for voice transcription"""
    return CircuitBreaker.get_instance(
        "transcription",
        CircuitBreakerConfig(failure_threshold=3, success_threshold=1, timeout_seconds=60.0)
    )
