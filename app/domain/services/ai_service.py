"""
AI Service - שאלות חופשיות ואימות שמות מול Anthropic Messages API.

שני חוזים בלבד: ask(text) -> תשובה, validate_name(text) -> bool.
ניסיון יחיד לכל קריאה, עם timeout ו-circuit breaker; כל כשל נזרק
כ-AIServiceError / ServiceTimeoutError / CircuitBreakerOpenError.
"""
from abc import ABC, abstractmethod

import httpx

from app.core.circuit_breaker import CircuitBreaker, get_ai_circuit_breaker, run_with_timeout
from app.core.config import Settings, settings
from app.core.exceptions import AIServiceError
from app.core.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "أنت مساعد عيادة أسنان ودود اسمه {clinic}. "
    "أجب بإيجاز وبنفس لغة السؤال، ولا تقدم تشخيصاً طبياً. "
    "إذا أراد المريض حجز موعد فاطلب منه كتابة كلمة حجز."
)

NAME_PROMPT = 'Is "{name}" a valid human name? Answer only: YES or NO'


class AIOracle(ABC):
    """External text oracle"""

    @abstractmethod
    async def ask(self, text: str) -> str:
        ...

    @abstractmethod
    async def validate_name(self, name: str) -> bool:
        ...


class AnthropicAIService(AIOracle):
    """AIOracle over the Anthropic Messages HTTP API"""

    def __init__(
        self,
        config: Settings = settings,
        clinic_name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.config = config
        self.clinic_name = clinic_name or config.CLINIC_NAME
        self._http_client = http_client
        self.breaker = breaker or get_ai_circuit_breaker()

    async def _post(self, payload: dict) -> dict:
        if not self.config.AI_API_KEY:
            raise AIServiceError("AI_API_KEY is not configured")

        headers = {
            "x-api-key": self.config.AI_API_KEY,
            "anthropic-version": self.config.AI_API_VERSION,
            "content-type": "application/json",
        }

        async def _call() -> dict:
            if self._http_client is not None:
                response = await self._http_client.post(self.config.AI_API_URL, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.config.AI_TIMEOUT_SECONDS) as client:
                    response = await client.post(self.config.AI_API_URL, json=payload, headers=headers)

            if response.status_code != 200:
                raise AIServiceError(
                    f"status {response.status_code}",
                    details={"response_text": response.text[:500]},
                )
            try:
                return response.json()
            except ValueError as exc:
                raise AIServiceError("invalid JSON response") from exc

        try:
            return await self.breaker.execute(
                lambda: run_with_timeout("ai", _call(), self.config.AI_TIMEOUT_SECONDS)
            )
        except httpx.HTTPError as exc:
            raise AIServiceError(str(exc)) from exc

    @staticmethod
    def _extract_text(data: dict) -> str:
        parts = [
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        ]
        return "".join(parts).strip()

    async def ask(self, text: str) -> str:
        data = await self._post({
            "model": self.config.AI_MODEL,
            "max_tokens": self.config.AI_MAX_TOKENS,
            "system": SYSTEM_PROMPT.format(clinic=self.clinic_name),
            "messages": [{"role": "user", "content": text}],
        })
        reply = self._extract_text(data)
        if not reply:
            raise AIServiceError("empty reply")
        return reply

    async def validate_name(self, name: str) -> bool:
        data = await self._post({
            "model": self.config.AI_MODEL,
            "max_tokens": 5,
            "messages": [{"role": "user", "content": NAME_PROMPT.format(name=name)}],
        })
        verdict = self._extract_text(data).upper()
        logger.debug("Name validation verdict", extra_data={"verdict": verdict[:10]})
        return verdict.startswith("YES")
