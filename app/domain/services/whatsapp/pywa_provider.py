"""
PyWa Provider - מימוש BaseWhatsAppProvider מעל WhatsApp Cloud API (Meta).

עד 3 אפשרויות נשלחות כ-reply buttons, יותר מזה כ-list message
(ימים, שירותים). כל שליחה עוברת retry עם backoff ו-circuit breaker.
"""
from __future__ import annotations

import asyncio
import re
from typing import Optional

from app.core.circuit_breaker import CircuitBreaker, run_with_timeout
from app.core.config import settings
from app.core.exceptions import WhatsAppError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.state_machine.responses import ReplyOption

logger = get_logger(__name__)

# מגבלות Cloud API
_MAX_REPLY_BUTTONS = 3
_MAX_LIST_ROWS = 10
_BUTTON_TITLE_LIMIT = 20
_ROW_TITLE_LIMIT = 24
_ROW_DESCRIPTION_LIMIT = 72
_CALLBACK_LIMIT = 256


class PyWaProvider(BaseWhatsAppProvider):
    """WhatsApp Cloud API provider built on pywa"""

    def __init__(self, circuit_breaker: CircuitBreaker) -> None:
        self._circuit_breaker = circuit_breaker
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._timeout = settings.WHATSAPP_SEND_TIMEOUT_SECONDS

        # אתחול עצלן - נטען רק כשנדרש
        self._client = None

    def _get_client(self):
        if self._client is None:
            from pywa_async import WhatsApp as PyWaClient

            self._client = PyWaClient(
                phone_id=settings.WHATSAPP_CLOUD_API_PHONE_ID,
                token=settings.WHATSAPP_CLOUD_API_TOKEN,
            )
        return self._client

    @property
    def provider_name(self) -> str:
        return "pywa"

    def normalize_phone(self, phone: str) -> str:
        """Cloud API מצפה ל-wa_id בספרות בלבד (962790000000), בלי +"""
        return re.sub(r"\D", "", phone or "")

    # ── retry helper פנימי ──

    async def _execute_with_retry(self, operation: str, phone_masked: str, func) -> None:
        """
        הרצה עם retry ו-exponential backoff.
        זורק WhatsAppError אם כל הניסיונות נכשלו.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                await run_with_timeout("whatsapp", func(), self._timeout)
                return
            except Exception as exc:
                last_error = exc
                if attempt < self._max_retries - 1:
                    backoff = 2 ** attempt
                    logger.warning(
                        f"שגיאה ב-{operation}, מנסה שוב",
                        extra_data={
                            "phone": phone_masked,
                            "error": str(exc),
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)

        raise WhatsAppError(
            message=f"Cloud API {operation} failed after {self._max_retries} attempts",
            details={
                "phone": phone_masked,
                "error": str(last_error),
                "attempts": self._max_retries,
            },
        )

    # ── אפשרויות בחירה ──

    @staticmethod
    def _build_buttons(options: list[ReplyOption] | None, button_title: str | None):
        """
        המרת ReplyOption לאובייקטי pywa.

        עד 3: רשימת Button. 4-10: SectionList עם שורה לכל אפשרות.
        """
        if not options:
            return None

        from pywa import types as pywa_types

        if len(options) <= _MAX_REPLY_BUTTONS:
            return [
                pywa_types.Button(
                    title=option.title[:_BUTTON_TITLE_LIMIT],
                    callback_data=option.id[:_CALLBACK_LIMIT],
                )
                for option in options
            ]

        rows = [
            pywa_types.SectionRow(
                title=option.title[:_ROW_TITLE_LIMIT],
                callback_data=option.id[:_CALLBACK_LIMIT],
                description=option.description[:_ROW_DESCRIPTION_LIMIT] if option.description else None,
            )
            for option in options[:_MAX_LIST_ROWS]
        ]
        title = (button_title or "Options")[:_BUTTON_TITLE_LIMIT]
        return pywa_types.SectionList(
            button_title=title,
            sections=[pywa_types.Section(title=title, rows=rows)],
        )

    # ── שליחת הודעות ──

    async def send_text(
        self,
        to: str,
        text: str,
        options: Optional[list[ReplyOption]] = None,
        button_title: Optional[str] = None,
    ) -> None:
        to = self.normalize_phone(to)
        phone_masked = PhoneNumberValidator.mask(to)
        buttons = self._build_buttons(options, button_title)
        client = self._get_client()

        async def _send_single() -> None:
            await client.send_message(to=to, text=text, buttons=buttons)

        async def _send_with_retry() -> None:
            await self._execute_with_retry("send_text", phone_masked, _send_single)

        await self._circuit_breaker.execute(_send_with_retry)

    async def send_media(
        self,
        to: str,
        media_url: str,
        media_type: str = "image",
        caption: Optional[str] = None,
    ) -> None:
        if not media_url:
            raise WhatsAppError(
                message="no media_url to send",
                details={"phone": PhoneNumberValidator.mask(to)},
            )

        to = self.normalize_phone(to)
        phone_masked = PhoneNumberValidator.mask(to)
        client = self._get_client()

        async def _send_single() -> None:
            if media_type == "audio":
                await client.send_audio(to=to, audio=media_url)
            elif media_type == "document":
                await client.send_document(to=to, document=media_url, caption=caption)
            else:
                await client.send_image(to=to, image=media_url, caption=caption)

        async def _send_with_retry() -> None:
            await self._execute_with_retry("send_media", phone_masked, _send_single)

        await self._circuit_breaker.execute(_send_with_retry)
