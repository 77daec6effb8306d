"""
ממשק בסיסי לספק WhatsApp - Dependency Inversion.

הזרימות מחזירות MessageResponse; השכבה הזו יודעת להפוך אותן להודעות
טקסט, כפתורים / רשימות, או מדיה. fire-and-forget מבחינת הבוט: כשלון
נזרק כ-WhatsAppError ונרשם ללוג ע"י הקורא, בלי retry של הזרימה.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from app.state_machine.responses import MessageResponse, ReplyOption


class BaseWhatsAppProvider(ABC):
    """
    ממשק אחיד לשליחת הודעות WhatsApp.

    כל מימוש אחראי על:
    - שליחת HTTP / SDK
    - retry + circuit breaker
    - נרמול מזהה הנמען לפורמט הנדרש ע"י הספק
    """

    @abstractmethod
    async def send_text(
        self,
        to: str,
        text: str,
        options: Optional[list[ReplyOption]] = None,
        button_title: Optional[str] = None,
    ) -> None:
        """
        שליחת הודעת טקסט, עם אפשרויות בחירה אופציונליות.

        Args:
            to: wa_id של הנמען.
            text: גוף ההודעה.
            options: עד 3 -> reply buttons, יותר -> רשימה (list message).
            button_title: כותרת כפתור פתיחת הרשימה.

        Raises:
            WhatsAppError: בכשלון שליחה.
        """

    @abstractmethod
    async def send_media(
        self,
        to: str,
        media_url: str,
        media_type: str = "image",
        caption: Optional[str] = None,
    ) -> None:
        """
        שליחת מדיה לפי URL ציבורי.

        Raises:
            WhatsAppError: בכשלון שליחה או כש-media_url ריק.
        """

    @abstractmethod
    def normalize_phone(self, phone: str) -> str:
        """נרמול מזהה הנמען לפורמט הספק."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """שם הספק לשימוש בלוגים ודיאגנוסטיקה."""

    async def send(self, to: str, response: MessageResponse) -> None:
        """שליחת MessageResponse אחת לפי הסוג שלה"""
        if response.is_media:
            await self.send_media(
                to,
                response.media_url,
                media_type=response.media_type,
                caption=response.text or None,
            )
            return
        await self.send_text(
            to,
            response.text,
            options=response.options,
            button_title=response.button_title,
        )
