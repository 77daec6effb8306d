"""
Transcription Service - הודעות קוליות ל-טקסט.

1. media id -> URL זמני דרך WhatsApp Graph API
2. הורדת הקובץ (אותו Bearer token)
3. העלאה multipart ל-endpoint תואם Whisper (Groq כברירת מחדל)

transcribe מחזיר את הטקסט, או None כשהתמלול ריק.
"""
from abc import ABC, abstractmethod

import httpx

from app.core.circuit_breaker import CircuitBreaker, get_transcription_circuit_breaker, run_with_timeout
from app.core.config import Settings, settings
from app.core.exceptions import TranscriptionError, WhatsAppError
from app.core.logging import get_logger

logger = get_logger(__name__)


class Transcriber(ABC):
    @abstractmethod
    async def transcribe(self, media_id: str) -> str | None:
        ...


class WhisperTranscriptionService(Transcriber):
    """Graph API media download + Whisper-compatible transcription"""

    def __init__(
        self,
        config: Settings = settings,
        http_client: httpx.AsyncClient | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.config = config
        self._http_client = http_client
        self.breaker = breaker or get_transcription_circuit_breaker()

    def _graph_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.WHATSAPP_CLOUD_API_TOKEN}"}

    async def _download_media(self, client: httpx.AsyncClient, media_id: str) -> tuple[bytes, str]:
        meta = await client.get(
            f"{self.config.WHATSAPP_GRAPH_API_URL}/{media_id}",
            headers=self._graph_headers(),
        )
        if meta.status_code != 200:
            raise WhatsAppError.from_response("media_url", meta)

        body = meta.json()
        url = body.get("url")
        if not url:
            raise WhatsAppError("media_url response has no url", details={"media_id": media_id})

        media = await client.get(url, headers=self._graph_headers())
        if media.status_code != 200:
            raise WhatsAppError.from_response("media_download", media)

        mime_type = body.get("mime_type") or media.headers.get("content-type") or "audio/ogg"
        return media.content, mime_type.split(";")[0]

    async def _upload(self, client: httpx.AsyncClient, audio: bytes, mime_type: str) -> str:
        response = await client.post(
            self.config.TRANSCRIPTION_API_URL,
            headers={"Authorization": f"Bearer {self.config.TRANSCRIPTION_API_KEY}"},
            data={
                "model": self.config.TRANSCRIPTION_MODEL,
                "language": self.config.TRANSCRIPTION_LANGUAGE,
                "response_format": "json",
            },
            files={"file": ("voice.ogg", audio, mime_type)},
        )
        if response.status_code != 200:
            raise TranscriptionError(
                f"status {response.status_code}",
                details={"response_text": response.text[:500]},
            )
        return (response.json().get("text") or "").strip()

    async def _transcribe(self, media_id: str) -> str:
        if self._http_client is not None:
            audio, mime_type = await self._download_media(self._http_client, media_id)
            return await self._upload(self._http_client, audio, mime_type)

        async with httpx.AsyncClient(timeout=self.config.TRANSCRIPTION_TIMEOUT_SECONDS) as client:
            audio, mime_type = await self._download_media(client, media_id)
            return await self._upload(client, audio, mime_type)

    async def transcribe(self, media_id: str) -> str | None:
        if not self.config.TRANSCRIPTION_API_KEY:
            raise TranscriptionError("TRANSCRIPTION_API_KEY is not configured")

        try:
            text = await self.breaker.execute(
                lambda: run_with_timeout(
                    "transcription",
                    self._transcribe(media_id),
                    self.config.TRANSCRIPTION_TIMEOUT_SECONDS,
                )
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(str(exc)) from exc
        except ValueError as exc:
            # JSON לא תקין מאחד השירותים
            raise TranscriptionError(f"invalid response: {exc}") from exc

        logger.info(
            "Voice note transcribed",
            extra_data={"media_id": media_id, "chars": len(text)},
        )
        return text or None
