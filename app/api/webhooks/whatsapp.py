"""
WhatsApp Cloud API Webhook Handler

GET  /webhook - אימות מול Meta (hub.challenge)
POST /webhook - entry[] -> changes[] -> value.messages[]; כל הודעה עוברת
                idempotency ב-DB, spam guard ו-dispatcher, והתשובות נשלחות
                ב-background task. תמיד 200 כדי ש-Meta לא תשלח שוב.
"""
import asyncio
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.conversation import get_conversation_service, get_message_sender
from app.core.config import settings
from app.core.exceptions import ExternalServiceException
from app.core.logging import get_logger, set_correlation_id
from app.core.validation import PhoneNumberValidator
from app.db.database import get_db
from app.db.models.webhook_event import WebhookEvent, WebhookEventStatus
from app.domain.services.conversation_service import ConversationService, InboundMessage, MessageType
from app.domain.services.whatsapp import BaseWhatsAppProvider
from app.state_machine.responses import MessageResponse

logger = get_logger(__name__)

router = APIRouter()

# ──────────────────────────────────────────────
#  idempotency מבוסס DB - Meta שולחת at-least-once.
#  הרשומה נכתבת (commit) לפני העיבוד; רק completed חוסם עיבוד חוזר.
#  processing ישן (תהליך שקרס) או failed מאפשרים ניסיון נוסף.
# ──────────────────────────────────────────────
_STALE_PROCESSING_SECONDS = 120


async def _try_acquire_message(db: AsyncSession, message_id: str, platform: str = "whatsapp") -> bool:
    """
    True אם ההודעה חדשה (או שמותר לנסות שוב), False אם כפולה.
    INSERT אופטימיסטי ב-savepoint, ואם קיים - UPDATE מותנה.
    """
    if not message_id:
        return True

    try:
        async with db.begin_nested():
            db.add(WebhookEvent(
                message_id=message_id,
                platform=platform,
                status=WebhookEventStatus.PROCESSING,
                created_at=datetime.now(timezone.utc),
            ))
        await db.commit()
        return True
    except IntegrityError:
        pass

    result = await db.execute(
        select(WebhookEvent.status).where(WebhookEvent.message_id == message_id)
    )
    status = result.scalar_one_or_none()
    if status is None or status == WebhookEventStatus.COMPLETED:
        logger.info("Skipping duplicate webhook message", extra_data={"message_id": message_id})
        return False

    threshold = datetime.now(timezone.utc) - timedelta(seconds=_STALE_PROCESSING_SECONDS)
    update_result = await db.execute(
        update(WebhookEvent)
        .where(
            WebhookEvent.message_id == message_id,
            or_(
                WebhookEvent.status == WebhookEventStatus.FAILED,
                (WebhookEvent.status == WebhookEventStatus.PROCESSING)
                & (WebhookEvent.created_at < threshold),
            ),
        )
        .values(status=WebhookEventStatus.PROCESSING, created_at=datetime.now(timezone.utc))
    )

    if update_result.rowcount > 0:
        await db.commit()
        logger.warning("Retrying webhook message", extra_data={"message_id": message_id, "previous_status": status})
        return True

    logger.info("Skipping in-progress webhook message", extra_data={"message_id": message_id})
    return False


async def _mark_message(db: AsyncSession, message_id: str, status: str) -> None:
    if not message_id:
        return
    values = {"status": status}
    if status == WebhookEventStatus.COMPLETED:
        values["completed_at"] = datetime.now(timezone.utc)
    await db.execute(
        update(WebhookEvent).where(WebhookEvent.message_id == message_id).values(**values)
    )
    await db.commit()


# ──────────────────────────────────────────────
#  Verification
# ──────────────────────────────────────────────


@router.get(
    "/webhook",
    summary="Cloud API Webhook Verification",
    description="אימות webhook מול Meta - מחזיר hub.challenge.",
)
async def whatsapp_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
) -> int:
    if (
        hub_mode == "subscribe"
        and hub_challenge
        and hub_challenge.isdigit()
        and settings.WHATSAPP_CLOUD_API_VERIFY_TOKEN
        and hub_verify_token == settings.WHATSAPP_CLOUD_API_VERIFY_TOKEN
    ):
        logger.info("WhatsApp webhook verified")
        return int(hub_challenge)

    logger.warning("WhatsApp webhook verification failed", extra_data={"hub_mode": hub_mode})
    raise HTTPException(status_code=403, detail="Verification failed")


# ──────────────────────────────────────────────
#  Parsing
# ──────────────────────────────────────────────


def parse_cloud_message(msg: dict) -> InboundMessage | None:
    """
    הודעת Cloud API -> InboundMessage.

    interactive: payload_id = מזהה הכפתור / השורה, text = הכותרת שלהם.
    audio (כולל voice note): media_id. סוגים אחרים -> OTHER.
    """
    sender_id = msg.get("from")
    message_id = msg.get("id", "")
    if not sender_id:
        return None

    msg_type = msg.get("type", "")
    inbound = InboundMessage(sender_id=sender_id, message_id=message_id, type=MessageType.OTHER)

    if msg_type == "text":
        inbound.type = MessageType.TEXT
        inbound.text = (msg.get("text") or {}).get("body", "")
    elif msg_type == "interactive":
        interactive = msg.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        inbound.type = MessageType.INTERACTIVE
        inbound.payload_id = reply.get("id")
        inbound.text = reply.get("title", "")
    elif msg_type == "button":
        # quick reply של template
        button = msg.get("button") or {}
        inbound.type = MessageType.INTERACTIVE
        inbound.payload_id = button.get("payload")
        inbound.text = button.get("text", "")
    elif msg_type == "audio":
        inbound.type = MessageType.AUDIO
        inbound.media_id = (msg.get("audio") or {}).get("id")

    return inbound


def _iter_messages(payload: dict):
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            if value.get("messaging_product", "whatsapp") != "whatsapp":
                continue
            # statuses (delivered / read) לא מעניינים את הבוט
            yield from value.get("messages") or []


# ──────────────────────────────────────────────
#  Outbound
# ──────────────────────────────────────────────


async def send_responses(
    provider: BaseWhatsAppProvider,
    to: str,
    responses: list[MessageResponse],
) -> None:
    """שליחה לפי הסדר. כשלון נרשם ללוג וממשיכים להודעה הבאה."""
    for response in responses:
        if response.delay_seconds > 0:
            await asyncio.sleep(response.delay_seconds)
        try:
            await provider.send(to, response)
        except ExternalServiceException as exc:
            logger.error(
                "Failed to send WhatsApp message",
                extra_data={
                    "to": PhoneNumberValidator.mask(to),
                    "provider": provider.provider_name,
                    "is_media": response.is_media,
                    "error": exc.message,
                },
            )


# ──────────────────────────────────────────────
#  Webhook handler ראשי
# ──────────────────────────────────────────────


@router.post(
    "/webhook",
    summary="Cloud API Webhook",
    description="קבלת הודעות מ-WhatsApp Cloud API (Meta).",
    responses={200: {"description": "ההודעות התקבלו"}},
)
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    conversation: ConversationService = Depends(get_conversation_service),
    provider: BaseWhatsAppProvider = Depends(get_message_sender),
) -> dict:
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("WhatsApp webhook received a non-JSON body")
        return {"status": "ignored", "processed": 0, "responses": []}

    if not isinstance(payload, dict):
        return {"status": "ignored", "processed": 0, "responses": []}

    summaries: list[dict] = []
    for msg in _iter_messages(payload):
        message = parse_cloud_message(msg)
        if message is None:
            continue
        summary = await _process_message(db, conversation, provider, message, background_tasks)
        if summary:
            summaries.append(summary)

    return {"status": "ok", "processed": len(summaries), "responses": summaries}


async def _process_message(
    db: AsyncSession,
    conversation: ConversationService,
    provider: BaseWhatsAppProvider,
    message: InboundMessage,
    background_tasks: BackgroundTasks,
) -> dict | None:
    set_correlation_id()
    phone_masked = PhoneNumberValidator.mask(message.sender_id)

    logger.debug(
        "WhatsApp message received",
        extra_data={"from": phone_masked, "message_id": message.message_id, "type": message.type},
    )

    if not await _try_acquire_message(db, message.message_id):
        return {"from": phone_masked, "message_id": message.message_id, "action": "duplicate"}

    try:
        result = await conversation.process(message)
    except Exception as exc:
        logger.error(
            "Error processing WhatsApp message",
            extra_data={"message_id": message.message_id, "error": str(exc)},
            exc_info=True,
        )
        await _mark_message(db, message.message_id, WebhookEventStatus.FAILED)
        return {"from": phone_masked, "message_id": message.message_id, "action": "failed"}

    await _mark_message(db, message.message_id, WebhookEventStatus.COMPLETED)

    if result.responses:
        background_tasks.add_task(send_responses, provider, message.sender_id, result.responses)

    return {
        "from": phone_masked,
        "message_id": message.message_id,
        "action": result.action,
        "dropped": result.dropped,
        "responses": len(result.responses),
    }
