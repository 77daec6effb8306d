"""
Dependencies של ה-webhook - הצינור לבקשה וספק השליחה.

בבדיקות מחליפים דרך app.dependency_overrides.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.domain.services.conversation_service import ConversationService, build_conversation_service
from app.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_provider


async def get_conversation_service(db: AsyncSession = Depends(get_db)) -> ConversationService:
    return build_conversation_service(db)


def get_message_sender() -> BaseWhatsAppProvider:
    return get_whatsapp_provider()
