"""
WhatsApp Provider Abstraction Layer

שליחת הודעות יוצאות דרך WhatsApp Cloud API.
"""
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
)

__all__ = [
    "BaseWhatsAppProvider",
    "get_whatsapp_provider",
    "reset_providers",
]
