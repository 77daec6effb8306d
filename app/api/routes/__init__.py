"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.bookings import router as bookings_router
from app.api.webhooks.whatsapp import router as whatsapp_router

router = APIRouter()

router.include_router(bookings_router, prefix="/bookings", tags=["bookings"])
router.include_router(whatsapp_router, prefix="/whatsapp", tags=["webhooks"])
