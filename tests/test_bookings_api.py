"""
בדיקות ל-GET /api/bookings ולהרשאת X-Admin-API-Key
"""
from unittest.mock import patch

import pytest
from httpx import AsyncClient

from app.core.config import settings
from app.domain.services.booking_store import BookingCreate, SqlBookingStore

HEADERS = {"X-Admin-API-Key": "test-admin-key"}


async def _seed(db_session, count: int) -> list[int]:
    store = SqlBookingStore(db_session)
    return [
        await store.insert(BookingCreate(
            name=f"Patient {i}",
            phone=f"079000000{i}",
            service="Checkup",
            appointment="2025-06-01 3 PM",
        ))
        for i in range(count)
    ]


class TestAuth:
    @pytest.mark.integration
    async def test_missing_header(self, test_client: AsyncClient):
        response = await test_client.get("/api/bookings")
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_wrong_key(self, test_client: AsyncClient):
        response = await test_client.get("/api/bookings", headers={"X-Admin-API-Key": "nope"})

        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid admin API key"

    @pytest.mark.integration
    async def test_unconfigured_key_blocks_endpoint(self, test_client: AsyncClient):
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get("/api/bookings", headers=HEADERS)

        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access is not configured"


class TestListing:
    @pytest.mark.integration
    async def test_empty(self, test_client: AsyncClient):
        response = await test_client.get("/api/bookings", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"total": 0, "bookings": []}

    @pytest.mark.integration
    async def test_newest_first(self, test_client: AsyncClient, db_session):
        ids = await _seed(db_session, 3)

        data = (await test_client.get("/api/bookings", headers=HEADERS)).json()

        assert data["total"] == 3
        assert [b["id"] for b in data["bookings"]] == list(reversed(ids))
        assert data["bookings"][0]["status"] == "new"
        assert data["bookings"][0]["canceled_at"] is None

    @pytest.mark.integration
    async def test_pagination_keeps_total(self, test_client: AsyncClient, db_session):
        ids = await _seed(db_session, 3)

        data = (await test_client.get("/api/bookings", params={"limit": 2, "offset": 2}, headers=HEADERS)).json()

        assert data["total"] == 3
        assert [b["id"] for b in data["bookings"]] == [ids[0]]

    @pytest.mark.integration
    async def test_limit_is_bounded(self, test_client: AsyncClient):
        response = await test_client.get("/api/bookings", params={"limit": 1000}, headers=HEADERS)
        assert response.status_code == 422
