"""
בדיקות ל-Health endpoints - status, liveness ו-readiness.
"""
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.config import settings
from app.domain.services.health_service import check_readiness


class TestStatus:
    @pytest.mark.unit
    async def test_root_reports_clinic(self, test_client: httpx.AsyncClient, clinic_profile) -> None:
        from app.domain.services.clinic_settings_service import set_clinic_profile

        set_clinic_profile(clinic_profile)

        data = (await test_client.get("/")).json()

        assert data["status"] == "ok"
        assert data["clinic"] == "عيادة ابتسامة"
        assert "timestamp" in data

    @pytest.mark.unit
    async def test_liveness(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestReadiness:
    @pytest.mark.unit
    async def test_memory_backend_with_live_db(self) -> None:
        result = await check_readiness()
        assert result == {"status": "healthy", "db": "ok", "kv_store": "ok"}

    @pytest.mark.unit
    async def test_db_down_is_degraded(self, test_client: httpx.AsyncClient) -> None:
        with patch(
            "app.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value="error: db_unavailable",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "degraded", "db": "error: db_unavailable", "kv_store": "ok"}

    @pytest.mark.unit
    async def test_redis_backend_is_pinged(self) -> None:
        with patch.object(settings, "STATE_BACKEND", "redis"):
            result = await check_readiness()

        assert result["kv_store"] == "ok"

    @pytest.mark.unit
    async def test_redis_down_hides_details(self, test_client: httpx.AsyncClient) -> None:
        with patch.object(settings, "STATE_BACKEND", "redis"), patch(
            "app.domain.services.health_service.get_redis",
            new=AsyncMock(side_effect=ConnectionError("redis://secret-host:6379 refused")),
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["kv_store"] == "error: kv_store_unavailable"
        assert "secret-host" not in response.text
