"""
בדיקות ל-Middleware - app/core/middleware.py

- CorrelationIdMiddleware: הפצת correlation ID
- RequestLoggingMiddleware: לוג בקשות בלי טלפונים ובלי verify token
- Exception handlers: AppException ו-Exception גנרי
"""
from unittest.mock import patch

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from app.core.exceptions import BookingNotFoundError, ErrorCode
from app.core.middleware import (
    RequestLoggingMiddleware,
    mask_pii,
    setup_exception_handlers,
    setup_middleware,
)


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse(request.state.correlation_id)


def _missing_booking(request: Request) -> PlainTextResponse:
    raise BookingNotFoundError(42)


def _crash(request: Request) -> PlainTextResponse:
    raise RuntimeError("boom")


def _build_app() -> Starlette:
    app = Starlette(routes=[
        Route("/hello", _hello),
        Route("/bookings/{phone}", _hello),
        Route("/missing", _missing_booking),
        Route("/crash", _crash),
    ])
    setup_middleware(app)
    setup_exception_handlers(app)
    return app


class TestMaskPii:
    @pytest.mark.unit
    @pytest.mark.parametrize("raw,masked", [
        ("/bookings/962790000123", "/bookings/962****123"),
        ("/bookings/0790000000", "/bookings/079****000"),
        ("+962790000123", "+962****123"),
        ("/health", "/health"),
        ("/bookings/12345", "/bookings/12345"),
    ])
    def test_mask(self, raw, masked):
        assert mask_pii(raw) == masked


class TestCorrelationId:
    @pytest.mark.unit
    def test_generated_when_missing(self):
        client = TestClient(_build_app())

        response = client.get("/hello")

        cid = response.headers["X-Correlation-ID"]
        assert len(cid) == 8
        assert response.text == cid

    @pytest.mark.unit
    def test_incoming_header_is_kept(self):
        client = TestClient(_build_app())

        response = client.get("/hello", headers={"X-Correlation-ID": "from-meta"})

        assert response.headers["X-Correlation-ID"] == "from-meta"
        assert response.text == "from-meta"


class TestRequestLogging:
    @pytest.mark.unit
    def test_phone_in_path_is_masked(self):
        app = Starlette(routes=[Route("/bookings/{phone}", lambda r: PlainTextResponse("ok"))])
        app.add_middleware(RequestLoggingMiddleware)

        with patch("app.core.middleware.logger") as logger:
            TestClient(app).get("/bookings/0790000000")

        started = logger.info.call_args_list[0]
        assert "0790000000" not in started.args[0]
        assert started.kwargs["extra_data"]["path"] == "/bookings/079****000"

    @pytest.mark.unit
    def test_verify_token_is_not_logged(self):
        app = Starlette(routes=[Route("/webhook", lambda r: PlainTextResponse("ok"))])
        app.add_middleware(RequestLoggingMiddleware)

        with patch("app.core.middleware.logger") as logger:
            TestClient(app).get("/webhook", params={
                "hub.mode": "subscribe",
                "hub.verify_token": "secret",
                "hub.challenge": "123",
            })

        query = logger.info.call_args_list[0].kwargs["extra_data"]["query_params"]
        assert "hub.verify_token" not in query
        assert query["hub.challenge"] == "123"

    @pytest.mark.unit
    def test_client_errors_log_as_warning(self):
        app = Starlette(routes=[Route("/hello", lambda r: PlainTextResponse("ok"))])
        app.add_middleware(RequestLoggingMiddleware)

        with patch("app.core.middleware.logger") as logger:
            response = TestClient(app).get("/nowhere")

        assert response.status_code == 404
        logger.warning.assert_called_once()


class TestExceptionHandlers:
    @pytest.mark.unit
    def test_app_exception(self):
        client = TestClient(_build_app())

        response = client.get("/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["code"] == ErrorCode.BOOKING_NOT_FOUND.value
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.unit
    def test_unexpected_exception(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)

        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"] == {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "An unexpected error occurred",
            "details": {},
        }

