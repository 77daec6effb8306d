"""
בדיקות לסקריפט ה-smoke מול שרת מדומה (httpx.MockTransport)
"""
import httpx
import pytest

from scripts.smoke_webhooks import run_smoke

BASE_URL = "http://clinic.test"


def _server(webhook_status: str = "ok", health_code: int = 200):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/health":
            return httpx.Response(health_code, json={"status": "healthy"})
        if request.method == "GET":
            return httpx.Response(200, json=int(request.url.params["hub.challenge"]))
        return httpx.Response(200, json={"status": webhook_status, "processed": 0, "responses": []})

    return handler, requests


class TestRunSmoke:
    @pytest.mark.unit
    def test_all_checks_pass(self):
        handler, requests = _server()

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            run_smoke(client, BASE_URL, verify_token="token")

        assert [(r.method, r.url.path) for r in requests] == [
            ("GET", "/health"),
            ("GET", "/api/whatsapp/webhook"),
            ("POST", "/api/whatsapp/webhook"),
        ]

    @pytest.mark.unit
    def test_verification_skipped_without_token(self):
        handler, requests = _server()

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            run_smoke(client, BASE_URL)

        assert len(requests) == 2

    @pytest.mark.unit
    def test_unhealthy_instance_fails(self):
        handler, _ = _server(health_code=503)

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RuntimeError):
                run_smoke(client, BASE_URL)

    @pytest.mark.unit
    def test_unacknowledged_webhook_fails(self):
        handler, _ = _server(webhook_status="ignored")

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RuntimeError):
                run_smoke(client, BASE_URL)
