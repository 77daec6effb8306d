"""
Smoke tests for a deployed instance (Render shell / local).

Lightweight HTTP checks against a running app:
- GET  /health
- GET  /api/whatsapp/webhook (verification handshake, only when the verify token is known)
- POST /api/whatsapp/webhook (status update only, so no reply is sent to a real number)

בודק "לא קורס" (2xx) גם כש-WhatsApp / AI לא זמינים.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import httpx

# לאפשר הרצה מכל תיקיה (`python scripts/smoke_webhooks.py`)
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.core.logging import get_logger, setup_logging  # noqa: E402


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _status_update_payload() -> dict:
    """envelope של Cloud API עם statuses בלבד - הבוט מאשר ולא עונה"""
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "smoke",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "statuses": [{"id": "wamid.smoke", "status": "delivered", "recipient_id": "962790000000"}],
                },
            }],
        }],
    }


def _check_status(resp: httpx.Response, expected_family: int = 2) -> None:
    family = resp.status_code // 100
    if family != expected_family:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def run_smoke(client: httpx.Client, base_url: str, verify_token: str | None = None) -> None:
    health_url = f"{base_url}/health"
    logger.info("Checking health endpoint", extra_data={"url": health_url})
    _check_status(client.get(health_url))

    webhook_url = f"{base_url}/api/whatsapp/webhook"
    if verify_token:
        logger.info("Checking webhook verification", extra_data={"url": webhook_url})
        resp = client.get(webhook_url, params={
            "hub.mode": "subscribe",
            "hub.verify_token": verify_token,
            "hub.challenge": "424242",
        })
        _check_status(resp)
        if resp.json() != 424242:
            raise RuntimeError(f"Verification echoed {resp.text!r} instead of the challenge")

    logger.info("Posting whatsapp status update", extra_data={"url": webhook_url})
    resp = client.post(webhook_url, json=_status_update_payload())
    _check_status(resp)
    if resp.json().get("status") != "ok":
        raise RuntimeError(f"Webhook did not acknowledge: {resp.text[:500]}")


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="clinic-bot-smoke")

    base_url = _base_url()
    timeout = _timeout_seconds()

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        run_smoke(client, base_url, os.environ.get("WHATSAPP_CLOUD_API_VERIFY_TOKEN"))

    logger.info("Smoke tests completed successfully")


if __name__ == "__main__":
    main()
