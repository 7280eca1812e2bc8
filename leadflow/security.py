"""Security helpers for event and cron endpoints."""

from __future__ import annotations

import hashlib
import hmac
import time

from fastapi import HTTPException, Request

from .config import settings


def _extract_token(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()

    return (
        request.headers.get("x-api-key", "").strip()
        or request.headers.get("x-leadflow-api-key", "").strip()
    )


def _fail_closed() -> bool:
    return settings.security_fail_closed or settings.is_production


def sign_event_body(secret: str, timestamp: int, body: bytes) -> str:
    body_text = body.decode("utf-8", errors="replace")
    message = f"{timestamp}.{body_text}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_event_request(request: Request, body: bytes) -> None:
    """Verify trigger-event auth using HMAC signature or API key."""
    signing_secret = settings.event_signing_secret.strip()
    api_key = settings.event_api_key.strip()

    # Prefer HMAC verification when configured.
    if signing_secret:
        timestamp_raw = request.headers.get("x-event-timestamp", "").strip()
        signature_raw = request.headers.get("x-event-signature", "").strip()
        if not timestamp_raw or not signature_raw:
            raise HTTPException(status_code=401, detail="Missing event signature headers")

        try:
            timestamp = int(timestamp_raw)
        except ValueError as exc:
            raise HTTPException(status_code=401, detail="Invalid event timestamp") from exc

        now = int(time.time())
        if abs(now - timestamp) > settings.event_signature_ttl_seconds:
            raise HTTPException(status_code=401, detail="Event signature expired")

        expected = sign_event_body(signing_secret, timestamp, body)
        provided = signature_raw
        if provided.startswith("sha256="):
            provided = provided.split("=", 1)[1]

        if not hmac.compare_digest(provided, expected):
            raise HTTPException(status_code=401, detail="Invalid event signature")
        return

    if api_key:
        provided = _extract_token(request)
        if not provided or not hmac.compare_digest(provided, api_key):
            raise HTTPException(status_code=401, detail="Invalid event API key")
        return

    if _fail_closed():
        raise HTTPException(status_code=503, detail="Event authentication is not configured")


def verify_cron_request(request: Request) -> None:
    """Bearer ``cron_secret`` check for the periodic invoker endpoint."""
    expected = settings.cron_secret.strip()
    if not expected:
        if _fail_closed():
            raise HTTPException(status_code=503, detail="Cron secret is not configured")
        return

    auth = request.headers.get("authorization", "")
    provided = auth[7:].strip() if auth.lower().startswith("bearer ") else ""
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
