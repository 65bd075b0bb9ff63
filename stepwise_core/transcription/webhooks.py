from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Mapping

from stepwise_core.errors import ValidationError, WebhookAuthError
from stepwise_core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADERS = ("x-stepwise-signature", "aai-signature", "x-aai-signature")

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

# progress recorded for in-flight provider notifications
IN_FLIGHT_PROGRESS = {STATUS_QUEUED: 45, STATUS_PROCESSING: 50}


@dataclass(frozen=True)
class TranscriptionEvent:
    status: str
    job_id: str | None
    text: str | None = None
    error: str | None = None


def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _header(headers: Mapping[str, str], names: tuple[str, ...]) -> str:
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in names:
        value = lowered.get(name)
        if value:
            return value.strip()
    return ""


def _signature_matches(secret: str, body: bytes, provided: str) -> bool:
    if provided.startswith("sha256="):
        provided = provided[len("sha256=") :]
    if not provided:
        return False
    expected = sign_body(secret, body)
    return hmac.compare_digest(expected, provided.lower())


def verify_webhook_request(
    *,
    body: bytes,
    headers: Mapping[str, str],
    token: str | None,
    expected_token: str | None,
    secret: str | None,
    production: bool,
) -> bool:
    """Authenticate a provider callback.

    A wrong token is always rejected. A missing or wrong signature is
    rejected in production and only logged elsewhere. Returns True when the
    request carried a verified credential.
    """
    verified = False
    if expected_token:
        if not token or not hmac.compare_digest(token, expected_token):
            raise WebhookAuthError("Webhook token mismatch")
        verified = True

    if secret:
        provided = _header(headers, SIGNATURE_HEADERS)
        if _signature_matches(secret, body, provided):
            verified = True
        elif production:
            raise WebhookAuthError("Webhook signature verification failed")
        else:
            logger.warning(
                "Webhook signature failed verification; accepting outside production",
                extra={"error_code": "WEBHOOK_AUTH_FAILED"},
            )

    if not verified and production:
        raise WebhookAuthError("Webhook carried no verifiable credential")
    return verified


def parse_transcription_event(payload: Mapping[str, Any]) -> TranscriptionEvent:
    status = str(payload.get("status") or "").strip().lower()
    if not status:
        raise ValidationError("Webhook payload is missing status")
    job_id = payload.get("id") or payload.get("transcript_id")
    text = payload.get("text")
    error = payload.get("error")
    return TranscriptionEvent(
        status=status,
        job_id=str(job_id) if job_id else None,
        text=str(text) if text is not None else None,
        error=str(error) if error is not None else None,
    )
