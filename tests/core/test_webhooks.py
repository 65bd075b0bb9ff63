import pytest

from stepwise_core.errors import ValidationError, WebhookAuthError
from stepwise_core.transcription.webhooks import (
    parse_transcription_event,
    sign_body,
    verify_webhook_request,
)

BODY = b'{"status": "completed", "transcript_id": "job-1"}'


def _verify(**overrides):
    params = {
        "body": BODY,
        "headers": {},
        "token": None,
        "expected_token": None,
        "secret": None,
        "production": True,
    }
    params.update(overrides)
    return verify_webhook_request(**params)


def test_matching_token_verifies():
    assert _verify(token="tok", expected_token="tok") is True


def test_wrong_token_is_rejected_everywhere():
    with pytest.raises(WebhookAuthError):
        _verify(token="nope", expected_token="tok", production=False)
    with pytest.raises(WebhookAuthError):
        _verify(token=None, expected_token="tok")


def test_valid_signature_verifies_with_or_without_prefix():
    digest = sign_body("s3cret", BODY)
    assert _verify(headers={"X-Stepwise-Signature": digest}, secret="s3cret")
    assert _verify(headers={"aai-signature": f"sha256={digest}"}, secret="s3cret")


def test_bad_signature_rejected_in_production_only():
    headers = {"x-stepwise-signature": "deadbeef"}
    with pytest.raises(WebhookAuthError):
        _verify(headers=headers, secret="s3cret")
    assert _verify(headers=headers, secret="s3cret", production=False) is False


def test_unauthenticated_requests_rejected_in_production():
    with pytest.raises(WebhookAuthError):
        _verify()
    assert _verify(production=False) is False


def test_parse_event_accepts_either_id_field():
    event = parse_transcription_event({"status": "COMPLETED", "transcript_id": "job-1"})
    assert event.status == "completed"
    assert event.job_id == "job-1"
    event = parse_transcription_event({"status": "error", "id": 42, "error": "bad audio"})
    assert event.job_id == "42"
    assert event.error == "bad audio"


def test_parse_event_requires_status():
    with pytest.raises(ValidationError):
        parse_transcription_event({"transcript_id": "job-1"})
