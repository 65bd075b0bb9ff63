import time

import pytest
import requests

from stepwise_core.embeddings.openai_backend import OpenAiTextEmbedder
from stepwise_core.errors import (
    InferenceTimeoutError,
    ProviderClientError,
    ProviderTransientError,
)
from stepwise_core.providers import http as http_module
from stepwise_core.providers.completion import OpenAiChatCompletion
from stepwise_core.providers.http import provider_request
from stepwise_core.providers.timeout import run_with_timeout
from stepwise_core.transcription.assemblyai import AssemblyAiTranscriber
from stepwise_core.transcription.whisper_api import WhisperApiTranscriber


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Router:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected url {url}")


def _install(monkeypatch, routes):
    router = _Router(routes)
    monkeypatch.setattr(http_module.requests, "request", router)
    return router


@pytest.mark.parametrize("status", [408, 429, 500, 503])
def test_retryable_statuses_are_transient(monkeypatch, status):
    _install(monkeypatch, {"/x": _FakeResponse(status, text="busy")})
    with pytest.raises(ProviderTransientError) as excinfo:
        provider_request("demo", "GET", "https://api/x", timeout=1)
    assert excinfo.value.status_code == status


@pytest.mark.parametrize("status", [400, 401, 404])
def test_client_statuses_are_permanent(monkeypatch, status):
    _install(monkeypatch, {"/x": _FakeResponse(status, text="bad request")})
    with pytest.raises(ProviderClientError) as excinfo:
        provider_request("demo", "GET", "https://api/x", timeout=1)
    assert "bad request" in str(excinfo.value)


def test_network_failures_are_transient(monkeypatch):
    _install(monkeypatch, {"/slow": requests.Timeout("slow"), "/down": requests.ConnectionError("down")})
    with pytest.raises(ProviderTransientError):
        provider_request("demo", "GET", "https://api/slow", timeout=1)
    with pytest.raises(ProviderTransientError):
        provider_request("demo", "GET", "https://api/down", timeout=1)


def test_run_with_timeout():
    assert run_with_timeout("demo", lambda: 42, 1.0) == 42
    assert run_with_timeout("demo", lambda: 7, 0) == 7
    with pytest.raises(InferenceTimeoutError):
        run_with_timeout("demo", lambda: time.sleep(0.5), 0.05)


def test_whisper_api_parses_verbose_json(monkeypatch, tmp_path):
    audio = tmp_path / "clip.wav"
    audio.write_bytes(b"RIFF")
    router = _install(
        monkeypatch,
        {
            "/audio/transcriptions": _FakeResponse(
                payload={
                    "text": " Open the box. Plug it in. ",
                    "duration": 9.5,
                    "segments": [
                        {"start": 0.0, "end": 4.0, "text": " Open the box."},
                        {"start": 4.0, "end": 9.5, "text": " Plug it in."},
                    ],
                }
            )
        },
    )
    transcriber = WhisperApiTranscriber(
        api_key="key", base_url="https://api.openai.com/v1/", model="whisper-1", timeout_s=5
    )
    transcript = transcriber.transcribe(str(audio))
    assert transcript.text == "Open the box. Plug it in."
    assert transcript.duration == 9.5
    assert [(s.start, s.end, s.text) for s in transcript.segments] == [
        (0.0, 4.0, "Open the box."),
        (4.0, 9.5, "Plug it in."),
    ]
    method, url, kwargs = router.calls[0]
    assert (method, url) == ("POST", "https://api.openai.com/v1/audio/transcriptions")
    assert kwargs["data"]["response_format"] == "verbose_json"


def test_assemblyai_submit_and_fetch(monkeypatch):
    router = _install(
        monkeypatch,
        {
            "/v2/transcript": _FakeResponse(payload={"id": "job-9", "status": "queued"}),
            "/v2/transcript/job-9": _FakeResponse(
                payload={"status": "completed", "text": "Open it. Close it.", "audio_duration": 6}
            ),
            "/v2/transcript/job-9/sentences": _FakeResponse(
                payload={
                    "sentences": [
                        {"start": 0, "end": 2500, "text": "Open it."},
                        {"start": 2500, "end": 6000, "text": "Close it."},
                    ]
                }
            ),
        },
    )
    client = AssemblyAiTranscriber(api_key="key", base_url="https://api.assemblyai.com")
    job_id = client.submit("https://cdn/video.mp4", "https://app/webhooks/transcription?moduleId=m1")
    assert job_id == "job-9"
    assert router.calls[0][2]["json"]["webhook_url"].endswith("moduleId=m1")

    transcript = client.fetch("job-9")
    assert transcript.duration == 6.0
    assert [(s.start, s.end) for s in transcript.segments] == [(0.0, 2.5), (2.5, 6.0)]


def test_assemblyai_fetch_without_sentences_keeps_text(monkeypatch):
    _install(
        monkeypatch,
        {
            "/v2/transcript/job-1": _FakeResponse(payload={"status": "completed", "text": "Open it."}),
            "/v2/transcript/job-1/sentences": _FakeResponse(500, text="oops"),
        },
    )
    transcript = AssemblyAiTranscriber(api_key="k", base_url="https://a").fetch("job-1")
    assert transcript.text == "Open it."
    assert transcript.segments == []


def test_assemblyai_reports_failed_jobs(monkeypatch):
    _install(
        monkeypatch,
        {"/v2/transcript/job-2": _FakeResponse(payload={"status": "error", "error": "no audio"})},
    )
    with pytest.raises(ProviderClientError):
        AssemblyAiTranscriber(api_key="k", base_url="https://a").fetch("job-2")


def test_openai_clients(monkeypatch):
    _install(
        monkeypatch,
        {
            "/embeddings": _FakeResponse(
                payload={"data": [{"index": 1, "embedding": [0, 1]}, {"index": 0, "embedding": [1, 0]}]}
            ),
            "/chat/completions": _FakeResponse(
                payload={"choices": [{"message": {"content": " Step 1 explains it. "}}]}
            ),
        },
    )
    embedder = OpenAiTextEmbedder(
        api_key="k", base_url="https://api/v1", model="m", dim=2, timeout_s=5
    )
    assert embedder.encode(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]
    completion = OpenAiChatCompletion(api_key="k", base_url="https://api/v1", model="m", timeout_s=5)
    assert completion.complete("system", "prompt") == "Step 1 explains it."


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [{"index": 0}]},
        {"data": "nope"},
        {"data": [{"index": 0, "embedding": ["x"]}]},
    ],
)
def test_embedder_rejects_malformed_payloads(monkeypatch, payload):
    _install(monkeypatch, {"/embeddings": _FakeResponse(payload=payload)})
    embedder = OpenAiTextEmbedder(
        api_key="k", base_url="https://api/v1", model="m", dim=2, timeout_s=5
    )
    with pytest.raises(ProviderTransientError):
        embedder.encode(["a"])


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": ["not a choice"]},
        {"choices": [{"message": "text"}]},
        {"choices": {"message": {}}},
    ],
)
def test_completion_rejects_malformed_payloads(monkeypatch, payload):
    _install(monkeypatch, {"/chat/completions": _FakeResponse(payload=payload)})
    completion = OpenAiChatCompletion(api_key="k", base_url="https://api/v1", model="m", timeout_s=5)
    with pytest.raises(ProviderTransientError):
        completion.complete("system", "prompt")
