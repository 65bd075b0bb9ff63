from __future__ import annotations

from stepwise_core.errors import ProviderClientError, ProviderTransientError
from stepwise_core.logging import get_logger
from stepwise_core.providers.http import provider_json, provider_request
from stepwise_core.transcription.types import (
    Transcript,
    ensure_usable,
    segments_from_payload,
)

logger = get_logger(__name__)


class AssemblyAiTranscriber:
    """Submits transcription jobs; AssemblyAI calls back when they finish."""

    name = "assemblyai"

    def __init__(self, *, api_key: str, base_url: str, timeout_s: float = 30.0) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def _headers(self) -> dict[str, str]:
        return {"authorization": self.api_key, "content-type": "application/json"}

    def submit(self, media_url: str, webhook_url: str) -> str:
        resp = provider_request(
            self.name,
            "POST",
            f"{self.base_url}/v2/transcript",
            timeout=self.timeout_s,
            headers=self._headers(),
            json={
                "audio_url": media_url,
                "webhook_url": webhook_url,
                "punctuate": True,
                "format_text": True,
            },
        )
        payload = provider_json(resp, self.name)
        job_id = payload.get("id")
        if not job_id:
            raise ProviderTransientError("assemblyai submit returned no job id")
        return str(job_id)

    def fetch(self, job_id: str) -> Transcript:
        resp = provider_request(
            self.name,
            "GET",
            f"{self.base_url}/v2/transcript/{job_id}",
            timeout=self.timeout_s,
            headers=self._headers(),
        )
        payload = provider_json(resp, self.name)
        status = payload.get("status")
        if status == "error":
            raise ProviderClientError(
                f"assemblyai job {job_id} failed: {payload.get('error') or 'unknown'}"
            )
        if status != "completed":
            raise ProviderTransientError(
                f"assemblyai job {job_id} is not complete (status={status})"
            )
        text = str(payload.get("text") or "").strip()
        duration = payload.get("audio_duration")
        segments = self._sentences(job_id)
        return ensure_usable(
            Transcript(
                text=text,
                segments=segments,
                duration=float(duration) if duration is not None else None,
            )
        )

    def _sentences(self, job_id: str):
        try:
            resp = provider_request(
                self.name,
                "GET",
                f"{self.base_url}/v2/transcript/{job_id}/sentences",
                timeout=self.timeout_s,
                headers=self._headers(),
            )
            payload = provider_json(resp, self.name)
        except (ProviderClientError, ProviderTransientError) as exc:
            logger.warning(
                "AssemblyAI sentences unavailable; continuing without timing",
                extra={"job_id": job_id, "error_message": str(exc)},
            )
            return []
        # sentence offsets are reported in milliseconds
        return segments_from_payload(payload.get("sentences"), scale=0.001)
