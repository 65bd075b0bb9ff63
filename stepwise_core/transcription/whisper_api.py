from __future__ import annotations

import os

from stepwise_core.logging import get_logger
from stepwise_core.providers.http import provider_json, provider_request
from stepwise_core.transcription.types import (
    Transcript,
    ensure_usable,
    segments_from_payload,
)

logger = get_logger(__name__)


class WhisperApiTranscriber:
    """OpenAI-compatible ``/audio/transcriptions`` client."""

    name = "whisper_api"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout_s: float,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s

    def transcribe(self, audio_path: str) -> Transcript:
        url = f"{self.base_url}/audio/transcriptions"
        with open(audio_path, "rb") as handle:
            resp = provider_request(
                self.name,
                "POST",
                url,
                timeout=self.timeout_s,
                headers={"Authorization": f"Bearer {self.api_key}"},
                data={
                    "model": self.model,
                    "response_format": "verbose_json",
                    "timestamp_granularities[]": "segment",
                },
                files={"file": (os.path.basename(audio_path), handle, "audio/wav")},
            )
        payload = provider_json(resp, self.name)
        segments = segments_from_payload(payload.get("segments"))
        text = str(payload.get("text") or "").strip()
        if not text and segments:
            text = " ".join(segment.text for segment in segments)
        duration = payload.get("duration")
        logger.info(
            "Whisper transcription complete",
            extra={"stage": "transcribe", "step_count": len(segments)},
        )
        return ensure_usable(
            Transcript(
                text=text,
                segments=segments,
                duration=float(duration) if duration is not None else None,
            )
        )
