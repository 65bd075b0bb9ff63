from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from stepwise_core.errors import PermanentError


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(frozen=True)
class Transcript:
    text: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    duration: float | None = None

    @property
    def has_timing(self) -> bool:
        return bool(self.segments)


class Transcriber(Protocol):
    """Synchronous speech-to-text backend."""

    name: str

    def transcribe(self, audio_path: str) -> Transcript: ...


class CallbackTranscriber(Protocol):
    """Job-based backend that reports completion through a webhook."""

    name: str

    def submit(self, media_url: str, webhook_url: str) -> str: ...

    def fetch(self, job_id: str) -> Transcript: ...


def ensure_usable(transcript: Transcript) -> Transcript:
    if not transcript.text.strip():
        raise PermanentError("Transcript is empty")
    return transcript


def segments_from_payload(
    items: list[dict] | None,
    *,
    scale: float = 1.0,
) -> list[TranscriptSegment]:
    """Build segments from provider dicts; ``scale`` converts units to seconds."""
    segments: list[TranscriptSegment] = []
    for item in items or []:
        text = str(item.get("text", "")).strip()
        if not text:
            continue
        try:
            start = float(item.get("start", 0)) * scale
            end = float(item.get("end", 0)) * scale
        except (TypeError, ValueError):
            continue
        segments.append(TranscriptSegment(start=start, end=end, text=text))
    return segments
