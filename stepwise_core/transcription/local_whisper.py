from __future__ import annotations

import os
from functools import lru_cache

from stepwise_core.transcription.types import (
    Transcript,
    ensure_usable,
    segments_from_payload,
)


@lru_cache(maxsize=1)
def _load_whisper_model():
    import whisper

    model_name = os.getenv("WHISPER_MODEL_NAME", "small")
    model_dir = os.getenv("MODEL_DIR", "/app/models")
    return whisper.load_model(model_name, download_root=model_dir)


class LocalWhisperTranscriber:
    """Runs an ``openai-whisper`` model in process; loaded on first use."""

    name = "local_whisper"

    def transcribe(self, audio_path: str) -> Transcript:
        model = _load_whisper_model()
        result = model.transcribe(audio_path, fp16=False)
        segments = segments_from_payload(result.get("segments"))
        text = str(result.get("text") or "").strip()
        duration = segments[-1].end if segments else None
        return ensure_usable(Transcript(text=text, segments=segments, duration=duration))
