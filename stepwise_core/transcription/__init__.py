from __future__ import annotations

from stepwise_core.config import Config
from stepwise_core.transcription.types import (
    CallbackTranscriber,
    Transcriber,
    Transcript,
    TranscriptSegment,
)


def build_transcriber(config: Config) -> Transcriber | None:
    """Return the synchronous backend, or None when it is callback-based or off."""
    backend = config.transcribe_backend
    if backend == "whisper_api":
        from stepwise_core.transcription.whisper_api import WhisperApiTranscriber

        return WhisperApiTranscriber(
            api_key=config.openai_api_key or "",
            base_url=config.whisper_api_base,
            model=config.whisper_model,
            timeout_s=config.transcribe_timeout_s,
        )
    if backend == "local_whisper":
        from stepwise_core.transcription.local_whisper import LocalWhisperTranscriber

        return LocalWhisperTranscriber()
    return None


def build_callback_transcriber(config: Config) -> CallbackTranscriber | None:
    if config.transcribe_backend == "assemblyai":
        from stepwise_core.transcription.assemblyai import AssemblyAiTranscriber

        return AssemblyAiTranscriber(
            api_key=config.assemblyai_api_key or "",
            base_url=config.assemblyai_base,
        )
    return None


__all__ = [
    "CallbackTranscriber",
    "Transcriber",
    "Transcript",
    "TranscriptSegment",
    "build_callback_transcriber",
    "build_transcriber",
]
