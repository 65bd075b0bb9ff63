from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from dataclasses import dataclass

from stepwise_core.errors import PermanentError, RecoverableError
from stepwise_core.ingestion.download import cleanup_tmp


@dataclass(frozen=True)
class MediaProbe:
    duration_seconds: float
    has_audio: bool


def _ensure_tool(name: str) -> None:
    if shutil.which(name) is None:
        raise RecoverableError(f"Missing required binary: {name}")


_CORRUPT_MARKERS = (
    "invalid data found when processing input",
    "moov atom not found",
    "output file does not contain any stream",
    "could not find codec parameters",
    "does not contain any stream",
    "matches no streams",
    "unknown format",
)


def _raise_media_error(step: str, stderr: str) -> None:
    message = stderr.strip() or "Unknown media error"
    lowered = message.lower()
    if any(marker in lowered for marker in _CORRUPT_MARKERS):
        raise PermanentError(f"{step} failed: {message}")
    raise RecoverableError(f"{step} failed: {message}")


def _parse_fraction(value: str | None) -> float | None:
    if not value:
        return None
    if "/" in value:
        num, den = value.split("/", 1)
        try:
            return float(num) / float(den)
        except (ValueError, ZeroDivisionError):
            return None
    try:
        return float(value)
    except ValueError:
        return None


def parse_probe_payload(payload: dict) -> MediaProbe:
    format_info = payload.get("format", {}) or {}
    streams = payload.get("streams", []) or []

    duration = _parse_fraction(format_info.get("duration")) or 0.0
    has_audio = False

    for stream in streams:
        codec_type = stream.get("codec_type")
        if codec_type == "audio":
            has_audio = True
        elif codec_type != "video":
            continue
        stream_duration = _parse_fraction(stream.get("duration"))
        if stream_duration and stream_duration > duration:
            duration = stream_duration

    return MediaProbe(
        duration_seconds=duration,
        has_audio=has_audio,
    )


def probe_media(path: str) -> MediaProbe:
    _ensure_tool("ffprobe")
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as exc:
        _raise_media_error("ffprobe", exc.stderr or exc.stdout or str(exc))

    try:
        payload = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise PermanentError(f"ffprobe returned invalid JSON: {exc}") from exc
    return parse_probe_payload(payload)


def extract_audio(input_path: str, sample_rate: int = 16000) -> str:
    """Write a mono WAV track at ``sample_rate`` and return its temp path."""
    _ensure_tool("ffmpeg")
    tmp = tempfile.NamedTemporaryFile(suffix=".wav", delete=False)
    tmp_path = tmp.name
    tmp.close()

    cmd = [
        "ffmpeg",
        "-y",
        "-i",
        input_path,
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-acodec",
        "pcm_s16le",
        tmp_path,
    ]
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as exc:
        cleanup_tmp(tmp_path)
        _raise_media_error(
            "ffmpeg extract audio",
            exc.stderr or exc.stdout or str(exc),
        )
    return tmp_path
