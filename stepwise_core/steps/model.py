from __future__ import annotations

import json
import re
from typing import Any

from stepwise_core.errors import ValidationError
from stepwise_core.providers.completion import CompletionClient
from stepwise_core.steps.text import smart_trim_transcript
from stepwise_core.steps.types import RawStep

STEP_SYSTEM_PROMPT = (
    "You turn training video transcripts into short, ordered instructional "
    "steps. Respond with JSON only."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def build_step_prompt(transcript_text: str, duration: float, cap: int) -> str:
    trimmed = smart_trim_transcript(transcript_text, cap)
    return (
        f"The video is {duration:.1f} seconds long.\n"
        "Split the transcript into the distinct steps a learner performs. "
        "Use the timing implied by the transcript; do not space steps evenly.\n"
        'Return {"steps": [{"text": "...", "start": seconds or "mm:ss", '
        '"end": seconds or "mm:ss"}]}.\n\n'
        f"Transcript:\n{trimmed}"
    )


def _extract_json(raw: str) -> Any:
    cleaned = _FENCE_RE.sub("", raw.strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    for opener, closer in (("{", "}"), ("[", "]")):
        first = cleaned.find(opener)
        last = cleaned.rfind(closer)
        if first != -1 and last > first:
            try:
                return json.loads(cleaned[first : last + 1])
            except json.JSONDecodeError:
                continue
    raise ValidationError("Model step output is not JSON")


def _first(item: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_model_steps(raw: str) -> list[RawStep]:
    payload = _extract_json(raw)
    items = payload.get("steps") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise ValidationError("Model step output has no step list")
    steps: list[RawStep] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        text = _first(item, "text", "title", "description")
        if not text or not str(text).strip():
            continue
        steps.append(
            RawStep(
                text=str(text).strip(),
                start=_first(item, "start", "startTime", "timestamp"),
                end=_first(item, "end", "endTime"),
            )
        )
    if not steps:
        raise ValidationError("Model step output contained no steps")
    return steps


def generate_model_steps(
    client: CompletionClient,
    transcript_text: str,
    duration: float,
    *,
    max_transcript_chars: int = 10000,
) -> list[RawStep]:
    raw = client.complete(
        STEP_SYSTEM_PROMPT,
        build_step_prompt(transcript_text, duration, max_transcript_chars),
        max_tokens=1200,
    )
    return parse_model_steps(raw)
