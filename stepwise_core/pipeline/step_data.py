from __future__ import annotations

import json
from datetime import datetime, timezone

from stepwise_core.steps.types import SynthesisResult
from stepwise_core.transcription.types import Transcript

STEP_DATA_VERSION = 3


def build_step_data(
    module_id: str,
    transcript: Transcript,
    result: SynthesisResult,
) -> dict[str, object]:
    return {
        "version": STEP_DATA_VERSION,
        "module_id": module_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "transcript": transcript.text,
        "steps": [
            {
                "order": index,
                "text": step.text,
                "start": round(step.start, 3),
                "end": round(step.end, 3),
            }
            for index, step in enumerate(result.steps, start=1)
        ],
        "meta": {
            "strategy": result.strategy,
            "approximate": result.approximate,
            "total_duration": round(result.total_duration, 3),
            "segment_count": len(transcript.segments),
        },
    }


def step_data_bytes(payload: dict[str, object]) -> bytes:
    return json.dumps(payload, ensure_ascii=True, indent=2).encode("utf-8")
