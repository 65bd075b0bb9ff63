from __future__ import annotations

import math
from typing import Sequence

from stepwise_core.steps.text import split_sentences
from stepwise_core.steps.types import RawStep
from stepwise_core.transcription.types import TranscriptSegment


def steps_from_segments(
    segments: Sequence[TranscriptSegment],
    min_step_seconds: float,
) -> list[RawStep]:
    """One step per segment, merging short segments into the running group."""
    groups: list[list] = []
    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue
        start = segment.start if math.isfinite(segment.start) else None
        end = segment.end if math.isfinite(segment.end) else None
        if start is not None and end is not None and end < start:
            end = None
        if groups:
            current = groups[-1]
            current_length = _length(current)
            if current_length is not None and current_length < min_step_seconds:
                current[1] = _later(current[1], end)
                current[2].append(text)
                continue
        groups.append([start, end, [text]])

    if len(groups) > 1:
        tail_length = _length(groups[-1])
        if tail_length is not None and tail_length < min_step_seconds:
            last = groups.pop()
            groups[-1][1] = _later(groups[-1][1], last[1])
            groups[-1][2].extend(last[2])

    return [
        RawStep(text=" ".join(parts), start=start, end=end)
        for start, end, parts in groups
    ]


def _length(group: list) -> float | None:
    start, end = group[0], group[1]
    if start is None or end is None:
        return None
    return end - start


def _later(current: float | None, candidate: float | None) -> float | None:
    if candidate is None:
        return current
    if current is None:
        return candidate
    return max(current, candidate)


def steps_from_text(
    text: str,
    duration: float | None,
    fallback_step_seconds: float,
) -> tuple[list[RawStep], float]:
    """Sequential synthetic windows, one per sentence.

    Returns the steps and the span they cover. With a known duration each
    sentence gets an equal share of it; otherwise every sentence gets
    ``fallback_step_seconds``.
    """
    units = split_sentences(text)
    if not units:
        return [], 0.0
    if duration and duration > 0:
        window = duration / len(units)
    else:
        window = fallback_step_seconds
    steps = [
        RawStep(text=unit, start=index * window, end=(index + 1) * window)
        for index, unit in enumerate(units)
    ]
    return steps, window * len(units)
