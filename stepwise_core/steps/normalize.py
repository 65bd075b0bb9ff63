from __future__ import annotations

import math
import re
from typing import Sequence

from stepwise_core.steps.types import RawStep, TimedStep, TimeValue

_CLOCK_RE = re.compile(r"^(?:(\d+):)?(\d{1,3}):(\d{1,2}(?:\.\d+)?)$")
_MIN_LENGTH = 1e-3


def parse_time(value: TimeValue) -> float | None:
    """Seconds from a number, a numeric string, ``mm:ss`` or ``hh:mm:ss``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    cleaned = str(value).strip()
    if not cleaned:
        return None
    match = _CLOCK_RE.match(cleaned)
    if match:
        hours = int(match.group(1) or 0)
        minutes = int(match.group(2))
        seconds = float(match.group(3))
        return hours * 3600 + minutes * 60 + seconds
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _join(*parts: str) -> str:
    return " ".join(part.strip() for part in parts if part and part.strip())


def normalize_step_timings(
    steps: Sequence[RawStep],
    total_duration: float,
) -> list[TimedStep]:
    """Repair noisy step timings into sorted, non-overlapping windows.

    Textual times are parsed, steps are sorted by start, missing ends are
    inferred from the next start (or ``total_duration`` for the last step),
    values are clamped into ``[0, total_duration]``, inversions are forced to
    ``end >= start`` and overlaps are resolved by moving a start up to the
    previous end. Steps left with no length are folded into a neighbour so
    every returned step satisfies ``start < end``.
    """
    if total_duration is None or total_duration <= 0:
        raise ValueError("total_duration must be positive")
    if not steps:
        return []
    total = float(total_duration)

    parsed = [
        (parse_time(step.start), parse_time(step.end), step.text or "")
        for step in steps
    ]
    ordered = sorted(parsed, key=lambda item: item[0] if item[0] is not None else 0.0)

    working: list[list] = []
    for index, (start, end, text) in enumerate(ordered):
        start = start if start is not None else 0.0
        if end is None:
            if index + 1 < len(ordered) and ordered[index + 1][0] is not None:
                end = ordered[index + 1][0]
            else:
                end = total
        working.append([start, end, text])

    previous_end = 0.0
    for item in working:
        start = _clamp(item[0], 0.0, total)
        end = _clamp(item[1], 0.0, total)
        if end < start:
            end = start
        if start < previous_end:
            start = previous_end
            end = max(end, start)
        item[0], item[1] = start, end
        previous_end = end

    result: list[TimedStep] = []
    pending = ""
    for start, end, text in working:
        if end - start < _MIN_LENGTH:
            if result:
                last = result[-1]
                result[-1] = TimedStep(_join(last.text, text), last.start, last.end)
            else:
                pending = _join(pending, text)
            continue
        result.append(TimedStep(_join(pending, text), start, end))
        pending = ""

    if not result:
        return [TimedStep(_join(*(item[2] for item in working)), 0.0, total)]
    return result


def looks_uniform(steps: Sequence[TimedStep], total_duration: float) -> bool:
    """True for equal-length steps laid edge to edge over the whole media.

    That shape is what a naive fallback produces; genuinely uniform content
    can trip it too.
    """
    if len(steps) < 2:
        return False
    durations = {round(step.end - step.start, 2) for step in steps}
    return (
        len(durations) == 1
        and abs(steps[0].start) < 0.01
        and abs(steps[-1].end - total_duration) < 0.5
    )
