from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from stepwise_core.stores.types import Step

_ORDINALS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
}
_ORDINAL_NUMBER_RE = re.compile(r"\bstep\s*#?\s*(\d+)\b|\b(\d+)(?:st|nd|rd|th)?\s+step\b")
_STEP_COUNT_RE = re.compile(r"how many( \w+)? steps|total steps|number of steps")
_CURRENT_STEP_RE = re.compile(r"current step|this step|what step am i on|which step am i")
_WORD_RE = re.compile(r"\W+")

KEYWORD_THRESHOLD = 0.1
CURRENT_STEP_BIAS = 0.15


@dataclass(frozen=True)
class RuleAnswer:
    text: str
    confidence: float
    step: Step | None = None


def parse_ordinal(question: str) -> int | None:
    lowered = question.lower().strip()
    for word, number in _ORDINALS.items():
        if f"{word} step" in lowered:
            return number
    match = _ORDINAL_NUMBER_RE.search(lowered)
    if match:
        return int(match.group(1) or match.group(2))
    return None


def is_step_count_question(question: str) -> bool:
    return bool(_STEP_COUNT_RE.search(question.lower()))


def is_current_step_question(question: str) -> bool:
    return bool(_CURRENT_STEP_RE.search(question.lower()))


def navigation_direction(question: str) -> str | None:
    lowered = question.lower()
    if "next step" in lowered:
        return "next"
    if "previous step" in lowered or "step before" in lowered:
        return "previous"
    return None


def _words(text: str) -> set[str]:
    return {word for word in _WORD_RE.split(text.lower()) if word}


def keyword_overlap(question: str, text: str) -> float:
    asked = _words(question)
    if not asked:
        return 0.0
    found = _words(text)
    return len(asked & found) / len(asked)


def best_keyword_step(
    question: str,
    steps: Sequence[Step],
    current: Step | None = None,
) -> tuple[Step, float] | None:
    best: tuple[Step, float] | None = None
    for step in steps:
        score = keyword_overlap(question, step.text)
        if current is not None and step.id == current.id:
            score += CURRENT_STEP_BIAS
        if best is None or score > best[1]:
            best = (step, score)
    if best is None or best[1] <= KEYWORD_THRESHOLD:
        return None
    return best


def locate_step(
    steps: Sequence[Step],
    *,
    step_id: str | None = None,
    video_time: float | None = None,
) -> Step | None:
    if step_id:
        for step in steps:
            if step.id == step_id:
                return step
    if video_time is not None and steps:
        for step in steps:
            if step.start_time <= video_time < step.end_time:
                return step
        if video_time >= steps[-1].end_time:
            return steps[-1]
    return None


def _describe(step: Step) -> str:
    return f"Step {step.order}: {step.text}"


def rule_answer(
    question: str,
    steps: Sequence[Step],
    current: Step | None = None,
) -> RuleAnswer | None:
    """Deterministic answers from the step list alone."""
    if not steps:
        return None
    if is_step_count_question(question):
        return RuleAnswer(f"There are {len(steps)} steps in this training.", 1.0)

    direction = navigation_direction(question)
    if direction and current is not None:
        index = current.order - 1
        target_index = index + 1 if direction == "next" else index - 1
        if 0 <= target_index < len(steps):
            target = steps[target_index]
            return RuleAnswer(_describe(target), 0.9, target)

    ordinal = parse_ordinal(question)
    if ordinal is not None and 1 <= ordinal <= len(steps):
        target = steps[ordinal - 1]
        return RuleAnswer(_describe(target), 0.9, target)

    if is_current_step_question(question) and current is not None:
        return RuleAnswer(f"You're on {_describe(current)}", 0.9, current)

    best = best_keyword_step(question, steps, current)
    if best is not None:
        step, score = best
        return RuleAnswer(_describe(step), round(min(score, 1.0), 3), step)
    return None
