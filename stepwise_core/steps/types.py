from __future__ import annotations

from dataclasses import dataclass
from typing import Union

TimeValue = Union[float, int, str, None]

TIMING_SEGMENTS = "segments"
TIMING_MODEL = "model"
TIMING_ESTIMATED = "estimated"


@dataclass(frozen=True)
class RawStep:
    """A step candidate whose timing may be missing or textual."""

    text: str
    start: TimeValue = None
    end: TimeValue = None


@dataclass(frozen=True)
class TimedStep:
    text: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class SynthesisResult:
    steps: list[TimedStep]
    strategy: str
    total_duration: float
    approximate: bool = False
