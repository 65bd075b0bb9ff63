from __future__ import annotations

from stepwise_core.errors import PermanentError, StepwiseError
from stepwise_core.logging import get_logger
from stepwise_core.metrics import MetricsCollector
from stepwise_core.providers.completion import CompletionClient
from stepwise_core.steps.model import generate_model_steps
from stepwise_core.steps.normalize import looks_uniform, normalize_step_timings
from stepwise_core.steps.segments import steps_from_segments, steps_from_text
from stepwise_core.steps.types import (
    TIMING_ESTIMATED,
    TIMING_MODEL,
    TIMING_SEGMENTS,
    SynthesisResult,
)
from stepwise_core.transcription.types import Transcript

logger = get_logger(__name__)


class StepSynthesizer:
    def __init__(
        self,
        *,
        min_step_seconds: float = 3.0,
        fallback_step_seconds: float = 8.0,
        completion: CompletionClient | None = None,
        max_transcript_chars: int = 10000,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.min_step_seconds = min_step_seconds
        self.fallback_step_seconds = fallback_step_seconds
        self.completion = completion
        self.max_transcript_chars = max_transcript_chars
        self.metrics = metrics

    def _count(self, name: str) -> None:
        if self.metrics is not None:
            self.metrics.increment(name)

    def synthesize(
        self,
        transcript: Transcript,
        total_duration: float | None = None,
    ) -> SynthesisResult:
        text = transcript.text.strip()
        if not text and not transcript.segments:
            raise PermanentError("Transcript is empty")
        duration = _resolve_duration(transcript, total_duration)

        if self.completion is not None and duration:
            result = self._from_model(text, duration)
            if result is not None:
                return result

        if transcript.has_timing and duration:
            raw = steps_from_segments(transcript.segments, self.min_step_seconds)
            if raw:
                steps = normalize_step_timings(raw, duration)
                self._count("steps.strategy.segments")
                return SynthesisResult(
                    steps=steps,
                    strategy=TIMING_SEGMENTS,
                    total_duration=duration,
                )

        raw, span = steps_from_text(text, duration, self.fallback_step_seconds)
        if not raw:
            raise PermanentError("No usable steps could be derived from transcript")
        total = duration or span
        steps = normalize_step_timings(raw, total)
        self._count("steps.strategy.estimated")
        logger.info(
            "Steps synthesized from plain text; timing is estimated",
            extra={"strategy": TIMING_ESTIMATED, "step_count": len(steps)},
        )
        return SynthesisResult(
            steps=steps,
            strategy=TIMING_ESTIMATED,
            total_duration=total,
            approximate=True,
        )

    def _from_model(self, text: str, duration: float) -> SynthesisResult | None:
        try:
            raw = generate_model_steps(
                self.completion,
                text,
                duration,
                max_transcript_chars=self.max_transcript_chars,
            )
            steps = normalize_step_timings(raw, duration)
        except StepwiseError as exc:
            self._count("steps.model.rejected")
            logger.warning(
                "Model step generation failed; using transcript timing",
                extra={"strategy": TIMING_MODEL, "error_message": str(exc)},
            )
            return None
        if looks_uniform(steps, duration):
            self._count("steps.model.rejected")
            logger.warning(
                "Model steps look uniformly spaced; using transcript timing",
                extra={"strategy": TIMING_MODEL, "step_count": len(steps)},
            )
            return None
        self._count("steps.strategy.model")
        return SynthesisResult(steps=steps, strategy=TIMING_MODEL, total_duration=duration)


def _resolve_duration(transcript: Transcript, total_duration: float | None) -> float:
    if total_duration and total_duration > 0:
        return float(total_duration)
    if transcript.duration and transcript.duration > 0:
        return float(transcript.duration)
    ends = [segment.end for segment in transcript.segments if segment.end > 0]
    return max(ends) if ends else 0.0
