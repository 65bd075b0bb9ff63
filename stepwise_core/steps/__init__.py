from stepwise_core.steps.normalize import looks_uniform, normalize_step_timings, parse_time
from stepwise_core.steps.synthesizer import StepSynthesizer
from stepwise_core.steps.types import RawStep, SynthesisResult, TimedStep

__all__ = [
    "RawStep",
    "StepSynthesizer",
    "SynthesisResult",
    "TimedStep",
    "looks_uniform",
    "normalize_step_timings",
    "parse_time",
]
