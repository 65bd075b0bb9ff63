from __future__ import annotations

from dataclasses import dataclass

STATUS_UPLOADED = "UPLOADED"
STATUS_PROCESSING = "PROCESSING"
STATUS_READY = "READY"
STATUS_FAILED = "FAILED"

GLOBAL_SCOPE = "global"

STALE_LOCK_MESSAGE = (
    "Stale processing lock cleared - module was stuck in PROCESSING status"
)


@dataclass(frozen=True)
class Module:
    id: str
    status: str
    progress: int
    video_key: str
    steps_key: str | None
    transcript_text: str | None
    last_error: str | None
    title: str | None
    user_id: str | None
    run_id: str | None
    transcript_job_id: str | None
    duration_seconds: float | None
    created_at: float
    updated_at: float


@dataclass(frozen=True)
class Step:
    id: str
    module_id: str
    order: int
    text: str
    start_time: float
    end_time: float
    timing_source: str


@dataclass(frozen=True)
class Question:
    id: str
    module_id: str
    step_id: str | None
    question: str
    answer: str
    video_time: float | None
    is_faq: bool
    user_id: str | None
    source: str
    created_at: float


@dataclass(frozen=True)
class ProcessingDecision:
    """Outcome of trying to take the per-module processing lock.

    ``action`` is ``process`` when the caller now owns run ``run_id``;
    ``skip_processing`` when a live run holds the lock; ``skip_finished``
    when the module already reached READY/FAILED and no reset was asked for.
    """

    action: str
    module: Module
    run_id: str | None = None
    superseded_run_id: str | None = None

    @property
    def should_process(self) -> bool:
        return self.action == "process"
