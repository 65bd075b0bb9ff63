from stepwise_core.pipeline.orchestrator import PipelineOrchestrator
from stepwise_core.pipeline.queue import (
    Job,
    JobQueue,
    LocalJobQueue,
    RedisJobQueue,
    build_job_queue,
    run_worker,
)

__all__ = [
    "Job",
    "JobQueue",
    "LocalJobQueue",
    "PipelineOrchestrator",
    "RedisJobQueue",
    "build_job_queue",
    "run_worker",
]
