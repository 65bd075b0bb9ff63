from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

from stepwise_core.answers.service import AnswerService
from stepwise_core.config import Config, get_config
from stepwise_core.embeddings import build_embedding_service
from stepwise_core.embeddings.service import EmbeddingService
from stepwise_core.metrics import MetricsCollector
from stepwise_core.pipeline.orchestrator import PipelineOrchestrator
from stepwise_core.pipeline.queue import build_job_queue
from stepwise_core.providers.completion import build_completion_client
from stepwise_core.retrieval.service import RetrievalService
from stepwise_core.steps.synthesizer import StepSynthesizer
from stepwise_core.stores.modules import SqliteModuleStore
from stepwise_core.stores.questions import SqliteQuestionStore
from stepwise_core.transcription import build_callback_transcriber, build_transcriber


@dataclass(frozen=True)
class Runtime:
    config: Config
    metrics: MetricsCollector
    modules: SqliteModuleStore
    questions: SqliteQuestionStore
    embeddings: EmbeddingService
    retrieval: RetrievalService
    answers: AnswerService
    orchestrator: PipelineOrchestrator


def build_runtime(config: Config | None = None) -> Runtime:
    config = config or get_config()
    metrics = MetricsCollector()
    modules = SqliteModuleStore(
        config.database_path,
        stale_after=timedelta(minutes=config.stale_processing_minutes),
    )
    questions = SqliteQuestionStore(config.database_path)
    embeddings = build_embedding_service(config, metrics)
    retrieval = RetrievalService(questions, metrics)
    completion = build_completion_client(config)
    answers = AnswerService(
        modules=modules,
        questions=questions,
        embeddings=embeddings,
        retrieval=retrieval,
        completion=completion,
        metrics=metrics,
        reuse_threshold=config.reuse_threshold,
        cache_threshold=config.cache_threshold,
        context_top_k=config.context_top_k,
    )
    synthesizer = StepSynthesizer(
        min_step_seconds=config.min_step_seconds,
        fallback_step_seconds=config.fallback_step_seconds,
        completion=completion if config.steps_use_model else None,
        max_transcript_chars=config.max_transcript_chars,
        metrics=metrics,
    )
    orchestrator = PipelineOrchestrator(
        config=config,
        modules=modules,
        synthesizer=synthesizer,
        transcriber=build_transcriber(config),
        callback_transcriber=build_callback_transcriber(config),
        metrics=metrics,
    )
    orchestrator.queue = build_job_queue(config, orchestrator.handle_job)
    return Runtime(
        config=config,
        metrics=metrics,
        modules=modules,
        questions=questions,
        embeddings=embeddings,
        retrieval=retrieval,
        answers=answers,
        orchestrator=orchestrator,
    )


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return build_runtime()
