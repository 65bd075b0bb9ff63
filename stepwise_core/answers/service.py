from __future__ import annotations

from typing import Sequence

from stepwise_core.answers.placeholder import looks_like_placeholder
from stepwise_core.answers.prompt import ContextSnippet, build_rag_prompt
from stepwise_core.answers.rules import keyword_overlap, locate_step, rule_answer
from stepwise_core.answers.types import (
    EMPTY_FALLBACK_TEXT,
    SOURCE_CACHED_FALLBACK,
    SOURCE_EMPTY_FALLBACK,
    SOURCE_GENERATED,
    SOURCE_REUSED,
    SOURCE_RULE_FALLBACK,
    AnswerRequest,
    AnswerResult,
)
from stepwise_core.embeddings.service import EmbeddingService
from stepwise_core.errors import ErrorCode, StepwiseError, ValidationError
from stepwise_core.logging import get_logger
from stepwise_core.metrics import MetricsCollector, timed_call
from stepwise_core.providers.completion import CompletionClient
from stepwise_core.retrieval.service import Match, RetrievalService
from stepwise_core.stores.modules import SqliteModuleStore
from stepwise_core.stores.questions import SqliteQuestionStore
from stepwise_core.stores.types import GLOBAL_SCOPE, Step

logger = get_logger(__name__)


class AnswerService:
    """Tiered question answering for a training module.

    Tiers, in order: reuse a stored answer to a near-identical question
    (module scope before global), generate from retrieved context, answer
    from deterministic step rules, fall back to the closest prior answer,
    then a fixed suggestion. Every answer is stored and embedded so later
    questions can reuse it.
    """

    def __init__(
        self,
        *,
        modules: SqliteModuleStore,
        questions: SqliteQuestionStore,
        embeddings: EmbeddingService,
        retrieval: RetrievalService,
        completion: CompletionClient | None = None,
        metrics: MetricsCollector | None = None,
        reuse_threshold: float = 0.85,
        cache_threshold: float = 0.6,
        context_top_k: int = 4,
    ) -> None:
        self.modules = modules
        self.questions = questions
        self.embeddings = embeddings
        self.retrieval = retrieval
        self.completion = completion
        self.metrics = metrics or MetricsCollector()
        self.reuse_threshold = reuse_threshold
        self.cache_threshold = cache_threshold
        self.context_top_k = context_top_k

    def answer(self, request: AnswerRequest) -> AnswerResult:
        question = request.question.strip()
        if not question:
            raise ValidationError("Question must not be empty")
        if request.module_id != GLOBAL_SCOPE:
            self.modules.require(request.module_id)

        vector = self._embed(question)
        steps = self._steps(request.module_id)
        current = locate_step(
            steps,
            step_id=request.step_id,
            video_time=request.video_time,
        )

        result = None
        if vector is not None:
            result = self._reuse(request.module_id, vector)
        if result is None:
            result = self._generate(request, question, steps, current, vector)
        if result is None:
            result = self._rules(question, steps, current)
        if result is None and vector is not None:
            result = self._cached(request.module_id, vector)
        if result is None:
            result = AnswerResult(
                text=EMPTY_FALLBACK_TEXT,
                source=SOURCE_EMPTY_FALLBACK,
                confidence=0.0,
            )

        self.metrics.increment(f"answers.source.{result.source.lower()}")
        self.metrics.increment("answers.total")
        question_id = self._persist(request, question, result, vector, current)
        logger.info(
            "Question answered",
            extra={
                "module_id": request.module_id,
                "question_id": question_id,
                "source": result.source,
                "similarity": result.confidence,
            },
        )
        return result.with_question_id(question_id)

    def _embed(self, text: str) -> list[float] | None:
        try:
            return self.embeddings.embed(text)
        except StepwiseError as exc:
            self.metrics.increment("answers.embedding_failed")
            logger.warning(
                "Question embedding failed; skipping similarity tiers",
                extra={
                    "error_code": ErrorCode.RETRIEVAL_UNAVAILABLE,
                    "error_message": str(exc),
                },
            )
            return None

    def _steps(self, module_id: str) -> list[Step]:
        if module_id == GLOBAL_SCOPE:
            return []
        return self.modules.list_steps(module_id)

    def _usable(self, matches: Sequence[Match]) -> Match | None:
        for match in matches:
            if match.question.source == SOURCE_EMPTY_FALLBACK:
                continue
            if looks_like_placeholder(match.question.answer):
                continue
            return match
        return None

    def _reuse(self, module_id: str, vector: list[float]) -> AnswerResult | None:
        scopes = [module_id] if module_id == GLOBAL_SCOPE else [module_id, GLOBAL_SCOPE]
        for scope in scopes:
            match = self._usable(
                self.retrieval.find_similar(vector, scope, self.reuse_threshold, k=5)
            )
            if match is None:
                continue
            return AnswerResult(
                text=match.question.answer,
                source=SOURCE_REUSED,
                confidence=round(match.similarity, 4),
                matched_question_id=match.question.id,
                step_id=match.question.step_id,
            )
        return None

    def _context(
        self,
        module_id: str,
        question: str,
        steps: Sequence[Step],
        current: Step | None,
        vector: list[float] | None,
    ) -> list[ContextSnippet]:
        ranked = sorted(
            steps,
            key=lambda step: keyword_overlap(question, step.text),
            reverse=True,
        )
        chosen = ranked[: self.context_top_k]
        if current is not None and current not in chosen:
            chosen = [current, *chosen[: max(0, self.context_top_k - 1)]]
        snippets = [
            ContextSnippet("step", f"Step {step.order}: {step.text}")
            for step in sorted(chosen, key=lambda step: step.order)
        ]
        if vector is not None and module_id != GLOBAL_SCOPE:
            for match in self.retrieval.find_similar(
                vector, module_id, self.cache_threshold, k=self.context_top_k
            ):
                if looks_like_placeholder(match.question.answer):
                    continue
                snippets.append(
                    ContextSnippet(
                        "qa",
                        f"Q: {match.question.question} A: {match.question.answer}",
                    )
                )
        return snippets

    def _generate(
        self,
        request: AnswerRequest,
        question: str,
        steps: Sequence[Step],
        current: Step | None,
        vector: list[float] | None,
    ) -> AnswerResult | None:
        if self.completion is None:
            return None
        context = self._context(request.module_id, question, steps, current, vector)
        system, prompt = build_rag_prompt(
            question,
            len(steps),
            context,
            current_step=f"Step {current.order}: {current.text}" if current else None,
        )
        try:
            text = timed_call(
                self.metrics,
                "completion.call",
                lambda: self.completion.complete(system, prompt),
            )
        except StepwiseError as exc:
            self.metrics.increment("answers.completion_failed")
            logger.warning(
                "Completion failed; falling back to rules",
                extra={"module_id": request.module_id, "error_message": str(exc)},
            )
            return None
        if looks_like_placeholder(text):
            self.metrics.increment("answers.placeholder_rejected")
            logger.warning(
                "Completion returned placeholder text; falling back",
                extra={
                    "module_id": request.module_id,
                    "error_code": ErrorCode.PLACEHOLDER_RESPONSE,
                },
            )
            return None
        return AnswerResult(
            text=text.strip(),
            source=SOURCE_GENERATED,
            step_id=current.id if current else None,
        )

    def _rules(
        self,
        question: str,
        steps: Sequence[Step],
        current: Step | None,
    ) -> AnswerResult | None:
        ruled = rule_answer(question, steps, current)
        if ruled is None:
            return None
        return AnswerResult(
            text=ruled.text,
            source=SOURCE_RULE_FALLBACK,
            confidence=ruled.confidence,
            step_id=ruled.step.id if ruled.step else None,
        )

    def _cached(self, module_id: str, vector: list[float]) -> AnswerResult | None:
        match = self._usable(
            self.retrieval.find_similar(vector, module_id, self.cache_threshold, k=5)
        )
        if match is None:
            return None
        return AnswerResult(
            text=match.question.answer,
            source=SOURCE_CACHED_FALLBACK,
            confidence=round(match.similarity, 4),
            matched_question_id=match.question.id,
            step_id=match.question.step_id,
        )

    def _persist(
        self,
        request: AnswerRequest,
        question: str,
        result: AnswerResult,
        vector: list[float] | None,
        current: Step | None,
    ) -> str | None:
        try:
            stored = self.questions.add(
                module_id=request.module_id,
                question=question,
                answer=result.text,
                source=result.source,
                step_id=result.step_id or (current.id if current else request.step_id),
                video_time=request.video_time,
                user_id=request.user_id,
                embedding=vector,
            )
        except StepwiseError as exc:
            logger.warning(
                "Failed to store answered question",
                extra={"module_id": request.module_id, "error_message": str(exc)},
            )
            return None
        return stored.id

    def stats(self) -> dict[str, object]:
        total = self.metrics.count("answers.total")
        reused = self.metrics.count("answers.source.reused")
        return {
            "total": total,
            "reused": reused,
            "reuse_rate": round(reused / total, 4) if total else 0.0,
        }
