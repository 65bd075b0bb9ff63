from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from stepwise_core.errors import ErrorCode, StepwiseError
from stepwise_core.logging import get_logger
from stepwise_core.metrics import MetricsCollector
from stepwise_core.retrieval.similarity import cosine_similarities
from stepwise_core.stores.questions import SqliteQuestionStore
from stepwise_core.stores.types import GLOBAL_SCOPE, Question

logger = get_logger(__name__)

_SCORE_EPSILON = 1e-9


@dataclass(frozen=True)
class Match:
    question: Question
    similarity: float


def _describe_scope(scope: str | Iterable[str]) -> str:
    if isinstance(scope, str):
        return scope
    return ",".join(sorted(scope))


class RetrievalService:
    def __init__(
        self,
        questions: SqliteQuestionStore,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.questions = questions
        self.metrics = metrics or MetricsCollector()

    def find_similar(
        self,
        vector: Sequence[float],
        scope: str | Iterable[str] = GLOBAL_SCOPE,
        threshold: float = 0.0,
        k: int = 5,
    ) -> list[Match]:
        """Stored questions ranked by cosine similarity, best first.

        Matches below ``threshold`` are dropped. An unavailable store yields
        an empty list so callers can fall through to their next tier.
        """
        if not isinstance(scope, str):
            scope = list(scope)
        try:
            rows = self.questions.load_vectors(scope)
        except StepwiseError as exc:
            self.metrics.increment("retrieval.unavailable")
            logger.warning(
                "Vector store unavailable; returning no matches",
                extra={
                    "error_code": ErrorCode.RETRIEVAL_UNAVAILABLE,
                    "error_message": str(exc),
                    "scope": _describe_scope(scope),
                },
            )
            return []

        dim = len(vector)
        candidates = [(question, emb) for question, emb in rows if len(emb) == dim]
        if not candidates:
            return []
        scores = cosine_similarities(vector, [emb for _, emb in candidates])
        ranked = sorted(
            (
                Match(question=question, similarity=float(score))
                for (question, _), score in zip(candidates, scores)
                if float(score) >= threshold - _SCORE_EPSILON
            ),
            key=lambda match: match.similarity,
            reverse=True,
        )
        return ranked[: max(0, k)]
