from __future__ import annotations

from dataclasses import dataclass, replace

SOURCE_REUSED = "REUSED"
SOURCE_GENERATED = "GENERATED"
SOURCE_RULE_FALLBACK = "RULE_FALLBACK"
SOURCE_CACHED_FALLBACK = "CACHED_FALLBACK"
SOURCE_EMPTY_FALLBACK = "EMPTY_FALLBACK"

ANSWER_SOURCES = (
    SOURCE_REUSED,
    SOURCE_GENERATED,
    SOURCE_RULE_FALLBACK,
    SOURCE_CACHED_FALLBACK,
    SOURCE_EMPTY_FALLBACK,
)

EMPTY_FALLBACK_TEXT = (
    "I couldn't find that in this training yet. Try asking about a specific "
    "step number, or rephrase your question using words from the steps."
)


@dataclass(frozen=True)
class AnswerRequest:
    module_id: str
    question: str
    step_id: str | None = None
    video_time: float | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class AnswerResult:
    text: str
    source: str
    confidence: float | None = None
    question_id: str | None = None
    matched_question_id: str | None = None
    step_id: str | None = None

    def with_question_id(self, question_id: str | None) -> "AnswerResult":
        return replace(self, question_id=question_id)
