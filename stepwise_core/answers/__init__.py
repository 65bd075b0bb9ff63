from stepwise_core.answers.placeholder import looks_like_placeholder
from stepwise_core.answers.service import AnswerService
from stepwise_core.answers.types import (
    ANSWER_SOURCES,
    SOURCE_CACHED_FALLBACK,
    SOURCE_EMPTY_FALLBACK,
    SOURCE_GENERATED,
    SOURCE_REUSED,
    SOURCE_RULE_FALLBACK,
    AnswerRequest,
    AnswerResult,
)

__all__ = [
    "ANSWER_SOURCES",
    "AnswerRequest",
    "AnswerResult",
    "AnswerService",
    "SOURCE_CACHED_FALLBACK",
    "SOURCE_EMPTY_FALLBACK",
    "SOURCE_GENERATED",
    "SOURCE_REUSED",
    "SOURCE_RULE_FALLBACK",
    "looks_like_placeholder",
]
