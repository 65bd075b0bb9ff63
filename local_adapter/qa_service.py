from __future__ import annotations

import os

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from stepwise_core.answers.types import AnswerRequest
from stepwise_core.logging import configure_logging, get_logger
from stepwise_core.runtime import get_runtime
from stepwise_core.services.fastapi_scaffolding import (
    HealthResponse,
    add_correlation_id_middleware,
    add_error_handlers,
    apply_cors_middleware,
    build_health_response,
)
from stepwise_core.stores.types import Question

SERVICE_NAME = "stepwise-qa"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV", "local"),
    version=os.getenv("STEPWISE_VERSION"),
)
logger = get_logger(__name__)

app = FastAPI()
apply_cors_middleware(app)
add_correlation_id_middleware(app)
add_error_handlers(app)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AnswerPayload(CamelModel):
    module_id: str = Field(alias="moduleId", min_length=1)
    question: str
    step_id: str | None = Field(default=None, alias="stepId")
    video_time: float | None = Field(default=None, alias="videoTime")
    user_id: str | None = Field(default=None, alias="userId")


class AnswerResponse(CamelModel):
    answer: str
    source: str
    confidence: float | None = None
    question_id: str | None = Field(default=None, alias="questionId")
    step_id: str | None = Field(default=None, alias="stepId")


class QuestionResponse(CamelModel):
    id: str
    module_id: str = Field(alias="moduleId")
    step_id: str | None = Field(default=None, alias="stepId")
    question: str
    answer: str
    source: str
    video_time: float | None = Field(default=None, alias="videoTime")
    is_faq: bool = Field(alias="isFaq")
    created_at: float = Field(alias="createdAt")


class QuestionListResponse(CamelModel):
    module_id: str = Field(alias="moduleId")
    questions: list[QuestionResponse]


class FaqPayload(CamelModel):
    is_faq: bool = Field(default=True, alias="isFaq")


def _question_response(question: Question) -> QuestionResponse:
    return QuestionResponse(
        id=question.id,
        module_id=question.module_id,
        step_id=question.step_id,
        question=question.question,
        answer=question.answer,
        source=question.source,
        video_time=question.video_time,
        is_faq=question.is_faq,
        created_at=question.created_at,
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return build_health_response(SERVICE_NAME)


@app.get("/metrics")
def metrics() -> dict[str, object]:
    runtime = get_runtime()
    snapshot = runtime.metrics.snapshot()
    snapshot["answers"] = runtime.answers.stats()
    return snapshot


@app.post("/answers", response_model=AnswerResponse)
def answer_question(payload: AnswerPayload) -> AnswerResponse:
    if not payload.question.strip():
        raise HTTPException(status_code=400, detail="question is required")
    result = get_runtime().answers.answer(
        AnswerRequest(
            module_id=payload.module_id,
            question=payload.question,
            step_id=payload.step_id,
            video_time=payload.video_time,
            user_id=payload.user_id,
        )
    )
    return AnswerResponse(
        answer=result.text,
        source=result.source,
        confidence=result.confidence,
        question_id=result.question_id,
        step_id=result.step_id,
    )


@app.get("/modules/{module_id}/questions", response_model=QuestionListResponse)
def list_questions(
    module_id: str,
    faq_only: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
) -> QuestionListResponse:
    questions = get_runtime().questions.list_for_module(
        module_id,
        faq_only=faq_only,
        limit=limit,
    )
    return QuestionListResponse(
        module_id=module_id,
        questions=[_question_response(question) for question in questions],
    )


@app.put("/questions/{question_id}/faq", response_model=QuestionResponse)
def mark_faq(question_id: str, payload: FaqPayload | None = None) -> QuestionResponse:
    is_faq = payload.is_faq if payload else True
    question = get_runtime().questions.set_faq(question_id, is_faq)
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")
    logger.info(
        "Question FAQ flag updated",
        extra={"question_id": question_id, "status": "faq" if is_faq else "normal"},
    )
    return _question_response(question)


@app.delete("/questions/{question_id}", status_code=204)
def delete_question(question_id: str) -> None:
    if not get_runtime().questions.delete(question_id):
        raise HTTPException(status_code=404, detail="Question not found")
