from __future__ import annotations

import json
import os
import uuid

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from stepwise_core.errors import ErrorCode, ValidationError, WebhookAuthError
from stepwise_core.logging import configure_logging, get_logger
from stepwise_core.runtime import get_runtime
from stepwise_core.services.fastapi_scaffolding import (
    HealthResponse,
    add_correlation_id_middleware,
    add_error_handlers,
    apply_cors_middleware,
    build_health_response,
)
from stepwise_core.stores.types import Module, Step
from stepwise_core.transcription.webhooks import (
    parse_transcription_event,
    verify_webhook_request,
)

SERVICE_NAME = "stepwise-pipeline"

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


class CreateModuleRequest(CamelModel):
    video_key: str = Field(alias="videoKey", min_length=1)
    title: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    module_id: str | None = Field(default=None, alias="moduleId")
    auto_start: bool = Field(default=True, alias="autoStart")


class ReprocessRequest(CamelModel):
    force: bool = False


class ModuleResponse(CamelModel):
    id: str
    status: str
    progress: int
    video_key: str = Field(alias="videoKey")
    steps_key: str | None = Field(default=None, alias="stepsKey")
    title: str | None = None
    last_error: str | None = Field(default=None, alias="lastError")


class StatusResponse(CamelModel):
    module_id: str = Field(alias="moduleId")
    status: str
    progress: int
    last_error: str | None = Field(default=None, alias="lastError")


class ProcessResponse(CamelModel):
    module_id: str = Field(alias="moduleId")
    action: str
    status: str
    progress: int
    run_id: str | None = Field(default=None, alias="runId")


class StepResponse(CamelModel):
    id: str
    order: int
    text: str
    start_time: float = Field(alias="startTime")
    end_time: float = Field(alias="endTime")
    timing_source: str = Field(alias="timingSource")


class StepsResponse(CamelModel):
    module_id: str = Field(alias="moduleId")
    steps: list[StepResponse]


class WebhookResponse(BaseModel):
    ok: bool
    outcome: str | None = None
    error: str | None = None


class ReapResponse(BaseModel):
    reaped: list[str]


def _module_response(module: Module) -> ModuleResponse:
    return ModuleResponse(
        id=module.id,
        status=module.status,
        progress=module.progress,
        video_key=module.video_key,
        steps_key=module.steps_key,
        title=module.title,
        last_error=module.last_error,
    )


def _step_response(step: Step) -> StepResponse:
    return StepResponse(
        id=step.id,
        order=step.order,
        text=step.text,
        start_time=step.start_time,
        end_time=step.end_time,
        timing_source=step.timing_source,
    )


def _process_response(decision) -> ProcessResponse:
    runtime = get_runtime()
    module = runtime.modules.require(decision.module.id)
    return ProcessResponse(
        module_id=module.id,
        action=decision.action,
        status=module.status,
        progress=module.progress,
        run_id=decision.run_id,
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return build_health_response(SERVICE_NAME)


@app.get("/metrics")
def metrics() -> dict[str, object]:
    return get_runtime().metrics.snapshot()


@app.post("/modules", response_model=ModuleResponse, status_code=201)
def create_module(payload: CreateModuleRequest) -> ModuleResponse:
    runtime = get_runtime()
    module = runtime.modules.create(
        video_key=payload.video_key,
        title=payload.title,
        user_id=payload.user_id,
        module_id=payload.module_id or str(uuid.uuid4()),
    )
    logger.info("Module registered", extra={"module_id": module.id})
    if payload.auto_start:
        runtime.orchestrator.start_processing(module.id)
        module = runtime.modules.require(module.id)
    return _module_response(module)


@app.post("/modules/{module_id}/process", response_model=ProcessResponse)
def process_module(module_id: str) -> ProcessResponse:
    decision = get_runtime().orchestrator.start_processing(module_id)
    return _process_response(decision)


@app.post("/modules/{module_id}/reprocess", response_model=ProcessResponse)
def reprocess_module(
    module_id: str,
    payload: ReprocessRequest | None = None,
) -> ProcessResponse:
    force = payload.force if payload else False
    decision = get_runtime().orchestrator.reprocess(module_id, force=force)
    return _process_response(decision)


@app.get("/modules/{module_id}", response_model=ModuleResponse)
def get_module(module_id: str) -> ModuleResponse:
    return _module_response(get_runtime().modules.require(module_id))


@app.get("/modules/{module_id}/status", response_model=StatusResponse)
def module_status(module_id: str) -> StatusResponse:
    module = get_runtime().modules.require(module_id)
    return StatusResponse(
        module_id=module.id,
        status=module.status,
        progress=module.progress,
        last_error=module.last_error,
    )


@app.get("/modules/{module_id}/steps", response_model=StepsResponse)
def module_steps(module_id: str) -> StepsResponse:
    runtime = get_runtime()
    runtime.modules.require(module_id)
    steps = runtime.modules.list_steps(module_id)
    if not steps:
        raise HTTPException(status_code=404, detail="No steps for module yet")
    return StepsResponse(
        module_id=module_id,
        steps=[_step_response(step) for step in steps],
    )


@app.post("/webhooks/transcription", response_model=WebhookResponse)
async def transcription_webhook(
    request: Request,
    module_id: str | None = Query(default=None, alias="moduleId"),
    token: str | None = Query(default=None),
) -> WebhookResponse:
    runtime = get_runtime()
    config = runtime.config
    body = await request.body()
    try:
        verify_webhook_request(
            body=body,
            headers=request.headers,
            token=token,
            expected_token=config.webhook_token,
            secret=config.webhook_secret,
            production=config.is_production(),
        )
    except WebhookAuthError as exc:
        runtime.metrics.increment("webhook.auth_failed")
        logger.warning(
            "Webhook rejected",
            extra={
                "module_id": module_id,
                "error_code": ErrorCode.WEBHOOK_AUTH_FAILED,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=401, detail="Unauthorized") from exc

    # Past authentication the provider always gets a 200 so it does not retry.
    if not module_id:
        return WebhookResponse(ok=False, error="missing moduleId")
    try:
        payload = json.loads(body or b"{}")
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")
        event = parse_transcription_event(payload)
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Malformed webhook payload",
            extra={"module_id": module_id, "error_message": str(exc)},
        )
        return WebhookResponse(ok=False, error="malformed payload")
    try:
        outcome = await run_in_threadpool(
            runtime.orchestrator.handle_transcription_event,
            module_id,
            event,
        )
    except Exception as exc:
        logger.exception(
            "Webhook handling failed",
            extra={"module_id": module_id, "error_message": str(exc)},
        )
        return WebhookResponse(ok=False, error="internal error")
    return WebhookResponse(ok=True, outcome=outcome)


@app.post("/admin/reap", response_model=ReapResponse)
def reap_stale_modules() -> ReapResponse:
    return ReapResponse(reaped=get_runtime().orchestrator.reap())
