from __future__ import annotations

from contextlib import ExitStack, contextmanager
from typing import Iterator

from stepwise_core.config import Config
from stepwise_core.errors import (
    ErrorCode,
    PermanentError,
    StageError,
    StepwiseError,
)
from stepwise_core.ingestion.download import cleanup_tmp, fetched_media
from stepwise_core.ingestion.media import extract_audio, probe_media
from stepwise_core.logging import get_logger
from stepwise_core.metrics import MetricsCollector, StageTimer
from stepwise_core.pipeline.queue import JOB_RESUME, JOB_RUN, Job, JobQueue, LocalJobQueue
from stepwise_core.pipeline.step_data import build_step_data, step_data_bytes
from stepwise_core.providers.timeout import run_with_timeout
from stepwise_core.steps.synthesizer import StepSynthesizer
from stepwise_core.storage.object_store import write_bytes
from stepwise_core.storage.paths import steps_key as build_steps_key
from stepwise_core.stores.modules import SqliteModuleStore
from stepwise_core.stores.types import STATUS_PROCESSING, Module, ProcessingDecision
from stepwise_core.transcription.types import (
    CallbackTranscriber,
    Transcriber,
    Transcript,
    ensure_usable,
)
from stepwise_core.transcription.webhooks import (
    IN_FLIGHT_PROGRESS,
    STATUS_COMPLETED,
    STATUS_ERROR,
    TranscriptionEvent,
)

logger = get_logger(__name__)

PROGRESS_FETCHED = 10
PROGRESS_SUBMITTED = 20
PROGRESS_EXTRACTED = 30
PROGRESS_CALLBACK_CLAIMED = 55
PROGRESS_TRANSCRIBED = 60
PROGRESS_STEPS_GENERATED = 90


class PipelineOrchestrator:
    """Drives a module from UPLOADED to READY or FAILED.

    With a synchronous transcription backend a run goes fetch, extract,
    transcribe and synthesize in one job. With a callback backend the run
    submits a provider job and stops; ``handle_transcription_event`` resumes
    it from the persisted module state when the provider reports back.
    """

    def __init__(
        self,
        *,
        config: Config,
        modules: SqliteModuleStore,
        synthesizer: StepSynthesizer,
        transcriber: Transcriber | None = None,
        callback_transcriber: CallbackTranscriber | None = None,
        metrics: MetricsCollector | None = None,
        queue: JobQueue | None = None,
    ) -> None:
        self.config = config
        self.modules = modules
        self.synthesizer = synthesizer
        self.transcriber = transcriber
        self.callback_transcriber = callback_transcriber
        self.metrics = metrics or MetricsCollector()
        self.queue = queue or LocalJobQueue(self.handle_job, workers=0)

    # entry points

    def start_processing(self, module_id: str, *, force: bool = False) -> ProcessingDecision:
        decision = self.modules.begin_processing(module_id, force=force)
        return self._dispatch(decision, "start")

    def reprocess(self, module_id: str, *, force: bool = False) -> ProcessingDecision:
        decision = self.modules.begin_processing(module_id, reset=True, force=force)
        return self._dispatch(decision, "reprocess")

    def _dispatch(self, decision: ProcessingDecision, trigger: str) -> ProcessingDecision:
        module_id = decision.module.id
        if not decision.should_process:
            self.metrics.increment(f"pipeline.{trigger}.skipped")
            logger.info(
                "Processing request ignored",
                extra={
                    "module_id": module_id,
                    "status": decision.module.status,
                    "stage": decision.action,
                },
            )
            return decision
        self.metrics.increment(f"pipeline.{trigger}")
        if decision.superseded_run_id:
            logger.warning(
                "Superseding active run",
                extra={"module_id": module_id, "run_id": decision.superseded_run_id},
            )
        logger.info(
            "Processing started",
            extra={
                "module_id": module_id,
                "run_id": decision.run_id,
                "progress": decision.module.progress,
            },
        )
        self.queue.enqueue(Job(kind=JOB_RUN, module_id=module_id, run_id=decision.run_id))
        return decision

    def handle_job(self, job: Job) -> None:
        if job.kind == JOB_RUN:
            self.run(job.module_id, job.run_id)
        elif job.kind == JOB_RESUME:
            self.resume(
                job.module_id,
                job.run_id,
                job_id=job.payload.get("job_id"),
                text=job.payload.get("text"),
            )
        else:
            logger.warning(
                "Unknown job kind",
                extra={"module_id": job.module_id, "stage": job.kind},
            )

    # stages

    @contextmanager
    def _stage(self, code: str, name: str, timer: StageTimer) -> Iterator[None]:
        with timer.track(name):
            try:
                yield
            except StageError:
                raise
            except Exception as exc:
                raise StageError(code, str(exc) or exc.__class__.__name__) from exc

    def _current(self, module_id: str, run_id: str) -> Module | None:
        module = self.modules.get(module_id)
        if module is None or module.run_id != run_id or module.status != STATUS_PROCESSING:
            logger.info(
                "Run is no longer current; stopping",
                extra={"module_id": module_id, "run_id": run_id},
            )
            return None
        return module

    def run(self, module_id: str, run_id: str) -> None:
        module = self._current(module_id, run_id)
        if module is None:
            return
        timer = StageTimer()
        try:
            if self.config.uses_callback_transcription():
                self._submit_callback(module, run_id, timer)
                return
            transcript, duration = self._transcribe_sync(module, run_id, timer)
            self._synthesize_and_store(module, run_id, transcript, duration, timer)
        except StageError as exc:
            self._fail(module_id, run_id, exc, timer)

    def _transcribe_sync(
        self,
        module: Module,
        run_id: str,
        timer: StageTimer,
    ) -> tuple[Transcript, float | None]:
        transcriber = self.transcriber
        if transcriber is None:
            raise StageError(
                ErrorCode.TRANSCRIPTION_FAILED,
                f"Transcription backend '{self.config.transcribe_backend}' "
                "is not available",
            )
        with ExitStack() as stack:
            with self._stage(ErrorCode.FETCH_FAILED, "fetch", timer):
                media = stack.enter_context(
                    fetched_media(
                        self.config.object_uri(module.video_key),
                        self.config.max_raw_bytes,
                    )
                )
            self.modules.update_progress(module.id, run_id, PROGRESS_FETCHED)

            with self._stage(ErrorCode.EXTRACTION_FAILED, "extract_audio", timer):
                probe = probe_media(media.path)
                if not probe.has_audio:
                    raise PermanentError("Media has no audio track")
                audio_path = extract_audio(media.path, self.config.audio_sample_rate)
                stack.callback(cleanup_tmp, audio_path)
            self.modules.update_progress(module.id, run_id, PROGRESS_EXTRACTED)

            with self._stage(ErrorCode.TRANSCRIPTION_FAILED, "transcribe", timer):
                transcript = run_with_timeout(
                    "transcription",
                    lambda: transcriber.transcribe(audio_path),
                    self.config.transcribe_timeout_s,
                )
                ensure_usable(transcript)

        duration = probe.duration_seconds or transcript.duration
        self.modules.save_transcript(module.id, run_id, transcript.text, duration)
        self.modules.update_progress(module.id, run_id, PROGRESS_TRANSCRIBED)
        return transcript, duration

    def _submit_callback(self, module: Module, run_id: str, timer: StageTimer) -> None:
        client = self.callback_transcriber
        if client is None:
            raise StageError(
                ErrorCode.TRANSCRIPTION_FAILED,
                f"Transcription backend '{self.config.transcribe_backend}' "
                "is not available",
            )
        with self._stage(ErrorCode.FETCH_FAILED, "media_url", timer):
            media_url = self.config.media_url(module.video_key)
        with self._stage(ErrorCode.TRANSCRIPTION_FAILED, "submit", timer):
            job_id = client.submit(media_url, self.config.webhook_url(module.id))
        self.modules.set_transcript_job(module.id, run_id, job_id)
        self.modules.update_progress(module.id, run_id, PROGRESS_SUBMITTED)
        self.metrics.increment("pipeline.transcription_submitted")
        logger.info(
            "Transcription job submitted",
            extra={"module_id": module.id, "run_id": run_id, "job_id": job_id},
        )

    def _synthesize_and_store(
        self,
        module: Module,
        run_id: str,
        transcript: Transcript,
        duration: float | None,
        timer: StageTimer,
    ) -> None:
        with self._stage(ErrorCode.SYNTHESIS_FAILED, "synthesize", timer):
            result = self.synthesizer.synthesize(transcript, duration)
            if not result.steps:
                raise PermanentError("No usable steps were produced")
        self.modules.update_progress(module.id, run_id, PROGRESS_STEPS_GENERATED)

        key = self._write_step_data(module, transcript, result, timer)
        stored = self.modules.complete_run(
            module.id,
            run_id,
            result.steps,
            timing_source=result.strategy,
            steps_key=key,
        )
        if not stored:
            logger.info(
                "Run superseded before steps were stored",
                extra={"module_id": module.id, "run_id": run_id},
            )
            return
        self.metrics.increment("pipeline.ready")
        logger.info(
            "Module ready",
            extra={
                "module_id": module.id,
                "run_id": run_id,
                "strategy": result.strategy,
                "step_count": len(result.steps),
                "timings": timer.summary(),
            },
        )

    def _write_step_data(self, module: Module, transcript, result, timer) -> str | None:
        key = build_steps_key(self.config.steps_prefix, module.id)
        try:
            with timer.track("write_step_data"):
                payload = build_step_data(module.id, transcript, result)
                write_bytes(self.config.object_uri(key), step_data_bytes(payload))
        except (StepwiseError, OSError, ValueError) as exc:
            logger.warning(
                "Failed to write step data; steps are still stored",
                extra={"module_id": module.id, "error_message": str(exc)},
            )
            return None
        return key

    def _fail(
        self,
        module_id: str,
        run_id: str,
        exc: StageError,
        timer: StageTimer | None = None,
    ) -> None:
        failed = self.modules.fail_run(module_id, run_id, str(exc))
        self.metrics.increment("pipeline.failed")
        self.metrics.increment(f"pipeline.failed.{exc.code.lower()}")
        logger.warning(
            "Module processing failed",
            extra={
                "module_id": module_id,
                "run_id": run_id,
                "error_code": exc.code,
                "error_message": exc.message,
                "status": "FAILED" if failed else "superseded",
                "timings": timer.summary() if timer else None,
            },
        )

    # callback completion

    def handle_transcription_event(
        self,
        module_id: str,
        event: TranscriptionEvent,
    ) -> str:
        """Apply one provider notification; safe to call repeatedly.

        Returns a short outcome label for logging and tests.
        """
        module = self.modules.get(module_id)
        if module is None:
            outcome = "unknown_module"
        elif module.status != STATUS_PROCESSING or module.run_id is None:
            outcome = "ignored_not_processing"
        elif (
            module.transcript_job_id
            and event.job_id
            and event.job_id != module.transcript_job_id
        ):
            outcome = "ignored_stale_job"
        elif event.status in IN_FLIGHT_PROGRESS:
            self.modules.update_progress(
                module_id, module.run_id, IN_FLIGHT_PROGRESS[event.status]
            )
            outcome = "progress"
        elif event.status == STATUS_ERROR:
            self._fail(
                module_id,
                module.run_id,
                StageError(
                    ErrorCode.TRANSCRIPTION_FAILED,
                    event.error or "Transcription provider reported an error",
                ),
            )
            outcome = "failed"
        elif event.status == STATUS_COMPLETED:
            if not self.modules.claim_progress(
                module_id, module.run_id, PROGRESS_CALLBACK_CLAIMED
            ):
                outcome = "duplicate"
            else:
                if event.job_id and not module.transcript_job_id:
                    self.modules.set_transcript_job(module_id, module.run_id, event.job_id)
                self.queue.enqueue(
                    Job(
                        kind=JOB_RESUME,
                        module_id=module_id,
                        run_id=module.run_id,
                        payload={
                            "job_id": event.job_id or module.transcript_job_id,
                            "text": event.text,
                        },
                    )
                )
                outcome = "accepted"
        else:
            outcome = "ignored_unknown_status"

        self.metrics.increment(f"webhook.{outcome}")
        logger.info(
            "Transcription event handled",
            extra={
                "module_id": module_id,
                "job_id": event.job_id,
                "status": event.status,
                "stage": outcome,
            },
        )
        return outcome

    def resume(
        self,
        module_id: str,
        run_id: str,
        *,
        job_id: str | None,
        text: str | None = None,
    ) -> None:
        module = self._current(module_id, run_id)
        if module is None:
            return
        timer = StageTimer()
        try:
            with self._stage(ErrorCode.TRANSCRIPTION_FAILED, "fetch_transcript", timer):
                transcript = self._callback_transcript(job_id, text)
            self.modules.save_transcript(
                module_id, run_id, transcript.text, transcript.duration
            )
            self.modules.update_progress(module_id, run_id, PROGRESS_TRANSCRIBED)
            duration = transcript.duration or module.duration_seconds
            self._synthesize_and_store(module, run_id, transcript, duration, timer)
        except StageError as exc:
            self._fail(module_id, run_id, exc, timer)

    def _callback_transcript(self, job_id: str | None, text: str | None) -> Transcript:
        client = self.callback_transcriber
        if client is not None and job_id:
            try:
                return client.fetch(job_id)
            except StepwiseError as exc:
                if not text or not text.strip():
                    raise
                logger.warning(
                    "Transcript fetch failed; using webhook text without timing",
                    extra={"job_id": job_id, "error_message": str(exc)},
                )
        return ensure_usable(Transcript(text=(text or "").strip()))

    # maintenance

    def reap(self) -> list[str]:
        reaped = self.modules.reap_stale()
        if reaped:
            self.metrics.increment("pipeline.reaped", len(reaped))
            for module_id in reaped:
                logger.warning(
                    "Stale processing lock cleared",
                    extra={"module_id": module_id, "status": "FAILED"},
                )
        return reaped
