import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlencode

from stepwise_core.storage.paths import (
    backend_scheme,
    has_uri_scheme,
    join_uri,
    normalize_bucket_uri,
)

TRANSCRIBE_BACKENDS = {"whisper_api", "local_whisper", "assemblyai", "none"}
CALLBACK_TRANSCRIBE_BACKENDS = {"assemblyai"}
EMBEDDING_BACKENDS = {"stub", "openai"}
COMPLETION_BACKENDS = {"none", "openai"}
QUEUE_BACKENDS = {"local", "redis"}
STORAGE_BACKENDS = {"local", "gcs", "gs", "s3", "azure", "remote"}


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    database_path: str
    storage_backend: str
    raw_bucket: str
    local_storage_root: str | None
    steps_prefix: str
    max_raw_bytes: int
    audio_sample_rate: int
    transcribe_backend: str
    transcribe_timeout_s: float
    whisper_api_base: str
    whisper_model: str
    openai_api_key: str | None
    openai_api_base: str
    assemblyai_api_key: str | None
    assemblyai_base: str
    public_base_url: str | None
    media_base_url: str | None
    webhook_token: str | None
    webhook_secret: str | None
    embedding_backend: str
    embedding_model: str
    embedding_dim: int
    embedding_timeout_s: float
    completion_backend: str
    completion_model: str
    completion_timeout_s: float
    reuse_threshold: float
    cache_threshold: float
    context_top_k: int
    stale_processing_minutes: int
    min_step_seconds: float
    fallback_step_seconds: float
    max_transcript_chars: int
    steps_use_model: bool
    queue_backend: str
    queue_workers: int
    redis_url: str | None
    queue_key: str

    def is_production(self) -> bool:
        return self.env.strip().lower() in {"prod", "production"}

    def uses_callback_transcription(self) -> bool:
        return self.transcribe_backend in CALLBACK_TRANSCRIBE_BACKENDS

    def storage_scheme(self) -> str | None:
        return backend_scheme(self.storage_backend)

    def storage_root_uri(self) -> str:
        if self.storage_backend == "local":
            if not self.local_storage_root:
                raise ValueError("LOCAL_STORAGE_ROOT is required for local storage")
            return self.local_storage_root
        return normalize_bucket_uri(self.raw_bucket, scheme=self.storage_scheme())

    def object_uri(self, key: str) -> str:
        if has_uri_scheme(key):
            return key
        return join_uri(self.storage_root_uri(), key)

    def media_url(self, key: str) -> str:
        """Public URL an external transcription provider can fetch."""
        if key.startswith(("http://", "https://")):
            return key
        if not self.media_base_url:
            raise ValueError("MEDIA_BASE_URL is required for callback transcription")
        return f"{self.media_base_url.rstrip('/')}/{key.lstrip('/')}"

    def webhook_url(self, module_id: str) -> str:
        if not self.public_base_url:
            raise ValueError("PUBLIC_BASE_URL is required for callback transcription")
        params = {"moduleId": module_id}
        if self.webhook_token:
            params["token"] = self.webhook_token
        base = self.public_base_url.rstrip("/")
        return f"{base}/webhooks/transcription?{urlencode(params)}"

    @classmethod
    def from_env(cls) -> "Config":
        missing: list[str] = []

        def require(name: str) -> str:
            value = os.getenv(name)
            if value is None or value == "":
                missing.append(name)
                return ""
            return value

        storage_backend = os.getenv("STORAGE_BACKEND", "local").strip().lower()
        if storage_backend not in STORAGE_BACKENDS:
            allowed = ", ".join(sorted(STORAGE_BACKENDS))
            raise ValueError(f"STORAGE_BACKEND must be one of: {allowed}")
        remote_required = storage_backend != "local"
        raw_bucket = require("RAW_BUCKET") if remote_required else os.getenv(
            "RAW_BUCKET", ""
        )
        local_storage_root = os.getenv("LOCAL_STORAGE_ROOT")
        if storage_backend == "local" and not local_storage_root:
            missing.append("LOCAL_STORAGE_ROOT")
        if remote_required and backend_scheme(storage_backend) is None:
            if raw_bucket and not has_uri_scheme(raw_bucket):
                raise ValueError(
                    "RAW_BUCKET must include a URI scheme when STORAGE_BACKEND="
                    f"{storage_backend} (example: s3://bucket)"
                )

        env = require("ENV")
        log_level = require("LOG_LEVEL")
        database_path = require("DATABASE_PATH")
        steps_prefix = os.getenv("STEPS_PREFIX", "training").strip("/")
        max_raw_bytes = int(os.getenv("MAX_RAW_BYTES", "2000000000"))
        audio_sample_rate = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))

        transcribe_backend = _parse_choice(
            "TRANSCRIBE_BACKEND",
            os.getenv("TRANSCRIBE_BACKEND", "whisper_api"),
            TRANSCRIBE_BACKENDS,
        )
        transcribe_timeout_s = _parse_float(os.getenv("TRANSCRIBE_TIMEOUT_S", "600"))
        whisper_api_base = os.getenv("WHISPER_API_BASE", "https://api.openai.com/v1")
        whisper_model = os.getenv("WHISPER_MODEL", "whisper-1")
        openai_api_key = os.getenv("OPENAI_API_KEY") or None
        openai_api_base = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
        assemblyai_api_key = os.getenv("ASSEMBLYAI_API_KEY") or None
        assemblyai_base = os.getenv("ASSEMBLYAI_BASE", "https://api.assemblyai.com")
        public_base_url = os.getenv("PUBLIC_BASE_URL") or None
        media_base_url = os.getenv("MEDIA_BASE_URL") or None
        webhook_token = os.getenv("WEBHOOK_TOKEN") or None
        webhook_secret = os.getenv("WEBHOOK_SECRET") or None

        embedding_backend = _parse_choice(
            "EMBEDDING_BACKEND",
            os.getenv("EMBEDDING_BACKEND", "stub"),
            EMBEDDING_BACKENDS,
        )
        embedding_model = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
        embedding_dim = int(os.getenv("EMBEDDING_DIM", "1536"))
        embedding_timeout_s = _parse_float(os.getenv("EMBEDDING_TIMEOUT_S", "20"))
        completion_backend = _parse_choice(
            "COMPLETION_BACKEND",
            os.getenv("COMPLETION_BACKEND", "none"),
            COMPLETION_BACKENDS,
        )
        completion_model = os.getenv("COMPLETION_MODEL", "gpt-4o-mini")
        completion_timeout_s = _parse_float(os.getenv("COMPLETION_TIMEOUT_S", "30"))

        reuse_threshold = _parse_float(os.getenv("REUSE_THRESHOLD", "0.85"))
        cache_threshold = _parse_float(os.getenv("CACHE_THRESHOLD", "0.6"))
        context_top_k = int(os.getenv("CONTEXT_TOP_K", "4"))
        stale_processing_minutes = int(os.getenv("STALE_PROCESSING_MINUTES", "10"))
        min_step_seconds = _parse_float(os.getenv("MIN_STEP_SECONDS", "3.0"))
        fallback_step_seconds = _parse_float(
            os.getenv("FALLBACK_STEP_SECONDS", "8.0")
        )
        max_transcript_chars = int(os.getenv("MAX_TRANSCRIPT_CHARS", "10000"))
        steps_use_model = _parse_bool(os.getenv("STEPS_USE_MODEL"), False)

        queue_backend = _parse_choice(
            "QUEUE_BACKEND",
            os.getenv("QUEUE_BACKEND", "local"),
            QUEUE_BACKENDS,
        )
        queue_workers = int(os.getenv("QUEUE_WORKERS", "2"))
        redis_url = os.getenv("REDIS_URL") or None
        queue_key = os.getenv("QUEUE_KEY", "stepwise:jobs")

        if not 0.0 <= reuse_threshold <= 1.0:
            raise ValueError("REUSE_THRESHOLD must be between 0 and 1")
        if not 0.0 <= cache_threshold <= 1.0:
            raise ValueError("CACHE_THRESHOLD must be between 0 and 1")
        if transcribe_backend == "whisper_api" and not openai_api_key:
            missing.append("OPENAI_API_KEY")
        if transcribe_backend == "assemblyai":
            if not assemblyai_api_key:
                missing.append("ASSEMBLYAI_API_KEY")
            if not public_base_url:
                missing.append("PUBLIC_BASE_URL")
            if not webhook_token and not webhook_secret:
                missing.append("WEBHOOK_TOKEN")
        if "openai" in {embedding_backend, completion_backend} and not openai_api_key:
            if "OPENAI_API_KEY" not in missing:
                missing.append("OPENAI_API_KEY")
        if queue_backend == "redis" and not redis_url:
            missing.append("REDIS_URL")

        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required env vars: {missing_str}")

        return cls(
            env=env,
            log_level=log_level,
            database_path=database_path,
            storage_backend=storage_backend,
            raw_bucket=raw_bucket,
            local_storage_root=local_storage_root,
            steps_prefix=steps_prefix,
            max_raw_bytes=max_raw_bytes,
            audio_sample_rate=audio_sample_rate,
            transcribe_backend=transcribe_backend,
            transcribe_timeout_s=transcribe_timeout_s,
            whisper_api_base=whisper_api_base,
            whisper_model=whisper_model,
            openai_api_key=openai_api_key,
            openai_api_base=openai_api_base,
            assemblyai_api_key=assemblyai_api_key,
            assemblyai_base=assemblyai_base,
            public_base_url=public_base_url,
            media_base_url=media_base_url,
            webhook_token=webhook_token,
            webhook_secret=webhook_secret,
            embedding_backend=embedding_backend,
            embedding_model=embedding_model,
            embedding_dim=embedding_dim,
            embedding_timeout_s=embedding_timeout_s,
            completion_backend=completion_backend,
            completion_model=completion_model,
            completion_timeout_s=completion_timeout_s,
            reuse_threshold=reuse_threshold,
            cache_threshold=cache_threshold,
            context_top_k=context_top_k,
            stale_processing_minutes=stale_processing_minutes,
            min_step_seconds=min_step_seconds,
            fallback_step_seconds=fallback_step_seconds,
            max_transcript_chars=max_transcript_chars,
            steps_use_model=steps_use_model,
            queue_backend=queue_backend,
            queue_workers=queue_workers,
            redis_url=redis_url,
            queue_key=queue_key,
        )


def _parse_choice(name: str, value: str, allowed: set[str]) -> str:
    cleaned = value.strip().lower()
    if cleaned not in allowed:
        allowed_str = ", ".join(sorted(allowed))
        raise ValueError(f"{name} must be one of: {allowed_str}")
    return cleaned


def _parse_float(value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid float value: {value}") from exc


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
