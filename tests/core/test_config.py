import pytest

from stepwise_core.config import Config, get_config


def test_config_defaults_from_env(tmp_path):
    config = get_config()
    assert config.env == "test"
    assert config.storage_backend == "local"
    assert config.reuse_threshold == pytest.approx(0.85)
    assert config.cache_threshold == pytest.approx(0.6)
    assert config.stale_processing_minutes == 10
    assert config.min_step_seconds == pytest.approx(3.0)
    assert config.fallback_step_seconds == pytest.approx(8.0)
    assert config.max_transcript_chars == 10000
    assert config.steps_use_model is False
    assert not config.is_production()
    assert not config.uses_callback_transcription()
    assert config.object_uri("training/m1.json").endswith("storage/training/m1.json")
    assert config.object_uri("s3://bucket/key.mp4") == "s3://bucket/key.mp4"


def test_missing_required_values_are_listed(monkeypatch):
    monkeypatch.delenv("DATABASE_PATH")
    monkeypatch.delenv("LOCAL_STORAGE_ROOT")
    with pytest.raises(ValueError) as excinfo:
        Config.from_env()
    message = str(excinfo.value)
    assert "DATABASE_PATH" in message
    assert "LOCAL_STORAGE_ROOT" in message


def test_backend_requirements(monkeypatch):
    monkeypatch.setenv("TRANSCRIBE_BACKEND", "assemblyai")
    monkeypatch.delenv("ASSEMBLYAI_API_KEY", raising=False)
    monkeypatch.delenv("PUBLIC_BASE_URL", raising=False)
    monkeypatch.delenv("WEBHOOK_TOKEN", raising=False)
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    with pytest.raises(ValueError) as excinfo:
        Config.from_env()
    message = str(excinfo.value)
    assert "ASSEMBLYAI_API_KEY" in message
    assert "PUBLIC_BASE_URL" in message
    assert "WEBHOOK_TOKEN" in message


def test_invalid_choices_and_thresholds(monkeypatch):
    monkeypatch.setenv("QUEUE_BACKEND", "kafka")
    with pytest.raises(ValueError):
        Config.from_env()
    monkeypatch.setenv("QUEUE_BACKEND", "local")
    monkeypatch.setenv("REUSE_THRESHOLD", "1.5")
    with pytest.raises(ValueError):
        Config.from_env()


def test_callback_urls(monkeypatch):
    monkeypatch.setenv("TRANSCRIBE_BACKEND", "assemblyai")
    monkeypatch.setenv("ASSEMBLYAI_API_KEY", "key")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://api.example.com/")
    monkeypatch.setenv("MEDIA_BASE_URL", "https://cdn.example.com")
    monkeypatch.setenv("WEBHOOK_TOKEN", "tok")
    config = Config.from_env()
    assert config.uses_callback_transcription()
    assert config.media_url("videos/a.mp4") == "https://cdn.example.com/videos/a.mp4"
    assert config.media_url("https://elsewhere/a.mp4") == "https://elsewhere/a.mp4"
    assert config.webhook_url("m 1") == (
        "https://api.example.com/webhooks/transcription?moduleId=m+1&token=tok"
    )
