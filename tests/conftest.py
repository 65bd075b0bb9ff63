import os
from pathlib import Path

import pytest

from stepwise_core.config import get_config
from stepwise_core.runtime import get_runtime
from stepwise_core.stores.modules import SqliteModuleStore
from stepwise_core.stores.questions import SqliteQuestionStore
from stepwise_core.stores.types import Step
from stepwise_core.transcription.types import Transcript, TranscriptSegment


@pytest.fixture(autouse=True)
def _stepwise_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def set_default(name: str, value: str) -> None:
        if not os.getenv(name):
            monkeypatch.setenv(name, value)

    set_default("ENV", "test")
    set_default("LOG_LEVEL", "INFO")
    set_default("STORAGE_BACKEND", "local")
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "stepwise.db"))
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("TRANSCRIBE_BACKEND", "none")
    monkeypatch.setenv("EMBEDDING_BACKEND", "stub")
    monkeypatch.setenv("EMBEDDING_DIM", "64")
    monkeypatch.setenv("COMPLETION_BACKEND", "none")
    monkeypatch.setenv("QUEUE_BACKEND", "local")
    monkeypatch.setenv("QUEUE_WORKERS", "0")
    get_config.cache_clear()
    get_runtime.cache_clear()
    yield
    get_config.cache_clear()
    get_runtime.cache_clear()


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "store.db")


@pytest.fixture
def module_store(db_path: str, clock: FakeClock) -> SqliteModuleStore:
    return SqliteModuleStore(db_path, clock=clock)


@pytest.fixture
def question_store(db_path: str, clock: FakeClock) -> SqliteQuestionStore:
    return SqliteQuestionStore(db_path, clock=clock)


class FakeTranscriber:
    name = "fake"

    def __init__(self, transcript: Transcript) -> None:
        self.transcript = transcript
        self.calls: list[str] = []

    def transcribe(self, audio_path: str) -> Transcript:
        self.calls.append(audio_path)
        return self.transcript


class FakeCallbackTranscriber:
    name = "fake-callback"

    def __init__(self, transcript: Transcript | None = None) -> None:
        self.transcript = transcript
        self.submitted: list[tuple[str, str]] = []
        self.fetched: list[str] = []

    def submit(self, media_url: str, webhook_url: str) -> str:
        self.submitted.append((media_url, webhook_url))
        return f"job-{len(self.submitted)}"

    def fetch(self, job_id: str) -> Transcript:
        self.fetched.append(job_id)
        if self.transcript is None:
            raise AssertionError("fetch not expected")
        return self.transcript


class FakeCompletion:
    def __init__(self, reply: str = "Step 2 covers that.") -> None:
        self.reply = reply
        self.calls: list[tuple[str, str]] = []

    def complete(self, system: str, prompt: str, *, max_tokens: int = 400) -> str:
        self.calls.append((system, prompt))
        return self.reply


@pytest.fixture
def segmented_transcript() -> Transcript:
    return Transcript(
        text="Open the box. Remove the device. Plug it in.",
        segments=[
            TranscriptSegment(0.0, 4.0, "Open the box"),
            TranscriptSegment(4.0, 9.0, "Remove the device"),
            TranscriptSegment(9.0, 14.0, "Plug it in"),
        ],
        duration=14.0,
    )


def make_steps(module_id: str = "m1") -> list[Step]:
    texts = ["Open the box", "Remove the device", "Plug it in"]
    return [
        Step(
            id=f"s{index}",
            module_id=module_id,
            order=index,
            text=text,
            start_time=float((index - 1) * 5),
            end_time=float(index * 5),
            timing_source="segments",
        )
        for index, text in enumerate(texts, start=1)
    ]


@pytest.fixture
def media_stubs(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Replace download, probe and audio extraction in the orchestrator."""
    from contextlib import contextmanager

    from stepwise_core.ingestion.download import DownloadResult
    from stepwise_core.ingestion.media import MediaProbe
    from stepwise_core.pipeline import orchestrator as orchestrator_module

    media_path = tmp_path / "video.mp4"
    media_path.write_bytes(b"video")
    audio_path = tmp_path / "audio.wav"

    @contextmanager
    def fake_fetched_media(uri: str, max_bytes: int):
        yield DownloadResult(path=str(media_path), size_bytes=5, content_type="video/mp4")

    def fake_probe(path: str) -> MediaProbe:
        return MediaProbe(
            duration_seconds=14.0,
            has_audio=True,
        )

    def fake_extract(path: str, sample_rate: int = 16000) -> str:
        audio_path.write_bytes(b"audio")
        return str(audio_path)

    monkeypatch.setattr(orchestrator_module, "fetched_media", fake_fetched_media)
    monkeypatch.setattr(orchestrator_module, "probe_media", fake_probe)
    monkeypatch.setattr(orchestrator_module, "extract_audio", fake_extract)
    return audio_path


@pytest.fixture
def make_transcriber():
    return FakeTranscriber


@pytest.fixture
def make_callback_transcriber():
    return FakeCallbackTranscriber


@pytest.fixture
def make_completion():
    return FakeCompletion


@pytest.fixture
def sample_steps():
    return make_steps
