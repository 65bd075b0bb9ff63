from pathlib import Path

import pytest

from stepwise_core.errors import PermanentError, RecoverableError
from stepwise_core.ingestion import download as download_module
from stepwise_core.ingestion import media as media_module
from stepwise_core.ingestion.download import download_to_tmp, fetched_media
from stepwise_core.ingestion.media import parse_probe_payload
from stepwise_core.storage.object_store import write_bytes
from stepwise_core.storage.paths import join_uri, normalize_bucket_uri, steps_key


class _FakeReader:
    def __init__(self) -> None:
        self.calls = 0

    def read(self, _size: int) -> bytes:
        self.calls += 1
        if self.calls == 1:
            return b"x" * 1024
        raise OSError("boom")

    def __enter__(self):
        return self

    def __exit__(self, _exc_type, _exc, _tb) -> bool:
        return False


class _FakeFS:
    def info(self, _path: str) -> dict:
        return {}

    def open(self, _path: str, _mode: str):
        return _FakeReader()


def test_download_cleanup_on_failure(tmp_path, monkeypatch):
    tmp_file = tmp_path / "download.mp4"

    monkeypatch.setattr(
        download_module.fsspec.core, "url_to_fs", lambda _uri: (_FakeFS(), "ignored")
    )

    class _DummyTmp:
        name = str(tmp_file)

        def close(self) -> None:
            return None

    monkeypatch.setattr(
        download_module.tempfile,
        "NamedTemporaryFile",
        lambda delete=False, suffix="": _DummyTmp(),
    )

    with pytest.raises(RecoverableError):
        download_to_tmp("s3://bucket/video.mp4", max_bytes=10_000)
    assert not tmp_file.exists()


def test_fetched_media_removes_temp_file(tmp_path):
    source = tmp_path / "source.mp4"
    source.write_bytes(b"\x00" * 64)
    with fetched_media(str(source), max_bytes=1024) as result:
        local = Path(result.path)
        assert local.exists()
        assert local.suffix == ".mp4"
        assert result.size_bytes == 64
    assert not local.exists()


def test_download_rejects_oversized_and_missing_objects(tmp_path):
    source = tmp_path / "big.mp4"
    source.write_bytes(b"\x00" * 64)
    with pytest.raises(PermanentError):
        download_to_tmp(str(source), max_bytes=10)
    with pytest.raises(PermanentError):
        download_to_tmp(str(tmp_path / "missing.mp4"), max_bytes=10)


def test_download_rejects_empty_objects(tmp_path):
    source = tmp_path / "empty.mp4"
    source.write_bytes(b"")
    with pytest.raises(PermanentError):
        download_to_tmp(str(source), max_bytes=10)


def test_parse_probe_payload():
    probe = parse_probe_payload(
        {
            "format": {"duration": "12.5"},
            "streams": [
                {"codec_type": "video", "duration": "12.48"},
                {"codec_type": "audio", "sample_rate": "48000", "channels": 2, "duration": "12.6"},
            ],
        }
    )
    assert probe.has_audio
    assert probe.duration_seconds == pytest.approx(12.6)
    assert not parse_probe_payload(
        {"format": {"duration": "3"}, "streams": [{"codec_type": "video"}]}
    ).has_audio


def test_media_errors_are_classified():
    with pytest.raises(PermanentError):
        media_module._raise_media_error("ffprobe", "moov atom not found")
    with pytest.raises(RecoverableError):
        media_module._raise_media_error("ffmpeg", "Resource temporarily busy")


def test_local_object_store_write(tmp_path):
    target = join_uri(str(tmp_path), steps_key("/training/", "m1"))
    write_bytes(target, b'{"version": 3}')
    assert Path(target).read_bytes() == b'{"version": 3}'
    assert target.endswith("training/m1.json")


def test_bucket_uris():
    assert normalize_bucket_uri("raw-bucket", scheme="gs") == "gs://raw-bucket"
    assert normalize_bucket_uri("s3://raw/") == "s3://raw"
    assert join_uri("gs://raw", "training", "m1.json") == "gs://raw/training/m1.json"
