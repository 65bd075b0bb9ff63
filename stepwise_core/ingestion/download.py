from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Iterator

import fsspec

from stepwise_core.errors import PermanentError, RecoverableError


@dataclass(frozen=True)
class DownloadResult:
    path: str
    size_bytes: int
    content_type: str | None


def _info_for_uri(fs: fsspec.AbstractFileSystem, path: str) -> dict[str, Any]:
    try:
        return fs.info(path)
    except FileNotFoundError as exc:
        raise PermanentError(f"Object not found: {path}") from exc
    except Exception as exc:
        raise RecoverableError(f"Failed to stat {path}: {exc}") from exc


def _suffix_for(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def download_to_tmp(
    uri: str,
    max_bytes: int,
) -> DownloadResult:
    fs, path = fsspec.core.url_to_fs(uri)
    info = _info_for_uri(fs, path)
    size_hint = info.get("size") or info.get("Size")
    content_type = info.get("content_type") or info.get("ContentType")
    if size_hint is not None and size_hint > max_bytes:
        raise PermanentError(f"Object too large: {size_hint} bytes")

    tmp_handle = tempfile.NamedTemporaryFile(delete=False, suffix=_suffix_for(path))
    tmp_path = tmp_handle.name
    tmp_handle.close()

    try:
        size = 0
        with fs.open(path, "rb") as reader, open(tmp_path, "wb") as writer:
            while True:
                chunk = reader.read(8 * 1024 * 1024)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise PermanentError("Download exceeded MAX_RAW_BYTES")
                writer.write(chunk)
    except Exception as exc:
        cleanup_tmp(tmp_path)
        if isinstance(exc, PermanentError):
            raise
        raise RecoverableError(f"Failed downloading {uri}: {exc}") from exc

    if size == 0:
        cleanup_tmp(tmp_path)
        raise PermanentError(f"Object is empty: {uri}")

    return DownloadResult(path=tmp_path, size_bytes=size, content_type=content_type)


def cleanup_tmp(path: str | None) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        return


@contextmanager
def fetched_media(uri: str, max_bytes: int) -> Iterator[DownloadResult]:
    """Download ``uri`` to a temp file that is removed on every exit path."""
    result = download_to_tmp(uri, max_bytes)
    try:
        yield result
    finally:
        cleanup_tmp(result.path)
