from __future__ import annotations

import os
import tempfile
from pathlib import Path
from urllib.parse import urlparse

import fsspec

from stepwise_core.errors import RecoverableError


def _is_local(uri: str) -> bool:
    parsed = urlparse(uri)
    return not parsed.scheme or parsed.scheme == "file"


def atomic_write_bytes(dest_path: str, payload: bytes) -> None:
    dest = Path(dest_path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, dir=str(dest.parent)) as tmp:
        tmp.write(payload)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = tmp.name
    os.replace(tmp_path, dest_path)


def write_bytes(uri: str, payload: bytes) -> None:
    if _is_local(uri):
        atomic_write_bytes(urlparse(uri).path or uri, payload)
        return
    try:
        with fsspec.open(uri, "wb") as handle:
            handle.write(payload)
    except Exception as exc:
        raise RecoverableError(f"Failed writing {uri}: {exc}") from exc

