from __future__ import annotations

from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse

_BACKEND_SCHEMES = {
    "gcs": "gs",
    "gs": "gs",
    "s3": "s3",
    "azure": "az",
}


def _strip_slashes(value: str) -> str:
    return value.strip("/")


def _join_parts(parts: Iterable[str]) -> str:
    return "/".join(_strip_slashes(part) for part in parts if part)


def backend_scheme(storage_backend: str) -> str | None:
    return _BACKEND_SCHEMES.get(storage_backend.strip().lower())


def has_uri_scheme(value: str) -> bool:
    return bool(urlparse(value).scheme)


def normalize_bucket_uri(bucket: str, scheme: str | None = None) -> str:
    if has_uri_scheme(bucket):
        return bucket.rstrip("/")
    if scheme is None:
        return bucket.rstrip("/")
    return f"{scheme}://{_strip_slashes(bucket)}"


def join_uri(base_uri: str, *parts: str) -> str:
    parsed = urlparse(base_uri)
    if parsed.scheme == "file":
        safe_parts = [_strip_slashes(part) for part in parts if part]
        return str(Path(parsed.path).joinpath(*safe_parts))
    if parsed.scheme and parsed.netloc:
        base = base_uri.rstrip("/")
        return f"{base}/{_join_parts(parts)}"
    safe_parts = [_strip_slashes(part) for part in parts if part]
    return str(Path(base_uri).joinpath(*safe_parts))


def steps_key(prefix: str, module_id: str) -> str:
    return _join_parts((prefix, f"{module_id}.json"))
