from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar

from stepwise_core.errors import InferenceTimeoutError

_T = TypeVar("_T")


def _worker_count() -> int:
    raw = os.getenv("PROVIDER_CALL_WORKERS", "8")
    try:
        value = int(raw)
    except ValueError:
        value = 8
    return max(1, value)


_EXECUTOR = ThreadPoolExecutor(max_workers=_worker_count())


def run_with_timeout(kind: str, fn: Callable[[], _T], timeout_s: float) -> _T:
    """Run ``fn`` with a wall-clock budget; ``timeout_s <= 0`` disables it."""
    if timeout_s <= 0:
        return fn()
    future = _EXECUTOR.submit(fn)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as exc:
        future.cancel()
        raise InferenceTimeoutError(
            f"{kind} call timed out after {timeout_s:.2f}s"
        ) from exc
