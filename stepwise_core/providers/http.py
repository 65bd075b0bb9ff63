from __future__ import annotations

from typing import Any

import requests

from stepwise_core.errors import ProviderClientError, ProviderTransientError

_TRANSIENT_STATUSES = {408, 429}


def raise_for_provider_status(provider: str, resp: requests.Response) -> None:
    status = resp.status_code
    if status < 400:
        return
    detail = (resp.text or "").strip()[:500]
    message = f"{provider} returned {status}: {detail}" if detail else (
        f"{provider} returned {status}"
    )
    if status in _TRANSIENT_STATUSES or status >= 500:
        raise ProviderTransientError(message, status_code=status)
    raise ProviderClientError(message, status_code=status)


def provider_request(
    provider: str,
    method: str,
    url: str,
    *,
    timeout: float,
    **kwargs: Any,
) -> requests.Response:
    """Issue one HTTP call and translate failures into provider errors."""
    try:
        resp = requests.request(method, url, timeout=timeout, **kwargs)
    except requests.Timeout as exc:
        raise ProviderTransientError(
            f"{provider} timed out after {timeout:.1f}s"
        ) from exc
    except requests.ConnectionError as exc:
        raise ProviderTransientError(f"{provider} connection failed: {exc}") from exc
    except requests.RequestException as exc:
        raise ProviderTransientError(f"{provider} request failed: {exc}") from exc
    raise_for_provider_status(provider, resp)
    return resp


def provider_json(resp: requests.Response, provider: str) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderTransientError(f"{provider} returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise ProviderTransientError(f"{provider} returned unexpected payload")
    return data
