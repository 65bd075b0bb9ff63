from __future__ import annotations

from typing import Iterable

from stepwise_core.errors import ProviderTransientError
from stepwise_core.providers.http import provider_json, provider_request

MAX_INPUT_CHARS = 8000


class OpenAiTextEmbedder:
    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        dim: int,
        timeout_s: float,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.dim = dim
        self.timeout_s = timeout_s

    def encode(self, texts: Iterable[str]) -> list[list[float]]:
        inputs = [text[:MAX_INPUT_CHARS] for text in texts]
        if not inputs:
            return []
        resp = provider_request(
            self.name,
            "POST",
            f"{self.base_url}/embeddings",
            timeout=self.timeout_s,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"model": self.model, "input": inputs},
        )
        payload = provider_json(resp, self.name)
        data = payload.get("data")
        if not isinstance(data, list) or not all(
            isinstance(item, dict) and isinstance(item.get("embedding"), list)
            for item in data
        ):
            raise ProviderTransientError(f"{self.name} returned malformed embeddings")
        data = sorted(data, key=lambda item: item.get("index", 0))
        try:
            return [[float(value) for value in item["embedding"]] for item in data]
        except (TypeError, ValueError) as exc:
            raise ProviderTransientError(
                f"{self.name} returned non-numeric embeddings"
            ) from exc
