from __future__ import annotations

from typing import Protocol

from stepwise_core.config import Config
from stepwise_core.errors import ProviderTransientError
from stepwise_core.providers.http import provider_json, provider_request
from stepwise_core.providers.timeout import run_with_timeout


class CompletionClient(Protocol):
    name: str

    def complete(self, system: str, prompt: str, *, max_tokens: int = 400) -> str: ...


class OpenAiChatCompletion:
    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout_s: float,
        temperature: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self.temperature = temperature

    def complete(self, system: str, prompt: str, *, max_tokens: int = 400) -> str:
        return run_with_timeout(
            "completion",
            lambda: self._complete(system, prompt, max_tokens),
            self.timeout_s + 1.0,
        )

    def _complete(self, system: str, prompt: str, max_tokens: int) -> str:
        resp = provider_request(
            self.name,
            "POST",
            f"{self.base_url}/chat/completions",
            timeout=self.timeout_s,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "temperature": self.temperature,
                "max_tokens": max_tokens,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            },
        )
        payload = provider_json(resp, self.name)
        choices = payload.get("choices") or []
        if not isinstance(choices, list):
            raise ProviderTransientError(f"{self.name} returned malformed choices")
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            raise ProviderTransientError(f"{self.name} returned malformed choices")
        return str(message.get("content") or "").strip()


def build_completion_client(config: Config) -> CompletionClient | None:
    if config.completion_backend == "openai":
        return OpenAiChatCompletion(
            api_key=config.openai_api_key or "",
            base_url=config.openai_api_base,
            model=config.completion_model,
            timeout_s=config.completion_timeout_s,
        )
    return None
