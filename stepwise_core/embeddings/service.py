from __future__ import annotations

from stepwise_core.embeddings.stub import TextEmbedder
from stepwise_core.errors import PermanentError
from stepwise_core.metrics import MetricsCollector, timed_call
from stepwise_core.providers.timeout import run_with_timeout


class EmbeddingService:
    def __init__(
        self,
        embedder: TextEmbedder,
        *,
        dim: int,
        timeout_s: float = 0.0,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.embedder = embedder
        self.dim = dim
        self.timeout_s = timeout_s
        self.metrics = metrics or MetricsCollector()

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise PermanentError("Cannot embed empty text")
        vectors = timed_call(
            self.metrics,
            "embedding.call",
            lambda: run_with_timeout(
                "embedding",
                lambda: self.embedder.encode([text]),
                self.timeout_s,
            ),
        )
        if not vectors:
            raise PermanentError("Embedding backend returned no vector")
        vector = vectors[0]
        if len(vector) != self.dim:
            raise PermanentError(
                f"Embedding dimension mismatch: expected {self.dim}, got {len(vector)}"
            )
        return vector
