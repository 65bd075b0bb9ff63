from __future__ import annotations

from stepwise_core.config import Config
from stepwise_core.embeddings.openai_backend import OpenAiTextEmbedder
from stepwise_core.embeddings.service import EmbeddingService
from stepwise_core.embeddings.stub import StubTextEmbedder, TextEmbedder
from stepwise_core.metrics import MetricsCollector


def build_text_embedder(config: Config) -> TextEmbedder:
    if config.embedding_backend == "openai":
        return OpenAiTextEmbedder(
            api_key=config.openai_api_key or "",
            base_url=config.openai_api_base,
            model=config.embedding_model,
            dim=config.embedding_dim,
            timeout_s=config.embedding_timeout_s,
        )
    return StubTextEmbedder(config.embedding_dim)


def build_embedding_service(
    config: Config,
    metrics: MetricsCollector | None = None,
) -> EmbeddingService:
    return EmbeddingService(
        build_text_embedder(config),
        dim=config.embedding_dim,
        timeout_s=config.embedding_timeout_s,
        metrics=metrics,
    )


__all__ = [
    "EmbeddingService",
    "OpenAiTextEmbedder",
    "StubTextEmbedder",
    "TextEmbedder",
    "build_embedding_service",
    "build_text_embedder",
]
