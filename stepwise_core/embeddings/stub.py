from __future__ import annotations

import hashlib
import random
from typing import Iterable, Protocol


class TextEmbedder(Protocol):
    def encode(self, texts: Iterable[str]) -> list[list[float]]: ...


def _seed_from_bytes(payload: bytes) -> int:
    digest = hashlib.sha256(payload).digest()
    return int.from_bytes(digest[:8], "big")


def _deterministic_vector(seed: int, dim: int) -> list[float]:
    rng = random.Random(seed)
    return [rng.uniform(-1.0, 1.0) for _ in range(dim)]


def normalize_question_text(text: str) -> str:
    return " ".join(text.lower().split())


class StubTextEmbedder:
    """Deterministic offline embedder; identical text maps to identical vectors."""

    name = "stub"

    def __init__(self, dim: int) -> None:
        self.dim = dim

    def encode(self, texts: Iterable[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            seed = _seed_from_bytes(normalize_question_text(text).encode("utf-8"))
            vectors.append(_deterministic_vector(seed, self.dim))
        return vectors
