from __future__ import annotations

import re

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    units = [unit.strip() for unit in _SENTENCE_SPLIT_RE.split(text or "")]
    return [unit for unit in units if unit]


def smart_trim_transcript(text: str, cap: int = 10000) -> str:
    """Cap prompt text, keeping the head, a sample of the middle and the tail."""
    if not text or len(text) <= cap:
        return text
    head = cap // 4
    tail = cap // 4
    mid = cap - head - tail
    start = text[:head]
    end = text[-tail:]
    middle = text[head : len(text) - tail]
    stride = max(1, len(middle) // max(1, mid))
    sampled = middle[::stride][:mid]
    return f"{start}\n...[omitted]...\n{sampled}\n...[omitted]...\n{end}"
