from __future__ import annotations

import re

_SENTINELS = (
    "enhanced ai contextual response service is not currently available",
    "enhanced ai contextual response service",
    "temporarily unavailable",
    "service is not currently available",
)

_APOLOGY = re.compile(r"^(i'm|i am) sorry\b")
_REFUSAL = re.compile(r"\b(cannot|can't|can not|couldn't|could not|unable to)\b")


def looks_like_placeholder(text: str | None) -> bool:
    """Detect boilerplate apologies and service-unavailable text."""
    if not text:
        return True
    lowered = text.strip().lower().replace("\u2019", "'").replace("\u2018", "'")
    if not lowered:
        return True
    if len(lowered) < 30 and ("sorry" in lowered or "unavailable" in lowered):
        return True
    if any(sentinel in lowered for sentinel in _SENTINELS):
        return True
    if _APOLOGY.search(lowered) and _REFUSAL.search(lowered):
        return True
    if "enhanced" in lowered and "not currently available" in lowered:
        return True
    return False
