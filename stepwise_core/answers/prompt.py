from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

SYSTEM_PROMPT = (
    "You are an AI trainer for a specific how-to module.\n"
    "- ONLY use the provided context; do not invent steps.\n"
    '- Prefer citing "Step N" when applicable.\n'
    "- Keep answers concise (2-5 sentences)."
)


@dataclass(frozen=True)
class ContextSnippet:
    kind: str
    text: str


def build_rag_prompt(
    question: str,
    step_count: int,
    context: Sequence[ContextSnippet],
    current_step: str | None = None,
) -> tuple[str, str]:
    snippets = "\n".join(
        f"[{index}|{snippet.kind}] {snippet.text}"
        for index, snippet in enumerate(context, start=1)
    )
    lines = [f"Question: {question}", f"Total steps: {step_count}"]
    if current_step:
        lines.append(f"Learner is currently on: {current_step}")
    lines.append("Context:")
    lines.append(snippets or "(no context available)")
    return SYSTEM_PROMPT, "\n".join(lines)
