"""Shared prompt construction and reply parsing for LLM-backed providers."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from diff_review.chunk_builder import ReviewChunk
from diff_review.config import PromptsConfig
from diff_review.rules.base import Finding

SYSTEM_PROMPT = (
    "You are a strict assistant that outputs ONLY valid JSON following the requested schema."
)

PROMPT_HEADER = (
    "You are an AI Code Review bot. Analyze the following UNIFIED DIFFS per file, "
    "considering both added/modified lines (+) and deleted lines (-).",
    "Focus your reasoning primarily on the resulting code state, but consider deletions "
    "for potential regressions, removed validations, or security checks.",
    'Return a JSON object with key "findings" which is an array of objects with keys:',
    "rule_id, title, severity, file, start_line, end_line, rationale, suggestion, content",
    'If no issues, return {"findings":[]}. Do not include commentary.',
)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\n(.+?)\n```", re.DOTALL)
_INLINE_FINDINGS_RE = re.compile(r"\{.*\"findings\".*\}", re.DOTALL)


class ProviderError(RuntimeError):
    """Raised when an AI provider call fails."""


def build_prompt(chunks: Sequence[ReviewChunk]) -> str:
    lines = [*PROMPT_HEADER, ""]
    for chunk in chunks:
        start = chunk.start_line if chunk.start_line is not None else 1
        lines.append(f"FILE: {chunk.file} (~{start})")
        lines.append("---")
        lines.append(chunk.unified_diff)
        lines.append("")
    return "\n".join(lines)


def merge_additional_prompts(
    system: str, user: str, prompts: PromptsConfig | Mapping[str, Any] | None
) -> tuple[str, str]:
    """Append configured ``system_append``, ``user_append`` and ``extra`` text."""
    if prompts is None:
        return system, user
    if isinstance(prompts, PromptsConfig):
        prompts = prompts.to_dict()

    system_append = _normalize(prompts.get("system_append"))
    user_append = _normalize(prompts.get("user_append"))
    extra = _normalize(prompts.get("extra"))

    if system_append:
        system = system.rstrip() + "\n\n" + "\n\n".join(system_append)

    user_parts = [user.rstrip()]
    if user_append:
        user_parts.append("\n\n".join(user_append))
    if extra:
        user_parts.append("\n\n".join(extra))
    user = "\n\n".join(part for part in user_parts if part.strip())
    return system, user


def extract_findings_from_text(text: str) -> list[dict[str, Any]]:
    """Pull the ``findings`` list out of a model reply.

    Tries the whole reply as JSON, then a fenced code block, then the widest
    ``{... "findings" ...}`` span. Anything unusable yields an empty list.
    """
    parsed = _loads(text)
    if not isinstance(parsed, dict):
        fenced = _FENCED_JSON_RE.search(text)
        if fenced is not None:
            parsed = _loads(fenced.group(1))
    if not isinstance(parsed, dict):
        inline = _INLINE_FINDINGS_RE.search(text)
        if inline is not None:
            parsed = _loads(inline.group(0))
    if not isinstance(parsed, dict):
        return []

    findings = parsed.get("findings")
    if not isinstance(findings, list):
        return []
    return [item for item in findings if isinstance(item, dict)]


class LLMProvider(ABC):
    """Base for providers that review chunks through a single chat completion."""

    name: str = ""

    def __init__(self, prompts: PromptsConfig | Mapping[str, Any] | None = None) -> None:
        self.prompts = prompts

    def review_chunks(self, chunks: Sequence[ReviewChunk]) -> list[Finding]:
        if not chunks:
            return []
        system, user = merge_additional_prompts(SYSTEM_PROMPT, build_prompt(chunks), self.prompts)
        reply = self.complete(system, user)
        return [Finding.from_mapping(item) for item in extract_findings_from_text(reply)]

    @abstractmethod
    def complete(self, system: str, user: str) -> str:
        """Send the prompts to the model and return its raw text reply."""


def _normalize(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]
    return []


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
