"""Heuristic grouping of review chunks by the kind of code they touch."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from diff_review.chunk_builder import ReviewChunk

CONTEXT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("class_definition", re.compile(r"class\s+\w+")),
    ("method", re.compile(r"(public|private|protected)\s+function")),
    ("variable_assignment", re.compile(r"\$\w+\s*=")),
    ("control_flow", re.compile(r"if\s*\(|while\s*\(|for\s*\(")),
    ("imports_namespace", re.compile(r"namespace\s+|use\s+")),
    ("documentation", re.compile(r"/\*|\*/|//")),
)
GENERAL_CONTEXT = "general"


def detect_context(content: str) -> str:
    """Classify diff text; the first matching category wins."""
    lowered = content.lower()
    for name, pattern in CONTEXT_PATTERNS:
        if pattern.search(lowered):
            return name
    return GENERAL_CONTEXT


def chunk_by_context(chunks: Sequence[ReviewChunk]) -> list[list[ReviewChunk]]:
    """Split chunks into contiguous runs that share a detected context."""
    groups: list[list[ReviewChunk]] = []
    current: list[ReviewChunk] = []
    current_context: str | None = None

    for chunk in chunks:
        context = detect_context(chunk.unified_diff)
        if current and context != current_context:
            groups.append(current)
            current = []
        current.append(chunk)
        current_context = context

    if current:
        groups.append(current)
    return groups
