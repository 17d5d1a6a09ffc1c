"""Offline provider returning canned findings."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from diff_review.chunk_builder import ReviewChunk
from diff_review.rules.base import Finding


class MockProvider:
    """Deterministic provider for tests and dry runs.

    With ``responses`` set, those findings are returned as-is (an empty list
    means "no findings"). Without it, one informational finding is anchored at
    the first chunk.
    """

    name = "mock"

    def __init__(self, responses: Sequence[Finding | Mapping[str, Any]] | None = None) -> None:
        self._responses = None if responses is None else list(responses)

    def review_chunks(self, chunks: Sequence[ReviewChunk]) -> list[Finding]:
        if self._responses is not None:
            return [
                item if isinstance(item, Finding) else Finding.from_mapping(item)
                for item in self._responses
            ]
        if not chunks:
            return []

        first = chunks[0]
        start = first.start_line if first.start_line is not None else 1
        return [
            Finding(
                rule_id="AI.MOCK.CHECK",
                title="Mock AI Finding",
                severity="info",
                file_path=first.file,
                start_line=start,
                end_line=start,
                rationale="Mock provider used for tests.",
                suggestion="Consider addressing this mock suggestion.",
                content="",
            )
        ]
