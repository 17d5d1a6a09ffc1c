"""Turn a unified diff into per-file review chunks that fit a token budget."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from diff_review.diff_processor import DiffProcessor
from diff_review.semantic import chunk_by_context
from diff_review.token_budget import TokenBudget

# Below this many remaining tokens a compression attempt is not worth making.
MIN_COMPRESSION_BUDGET = 100


@dataclass(frozen=True, slots=True)
class ReviewChunk:
    """One file's diff text as handed to an AI reviewer."""

    file: str
    unified_diff: str
    start_line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"file": self.file}
        if self.start_line is not None:
            payload["start_line"] = self.start_line
        payload["unified_diff"] = self.unified_diff
        return payload


class ChunkBuilder:
    """Builds review chunks in file order while tracking cumulative token usage."""

    def __init__(self, diff_processor: DiffProcessor, logger: Any | None = None) -> None:
        self._diff_processor = diff_processor
        self._log = logger if logger is not None else structlog.get_logger(__name__)

    def build_chunks(self, context: Mapping[str, Any], full_diff: str) -> list[ReviewChunk]:
        budget = TokenBudget.from_context(context)
        filtered = budget.filter_trivial_changes(full_diff)
        file_diffs = self._diff_processor.extract_file_diffs(filtered)

        chunks: list[ReviewChunk] = []
        used = 0

        for file_key, file_diff in file_diffs.items():
            start_line = self._diff_processor.start_line_from_unified_diff(file_diff)
            estimate = budget.estimate_tokens(file_diff)

            if budget.should_stop(used, estimate):
                remaining = budget.remaining_budget(used)
                if remaining <= MIN_COMPRESSION_BUDGET:
                    self._log.info(
                        "chunks.budget_exhausted", file=file_key, used=used, incoming=estimate
                    )
                    break
                file_diff = budget.compress_diff(file_diff, remaining)
                estimate = budget.estimate_tokens(file_diff)
                self._log.debug("chunks.compressed", file=file_key, tokens=estimate)
                if budget.should_stop(used, estimate):
                    self._log.info(
                        "chunks.budget_exhausted", file=file_key, used=used, incoming=estimate
                    )
                    break

            file_diff = budget.enforce_per_file_cap(file_diff)
            estimate = budget.estimate_tokens(file_diff)

            chunks.append(
                ReviewChunk(
                    file=file_key,
                    unified_diff=file_diff,
                    start_line=start_line if start_line > 0 else None,
                )
            )
            used += estimate

        if context.get("enable_semantic_chunking", False):
            chunks = [chunk for group in chunk_by_context(chunks) for chunk in group]

        self._log.debug("chunks.built", count=len(chunks), used_tokens=used)
        return chunks
