"""End-to-end review run: diff text in, rendered findings out."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog

from diff_review.chunk_builder import ChunkBuilder, ReviewChunk
from diff_review.config import OUTPUT_FORMATS, AppConfig
from diff_review.diff_parser import parse_added_lines
from diff_review.diff_processor import DiffProcessor
from diff_review.output import render
from diff_review.policy import Policy
from diff_review.providers import AIProvider, ProviderError
from diff_review.rules import Finding, RulesEngine


class PipelineError(RuntimeError):
    """Raised when a review run cannot read its input or render its output."""


class Pipeline:
    """Composes chunking, the AI provider, rules and policy for one configuration.

    Each call to :meth:`review_text` uses a fresh token budget and policy, so
    no dedup or cache state leaks between runs.
    """

    def __init__(
        self,
        config: AppConfig,
        provider: AIProvider,
        *,
        logger: Any | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self._log = logger if logger is not None else structlog.get_logger(__name__)
        self._diff_processor = DiffProcessor(config.excludes)
        self._chunk_builder = ChunkBuilder(self._diff_processor, logger=self._log)
        self.rules_engine = RulesEngine.from_config(
            config.rules.to_dict(), base_dir=config.root, logger=self._log
        )

    def run(self, diff_path: str | Path, output_format: str = "json") -> str:
        if output_format not in OUTPUT_FORMATS:
            raise PipelineError(f"Unknown output format: {output_format}")
        findings = self.review_file(diff_path)
        try:
            return render(findings, output_format)
        except ValueError as exc:
            raise PipelineError(str(exc)) from exc

    def review_file(self, diff_path: str | Path) -> list[Finding]:
        return self.review_text(read_diff(diff_path))

    def build_chunks(self, diff_text: str) -> list[ReviewChunk]:
        return self._chunk_builder.build_chunks(
            self.config.context_for(self.provider.name), diff_text
        )

    def review_text(self, diff_text: str) -> list[Finding]:
        chunks = self.build_chunks(diff_text)

        try:
            ai_findings = _coerce_findings(self.provider.review_chunks(chunks))
        except ProviderError as exc:
            self._log.error("pipeline.provider_failed", provider=self.provider.name, error=str(exc))
            raise

        findings = self.evaluate_rules(diff_text) + ai_findings
        emitted = Policy(self.config.policy).apply(findings)
        self._log.info(
            "pipeline.completed",
            chunks=len(chunks),
            candidates=len(findings),
            findings=len(emitted),
        )
        return emitted

    def evaluate_rules(self, diff_text: str) -> list[Finding]:
        findings: list[Finding] = []
        for file_path, added_lines in parse_added_lines(diff_text).items():
            if self._diff_processor.is_excluded(file_path):
                continue
            findings.extend(self.rules_engine.evaluate(file_path, added_lines))
        return findings


def read_diff(diff_path: str | Path) -> str:
    path = Path(diff_path)
    if not path.is_file():
        raise PipelineError(f"Diff file not found: {path}")
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise PipelineError(f"Failed to read diff file: {path}: {exc}") from exc


def _coerce_findings(items: Iterable[Finding | Mapping[str, Any]]) -> list[Finding]:
    return [item if isinstance(item, Finding) else Finding.from_mapping(item) for item in items]
