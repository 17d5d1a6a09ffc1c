"""Tests for the end-to-end review pipeline."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from diff_review.chunk_builder import ReviewChunk
from diff_review.config import AppConfig, config_from_mapping
from diff_review.pipeline import Pipeline, PipelineError, read_diff
from diff_review.providers import MockProvider, ProviderError
from diff_review.resources import ResourceScope
from diff_review.rules.base import Finding

FIXTURE_DIR = Path(__file__).parent / "fixtures" / "diffs"

NO_ECHO = {
    "id": "no-echo",
    "applies_to": ["**/*.php"],
    "severity": "minor",
    "rationale": "Use the logger instead of echo.",
    "pattern": r"(^|\s)echo\s",
    "suggestion": "Replace echo with a logger call.",
}


class _FailingProvider:
    name = "failing"

    def review_chunks(self, chunks: Sequence[ReviewChunk]) -> list[Finding]:
        raise ProviderError("upstream timed out")


class _RecordingProvider:
    name = "recording"

    def __init__(self) -> None:
        self.seen: list[str] = []

    def review_chunks(self, chunks: Sequence[ReviewChunk]) -> list[Finding]:
        self.seen.extend(chunk.file for chunk in chunks)
        return []


def _config(**mapping: object) -> AppConfig:
    return config_from_mapping({"rules": {"inline": [NO_ECHO]}, **mapping})


def test_run_reports_rule_finding_as_json() -> None:
    pipeline = Pipeline(_config(), MockProvider(responses=[]))

    payload = json.loads(pipeline.run(FIXTURE_DIR / "echo.diff", "json"))

    assert len(payload) == 1
    finding = payload[0]
    assert finding["rule_id"] == "no-echo"
    assert finding["file_path"] == "src/Hello.php"
    assert (finding["start_line"], finding["end_line"]) == (10, 10)
    assert finding["content"] == 'echo "hi";'
    assert len(finding["fingerprint"]) == 40


def test_rule_findings_precede_ai_findings() -> None:
    pipeline = Pipeline(_config(), MockProvider())
    findings = pipeline.review_file(FIXTURE_DIR / "echo.diff")
    assert [(item.rule_id, item.file_path) for item in findings] == [
        ("no-echo", "src/Hello.php"),
        ("AI.MOCK.CHECK", "b/src/Hello.php"),
    ]


def test_run_without_findings_renders_summary() -> None:
    pipeline = Pipeline(AppConfig(), MockProvider(responses=[]))
    assert pipeline.run(FIXTURE_DIR / "echo.diff", "summary") == "No findings.\n"


def test_run_rejects_unknown_format() -> None:
    pipeline = Pipeline(_config(), MockProvider(responses=[]))
    with pytest.raises(PipelineError, match="Unknown output format: xml"):
        pipeline.run(FIXTURE_DIR / "echo.diff", "xml")


def test_missing_diff_file_is_a_pipeline_error(tmp_path: Path) -> None:
    pipeline = Pipeline(_config(), MockProvider(responses=[]))
    with pytest.raises(PipelineError, match="Diff file not found"):
        pipeline.run(tmp_path / "missing.diff")
    with pytest.raises(PipelineError):
        read_diff(tmp_path)


def test_provider_error_is_logged_and_propagated() -> None:
    pipeline = Pipeline(_config(), _FailingProvider())
    with capture_logs() as logs, pytest.raises(ProviderError, match="upstream timed out"):
        pipeline.review_file(FIXTURE_DIR / "echo.diff")
    (entry,) = [item for item in logs if item["event"] == "pipeline.provider_failed"]
    assert entry["log_level"] == "error"
    assert entry["provider"] == "failing"


def test_completed_run_is_logged() -> None:
    pipeline = Pipeline(_config(), MockProvider(responses=[]))
    with capture_logs() as logs:
        pipeline.review_file(FIXTURE_DIR / "echo.diff")
    (entry,) = [item for item in logs if item["event"] == "pipeline.completed"]
    assert (entry["chunks"], entry["candidates"], entry["findings"]) == (1, 1, 1)


def test_excluded_files_reach_neither_rules_nor_provider() -> None:
    provider = _RecordingProvider()
    config = config_from_mapping(
        {
            "excludes": ["*.md", "vendor", "composer.lock"],
            "rules": {"inline": [{"id": "any-add", "pattern": "."}]},
        }
    )

    findings = Pipeline(config, provider).review_file(FIXTURE_DIR / "multi_file.diff")

    assert provider.seen == ["b/src/Service.php"]
    assert {item.file_path for item in findings} == {"src/Service.php"}


def test_secrets_are_redacted_in_output() -> None:
    config = config_from_mapping(
        {"rules": {"inline": [{"id": "env-key", "pattern": "^API_KEY=", "severity": "major"}]}}
    )
    output = Pipeline(config, MockProvider(responses=[])).run(
        FIXTURE_DIR / "secrets.diff", "json"
    )
    (finding,) = json.loads(output)
    assert finding["content"] == "API_KEY=***"
    assert "abcd1234efgh" not in output


def test_policy_state_does_not_leak_between_runs() -> None:
    pipeline = Pipeline(_config(), MockProvider(responses=[]))
    first = pipeline.review_file(FIXTURE_DIR / "echo.diff")
    second = pipeline.review_file(FIXTURE_DIR / "echo.diff")
    assert first == second
    assert len(second) == 1


def test_min_severity_filters_rule_findings() -> None:
    pipeline = Pipeline(
        _config(policy={"min_severity_to_comment": "major"}), MockProvider(responses=[])
    )
    assert pipeline.review_file(FIXTURE_DIR / "echo.diff") == []


def test_provider_mappings_are_coerced_into_findings() -> None:
    provider = MockProvider(
        responses=[{"rule_id": "AI.1", "file": "b/src/Hello.php", "start_line": 10}]
    )
    (finding,) = Pipeline(AppConfig(), provider).review_file(FIXTURE_DIR / "echo.diff")
    assert isinstance(finding, Finding)
    assert finding.fingerprint is not None


def test_resource_scope_removes_temp_files() -> None:
    with ResourceScope() as scope:
        path = scope.write_temp_file("diff --git a/x b/x\n")
        assert path.read_text(encoding="utf-8") == "diff --git a/x b/x\n"
        assert scope.paths == [path]
    assert not path.exists()
    assert scope.paths == []


def test_resource_scope_cleans_up_on_error() -> None:
    with pytest.raises(RuntimeError), ResourceScope() as scope:
        path = scope.write_temp_file("x", suffix=".txt")
        raise RuntimeError("boom")
    assert not path.exists()
