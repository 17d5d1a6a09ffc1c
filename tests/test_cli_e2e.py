"""CLI end-to-end tests for review, chunks, rules and config commands."""

from __future__ import annotations

import json
import tomllib
from pathlib import Path

from typer.testing import CliRunner

from diff_review.cli import app
from tests.helpers_git import repo_with_echo_change, write_file

runner = CliRunner()

FIXTURE_DIR = Path(__file__).parent / "fixtures" / "diffs"

ECHO_RULE_CONFIG = "\n".join(
    [
        "[rules]",
        "inline = [",
        "  { id = \"no-echo\", applies_to = [\"**/*.php\"], severity = \"minor\", "
        "rationale = \"Use the logger instead of echo.\", pattern = '(^|\\s)echo\\s', "
        "suggestion = \"Replace echo with a logger call.\" },",
        "]",
        "",
    ]
)


def _echo_config(tmp_path: Path) -> Path:
    return write_file(tmp_path, "review-config/echo.toml", ECHO_RULE_CONFIG)


def _echo_diff() -> str:
    return (FIXTURE_DIR / "echo.diff").read_text(encoding="utf-8")


def test_review_json_from_stdin(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        [
            "review",
            "--stdin",
            "--repo",
            str(tmp_path),
            "--config",
            str(_echo_config(tmp_path)),
            "--format",
            "json",
        ],
        input=_echo_diff(),
    )
    assert result.exit_code == 0

    payload = json.loads(result.stdout)
    assert [(item["rule_id"], item["file_path"], item["start_line"]) for item in payload] == [
        ("no-echo", "src/Hello.php", 10),
        ("AI.MOCK.CHECK", "b/src/Hello.php", 10),
    ]
    assert all("fingerprint" in item for item in payload)


def test_review_summary_from_working_tree(tmp_path: Path) -> None:
    repo, _, _ = repo_with_echo_change(tmp_path, commit=False)
    result = runner.invoke(
        app, ["review", "--repo", str(repo), "--config", str(_echo_config(tmp_path))]
    )
    assert result.exit_code == 0
    assert result.stdout.startswith("Findings (2):\n")
    assert "- [MINOR] no-echo (src/Hello.php:10-10) Use the logger instead of echo.\n" in (
        result.stdout
    )
    assert "  Suggestion: Replace echo with a logger call.\n" in result.stdout


def test_review_between_revisions(tmp_path: Path) -> None:
    repo, base, head = repo_with_echo_change(tmp_path)
    assert head is not None
    result = runner.invoke(
        app,
        [
            "review",
            "--repo",
            str(repo),
            "--base",
            base,
            "--head",
            head,
            "--config",
            str(_echo_config(tmp_path)),
            "--format",
            "json",
        ],
    )
    assert result.exit_code == 0
    assert [item["rule_id"] for item in json.loads(result.stdout)] == ["no-echo", "AI.MOCK.CHECK"]


def test_review_without_findings(tmp_path: Path) -> None:
    repo, base, head = repo_with_echo_change(tmp_path)
    assert head is not None
    result = runner.invoke(
        app, ["review", "--repo", str(repo), "--base", head, "--head", head]
    )
    assert result.exit_code == 0
    assert result.stdout == "No findings.\n"


def test_review_markdown(tmp_path: Path) -> None:
    diff_path = FIXTURE_DIR / "echo.diff"
    result = runner.invoke(
        app,
        ["review", "--diff-file", str(diff_path), "--repo", str(tmp_path), "--format", "markdown"],
    )
    assert result.exit_code == 0
    assert result.stdout.startswith("# 🔍 Code Review Results\n")
    assert "### 📄 `b/src/Hello.php`" in result.stdout


def test_fail_on_sets_exit_code(tmp_path: Path) -> None:
    base_args = [
        "review",
        "--stdin",
        "--repo",
        str(tmp_path),
        "--config",
        str(_echo_config(tmp_path)),
        "--format",
        "json",
    ]

    failing = runner.invoke(app, [*base_args, "--fail-on", "minor"], input=_echo_diff())
    assert failing.exit_code == 1
    assert json.loads(failing.stdout)

    passing = runner.invoke(app, [*base_args, "--fail-on", "major"], input=_echo_diff())
    assert passing.exit_code == 0


def test_invalid_fail_on_is_rejected(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["review", "--stdin", "--repo", str(tmp_path), "--fail-on", "blocker"],
        input=_echo_diff(),
    )
    assert result.exit_code == 2
    assert "fail-on must be one of" in result.output


def test_diff_file_and_stdin_are_mutually_exclusive(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        [
            "review",
            "--stdin",
            "--diff-file",
            str(FIXTURE_DIR / "echo.diff"),
            "--repo",
            str(tmp_path),
        ],
        input=_echo_diff(),
    )
    assert result.exit_code == 2
    assert "either --diff-file or --stdin" in result.output


def test_base_requires_head(tmp_path: Path) -> None:
    result = runner.invoke(app, ["review", "--repo", str(tmp_path), "--base", "HEAD~1"])
    assert result.exit_code == 2
    assert "both --base and --head" in result.output


def test_missing_diff_file_exits_with_error(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["review", "--diff-file", str(tmp_path / "missing.diff"), "--repo", str(tmp_path)]
    )
    assert result.exit_code == 1
    assert "Error: Diff file not found" in result.output


def test_unknown_provider_is_rejected(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["review", "--stdin", "--repo", str(tmp_path), "--provider", "nope"],
        input=_echo_diff(),
    )
    assert result.exit_code == 2
    assert "Unknown provider: nope" in result.output


def test_review_logs_as_json_when_requested(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        [
            "review",
            "--diff-file",
            str(FIXTURE_DIR / "echo.diff"),
            "--repo",
            str(tmp_path),
            "--log-level",
            "info",
            "--log-json",
        ],
    )
    assert result.exit_code == 0
    assert '"event": "pipeline.completed"' in result.output


def test_chunks_command_lists_budgeted_chunks(tmp_path: Path) -> None:
    write_file(tmp_path, ".diff-review.toml", 'excludes = ["vendor", "*.lock"]\n')
    result = runner.invoke(
        app,
        ["chunks", "--diff-file", str(FIXTURE_DIR / "multi_file.diff"), "--repo", str(tmp_path)],
    )
    assert result.exit_code == 0

    payload = json.loads(result.stdout)
    assert [chunk["file"] for chunk in payload["chunks"]] == ["b/README.md", "b/src/Service.php"]
    assert payload["meta"]["provider"] == "mock"
    assert payload["meta"]["context"]["diff_token_limit"] == 8000


def test_rules_command_human_and_json(tmp_path: Path) -> None:
    config_path = _echo_config(tmp_path)

    human = runner.invoke(app, ["rules", "--repo", str(tmp_path), "--config", str(config_path)])
    assert human.exit_code == 0
    assert human.stdout == (
        "Configured rules:\n"
        "- no-echo [enabled] minor (**/*.php) - Use the logger instead of echo.\n"
    )

    as_json = runner.invoke(
        app, ["rules", "--repo", str(tmp_path), "--config", str(config_path), "--format", "json"]
    )
    assert as_json.exit_code == 0
    payload = json.loads(as_json.stdout)
    assert [rule["id"] for rule in payload["rules"]] == ["no-echo"]
    assert payload["meta"]["config_source"] == str(config_path)


def test_rules_command_without_rules(tmp_path: Path) -> None:
    result = runner.invoke(app, ["rules", "--repo", str(tmp_path)])
    assert result.exit_code == 0
    assert result.stdout == "No rules configured.\n"


def test_config_command_reports_active_rules(tmp_path: Path) -> None:
    write_file(
        tmp_path,
        "pyproject.toml",
        '[tool.diff_review]\nformat = "json"\n\n[[tool.diff_review.rules.inline]]\n'
        'id = "off"\npattern = "x"\nenabled = false\n\n'
        '[[tool.diff_review.rules.inline]]\nid = "on"\npattern = "y"\n',
    )

    result = runner.invoke(app, ["config", "--repo", str(tmp_path), "--format", "json"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["format"] == "json"
    assert payload["active_rule_ids"] == ["on"]
    assert payload["source"].endswith("pyproject.toml")

    human = runner.invoke(app, ["config", "--repo", str(tmp_path)])
    assert human.exit_code == 0
    assert "- active_rule_ids: ['on']" in human.stdout


def test_invalid_config_is_reported(tmp_path: Path) -> None:
    write_file(tmp_path, ".diff-review.toml", 'format = "xml"\n')
    result = runner.invoke(app, ["config", "--repo", str(tmp_path)])
    assert result.exit_code == 2
    assert "format must be one of" in result.output


def test_config_init_writes_template_and_respects_force(tmp_path: Path) -> None:
    out_path = tmp_path / "nested" / ".diff-review.toml"

    created = runner.invoke(app, ["config-init", "--out", str(out_path)])
    assert created.exit_code == 0
    assert "Wrote starter config" in created.stdout
    assert tomllib.loads(out_path.read_text(encoding="utf-8"))["provider"] == "mock"

    refused = runner.invoke(app, ["config-init", "--out", str(out_path)])
    assert refused.exit_code == 2
    assert "Refusing to overwrite" in refused.output

    forced = runner.invoke(app, ["config-init", "--out", str(out_path), "--force"])
    assert forced.exit_code == 0
