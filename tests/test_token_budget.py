"""Tests for token estimation and budget enforcement."""

from __future__ import annotations

import pytest

from diff_review.token_budget import COMPRESSION_MARKER, TokenBudget, line_priority


def _budget(
    global_cap: int = 8000,
    per_file_cap: int = 2000,
    strategy: str = "trim",
    provider: str = "mock",
) -> TokenBudget:
    return TokenBudget(global_cap, per_file_cap, strategy, provider)


def test_from_context_defaults() -> None:
    budget = TokenBudget.from_context({})
    assert budget.global_cap == 8000
    assert budget.per_file_cap == 2000
    assert budget.max_tokens_per_file == 2000
    assert budget.overflow_strategy == "trim"
    assert budget.provider == "openai"


def test_from_context_reads_keys() -> None:
    budget = TokenBudget.from_context(
        {
            "diff_token_limit": 100,
            "per_file_token_cap": 40,
            "overflow_strategy": "keep",
            "provider": "Anthropic",
        }
    )
    assert (budget.global_cap, budget.per_file_cap) == (100, 40)
    assert budget.overflow_strategy == "keep"
    assert budget.provider == "anthropic"


@pytest.mark.parametrize(
    ("provider", "expected"),
    [
        ("mock", 3),
        ("openai", 4),
        ("anthropic", 4),
        ("something-else", 4),
    ],
)
def test_estimate_plain_text_per_provider(provider: str, expected: int) -> None:
    assert _budget(provider=provider).estimate_tokens("hello world") == expected


def test_estimate_adds_weight_for_diff_lines() -> None:
    budget = _budget()
    # 10 chars * 0.25 * 1.1
    assert budget.estimate_tokens("+abcdefghi") == 3
    # 10 chars * 0.25
    assert budget.estimate_tokens("abcdefghij") == 3
    assert budget.estimate_tokens("") == 0


def test_estimate_counts_utf8_bytes() -> None:
    budget = _budget()
    # 100 two-byte characters * 0.25
    assert budget.estimate_tokens("é" * 100) == 50
    assert budget.estimate_tokens("e" * 100) == 25


def test_estimate_is_memoized_until_cleared() -> None:
    budget = _budget()
    first = budget.estimate_tokens("some text")
    assert budget.estimate_tokens("some text") == first
    assert budget.cache_stats() == {"cache_size": 1, "provider": "mock"}

    budget.clear_cache()
    assert budget.cache_stats()["cache_size"] == 0


def test_should_stop_only_when_over_cap_and_trimming() -> None:
    budget = _budget(global_cap=100)
    assert budget.should_stop(60, 40) is False
    assert budget.should_stop(60, 41) is True
    assert _budget(global_cap=100, strategy="keep").should_stop(60, 1000) is False


def test_remaining_budget_never_negative() -> None:
    budget = _budget(global_cap=100)
    assert budget.remaining_budget(30) == 70
    assert budget.remaining_budget(150) == 0


def test_enforce_per_file_cap_returns_small_content_unchanged() -> None:
    content = "diff --git a/x b/x\n+small\n"
    assert _budget().enforce_per_file_cap(content) == content


def test_smart_truncation_keeps_changes_then_comments() -> None:
    important = ["diff --git a/x.py b/x.py", "@@ -1,3 +1,4 @@", "+added = 1"]
    filler = [f" unchanged line of context number {index}" for index in range(10)]
    content = "\n".join([important[0], important[1], *filler, "# a comment", important[2]])
    budget = _budget(per_file_cap=20)

    assert budget.estimate_tokens(content) > 20
    truncated = budget.enforce_per_file_cap(content)

    assert truncated == "\n".join([*important, "# a comment"])
    assert budget.estimate_tokens(truncated) <= 20


def test_truncation_is_a_hard_bound_and_idempotent() -> None:
    content = "\n".join(f"+line number {index} = value({index});" for index in range(60))
    budget = _budget(per_file_cap=25)

    once = budget.enforce_per_file_cap(content)
    assert budget.estimate_tokens(once) <= 25
    assert budget.enforce_per_file_cap(once) == once


@pytest.mark.parametrize(
    ("line", "priority"),
    [
        ("diff --git a/x b/x", 4),
        ("@@ -1 +1 @@", 4),
        ("+++ b/x", 4),
        ("--- a/x", 4),
        ("\\ No newline at end of file", 4),
        ("+added", 3),
        ("-removed", 3),
        ("    public function x()", 3),
        ("class Foo", 3),
        ("  // note", 2),
        (" * docblock", 2),
        ("# heading", 2),
        ("    plain", 1),
        ("   ", 0),
    ],
)
def test_line_priority(line: str, priority: int) -> None:
    assert line_priority(line) == priority


def test_compress_diff_drops_blank_lines_and_collapses_block_comments() -> None:
    diff = "+a = 1\n\n+b = 2 /* note */\n   \n+c = 3"
    assert _budget().compress_diff(diff, 1000) == "+a = 1\n+b = 2 /* ... */\n+c = 3"


def test_compress_diff_appends_marker_when_budget_runs_out() -> None:
    # each line: 5 chars * 0.25 * 1.1 -> 2 tokens
    compressed = _budget().compress_diff("+aaaa\n+bbbb\n+cccc", 3)
    assert compressed == f"+aaaa\n{COMPRESSION_MARKER}"


def test_filter_trivial_changes_drops_only_low_value_additions() -> None:
    diff = "\n".join(
        [
            "diff --git a/a.php b/a.php",
            "+    ",
            "+// TODO: fix later",
            "+# FIXME later",
            "+use App\\Foo;",
            "+ * @param int $x",
            " context",
            "-removed",
            "+$real = 1;",
            "+import os",
        ]
    )
    assert _budget().filter_trivial_changes(diff) == "\n".join(
        [
            "diff --git a/a.php b/a.php",
            " context",
            "-removed",
            "+$real = 1;",
            "+import os",
        ]
    )
