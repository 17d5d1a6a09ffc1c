"""Output rendering."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime

import click

from diff_review.rules.base import Finding

NO_FINDINGS = "No findings.\n"

SEVERITY_ORDER = ("critical", "major", "minor", "info")

_SEVERITY_COLORS = {
    "critical": "red",
    "major": "yellow",
    "minor": "cyan",
    "info": "blue",
}

_SEVERITY_EMOJI = {
    "critical": "🔴",
    "major": "🟠",
    "minor": "🟡",
    "info": "🔵",
}


def render(findings: Sequence[Finding], output_format: str) -> str:
    """Render findings in one of ``json``, ``summary`` or ``markdown``."""
    if output_format == "json":
        return render_json(findings)
    if output_format == "summary":
        return render_summary(findings)
    if output_format == "markdown":
        return render_markdown(findings)
    raise ValueError(f"Unknown output format: {output_format}")


def render_json(findings: Sequence[Finding]) -> str:
    """Render a pretty-printed JSON array for CI and automation."""
    return json.dumps([finding.to_dict() for finding in findings], indent=4, ensure_ascii=False)


def render_summary(findings: Sequence[Finding], *, color: bool = False) -> str:
    """Render one entry per finding, plain text unless ``color`` is set."""
    if not findings:
        return NO_FINDINGS

    lines = [f"Findings ({len(findings)}):"]
    for finding in findings:
        tag = f"[{finding.severity.upper()}]"
        if color:
            tag = click.style(tag, fg=_SEVERITY_COLORS.get(finding.severity.lower()), bold=True)
        lines.append(
            f"- {tag} {finding.rule_id} "
            f"({finding.file_path}:{finding.start_line}-{finding.end_line}) {finding.rationale}"
        )
        lines.append(f"  Suggestion: {finding.suggestion}")
    return "\n".join(lines) + "\n"


def render_markdown(findings: Sequence[Finding], *, include_metadata: bool = True) -> str:
    """Render a Markdown report suitable for a pull request comment."""
    if not findings:
        return (
            "# 🎉 Code Review Results\n\n"
            "## ✅ No Issues Found\n\n"
            "No issues were identified in the code review.\n"
        )

    lines = ["# 🔍 Code Review Results", "", "## 📊 Summary", ""]
    lines.append(f"**Total Issues:** {len(findings)}")
    lines.append("")
    lines.append("### By Severity")
    lines.append("")
    for severity, count in _count_by_severity(findings):
        lines.append(f"- {_emoji(severity)} **{severity}**: {count}")
    lines.append("")

    lines.append("## 🚨 Issues Found")
    lines.append("")
    for file_path, file_findings in _group_by_file(findings):
        lines.append(f"### 📄 `{file_path}`")
        lines.append("")
        for finding in file_findings:
            lines.extend(_markdown_finding(finding))

    if include_metadata:
        generated = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        lines.extend(["## 📋 Metadata", "", f"- **Generated:** {generated}"])

    return "\n".join(lines) + "\n"


def _markdown_finding(finding: Finding) -> list[str]:
    lines = [
        f"#### {_emoji(finding.severity)} {finding.title or finding.rule_id}",
        "",
        f"- **Line:** {finding.start_line}",
        f"- **Severity:** {finding.severity}",
    ]
    if finding.rule_id:
        lines.append(f"- **Rule:** `{finding.rule_id}`")
    if finding.aggregated_count:
        lines.append(f"- **Occurrences:** {finding.aggregated_count}")
    lines.append("")
    if finding.rationale:
        lines.extend([f"**Rationale:** {finding.rationale}", ""])
    if finding.suggestion:
        lines.extend([f"**Suggestion:** {finding.suggestion}", ""])
    lines.extend(["---", ""])
    return lines


def _count_by_severity(findings: Sequence[Finding]) -> list[tuple[str, int]]:
    counts = Counter(finding.severity.lower() for finding in findings)

    def priority(item: tuple[str, int]) -> tuple[int, str]:
        severity = item[0]
        if severity in SEVERITY_ORDER:
            return SEVERITY_ORDER.index(severity), severity
        return len(SEVERITY_ORDER), severity

    return sorted(counts.items(), key=priority)


def _group_by_file(findings: Sequence[Finding]) -> list[tuple[str, list[Finding]]]:
    grouped: dict[str, list[Finding]] = {}
    for finding in findings:
        grouped.setdefault(finding.file_path or "unknown", []).append(finding)
    return sorted(grouped.items())


def _emoji(severity: str) -> str:
    return _SEVERITY_EMOJI.get(severity.lower(), "⚪")
