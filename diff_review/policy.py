"""Post-processing of findings: consolidation, limits, severity, dedup and redaction."""

from __future__ import annotations

import hashlib
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

from diff_review.config import PolicyConfig
from diff_review.rules.base import Finding

SEVERITY_RANK = {"info": 0, "minor": 1, "major": 2, "critical": 3}
UNLIMITED_PER_SEVERITY = 999
MAX_AGGREGATED_PATHS = 3
SIGNATURE_TITLE_LENGTH = 20

SECRET_RE = re.compile(r"(password|secret|api[_-]?key)(\s*[:=]\s*)[^'\"\s]{4,}", re.IGNORECASE)


def severity_rank(severity: str) -> int:
    """Ordinal rank of a severity; unknown values rank as ``info``."""
    return SEVERITY_RANK.get(severity.lower(), 0)


def fingerprint(finding: Finding) -> str:
    key = "|".join(
        [
            finding.file_path,
            str(finding.start_line),
            str(finding.end_line),
            finding.rule_id,
            finding.content,
        ]
    )
    return hashlib.sha1(key.encode("utf-8"), usedforsecurity=False).hexdigest()


def redact_secrets(content: str) -> str:
    return SECRET_RE.sub(r"\1\2***", content)


class Policy:
    """Applies the configured policy to one run's findings."""

    def __init__(self, settings: PolicyConfig | None = None) -> None:
        self.settings = settings if settings is not None else PolicyConfig()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Policy:
        defaults = PolicyConfig()
        return cls(
            PolicyConfig(
                min_severity_to_comment=str(
                    raw.get("min_severity_to_comment", defaults.min_severity_to_comment)
                ).lower(),
                max_comments=int(raw.get("max_comments", defaults.max_comments)),
                redact_secrets=bool(raw.get("redact_secrets", defaults.redact_secrets)),
                consolidate_similar_findings=bool(
                    raw.get("consolidate_similar_findings", defaults.consolidate_similar_findings)
                ),
                max_findings_per_file=int(
                    raw.get("max_findings_per_file", defaults.max_findings_per_file)
                ),
                severity_limits={
                    str(key).lower(): int(value)
                    for key, value in dict(raw.get("severity_limits") or {}).items()
                },
            )
        )

    def apply(self, findings: Iterable[Finding]) -> list[Finding]:
        """Return the findings to publish, each carrying a ``fingerprint``.

        Stages run in order: optional consolidation of similar findings, per-file
        and per-severity limits, then severity filter, dedup, redaction and the
        global comment cap. Input findings are never modified.
        """
        items = list(findings)
        if self.settings.consolidate_similar_findings:
            items = consolidate(items)
        items = self._apply_output_limits(items)

        max_comments = self.settings.max_comments
        if max_comments <= 0:
            return []

        min_rank = severity_rank(self.settings.min_severity_to_comment)
        seen: set[str] = set()
        output: list[Finding] = []
        for finding in items:
            if severity_rank(finding.severity) < min_rank:
                continue
            finding_fingerprint = fingerprint(finding)
            if finding_fingerprint in seen:
                continue
            seen.add(finding_fingerprint)

            content = finding.content
            if self.settings.redact_secrets:
                content = redact_secrets(content)
            output.append(replace(finding, content=content, fingerprint=finding_fingerprint))
            if len(output) >= max_comments:
                break
        return output

    def _apply_output_limits(self, findings: list[Finding]) -> list[Finding]:
        per_file: Counter[str] = Counter()
        per_severity: Counter[str] = Counter()
        limits = self.settings.severity_limits
        kept: list[Finding] = []

        for finding in findings:
            severity = finding.severity.lower()
            if per_file[finding.file_path] >= self.settings.max_findings_per_file:
                continue
            if per_severity[severity] >= limits.get(severity, UNLIMITED_PER_SEVERITY):
                continue
            per_file[finding.file_path] += 1
            per_severity[severity] += 1
            kept.append(finding)
        return kept


def consolidate(findings: list[Finding]) -> list[Finding]:
    """Collapse findings sharing rule, severity and title prefix into one aggregate."""
    groups: dict[str, list[Finding]] = {}
    for finding in findings:
        groups.setdefault(_signature(finding), []).append(finding)

    output: list[Finding] = []
    for members in groups.values():
        if len(members) == 1:
            output.append(members[0])
        else:
            output.append(_aggregate(members))
    return output


def _signature(finding: Finding) -> str:
    key = "|".join(
        [finding.rule_id, finding.severity, finding.title[:SIGNATURE_TITLE_LENGTH]]
    )
    return hashlib.md5(key.encode("utf-8"), usedforsecurity=False).hexdigest()


def _aggregate(members: list[Finding]) -> Finding:
    first = members[0]
    paths = list(dict.fromkeys(member.file_path for member in members))
    file_path = ", ".join(paths[:MAX_AGGREGATED_PATHS])
    if len(paths) > MAX_AGGREGATED_PATHS:
        file_path += f" +{len(paths) - MAX_AGGREGATED_PATHS} more"
    return replace(
        first,
        title=f"Aggregated: {first.title}",
        file_path=file_path,
        rationale=f"Found in {len(members)} locations",
        aggregated_count=len(members),
    )
