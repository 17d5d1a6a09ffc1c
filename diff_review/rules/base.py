"""Rule definitions and the finding model shared by rules and AI providers."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from diff_review.config import ConfigError
from diff_review.globs import glob_match

DEFAULT_SEVERITY = "info"


@dataclass(slots=True)
class Finding:
    """A single review finding emitted by a rule or an AI provider."""

    rule_id: str
    title: str
    severity: str
    file_path: str
    start_line: int
    end_line: int
    rationale: str = ""
    suggestion: str = ""
    content: str = ""
    fingerprint: str | None = None
    aggregated_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "rule_id": self.rule_id,
            "title": self.title,
            "severity": self.severity,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "rationale": self.rationale,
            "suggestion": self.suggestion,
            "content": self.content,
        }
        if self.aggregated_count is not None:
            payload["aggregated_count"] = self.aggregated_count
        if self.fingerprint is not None:
            payload["fingerprint"] = self.fingerprint
        return payload

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Finding:
        """Normalize a loosely shaped provider payload into a finding."""
        file_path = raw.get("file_path", raw.get("file", ""))
        start_line = _as_line(raw.get("start_line", raw.get("line")), default=1)
        end_line = _as_line(raw.get("end_line"), default=start_line)
        rule_id = str(raw.get("rule_id") or raw.get("id") or "")
        aggregated = raw.get("aggregated_count")
        return cls(
            rule_id=rule_id,
            title=str(raw.get("title") or rule_id),
            severity=str(raw.get("severity") or DEFAULT_SEVERITY),
            file_path=str(file_path or ""),
            start_line=start_line,
            end_line=end_line,
            rationale=str(raw.get("rationale") or ""),
            suggestion=str(raw.get("suggestion") or ""),
            content=str(raw.get("content") or ""),
            aggregated_count=aggregated if isinstance(aggregated, int) else None,
        )


@dataclass(frozen=True, slots=True)
class Rule:
    """Regex rule applied to added lines of files matching ``applies_to``."""

    id: str
    pattern: str
    severity: str = DEFAULT_SEVERITY
    rationale: str = ""
    suggestion: str = ""
    applies_to: tuple[str, ...] = ()
    enabled: bool = True
    _regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.id or not self.pattern:
            raise ConfigError("Rule must have non-empty id and pattern")
        try:
            compiled = re.compile(self.pattern)
        except re.error as exc:
            raise ConfigError(f"Rule {self.id} has an invalid pattern: {exc}") from exc
        object.__setattr__(self, "_regex", compiled)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Rule:
        applies_to = raw.get("applies_to") or []
        if isinstance(applies_to, str):
            applies_to = [applies_to]
        if not isinstance(applies_to, list):
            raise ConfigError(f"Rule {raw.get('id', '')}: applies_to must be a list of globs")
        return cls(
            id=str(raw.get("id") or ""),
            pattern=str(raw.get("pattern") or ""),
            severity=str(raw.get("severity") or DEFAULT_SEVERITY),
            rationale=str(raw.get("rationale") or ""),
            suggestion=str(raw.get("suggestion") or ""),
            applies_to=tuple(str(item) for item in applies_to),
            enabled=bool(raw.get("enabled", True)),
        )

    def applies(self, file_path: str) -> bool:
        if not self.applies_to:
            return True
        return any(glob_match(glob, file_path) for glob in self.applies_to)

    def matches(self, content: str) -> bool:
        return self._regex.search(content) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "severity": self.severity,
            "rationale": self.rationale,
            "suggestion": self.suggestion,
            "applies_to": list(self.applies_to),
            "enabled": self.enabled,
        }


def _as_line(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return default
