"""Regex rules engine evaluated against the added lines of a diff."""

from __future__ import annotations

import glob
import json
import tomllib
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import structlog

from diff_review.config import ConfigError
from diff_review.diff_parser import AddedLine
from diff_review.rules.base import Finding, Rule


class RulesEngine:
    """Holds the configured rules and emits one finding per matching added line."""

    def __init__(self, rules: Sequence[Rule] | None = None) -> None:
        self._rules: list[Rule] = []
        for rule in rules or []:
            self.add_rule(rule)

    @classmethod
    def from_config(
        cls,
        rules_config: Mapping[str, Any],
        *,
        base_dir: Path | None = None,
        logger: Any | None = None,
    ) -> RulesEngine:
        """Build an engine from ``inline`` definitions and ``include`` rule files.

        Invalid inline rules raise :class:`ConfigError`. Included files that cannot
        be read or parsed, and invalid rules inside them, are skipped with a warning.
        """
        log = logger if logger is not None else structlog.get_logger(__name__)
        engine = cls()

        inline = rules_config.get("inline") or []
        if not isinstance(inline, list):
            raise ConfigError("rules.inline must be a list of tables")
        for raw in inline:
            if not isinstance(raw, Mapping):
                raise ConfigError("rules.inline must be a list of tables")
            engine.add_rule(Rule.from_mapping(raw))

        includes = rules_config.get("include") or []
        if not isinstance(includes, list):
            raise ConfigError("rules.include must be a list of glob patterns")
        for path in _expand_includes(includes, base_dir):
            for raw in _load_rule_file(path, log):
                try:
                    engine.add_rule(Rule.from_mapping(raw))
                except ConfigError as exc:
                    log.warning("rules.include_skipped", path=str(path), reason=str(exc))

        return engine

    @property
    def rules(self) -> list[Rule]:
        return [rule for rule in self._rules if rule.enabled]

    @property
    def all_rules(self) -> list[Rule]:
        return list(self._rules)

    def add_rule(self, rule: Rule) -> None:
        self._rules.append(rule)

    def evaluate(self, file_path: str, added_lines: Sequence[AddedLine]) -> list[Finding]:
        findings: list[Finding] = []
        for rule in self.rules:
            if not rule.applies(file_path):
                continue
            for entry in added_lines:
                if not rule.matches(entry.content):
                    continue
                findings.append(
                    Finding(
                        rule_id=rule.id,
                        title=rule.id,
                        severity=rule.severity,
                        file_path=file_path,
                        start_line=entry.line,
                        end_line=entry.line,
                        rationale=rule.rationale,
                        suggestion=rule.suggestion,
                        content=entry.content,
                    )
                )
        return findings


def _expand_includes(patterns: Sequence[Any], base_dir: Path | None) -> list[Path]:
    paths: list[Path] = []
    seen: set[Path] = set()
    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern:
            continue
        candidate = Path(pattern)
        if not candidate.is_absolute() and base_dir is not None:
            candidate = base_dir / candidate
        for match in sorted(glob.glob(str(candidate), recursive=True)):
            path = Path(match)
            if path.is_file() and path not in seen:
                seen.add(path)
                paths.append(path)
    return paths


def _load_rule_file(path: Path, log: Any) -> list[Mapping[str, Any]]:
    try:
        raw_text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("rules.include_skipped", path=str(path), reason=str(exc))
        return []

    data = _parse_rule_text(raw_text, path.suffix.lower())
    if data is None:
        log.warning("rules.include_skipped", path=str(path), reason="unparseable rules file")
        return []

    if isinstance(data, dict):
        listed = data.get("rules", data.get("inline"))
    else:
        listed = data
    if not isinstance(listed, list):
        log.warning("rules.include_skipped", path=str(path), reason="no rules list found")
        return []
    return [item for item in listed if isinstance(item, Mapping)]


def _parse_rule_text(raw_text: str, suffix: str) -> Any:
    if suffix == ".toml":
        return _try_toml(raw_text)
    if suffix == ".json":
        return _try_json(raw_text)
    parsed = _try_toml(raw_text)
    if parsed is None:
        parsed = _try_json(raw_text)
    return parsed


def _try_toml(raw_text: str) -> dict[str, Any] | None:
    try:
        return tomllib.loads(raw_text)
    except tomllib.TOMLDecodeError:
        return None


def _try_json(raw_text: str) -> Any:
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError:
        return None
