"""Configuration loading for diff-review."""

from __future__ import annotations

import base64
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

CONFIG_FILENAMES = (".diff-review.toml", "diff-review.toml")
PYPROJECT_FILENAME = "pyproject.toml"
PYPROJECT_TOOL_KEYS = ("diff_review", "diff-review")

OUTPUT_FORMATS = ("json", "summary", "markdown")
LOG_LEVELS = ("debug", "info", "warning", "error")
SEVERITIES = ("info", "minor", "major", "critical")

GUIDELINES_PREFIX = "Coding guidelines file content is provided below in base64"

_ENV_REF_RE = re.compile(r"\$\{([A-Z0-9_]+)\}")

logger = structlog.get_logger(__name__)


class ConfigError(ValueError):
    """Raised when configuration or rule definitions are invalid."""


@dataclass(slots=True)
class ContextConfig:
    """Token budget and chunking settings."""

    diff_token_limit: int = 8000
    per_file_token_cap: int = 2000
    overflow_strategy: str = "trim"
    enable_semantic_chunking: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "diff_token_limit": self.diff_token_limit,
            "per_file_token_cap": self.per_file_token_cap,
            "overflow_strategy": self.overflow_strategy,
            "enable_semantic_chunking": self.enable_semantic_chunking,
        }


@dataclass(slots=True)
class PolicyConfig:
    """Finding filtering, limits and redaction settings."""

    min_severity_to_comment: str = "info"
    max_comments: int = 50
    redact_secrets: bool = True
    consolidate_similar_findings: bool = False
    max_findings_per_file: int = 5
    severity_limits: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_severity_to_comment": self.min_severity_to_comment,
            "max_comments": self.max_comments,
            "redact_secrets": self.redact_secrets,
            "consolidate_similar_findings": self.consolidate_similar_findings,
            "max_findings_per_file": self.max_findings_per_file,
            "severity_limits": dict(self.severity_limits),
        }


@dataclass(slots=True)
class RulesConfig:
    """Inline rule definitions and external rule files."""

    include: list[str] = field(default_factory=list)
    inline: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "include": list(self.include),
            "inline": [dict(item) for item in self.inline],
        }


@dataclass(slots=True)
class PromptsConfig:
    """Extra instructions appended to the AI review prompts."""

    system_append: list[str] = field(default_factory=list)
    user_append: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_append": list(self.system_append),
            "user_append": list(self.user_append),
            "extra": list(self.extra),
        }


@dataclass(slots=True)
class LoggingConfig:
    level: str = "warning"
    json: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level, "json": self.json}


@dataclass(slots=True)
class AppConfig:
    """Resolved settings for a review run, with the file they came from."""

    provider: str = "mock"
    format: str = "summary"
    excludes: list[str] = field(default_factory=list)
    guidelines_file: str | None = None
    context: ContextConfig = field(default_factory=ContextConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    root: Path | None = None
    source: str | None = None

    def context_for(self, provider_name: str) -> dict[str, Any]:
        """Context mapping read by the token budget, tagged with the active provider."""
        merged = self.context.to_dict()
        merged["provider"] = provider_name
        return merged

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "format": self.format,
            "excludes": list(self.excludes),
            "guidelines_file": self.guidelines_file,
            "context": self.context.to_dict(),
            "policy": self.policy.to_dict(),
            "rules": self.rules.to_dict(),
            "prompts": self.prompts.to_dict(),
            "logging": self.logging.to_dict(),
            "source": self.source,
        }


def load_app_config(repo: Path, config_path: Path | None = None) -> AppConfig:
    """Resolve configuration for ``repo``.

    An explicit ``config_path`` (relative paths are taken from ``repo``) wins.
    Otherwise the first existing file of ``CONFIG_FILENAMES`` is used, then a
    ``[tool.diff_review]`` table in ``pyproject.toml``, then the defaults.
    """
    root = repo.resolve()
    if config_path is not None:
        explicit = config_path if config_path.is_absolute() else root / config_path
        if not explicit.exists():
            raise ConfigError(f"Config file does not exist: {explicit}")
        return _from_file(explicit, root)

    for candidate in (root / name for name in CONFIG_FILENAMES):
        if candidate.exists():
            return _from_file(candidate, root)

    pyproject = root / PYPROJECT_FILENAME
    if pyproject.exists():
        section = _tool_section(_load_toml(pyproject))
        if section:
            return _from_mapping(section, root=root, source=str(pyproject))
    return AppConfig(root=root)


def config_from_mapping(mapping: dict[str, Any], *, root: Path | None = None) -> AppConfig:
    """Build a config from an in-memory mapping, as if it had been read from TOML."""
    return _from_mapping(mapping, root=root, source=None)


def expand_env(value: Any) -> Any:
    """Expand ``${VAR}`` references in strings, recursing into tables and lists.

    References to unset variables are left untouched.
    """
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    if isinstance(value, str):
        return _ENV_REF_RE.sub(lambda match: os.environ.get(match.group(1), match.group(0)), value)
    return value


def default_config_template() -> str:
    """Return a starter config template users can customize."""
    return "\n".join(
        [
            'provider = "mock"',
            'format = "summary"',
            'excludes = ["vendor", "node_modules", "*.lock", "docs/"]',
            '# guidelines_file = "CONTRIBUTING.md"',
            "",
            "[context]",
            "diff_token_limit = 8000",
            "per_file_token_cap = 2000",
            'overflow_strategy = "trim"',
            "enable_semantic_chunking = false",
            "",
            "[policy]",
            'min_severity_to_comment = "info"',
            "max_comments = 50",
            "redact_secrets = true",
            "consolidate_similar_findings = false",
            "max_findings_per_file = 5",
            "severity_limits = { critical = 10, major = 20 }",
            "",
            "[rules]",
            '# include = ["review-rules/*.toml"]',
            "inline = [",
            (
                '  { id = "no-debug-print", applies_to = ["**/*.py"], severity = "minor", '
                'rationale = "Debug output left in code.", pattern = "^\\\\s*print\\\\(", '
                'suggestion = "Use the logger instead." },'
            ),
            "]",
            "",
            "[prompts]",
            "# system_append = \"Focus on security issues.\"",
            "# user_append = \"\"",
            "extra = []",
            "",
            "[logging]",
            'level = "warning"',
            "json = false",
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc


def _from_file(path: Path, root: Path) -> AppConfig:
    document = _load_toml(path)
    section = _tool_section(document)
    if section is None:
        # A pyproject without our table configures nothing.
        section = {} if path.name == PYPROJECT_FILENAME else document
    return _from_mapping(section, root=root, source=str(path))


def _tool_section(document: dict[str, Any]) -> dict[str, Any] | None:
    tool = document.get("tool")
    if isinstance(tool, dict):
        for key in PYPROJECT_TOOL_KEYS:
            if isinstance(tool.get(key), dict):
                return tool[key]
    return None


def _from_mapping(mapping: dict[str, Any], *, root: Path | None, source: str | None) -> AppConfig:
    mapping = expand_env(mapping)

    provider = mapping.get("provider", "mock")
    if not isinstance(provider, str) or not provider.strip():
        raise ConfigError("provider must be a non-empty string")

    guidelines_file = mapping.get("guidelines_file")
    if guidelines_file is not None and not isinstance(guidelines_file, str):
        raise ConfigError("guidelines_file must be a string")

    prompts = _parse_prompts_config(_as_table(mapping.get("prompts"), "prompts"))
    if guidelines_file:
        _inject_guidelines(prompts, _resolve(root, guidelines_file))

    return AppConfig(
        provider=provider.strip().lower(),
        format=_as_choice(mapping.get("format", "summary"), set(OUTPUT_FORMATS), "format"),
        excludes=_as_str_list(mapping.get("excludes"), "excludes"),
        guidelines_file=guidelines_file,
        context=_parse_context_config(_as_table(mapping.get("context"), "context")),
        policy=_parse_policy_config(_as_table(mapping.get("policy"), "policy")),
        rules=_parse_rules_config(_as_table(mapping.get("rules"), "rules")),
        prompts=prompts,
        logging=_parse_logging_config(_as_table(mapping.get("logging"), "logging")),
        root=root,
        source=source,
    )


def _parse_context_config(value: dict[str, Any]) -> ContextConfig:
    strategy = str(value.get("overflow_strategy", "trim")).lower()
    if strategy not in {"trim", "keep"}:
        strategy = "trim"
    return ContextConfig(
        diff_token_limit=_as_positive_int(
            value.get("diff_token_limit", 8000), "context.diff_token_limit"
        ),
        per_file_token_cap=_as_positive_int(
            value.get("per_file_token_cap", 2000), "context.per_file_token_cap"
        ),
        overflow_strategy=strategy,
        enable_semantic_chunking=_as_bool(
            value.get("enable_semantic_chunking", False), "context.enable_semantic_chunking"
        ),
    )


def _parse_policy_config(value: dict[str, Any]) -> PolicyConfig:
    limits = _as_table(value.get("severity_limits"), "policy.severity_limits")
    return PolicyConfig(
        min_severity_to_comment=str(value.get("min_severity_to_comment", "info")).lower(),
        max_comments=_as_int(value.get("max_comments", 50), "policy.max_comments"),
        redact_secrets=_as_bool(value.get("redact_secrets", True), "policy.redact_secrets"),
        consolidate_similar_findings=_as_bool(
            value.get("consolidate_similar_findings", False),
            "policy.consolidate_similar_findings",
        ),
        max_findings_per_file=_as_int(
            value.get("max_findings_per_file", 5), "policy.max_findings_per_file"
        ),
        severity_limits={
            str(key).lower(): _as_int(raw, f"policy.severity_limits.{key}")
            for key, raw in limits.items()
        },
    )


def _parse_rules_config(value: dict[str, Any]) -> RulesConfig:
    return RulesConfig(
        include=_as_str_list(value.get("include"), "rules.include"),
        inline=_as_table_list(value.get("inline"), "rules.inline"),
    )


def _parse_prompts_config(value: dict[str, Any]) -> PromptsConfig:
    return PromptsConfig(
        system_append=_as_str_or_list(value.get("system_append"), "prompts.system_append"),
        user_append=_as_str_or_list(value.get("user_append"), "prompts.user_append"),
        extra=_as_str_or_list(value.get("extra"), "prompts.extra"),
    )


def _parse_logging_config(value: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(
        level=_as_choice(value.get("level", "warning"), set(LOG_LEVELS), "logging.level"),
        json=_as_bool(value.get("json", False), "logging.json"),
    )


def _inject_guidelines(prompts: PromptsConfig, path: Path) -> None:
    if any(GUIDELINES_PREFIX in item for item in prompts.extra):
        return
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("config.guidelines_unreadable", path=str(path), reason=str(exc))
        return
    if not content.strip():
        return
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    prompts.extra.append(f"{GUIDELINES_PREFIX} (decode and follow strictly):\n{encoded}")


def _resolve(root: Path | None, value: str) -> Path:
    path = Path(value)
    if path.is_absolute() or root is None:
        return path
    return root / path


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a table/object")
    return value


def _as_table_list(value: Any, field_name: str) -> list[dict[str, Any]]:
    return _as_list_of(value, dict, f"{field_name} must be a list of tables")


def _as_str_list(value: Any, field_name: str) -> list[str]:
    return _as_list_of(value, str, f"{field_name} must be a list of strings")


def _as_list_of(value: Any, item_type: type, message: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, item_type) for item in value):
        raise ConfigError(message)
    return list(value)


def _as_str_or_list(value: Any, field_name: str) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    return _as_str_list(value, field_name)


def _as_choice(raw: Any, allowed: set[str], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ConfigError(f"{field_name} must be one of: {choices}")
    return value


def _as_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{field_name} must be an integer")
    return raw


def _as_positive_int(raw: Any, field_name: str) -> int:
    value = _as_int(raw, field_name)
    if value <= 0:
        raise ConfigError(f"{field_name} must be > 0")
    return value


def _as_bool(raw: Any, field_name: str) -> bool:
    if not isinstance(raw, bool):
        raise ConfigError(f"{field_name} must be a boolean")
    return raw
