"""CLI entrypoint for diff-review."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer

from diff_review import __version__
from diff_review.config import (
    OUTPUT_FORMATS,
    SEVERITIES,
    AppConfig,
    ConfigError,
    default_config_template,
    load_app_config,
)
from diff_review.git import GitError, read_git_diff
from diff_review.log import configure_logging
from diff_review.output import render, render_summary
from diff_review.pipeline import Pipeline, PipelineError, read_diff
from diff_review.policy import severity_rank
from diff_review.providers import AIProvider, ProviderError, build_provider
from diff_review.resources import ResourceScope
from diff_review.rules import RulesEngine

LISTING_FORMATS = ("human", "json")

DiffFileOption = Annotated[
    Path | None, typer.Option("--diff-file", help="Read the unified diff from this file.")
]
StdinOption = Annotated[bool, typer.Option("--stdin", help="Read the unified diff from stdin.")]
RepoOption = Annotated[
    Path, typer.Option("--repo", help="Repository holding the config and the git history.")
]
BaseOption = Annotated[str | None, typer.Option("--base", help="Base revision to diff from.")]
HeadOption = Annotated[str | None, typer.Option("--head", help="Head revision to diff to.")]
ConfigOption = Annotated[
    Path | None, typer.Option("--config", help="Explicit config TOML, relative to --repo.")
]
ListingFormatOption = Annotated[str, typer.Option("--format", help="Output format: human|json.")]

app = typer.Typer(
    name="diff-review",
    no_args_is_help=True,
    help="Review unified diffs with regex rules and an AI reviewer.",
)


def version_callback(value: bool) -> None:
    """Print version and exit when --version is provided."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version and exit.", callback=version_callback),
    ] = False,
) -> None:
    """Root command callback."""
    _ = version


@app.command("review")
def review_command(
    diff_file: DiffFileOption = None,
    stdin: StdinOption = False,
    repo: RepoOption = Path("."),
    base: BaseOption = None,
    head: HeadOption = None,
    format: Annotated[
        str | None,
        typer.Option(help="Output format: json|summary|markdown.", show_default="summary"),
    ] = None,
    provider: Annotated[
        str | None, typer.Option(help="Provider name, overriding the configured one.")
    ] = None,
    fail_on: Annotated[
        str | None,
        typer.Option("--fail-on", help="Exit 1 if any finding is at or above this severity."),
    ] = None,
    color: Annotated[bool, typer.Option(help="Colorize the summary output.")] = False,
    config_file: ConfigOption = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="debug|info|warning|error.")
    ] = None,
    log_json: Annotated[bool, typer.Option("--log-json", help="Emit logs as JSON.")] = False,
) -> None:
    """Review a diff and print the findings."""
    logger = configure_logging(log_level or "warning", log_json)
    app_config = _load_config_or_raise(repo, config_file)
    if log_level is None and (app_config.logging.level != "warning" or app_config.logging.json):
        logger = configure_logging(app_config.logging.level, log_json or app_config.logging.json)

    output_format = (format or app_config.format).lower()
    if output_format not in OUTPUT_FORMATS:
        raise typer.BadParameter(
            f"format must be one of: {', '.join(OUTPUT_FORMATS)}", param_hint="--format"
        )
    fail_threshold = _fail_threshold_or_raise(fail_on)
    pipeline = _build_pipeline_or_raise(app_config, provider, logger)

    with ResourceScope() as scope:
        diff_path = _resolve_diff_path(
            scope, diff_file=diff_file, stdin=stdin, repo=repo, base=base, head=head
        )
        try:
            findings = pipeline.review_file(diff_path)
        except (PipelineError, ProviderError) as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc

    if output_format == "summary":
        typer.echo(render_summary(findings, color=color), nl=False)
    else:
        # JSON gets a trailing newline; summary and markdown already end with one.
        typer.echo(render(findings, output_format), nl=output_format == "json")

    if fail_threshold is not None and any(
        severity_rank(finding.severity) >= fail_threshold for finding in findings
    ):
        raise typer.Exit(code=1)


@app.command("chunks")
def chunks_command(
    diff_file: DiffFileOption = None,
    stdin: StdinOption = False,
    repo: RepoOption = Path("."),
    base: BaseOption = None,
    head: HeadOption = None,
    provider: Annotated[
        str | None, typer.Option(help="Provider name used for token estimates.")
    ] = None,
    config_file: ConfigOption = None,
) -> None:
    """Show the chunks that would be sent to the AI provider."""
    logger = configure_logging()
    app_config = _load_config_or_raise(repo, config_file)
    pipeline = _build_pipeline_or_raise(app_config, provider, logger)

    with ResourceScope() as scope:
        diff_path = _resolve_diff_path(
            scope, diff_file=diff_file, stdin=stdin, repo=repo, base=base, head=head
        )
        try:
            chunks = pipeline.build_chunks(read_diff(diff_path))
        except PipelineError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc

    provider_name = pipeline.provider.name
    typer.echo(
        json.dumps(
            {
                "chunks": [chunk.to_dict() for chunk in chunks],
                "meta": {
                    "provider": provider_name,
                    "context": app_config.context_for(provider_name),
                },
            },
            indent=4,
            sort_keys=True,
        )
    )


@app.command("rules")
def rules_command(
    repo: RepoOption = Path("."),
    format: ListingFormatOption = "human",
    config_file: ConfigOption = None,
) -> None:
    """List configured review rules, disabled ones included."""
    output_format = _listing_format_or_raise(format)
    configure_logging()
    app_config = _load_config_or_raise(repo, config_file)
    engine = _build_rules_engine_or_raise(app_config)

    if output_format == "json":
        rules_payload = {
            "rules": [rule.to_dict() for rule in engine.all_rules],
            "meta": {"config_source": app_config.source},
        }
        typer.echo(json.dumps(rules_payload, sort_keys=True))
        return

    if not engine.all_rules:
        typer.echo("No rules configured.")
        return
    lines = ["Configured rules:"]
    for rule in engine.all_rules:
        state = "enabled" if rule.enabled else "disabled"
        scope = ", ".join(rule.applies_to) or "**"
        lines.append(f"- {rule.id} [{state}] {rule.severity} ({scope}) - {rule.rationale}")
    typer.echo("\n".join(lines))


@app.command("config")
def config_command(
    repo: RepoOption = Path("."),
    format: ListingFormatOption = "human",
    config_file: ConfigOption = None,
) -> None:
    """Show the resolved configuration and which rules are active."""
    output_format = _listing_format_or_raise(format)
    configure_logging()
    app_config = _load_config_or_raise(repo, config_file)
    engine = _build_rules_engine_or_raise(app_config)
    resolved = app_config.to_dict()
    resolved["active_rule_ids"] = [rule.id for rule in engine.rules]

    if output_format == "json":
        typer.echo(json.dumps(resolved, sort_keys=True))
        return

    summary = [
        ("source", resolved["source"] or "defaults"),
        ("provider", resolved["provider"]),
        ("format", resolved["format"]),
        ("excludes", resolved["excludes"]),
        *((f"context.{key}", value) for key, value in resolved["context"].items()),
        ("policy.min_severity_to_comment", resolved["policy"]["min_severity_to_comment"]),
        ("policy.max_comments", resolved["policy"]["max_comments"]),
        ("active_rule_ids", resolved["active_rule_ids"]),
    ]
    typer.echo("\n".join(["Resolved configuration:", *(f"- {k}: {v}" for k, v in summary)]))


@app.command("config-init")
def config_init_command(
    out: Annotated[Path, typer.Option(help="Where to write the starter config.")] = Path(
        ".diff-review.toml"
    ),
    force: Annotated[
        bool,
        typer.Option("--force", help="Replace the file if it already exists."),
    ] = False,
) -> None:
    """Write a starter .diff-review.toml."""
    target = out.resolve()
    if target.exists() and not force:
        raise typer.BadParameter(f"Refusing to overwrite existing file: {target}. Pass --force.")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(default_config_template(), encoding="utf-8")
    typer.echo(f"Wrote starter config: {target}")


def main() -> None:
    """Console script entrypoint."""
    app()


def _resolve_diff_path(
    scope: ResourceScope,
    *,
    diff_file: Path | None,
    stdin: bool,
    repo: Path,
    base: str | None,
    head: str | None,
) -> Path:
    """Path of the diff to review; stdin and git output are spooled into ``scope``."""
    if diff_file is not None and stdin:
        raise typer.BadParameter("Use either --diff-file or --stdin, not both.")
    if (base is None) != (head is None):
        raise typer.BadParameter("Provide both --base and --head together.")

    if diff_file is not None:
        return diff_file
    if stdin:
        return scope.write_temp_file(sys.stdin.read())
    try:
        return scope.write_temp_file(read_git_diff(repo, base, head))
    except GitError as exc:
        raise typer.BadParameter(str(exc), param_hint="--repo") from exc


def _listing_format_or_raise(value: str) -> str:
    output_format = value.lower()
    if output_format not in LISTING_FORMATS:
        raise typer.BadParameter(
            f"format must be one of: {', '.join(LISTING_FORMATS)}", param_hint="--format"
        )
    return output_format


def _load_config_or_raise(repo: Path, config_file: Path | None = None) -> AppConfig:
    try:
        return load_app_config(repo, config_path=config_file)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc


def _build_rules_engine_or_raise(app_config: AppConfig) -> RulesEngine:
    try:
        return RulesEngine.from_config(app_config.rules.to_dict(), base_dir=app_config.root)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="config.rules") from exc


def _build_pipeline_or_raise(
    app_config: AppConfig, provider_name: str | None, logger: Any
) -> Pipeline:
    try:
        provider: AIProvider = build_provider(app_config, name=provider_name)
        return Pipeline(app_config, provider, logger=logger)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc


def _fail_threshold_or_raise(fail_on: str | None) -> int | None:
    if fail_on is None:
        return None
    value = fail_on.lower()
    if value not in SEVERITIES:
        raise typer.BadParameter(
            f"fail-on must be one of: {', '.join(SEVERITIES)}", param_hint="--fail-on"
        )
    return severity_rank(value)
