"""CLI entrypoint for decision-guard."""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from typing import Annotated

import structlog
import typer

from decision_guard import __version__
from decision_guard.config import (
    LOG_LEVELS,
    OUTPUT_FORMATS,
    AppConfig,
    default_config_template,
    load_app_config,
)
from decision_guard.decision_parser import DecisionParser, ParseResult
from decision_guard.diff_parser import file_diffs_from_unified_diff
from decision_guard.errors import GitError
from decision_guard.git import get_file_diffs
from decision_guard.log import configure_logging
from decision_guard.matcher import FileMatcher
from decision_guard.metrics import MetricsCollector
from decision_guard.models import FileDiff, Match
from decision_guard.output import render_human, render_json
from decision_guard.templates import TEMPLATES, get_template

logger = structlog.get_logger(__name__)

DECISIONS_DIR = ".decispher"
DECISIONS_FILENAME = "decisions.md"
CONFIG_FILENAME = ".decision-guard.toml"

app = typer.Typer(
    name="decision-guard",
    no_args_is_help=True,
    help="Check code changes against the architectural decisions they touch.",
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


@app.command("check")
def check_command(
    path: Annotated[
        Path | None,
        typer.Argument(help="Decision file or directory (defaults to config decision_file)."),
    ] = None,
    staged: Annotated[bool, typer.Option("--staged", help="Check staged changes.")] = False,
    branch: Annotated[
        str | None, typer.Option("--branch", help="Check changes since this base branch.")
    ] = None,
    all_changes: Annotated[
        bool, typer.Option("--all", help="Check all uncommitted changes.")
    ] = False,
    diff_file: Annotated[Path | None, typer.Option(help="Path to unified diff file.")] = None,
    stdin: Annotated[bool, typer.Option(help="Read unified diff from stdin.")] = False,
    repo: Annotated[Path, typer.Option(help="Repository path.")] = Path("."),
    format: Annotated[
        str | None, typer.Option(help="Output format: human|json.", show_default="human")
    ] = None,
    fail_on_critical: Annotated[
        bool | None,
        typer.Option(
            "--fail-on-critical/--no-fail-on-critical",
            help="Exit 1 when a critical decision is triggered.",
            show_default=False,
        ),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
    log_level: Annotated[
        str | None, typer.Option(help="Log level: debug|info|warning|error.")
    ] = None,
) -> None:
    """Check changed files against decisions and report the ones they trigger."""
    app_config = _load_config_or_raise(repo, config_file)
    output_format = _choice_or_default(
        value=format, default=app_config.format, allowed=OUTPUT_FORMATS, field_name="--format"
    )
    level = _choice_or_default(
        value=log_level, default=app_config.log_level, allowed=LOG_LEVELS, field_name="--log-level"
    )
    configure_logging(level, json_output=output_format == "json")

    if diff_file and stdin:
        raise typer.BadParameter("Use either --diff-file or --stdin, not both.")
    mode_flags = [flag for flag in (staged, branch is not None, all_changes) if flag]
    if len(mode_flags) > 1:
        raise typer.BadParameter("Use only one of --staged, --branch or --all.")
    mode = "branch" if branch is not None else "all" if all_changes else "staged"
    if not mode_flags:
        mode = app_config.mode
    base_branch = branch or app_config.base_branch

    metrics = MetricsCollector()
    started = time.perf_counter()

    decision_path = path.resolve() if path is not None else repo.resolve() / app_config.decision_file
    if not decision_path.exists():
        typer.echo(f"Decision file not found: {decision_path}", err=True)
        typer.echo('Run "decision-guard init" to create one.', err=True)
        raise typer.Exit(code=1)

    parser = DecisionParser(
        repo.resolve(), max_regex_repetitions=app_config.engine.max_regex_repetitions
    )
    parse_result = parser.parse_file(decision_path)
    _report_parse_result(parse_result, metrics)
    if not parse_result.decisions:
        typer.echo("No decisions found in the specified path.", err=True)
        raise typer.Exit(code=0)

    try:
        file_diffs = _resolve_file_diffs(
            diff_file=diff_file, stdin=stdin, repo=repo, mode=mode, base_branch=base_branch
        )
    except (GitError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc
    metrics.add("files_processed", len(file_diffs))

    matcher = FileMatcher(parse_result.decisions, config=app_config.engine, metrics=metrics)
    matches = _run_matcher(matcher, file_diffs)

    groups = FileMatcher.group_by_severity(matches)
    metrics.add("matches_found", len(matches))
    for severity, count in groups.counts().items():
        metrics.add(f"{severity}_matches", count)
    metrics.set_duration(round((time.perf_counter() - started) * 1000))

    summary = metrics.snapshot()
    if output_format == "json":
        typer.echo(render_json(matches, summary))
    else:
        typer.echo(render_human(matches, summary))

    fail = fail_on_critical if fail_on_critical is not None else app_config.fail_on_critical
    if fail and groups.critical:
        typer.echo(f"{len(groups.critical)} critical decision(s) triggered.", err=True)
        raise typer.Exit(code=1)


@app.command("template")
def template_command(
    name: Annotated[str | None, typer.Argument(help="Template name.")] = None,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write to this path instead of stdout.")
    ] = None,
    list_templates: Annotated[
        bool, typer.Option("--list", help="List available templates.")
    ] = False,
) -> None:
    """Print or write a starter decision file."""
    if list_templates or name is None:
        typer.echo("Available templates:")
        for template_name in TEMPLATES:
            typer.echo(f"- {template_name}")
        return

    content = _template_or_raise(name)
    if output is None:
        typer.echo(content, nl=False)
        return

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    typer.echo(f"Wrote {output}")


@app.command("init")
def init_command(
    template: Annotated[
        str, typer.Option("--template", "-t", help="Template used for the decision file.")
    ] = "basic",
    repo: Annotated[Path, typer.Option(help="Repository path.")] = Path("."),
    with_config: Annotated[
        bool, typer.Option("--with-config", help=f"Also write {CONFIG_FILENAME}.")
    ] = False,
) -> None:
    """Scaffold .decispher/decisions.md from a template."""
    content = _template_or_raise(template)
    target = repo / DECISIONS_DIR / DECISIONS_FILENAME
    if target.exists():
        typer.echo(f"{target} already exists. Skipping.")
    else:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        typer.echo(f"Created {target} (template: {template})")

    if with_config:
        config_target = repo / CONFIG_FILENAME
        if config_target.exists():
            typer.echo(f"{config_target} already exists. Skipping.")
        else:
            config_target.write_text(default_config_template(), encoding="utf-8")
            typer.echo(f"Created {config_target}")


def main() -> None:
    """Console script entrypoint."""
    app()


def _resolve_file_diffs(
    *,
    diff_file: Path | None,
    stdin: bool,
    repo: Path,
    mode: str,
    base_branch: str,
) -> list[FileDiff]:
    if diff_file is not None:
        return file_diffs_from_unified_diff(diff_file.read_text(encoding="utf-8"))

    if stdin:
        return file_diffs_from_unified_diff(sys.stdin.read())

    return get_file_diffs(repo, mode, base_branch)


def _run_matcher(matcher: FileMatcher, file_diffs: list[FileDiff]) -> list[Match]:
    try:
        return asyncio.run(matcher.find_matches_with_diffs(file_diffs))
    except Exception as exc:
        logger.error("matcher_failed_falling_back", error=str(exc))
        return matcher.find_matches([file_diff.filename for file_diff in file_diffs])
    finally:
        matcher.close()


def _report_parse_result(result: ParseResult, metrics: MetricsCollector) -> None:
    for warning in result.warnings:
        typer.echo(f"warning: {warning}", err=True)
    for error in result.errors:
        typer.echo(f"error: line {error.line}: {error.message}", err=True)
    metrics.add("parse_warnings", len(result.warnings))
    metrics.add("parse_errors", len(result.errors))


def _load_config_or_raise(repo: Path, config_file: Path | None = None) -> AppConfig:
    try:
        return load_app_config(repo, config_path=config_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc


def _template_or_raise(name: str) -> str:
    try:
        return get_template(name)
    except KeyError as exc:
        raise typer.BadParameter(exc.args[0], param_hint="template") from exc


def _choice_or_default(
    *,
    value: str | None,
    default: str,
    allowed: set[str],
    field_name: str,
) -> str:
    resolved = (value or default).lower()
    if resolved not in allowed:
        choices = ", ".join(sorted(allowed))
        raise typer.BadParameter(f"{field_name} must be one of: {choices}", param_hint=field_name)
    return resolved
