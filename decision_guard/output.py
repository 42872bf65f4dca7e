"""Output rendering."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import click

from decision_guard import __version__
from decision_guard.matcher import FileMatcher
from decision_guard.metrics import MetricsSnapshot
from decision_guard.models import SEVERITIES, Match

_SEVERITY_COLORS = {"critical": "red", "warning": "yellow", "info": "cyan"}


def render_human(matches: list[Match], summary: MetricsSnapshot) -> str:
    """Render matches grouped by severity plus a run summary."""
    lines: list[str] = []
    if not matches:
        lines.append(click.style("No decision violations found.", fg="green", bold=True))
    else:
        groups = FileMatcher.group_by_severity(matches)
        for severity in SEVERITIES:
            group = getattr(groups, severity)
            if not group:
                continue
            color = _SEVERITY_COLORS[severity]
            lines.append(click.style(f"{severity.capitalize()} ({len(group)})", fg=color, bold=True))
            for match in group:
                lines.append(
                    f"  {click.style('*', fg=color)} {click.style(match.decision.id, bold=True)}"
                    f"  {match.decision.title}"
                )
                lines.append(f"    file: {match.file}")
                lines.append(f"    pattern: {match.matched_pattern}")
            lines.append("")

    lines.append(click.style("Summary:", bold=True))
    lines.append(f"- files scanned: {summary.files_processed}")
    lines.append(f"- decisions checked: {summary.decisions_evaluated}")
    lines.append(
        f"- matches: {summary.matches_found} "
        f"({summary.critical_matches} critical, {summary.warning_matches} warning, "
        f"{summary.info_matches} info)"
    )
    if summary.regex_rejections or summary.regex_failures:
        lines.append(
            f"- regex: {summary.regex_rejections} rejected, {summary.regex_failures} failed"
        )
    lines.append(f"- duration: {summary.duration_ms}ms")
    return "\n".join(lines)


def render_json(matches: list[Match], summary: MetricsSnapshot) -> str:
    """Render stable JSON output for CI and automation."""
    return json.dumps(build_json_payload(matches, summary), sort_keys=True)


def build_json_payload(matches: list[Match], summary: MetricsSnapshot) -> dict[str, Any]:
    return {
        "matches": [_serialize_match(match) for match in matches],
        "summary": summary.to_dict(),
        "meta": {
            "generated_at": datetime.now(tz=UTC)
            .replace(microsecond=0)
            .isoformat()
            .replace("+00:00", "Z"),
            "version": __version__,
        },
    }


def _serialize_match(match: Match) -> dict[str, Any]:
    decision = match.decision
    return {
        "decision": {
            "id": decision.id,
            "title": decision.title,
            "severity": decision.severity,
            "status": decision.status,
            "source_file": decision.source_file,
            "line_number": decision.line_number,
        },
        "file": match.file,
        "matched_pattern": match.matched_pattern,
        "details": match.match_details.to_dict() if match.match_details else None,
    }
