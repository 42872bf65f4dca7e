"""Reads decisions out of markdown decision logs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path

import structlog

from decision_guard.errors import RuleParseError
from decision_guard.models import Decision, DecisionStatus, RuleNode, Severity
from decision_guard.regex_safety import MAX_REPETITIONS
from decision_guard.rule_parser import parse_rules_json

logger = structlog.get_logger(__name__)

MARKDOWN_SUFFIXES = (".md", ".markdown")

STATUS_SYNONYMS: dict[str, DecisionStatus] = {
    "active": "active",
    "enabled": "active",
    "live": "active",
    "deprecated": "deprecated",
    "obsolete": "deprecated",
    "superseded": "superseded",
    "replaced": "superseded",
    "archived": "archived",
    "inactive": "archived",
}

SEVERITY_SYNONYMS: dict[str, Severity] = {
    "info": "info",
    "informational": "info",
    "low": "info",
    "warning": "warning",
    "warn": "warning",
    "medium": "warning",
    "critical": "critical",
    "error": "critical",
    "high": "critical",
    "blocker": "critical",
}

_MARKER_RE = re.compile(r"<!--\s*(DECISION-(?:[A-Z0-9]+-)*[A-Z0-9]+)\s*-->", re.IGNORECASE)
_TITLE_RE = re.compile(r"##\s*Decision:\s*(.+)", re.IGNORECASE)
_FILES_RE = re.compile(r"\*\*Files\*\*:[ \t]*\r?\n")
_FILE_ITEM_TICKS_RE = re.compile(r"^\s*[-*]\s*`([^`]+)`\s*$")
_FILE_ITEM_BARE_RE = re.compile(r"^\s*[-*]\s+([^\s`]+)\s*$")
_INLINE_RULES_RE = re.compile(r"\*\*Rules\*\*:\s*```json\s+(.+?)\s+```", re.IGNORECASE | re.DOTALL)
_LINKED_RULES_RE = re.compile(r"\*\*Rules\*\*:\s*(?:\[.*?\]\((.*?)\)|(\S+\.json))", re.IGNORECASE)
_CONTEXT_RE = re.compile(r"###\s*Context\s*\n(.+?)(?=\n---+|\n<!--|\Z)", re.DOTALL)
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(slots=True)
class ParseError:
    line: int
    message: str
    context: str = ""


@dataclass(slots=True)
class ParseResult:
    decisions: list[Decision] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def extend(self, other: ParseResult) -> None:
        self.decisions.extend(other.decisions)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


class DecisionParser:
    """Parses ``<!-- DECISION-... -->`` blocks.

    Problems with a single block never abort the file: a block without an id
    or title becomes a ``ParseError``, and broken rules become a warning with
    the decision kept as a plain glob decision.
    """

    def __init__(
        self,
        workspace_root: Path | None = None,
        *,
        max_regex_repetitions: int = MAX_REPETITIONS,
        today: date | None = None,
    ) -> None:
        self.workspace_root = (workspace_root or Path.cwd()).resolve()
        self.max_regex_repetitions = max_regex_repetitions
        self.today = today or datetime.now(UTC).date()

    def parse_file(self, path: Path) -> ParseResult:
        resolved = (self.workspace_root / path).resolve()
        if not resolved.is_relative_to(self.workspace_root):
            return ParseResult(
                errors=[ParseError(line=0, message=f"Path traversal detected: {path}")]
            )
        if resolved.is_dir():
            return self.parse_directory(resolved)
        try:
            content = resolved.read_text(encoding="utf-8")
        except OSError as exc:
            return ParseResult(errors=[ParseError(line=0, message=f"Failed to read file: {exc}")])
        return self.parse_content(content, resolved)

    def parse_directory(self, directory: Path) -> ParseResult:
        combined = ParseResult()
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            combined.errors.append(
                ParseError(line=0, message=f"Failed to list directory {directory}: {exc}")
            )
            return combined

        for entry in entries:
            if entry.is_dir():
                if not entry.name.startswith("."):
                    combined.extend(self.parse_directory(entry))
            elif entry.is_file() and entry.name.endswith(MARKDOWN_SUFFIXES):
                try:
                    content = entry.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    combined.errors.append(
                        ParseError(line=0, message=f"Failed to parse {entry.name}: {exc}")
                    )
                    continue
                combined.extend(self.parse_content(content, entry))
        return combined

    def parse_content(self, content: str, source_file: Path | str = "") -> ParseResult:
        result = ParseResult()
        if not content.strip():
            return result

        starts = [marker.start() for marker in _MARKER_RE.finditer(content)]
        for index, start in enumerate(starts):
            end = starts[index + 1] if index + 1 < len(starts) else len(content)
            block = content[start:end]
            line_number = content.count("\n", 0, start) + 1
            decision = self._parse_block(block, Path(source_file), line_number, result.warnings)
            if not decision.id or not decision.title:
                result.errors.append(
                    ParseError(
                        line=line_number,
                        message="Decision missing required fields (id or title)",
                        context=block[:100],
                    )
                )
                continue
            result.decisions.append(decision)

        if result.errors or result.warnings:
            logger.debug(
                "decision_file_parsed",
                source=str(source_file),
                decisions=len(result.decisions),
                errors=len(result.errors),
                warnings=len(result.warnings),
            )
        return result

    def _parse_block(
        self,
        block: str,
        source_file: Path,
        line_number: int,
        warnings: list[str],
    ) -> Decision:
        marker = _MARKER_RE.search(block)
        decision_id = marker.group(1).upper() if marker else ""
        title_match = _TITLE_RE.search(block)
        title = title_match.group(1).strip() if title_match else ""

        status_raw = _extract_field(block, "Status") or "active"
        severity_raw = _extract_field(block, "Severity") or "info"
        decision_date = _extract_field(block, "Date") or self.today.isoformat()
        self._check_date(decision_date, decision_id, warnings)

        status = STATUS_SYNONYMS.get(status_raw.strip().lower())
        if status is None:
            warnings.append(f"{decision_id}: Unknown status '{status_raw}', treating as active")
            status = "active"
        severity = SEVERITY_SYNONYMS.get(severity_raw.strip().lower())
        if severity is None:
            warnings.append(f"{decision_id}: Unknown severity '{severity_raw}', treating as info")
            severity = "info"

        rules = None
        try:
            rules = self._extract_rules(block, source_file)
        except RuleParseError as exc:
            warnings.append(f"{decision_id}: {exc}")

        context_match = _CONTEXT_RE.search(block)
        return Decision(
            id=decision_id,
            title=title,
            status=status,
            severity=severity,
            files=_extract_files(block),
            rules=rules,
            date=decision_date,
            context=context_match.group(1).strip() if context_match else "",
            source_file=str(source_file),
            line_number=line_number,
        )

    def _extract_rules(self, block: str, source_file: Path) -> RuleNode | None:
        inline = _INLINE_RULES_RE.search(block)
        if inline:
            try:
                return parse_rules_json(
                    inline.group(1), max_repetitions=self.max_regex_repetitions
                )
            except RuleParseError as exc:
                raise RuleParseError(f"Failed to parse inline JSON rules: {exc}") from exc

        linked = _LINKED_RULES_RE.search(block)
        if not linked:
            return None

        rel_path = linked.group(1) or linked.group(2)
        rules_path = (source_file.parent / rel_path).resolve()
        if _is_windows_absolute(rel_path) or not rules_path.is_relative_to(self.workspace_root):
            raise RuleParseError(
                f"External rule file '{rel_path}' resolves to a path outside the workspace"
            )
        try:
            text = rules_path.read_text(encoding="utf-8")
            return parse_rules_json(text, max_repetitions=self.max_regex_repetitions)
        except (OSError, RuleParseError) as exc:
            raise RuleParseError(f"Failed to load external rules from {rel_path}: {exc}") from exc

    def _check_date(self, value: str, decision_id: str, warnings: list[str]) -> None:
        if not _ISO_DATE_RE.match(value):
            warnings.append(f"Decision {decision_id}: Invalid date format '{value}' - use YYYY-MM-DD")
            return
        try:
            parsed = date.fromisoformat(value)
        except ValueError:
            warnings.append(f"Decision {decision_id}: Invalid date '{value}' (day doesn't exist)")
            return
        if parsed > self.today:
            warnings.append(f"Decision {decision_id}: Date is in the future - is this correct?")
        elif parsed < date(self.today.year - 10, 1, 1):
            warnings.append(f"Decision {decision_id}: Date is >10 years old - consider archiving")


def parse_file(path: Path, workspace_root: Path | None = None) -> ParseResult:
    return DecisionParser(workspace_root).parse_file(path)


def _extract_field(block: str, name: str) -> str | None:
    match = re.search(rf"^\*\*{re.escape(name)}\*\*:[ \t]*(.+)$", block, re.IGNORECASE | re.MULTILINE)
    return match.group(1).strip() if match else None


def _extract_files(block: str) -> list[str]:
    header = _FILES_RE.search(block)
    if header is None:
        return []
    files: list[str] = []
    for line in block[header.end() :].splitlines():
        ticked = _FILE_ITEM_TICKS_RE.match(line)
        bare = _FILE_ITEM_BARE_RE.match(line)
        if ticked:
            files.append(ticked.group(1).strip())
        elif bare:
            files.append(bare.group(1).strip())
        elif line.strip():
            break
    return files


def _is_windows_absolute(value: str) -> bool:
    return bool(re.match(r"^[A-Za-z]:[\\/]", value)) or value.startswith("\\\\")
