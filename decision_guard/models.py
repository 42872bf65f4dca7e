"""Decision, rule and match models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal

DecisionStatus = Literal["active", "deprecated", "superseded", "archived"]
Severity = Literal["critical", "warning", "info"]
MatchMode = Literal["any", "all"]
FileStatus = Literal["added", "removed", "modified", "renamed"]

MAX_RULE_DEPTH = 10
SEVERITIES: tuple[Severity, ...] = ("critical", "warning", "info")


@dataclass(frozen=True, slots=True)
class StringContentRule:
    """Fires when any substring appears in an added line."""

    mode: ClassVar[str] = "string"

    patterns: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RegexContentRule:
    """Fires when the pattern matches the added lines."""

    mode: ClassVar[str] = "regex"

    pattern: str
    flags: str = ""


@dataclass(frozen=True, slots=True)
class LineRangeContentRule:
    """Fires when an added line lands inside ``[start, end]``."""

    mode: ClassVar[str] = "line_range"

    start: int
    end: int


@dataclass(frozen=True, slots=True)
class FullFileContentRule:
    """Fires on any change to the file."""

    mode: ClassVar[str] = "full_file"


@dataclass(frozen=True, slots=True)
class JsonPathContentRule:
    """Fires when the keys of a dotted path appear, in order, as ``"key":`` fragments."""

    mode: ClassVar[str] = "json_path"

    paths: tuple[str, ...]


ContentRule = (
    StringContentRule
    | RegexContentRule
    | LineRangeContentRule
    | FullFileContentRule
    | JsonPathContentRule
)


@dataclass(frozen=True, slots=True)
class FileRule:
    """Glob scope plus optional content rules."""

    pattern: str
    exclude: tuple[str, ...] = ()
    content_rules: tuple[ContentRule, ...] = ()


@dataclass(frozen=True, slots=True)
class RuleCondition:
    """Boolean combination of file rules and nested conditions."""

    match_mode: MatchMode = "any"
    conditions: tuple[FileRule | RuleCondition, ...] = ()


RuleNode = FileRule | RuleCondition


@dataclass(slots=True, eq=False)
class Decision:
    """A declared policy.

    Decisions compare and hash by identity so they can key result groups
    even when two of them carry identical fields.
    """

    id: str
    title: str
    status: DecisionStatus = "active"
    severity: Severity = "info"
    files: list[str] = field(default_factory=list)
    rules: RuleNode | None = None
    date: str = ""
    context: str = ""
    source_file: str = ""
    line_number: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True, slots=True)
class FileDiff:
    """A changed file and its hunk-only unified diff."""

    filename: str
    status: FileStatus = "modified"
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str = ""
    previous_filename: str | None = None


@dataclass(slots=True)
class RuleMatchDetails:
    """Verdict and evidence from evaluating a rule tree."""

    matched: bool
    matched_patterns: list[str] = field(default_factory=list)
    matched_files: list[str] = field(default_factory=list)
    rule_depth: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "matched": self.matched,
            "matched_patterns": list(self.matched_patterns),
            "matched_files": list(self.matched_files),
            "rule_depth": self.rule_depth,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class Match:
    """A decision triggered by one or more changed files."""

    file: str
    decision: Decision
    matched_pattern: str
    match_details: RuleMatchDetails | None = None


@dataclass(slots=True)
class SeverityGroups:
    """Matches partitioned by decision severity."""

    critical: list[Match] = field(default_factory=list)
    warning: list[Match] = field(default_factory=list)
    info: list[Match] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "critical": len(self.critical),
            "warning": len(self.warning),
            "info": len(self.info),
        }
