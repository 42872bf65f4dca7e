"""Tests for markdown decision parsing."""

from datetime import date
from pathlib import Path

from decision_guard.decision_parser import DecisionParser, parse_file
from decision_guard.models import FileRule, RuleCondition, StringContentRule
from decision_guard.templates import TEMPLATES

TODAY = date(2026, 10, 18)

DECISIONS_MD = """\
# Decisions

<!-- DECISION-DB-001 -->
## Decision: Use Postgres
**Status**: Active
**Date**: 2024-03-01
**Severity**: Critical

**Files**:
- `src/db/**`
- `!src/db/generated/**`
- migrations/*.sql

### Context
Postgres is the only supported database.

---

<!-- decision-api-002 -->
## Decision: API changes need review
**Status**: Obsolete
**Severity**: blocker
**Date**: 2026-01-10

**Rules**:
```json
{
  "match_mode": "any",
  "conditions": [
    {"type": "file", "pattern": "src/api/**", "content_rules": [{"mode": "string", "patterns": ["@route"]}]}
  ]
}
```
"""


def _parser(root: Path) -> DecisionParser:
    return DecisionParser(root, today=TODAY)


def test_parse_content_extracts_fields(tmp_path: Path) -> None:
    result = _parser(tmp_path).parse_content(DECISIONS_MD, tmp_path / "decisions.md")

    assert result.errors == []
    assert result.warnings == []
    first, second = result.decisions

    assert first.id == "DECISION-DB-001"
    assert first.title == "Use Postgres"
    assert first.status == "active"
    assert first.severity == "critical"
    assert first.date == "2024-03-01"
    assert first.files == ["src/db/**", "!src/db/generated/**", "migrations/*.sql"]
    assert first.rules is None
    assert first.context == "Postgres is the only supported database."
    assert first.line_number == 3
    assert first.source_file == str(tmp_path / "decisions.md")

    assert second.id == "DECISION-API-002"
    assert second.status == "deprecated"
    assert second.severity == "critical"
    assert second.rules == RuleCondition(
        match_mode="any",
        conditions=(
            FileRule(pattern="src/api/**", content_rules=(StringContentRule(("@route",)),)),
        ),
    )


def test_unknown_values_fall_back_with_warnings(tmp_path: Path) -> None:
    content = "\n".join(
        [
            "<!-- DECISION-1 -->",
            "## Decision: Odd values",
            "**Status**: Pending",
            "**Severity**: Spicy",
            "**Date**: 03/01/2024",
        ]
    )

    result = _parser(tmp_path).parse_content(content, "inline.md")

    [decision] = result.decisions
    assert decision.status == "active"
    assert decision.severity == "info"
    assert any("Unknown status 'Pending'" in warning for warning in result.warnings)
    assert any("Unknown severity 'Spicy'" in warning for warning in result.warnings)
    assert any("Invalid date format" in warning for warning in result.warnings)


def test_date_warnings(tmp_path: Path) -> None:
    parser = _parser(tmp_path)

    def warnings_for(value: str) -> list[str]:
        content = f"<!-- DECISION-1 -->\n## Decision: Dated\n**Date**: {value}\n"
        return parser.parse_content(content, "x.md").warnings

    assert warnings_for("2026-10-01") == []
    assert "day doesn't exist" in warnings_for("2026-02-30")[0]
    assert "in the future" in warnings_for("2027-01-01")[0]
    assert ">10 years old" in warnings_for("2010-05-05")[0]


def test_missing_title_is_an_error(tmp_path: Path) -> None:
    result = _parser(tmp_path).parse_content("<!-- DECISION-9 -->\n**Status**: Active\n", "x.md")

    assert result.decisions == []
    assert result.errors[0].line == 1
    assert "missing required fields" in result.errors[0].message


def test_invalid_rules_keep_decision_without_rules(tmp_path: Path) -> None:
    content = "\n".join(
        [
            "<!-- DECISION-R -->",
            "## Decision: Bad rules",
            "**Files**:",
            "- `src/**`",
            "",
            "**Rules**:",
            "```json",
            '{"pattern": "src/**", "content_rules": [{"mode": "regex", "pattern": "(a+)+$"}]}',
            "```",
        ]
    )

    result = _parser(tmp_path).parse_content(content, "x.md")

    [decision] = result.decisions
    assert decision.rules is None
    assert decision.files == ["src/**"]
    assert "Failed to parse inline JSON rules" in result.warnings[0]


def test_external_rules_file_is_loaded(tmp_path: Path) -> None:
    rules_dir = tmp_path / ".decispher" / "rules"
    rules_dir.mkdir(parents=True)
    (rules_dir / "api.json").write_text('{"pattern": "src/api/**"}', encoding="utf-8")
    decision_file = tmp_path / ".decispher" / "decisions.md"
    decision_file.write_text(
        "<!-- DECISION-EXT -->\n## Decision: External\n**Rules**: [api rules](./rules/api.json)\n",
        encoding="utf-8",
    )

    result = _parser(tmp_path).parse_file(decision_file)

    assert result.warnings == []
    assert result.decisions[0].rules == FileRule(pattern="src/api/**")


def test_external_rules_outside_workspace_are_refused(tmp_path: Path) -> None:
    workspace = tmp_path / "repo"
    workspace.mkdir()
    (tmp_path / "outside.json").write_text('{"pattern": "**"}', encoding="utf-8")
    decision_file = workspace / "decisions.md"
    decision_file.write_text(
        "<!-- DECISION-EXT -->\n## Decision: Escape\n**Rules**: ../outside.json\n",
        encoding="utf-8",
    )

    result = _parser(workspace).parse_file(decision_file)

    assert result.decisions[0].rules is None
    assert "outside the workspace" in result.warnings[0]


def test_parse_directory_recurses_and_skips_hidden(tmp_path: Path) -> None:
    (tmp_path / "team").mkdir()
    (tmp_path / ".git").mkdir()
    (tmp_path / "a.md").write_text("<!-- DECISION-A -->\n## Decision: A\n", encoding="utf-8")
    (tmp_path / "team" / "b.markdown").write_text(
        "<!-- DECISION-B -->\n## Decision: B\n", encoding="utf-8"
    )
    (tmp_path / ".git" / "c.md").write_text("<!-- DECISION-C -->\n## Decision: C\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("<!-- DECISION-D -->\n## Decision: D\n", encoding="utf-8")

    result = parse_file(tmp_path, workspace_root=tmp_path)

    assert [decision.id for decision in result.decisions] == ["DECISION-A", "DECISION-B"]


def test_path_outside_workspace_is_an_error(tmp_path: Path) -> None:
    workspace = tmp_path / "repo"
    workspace.mkdir()

    result = _parser(workspace).parse_file(Path("../elsewhere.md"))

    assert result.decisions == []
    assert "Path traversal" in result.errors[0].message


def test_missing_file_is_an_error(tmp_path: Path) -> None:
    result = _parser(tmp_path).parse_file(Path("nope.md"))
    assert "Failed to read file" in result.errors[0].message


def test_bundled_templates_parse_cleanly(tmp_path: Path) -> None:
    parser = _parser(tmp_path)
    for name, content in TEMPLATES.items():
        result = parser.parse_content(content, f"{name}.md")
        assert result.errors == [], name
        assert result.warnings == [], name
        assert len(result.decisions) == 2, name
