"""Tests for FileMatcher end to end."""

import asyncio

from structlog.testing import capture_logs

from decision_guard.config import EngineConfig
from decision_guard.content_matchers import ContentMatchers
from decision_guard.matcher import FileMatcher, matches_decision
from decision_guard.metrics import MetricsCollector
from decision_guard.models import (
    Decision,
    FileRule,
    RegexContentRule,
    RuleCondition,
    StringContentRule,
)
from tests.helpers_diff import file_diff


def _matcher(decisions, fake_sandbox, **kwargs) -> FileMatcher:
    config = kwargs.pop("config", None) or EngineConfig()
    return FileMatcher(
        decisions,
        config=config,
        content_matchers=ContentMatchers(config, sandbox=fake_sandbox),
        **kwargs,
    )


def test_glob_decision_matches_changed_file(fake_sandbox) -> None:
    decision = Decision(id="DECISION-001", title="Go", files=["src/**/*.go"])
    matcher = _matcher([decision], fake_sandbox)

    matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("src/auth/login.go")]))

    assert len(matches) == 1
    assert matches[0].decision is decision
    assert matches[0].file == "src/auth/login.go"
    assert matches[0].matched_pattern == "src/**/*.go"
    assert matches[0].match_details is not None
    assert matches[0].match_details.matched_files == ["src/auth/login.go"]


def test_negated_pattern_wins_over_include(fake_sandbox) -> None:
    decision = Decision(id="DECISION-002", title="Gen", files=["src/**", "!src/generated/**"])
    matcher = _matcher([decision], fake_sandbox)

    matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("src/generated/x.go")]))

    assert matches == []


def test_matches_decision_reports_last_matching_include() -> None:
    decision = Decision(id="D", title="t", files=["src/*.py", "src/**", "!src/skip.py"])
    assert matches_decision("src/app.py", decision) == "src/**"
    assert matches_decision("src/pkg/app.py", decision) == "src/**"
    assert matches_decision("src/skip.py", decision) is None
    assert matches_decision("lib/app.py", decision) is None


def test_overlapping_includes_report_the_later_pattern(fake_sandbox) -> None:
    decision = Decision(id="D", title="t", files=["src/**", "src/**/*.go"])
    matcher = _matcher([decision], fake_sandbox)

    matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("src/a.go")]))

    assert [match.matched_pattern for match in matches] == ["src/**/*.go"]
    assert matcher.find_matches(["src/a.go"])[0].matched_pattern == "src/**/*.go"


def test_inactive_decisions_are_ignored(fake_sandbox) -> None:
    decisions = [
        Decision(id="D-1", title="old", status="deprecated", files=["**"]),
        Decision(
            id="D-2",
            title="old rules",
            status="superseded",
            rules=FileRule(pattern="**"),
        ),
    ]
    matcher = _matcher(decisions, fake_sandbox)

    assert matcher.active_decisions == []
    assert asyncio.run(matcher.find_matches_with_diffs([file_diff("a.py")])) == []


def test_rule_decision_produces_single_aggregated_match(fake_sandbox) -> None:
    decision = Decision(
        id="DECISION-SEC-001",
        title="Config secrets",
        severity="critical",
        rules=RuleCondition(
            match_mode="all",
            conditions=(
                FileRule(
                    pattern="config/*.yml",
                    content_rules=(RegexContentRule(pattern="password\\s*:", flags="i"),),
                ),
                FileRule(
                    pattern="config/*.yml",
                    content_rules=(StringContentRule(patterns=("secret",)),),
                ),
            ),
        ),
    )
    matcher = _matcher([decision], fake_sandbox)
    diffs = [
        file_diff("config/db.yml", ["password: x", "secret: y"]),
        file_diff("config/cache.yml", ["password: z", "secret: w"]),
    ]

    matches = asyncio.run(matcher.find_matches_with_diffs(diffs))

    assert len(matches) == 1
    assert matches[0].file == "config/cache.yml, config/db.yml"
    assert matches[0].matched_pattern == "password\\s*:, secret"
    assert matches[0].match_details is not None
    assert matches[0].match_details.matched is True


def test_rule_decision_without_match_is_absent(fake_sandbox) -> None:
    decision = Decision(
        id="D",
        title="t",
        rules=RuleCondition(
            match_mode="all",
            conditions=(
                FileRule(pattern="config/*.yml", content_rules=(StringContentRule(("secret",)),)),
                FileRule(pattern="config/*.yml", content_rules=(StringContentRule(("password",)),)),
            ),
        ),
    )
    matcher = _matcher([decision], fake_sandbox)

    matches = asyncio.run(
        matcher.find_matches_with_diffs([file_diff("config/db.yml", ["password: x"])])
    )

    assert matches == []


def test_output_order_follows_decision_order(fake_sandbox) -> None:
    decisions = [
        Decision(id="D-rule-late", title="r", rules=FileRule(pattern="src/**")),
        Decision(id="D-glob", title="g", files=["src/**"]),
        Decision(id="D-rule", title="r2", rules=FileRule(pattern="**/*.py")),
        Decision(id="D-glob-2", title="g2", files=["**/*.py"]),
    ]
    diffs = [file_diff("src/b.py"), file_diff("src/a.py")]

    runs = []
    for _ in range(5):
        matcher = _matcher(decisions, fake_sandbox, config=EngineConfig(rule_batch_size=1))
        matches = asyncio.run(matcher.find_matches_with_diffs(diffs))
        runs.append([(match.decision.id, match.file, match.matched_pattern) for match in matches])

    assert all(run == runs[0] for run in runs)
    assert [decision_id for decision_id, _, _ in runs[0]] == [
        "D-rule-late",
        "D-glob",
        "D-glob",
        "D-rule",
        "D-glob-2",
        "D-glob-2",
    ]
    assert runs[0][1][1] == "src/b.py"


def test_duplicate_decisions_are_reported_separately(fake_sandbox) -> None:
    first = Decision(id="D-1", title="same", files=["*.md"])
    second = Decision(id="D-1", title="same", files=["*.md"])
    matcher = _matcher([first, second], fake_sandbox)

    matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("README.md")]))

    assert [match.decision for match in matches] == [first, second]
    assert matches[0].decision is first
    assert matches[1].decision is second


def test_windows_paths_are_normalized(fake_sandbox) -> None:
    decision = Decision(id="D", title="t", files=["src\\auth\\*.go"])
    matcher = _matcher([decision], fake_sandbox)

    matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("src\\auth\\login.go")]))

    assert [match.file for match in matches] == ["src/auth/login.go"]
    assert decision.files == ["src\\auth\\*.go"]


def test_failing_rule_decision_does_not_block_others(fake_sandbox) -> None:
    class BrokenEvaluatorMatcher(FileMatcher):
        async def _evaluate_decision(self, decision, file_diffs):
            if decision.id == "D-broken":
                raise RuntimeError("evaluator crashed")
            return await super()._evaluate_decision(decision, file_diffs)

    decisions = [
        Decision(id="D-broken", title="b", rules=FileRule(pattern="**")),
        Decision(id="D-ok", title="ok", rules=FileRule(pattern="**")),
    ]
    config = EngineConfig()
    matcher = BrokenEvaluatorMatcher(
        decisions, config=config, content_matchers=ContentMatchers(config, sandbox=fake_sandbox)
    )

    with capture_logs() as logs:
        matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("a.py")]))

    assert [match.decision.id for match in matches] == ["D-ok"]
    failures = [entry for entry in logs if entry["event"] == "decision_evaluation_failed"]
    assert failures == [
        {
            "event": "decision_evaluation_failed",
            "decision": "D-broken",
            "error": "evaluator crashed",
            "log_level": "warning",
        }
    ]


def test_rule_errors_are_logged_per_decision(fake_sandbox) -> None:
    deep: RuleCondition | FileRule = FileRule(pattern="**")
    for _ in range(12):
        deep = RuleCondition(conditions=(deep,))
    decision = Decision(id="D-deep", title="deep", rules=deep)
    matcher = _matcher([decision], fake_sandbox)

    with capture_logs() as logs:
        matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("a.py")]))

    assert matches == []
    assert any(
        entry["event"] == "decision_rule_error" and entry["decision"] == "D-deep" for entry in logs
    )


def test_find_matches_uses_globs_only_and_chunks(fake_sandbox) -> None:
    glob_decision = Decision(id="D-glob", title="g", files=["docs/**"])
    rule_decision = Decision(id="D-rule", title="r", files=["docs/**"], rules=FileRule(pattern="x"))
    metrics = MetricsCollector()
    matcher = _matcher(
        [glob_decision, rule_decision],
        fake_sandbox,
        config=EngineConfig(file_chunk_size=2),
        metrics=metrics,
    )
    changed = [f"docs/page{index}.md" for index in range(5)] + ["src/app.py"]

    matches = matcher.find_matches(changed)

    assert len(matches) == 10
    assert [match.file for match in matches[:2]] == ["docs/page0.md", "docs/page0.md"]
    assert all(match.match_details is None for match in matches)
    assert metrics.snapshot().decisions_evaluated == 2


def test_group_by_severity(fake_sandbox) -> None:
    decisions = [
        Decision(id="C", title="c", severity="critical", files=["**"]),
        Decision(id="W", title="w", severity="warning", files=["**"]),
        Decision(id="I", title="i", files=["**"]),
    ]
    matcher = _matcher(decisions, fake_sandbox)
    matches = asyncio.run(matcher.find_matches_with_diffs([file_diff("a"), file_diff("b")]))

    groups = FileMatcher.group_by_severity(matches)

    assert groups.counts() == {"critical": 2, "warning": 2, "info": 2}
    assert {match.decision.id for match in groups.critical} == {"C"}
