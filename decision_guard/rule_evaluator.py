"""Evaluates decision rule trees against a changeset."""

from __future__ import annotations

import asyncio

import structlog

from decision_guard.content_matchers import ContentMatchers
from decision_guard.globs import glob_match
from decision_guard.models import (
    MAX_RULE_DEPTH,
    FileDiff,
    FileRule,
    RuleCondition,
    RuleMatchDetails,
    RuleNode,
)

logger = structlog.get_logger(__name__)


class RuleEvaluator:
    """Turns a ``FileRule`` or ``RuleCondition`` tree into a verdict with evidence.

    Failures never escape: a branch that raises, a rule nested too deeply,
    or a bad glob becomes an unmatched result carrying an ``error`` string.
    """

    def __init__(self, content_matchers: ContentMatchers | None = None) -> None:
        self.content_matchers = content_matchers or ContentMatchers()

    async def evaluate(
        self,
        node: RuleNode,
        file_diffs: list[FileDiff],
        depth: int = 0,
    ) -> RuleMatchDetails:
        if isinstance(node, FileRule):
            return await self.evaluate_file_rule(node, file_diffs, depth)

        # Only conditions count toward the nesting limit; leaves never do.
        if depth > MAX_RULE_DEPTH:
            return RuleMatchDetails(
                matched=False,
                rule_depth=depth,
                error=f"Rule nesting exceeds max depth of {MAX_RULE_DEPTH}",
            )

        return await self._evaluate_condition(node, file_diffs, depth)

    async def _evaluate_condition(
        self,
        condition: RuleCondition,
        file_diffs: list[FileDiff],
        depth: int,
    ) -> RuleMatchDetails:
        if not condition.conditions:
            return RuleMatchDetails(matched=False, rule_depth=depth)

        settled = await asyncio.gather(
            *(self.evaluate(child, file_diffs, depth + 1) for child in condition.conditions),
            return_exceptions=True,
        )

        results: list[RuleMatchDetails] = []
        for outcome in settled:
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                results.append(
                    RuleMatchDetails(
                        matched=False,
                        rule_depth=depth + 1,
                        error=f"Condition evaluation failed: {outcome}",
                    )
                )
            else:
                results.append(outcome)

        if condition.match_mode == "all":
            matched = all(result.matched for result in results)
        else:
            matched = any(result.matched for result in results)

        winners = [result for result in results if result.matched]
        patterns = sorted(pattern for result in winners for pattern in result.matched_patterns)
        files = sorted({name for result in winners for name in result.matched_files})
        errors = "; ".join(result.error for result in results if result.error)

        return RuleMatchDetails(
            matched=matched,
            matched_patterns=patterns,
            matched_files=files,
            rule_depth=depth,
            error=errors or None,
        )

    async def evaluate_file_rule(
        self,
        rule: FileRule,
        file_diffs: list[FileDiff],
        depth: int,
    ) -> RuleMatchDetails:
        try:
            candidates = [
                file_diff
                for file_diff in file_diffs
                if glob_match(file_diff.filename, rule.pattern)
                and not any(glob_match(file_diff.filename, item) for item in rule.exclude)
            ]
            if not candidates:
                return RuleMatchDetails(matched=False, rule_depth=depth)

            if not rule.content_rules:
                return RuleMatchDetails(
                    matched=True,
                    matched_patterns=[rule.pattern],
                    matched_files=sorted(file_diff.filename for file_diff in candidates),
                    rule_depth=depth,
                )

            patterns: set[str] = set()
            files: list[str] = []
            for file_diff in candidates:
                file_patterns = await self._match_content(rule, file_diff)
                if file_patterns:
                    patterns.update(file_patterns)
                    files.append(file_diff.filename)

            return RuleMatchDetails(
                matched=bool(files),
                matched_patterns=sorted(patterns),
                matched_files=sorted(files),
                rule_depth=depth,
            )
        except Exception as exc:
            logger.warning("rule_evaluation_failed", pattern=rule.pattern, error=str(exc))
            return RuleMatchDetails(matched=False, rule_depth=depth, error=str(exc))

    async def _match_content(self, rule: FileRule, file_diff: FileDiff) -> list[str]:
        """Content rules are ORed: return evidence from every rule that fired."""
        patterns: list[str] = []
        for content_rule in rule.content_rules:
            result = await self.content_matchers.match(content_rule, file_diff)
            if result.matched:
                patterns.extend(result.matched_patterns)
        return patterns
