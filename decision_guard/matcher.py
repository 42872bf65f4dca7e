"""FileMatcher: matches changed files against decisions."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Iterable

import structlog

from decision_guard.config import EngineConfig
from decision_guard.content_matchers import ContentMatchers
from decision_guard.globs import glob_match, normalize_path
from decision_guard.metrics import MetricsCollector
from decision_guard.models import (
    Decision,
    FileDiff,
    Match,
    RuleMatchDetails,
    SeverityGroups,
)
from decision_guard.rule_evaluator import RuleEvaluator
from decision_guard.trie import PatternTrie

logger = structlog.get_logger(__name__)

# Evidence strings shown for a rule-based match are capped at this many patterns.
MAX_PATTERNS_SHOWN = 3


class FileMatcher:
    """Entry point of the engine.

    Decisions without ``rules`` are matched by file globs through a
    ``PatternTrie``; decisions with ``rules`` go through ``RuleEvaluator``
    in concurrent batches. Results are ordered by the position of their
    decision among the active decisions, whatever order the work finished in.
    """

    def __init__(
        self,
        decisions: Iterable[Decision],
        *,
        config: EngineConfig | None = None,
        metrics: MetricsCollector | None = None,
        content_matchers: ContentMatchers | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.metrics = metrics
        self.rule_evaluator = RuleEvaluator(
            content_matchers or ContentMatchers(self.config, metrics=metrics)
        )

        self._originals: dict[Decision, Decision] = {}
        self._active: list[Decision] = []
        for decision in decisions:
            if not decision.is_active:
                continue
            normalized = dataclasses.replace(
                decision, files=[normalize_path(pattern) for pattern in decision.files]
            )
            self._originals[normalized] = decision
            self._active.append(normalized)
        self._position = {decision: index for index, decision in enumerate(self._active)}
        self.trie = PatternTrie(self._active)

    @property
    def active_decisions(self) -> list[Decision]:
        return [self._originals[decision] for decision in self._active]

    async def find_matches_with_diffs(self, file_diffs: list[FileDiff]) -> list[Match]:
        """Evaluate every active decision against ``file_diffs``.

        Never raises for a single decision's failure; those are logged and
        contribute no match.
        """
        self._count("decisions_evaluated", len(self._active))
        diffs = [
            dataclasses.replace(file_diff, filename=normalize_path(file_diff.filename))
            for file_diff in file_diffs
        ]

        pattern_decisions = {decision for decision in self._active if decision.rules is None}
        rule_decisions = [decision for decision in self._active if decision.rules is not None]

        matches: list[Match] = []
        if pattern_decisions:
            for file_diff in diffs:
                matches.extend(self._match_file(file_diff.filename, pattern_decisions))

        if rule_decisions:
            matches.extend(await self._evaluate_rule_decisions(rule_decisions, diffs))

        return self._ordered(matches)

    def find_matches(self, changed_files: list[str]) -> list[Match]:
        """Glob-only matching for when diffs are unavailable.

        Input is processed in chunks to bound memory on very large changesets.
        """
        self._count("decisions_evaluated", len(self._active))
        every_decision = set(self._active)
        chunk_size = self.config.file_chunk_size
        matches: list[Match] = []
        for start in range(0, len(changed_files), chunk_size):
            for changed_file in changed_files[start : start + chunk_size]:
                matches.extend(
                    self._match_file(normalize_path(changed_file), every_decision, details=False)
                )
        return matches

    def close(self) -> None:
        self.rule_evaluator.content_matchers.close()

    @staticmethod
    def group_by_severity(matches: list[Match]) -> SeverityGroups:
        groups = SeverityGroups()
        for match in matches:
            getattr(groups, match.decision.severity).append(match)
        return groups

    def _match_file(
        self,
        path: str,
        allowed: set[Decision],
        *,
        details: bool = True,
    ) -> list[Match]:
        candidates = [
            decision for decision in self.trie.find_candidates(path) if decision in allowed
        ]
        candidates.sort(key=self._position.__getitem__)

        matches: list[Match] = []
        for decision in candidates:
            try:
                matched_pattern = matches_decision(path, decision)
            except Exception as exc:
                logger.warning(
                    "decision_pattern_failed", decision=decision.id, file=path, error=str(exc)
                )
                continue
            if matched_pattern is None:
                continue
            match_details = None
            if details:
                match_details = RuleMatchDetails(
                    matched=True,
                    matched_patterns=[matched_pattern],
                    matched_files=[path],
                    rule_depth=0,
                )
            matches.append(
                Match(
                    file=path,
                    decision=self._originals[decision],
                    matched_pattern=matched_pattern,
                    match_details=match_details,
                )
            )
        return matches

    async def _evaluate_rule_decisions(
        self,
        decisions: list[Decision],
        file_diffs: list[FileDiff],
    ) -> list[Match]:
        batch_size = self.config.rule_batch_size
        total_batches = (len(decisions) + batch_size - 1) // batch_size
        matches: list[Match] = []

        for batch_index, start in enumerate(range(0, len(decisions), batch_size), start=1):
            batch = decisions[start : start + batch_size]
            logger.debug("rule_batch_started", batch=batch_index, total=total_batches)

            settled = await asyncio.gather(
                *(self._evaluate_decision(decision, file_diffs) for decision in batch),
                return_exceptions=True,
            )

            for decision, outcome in zip(batch, settled):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.warning(
                        "decision_evaluation_failed", decision=decision.id, error=str(outcome)
                    )
                elif outcome is not None:
                    matches.append(outcome)

        return matches

    async def _evaluate_decision(
        self, decision: Decision, file_diffs: list[FileDiff]
    ) -> Match | None:
        if decision.rules is None:
            return None
        result = await self.rule_evaluator.evaluate(decision.rules, file_diffs)
        if result.error:
            logger.warning("decision_rule_error", decision=decision.id, error=result.error)
        if not result.matched:
            return None
        return Match(
            file=", ".join(result.matched_files),
            decision=self._originals[decision],
            matched_pattern=", ".join(result.matched_patterns[:MAX_PATTERNS_SHOWN]),
            match_details=result,
        )

    def _ordered(self, matches: list[Match]) -> list[Match]:
        order = {id(original): index for index, original in enumerate(self.active_decisions)}
        return sorted(matches, key=lambda match: order[id(match.decision)])

    def _count(self, name: str, count: int) -> None:
        if self.metrics is not None:
            self.metrics.add(name, count)


def matches_decision(path: str, decision: Decision) -> str | None:
    """Return the last include pattern matching ``path``, or None.

    Any matching ``!`` exclusion wins over every include.
    """
    matched_pattern: str | None = None
    for pattern in decision.files:
        if pattern.startswith("!"):
            if glob_match(path, pattern[1:]):
                return None
        elif glob_match(path, pattern):
            matched_pattern = pattern
    return matched_pattern
