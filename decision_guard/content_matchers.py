"""Content rules evaluated against the added lines of a file diff."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import assert_never

import structlog

from decision_guard.config import EngineConfig
from decision_guard.diff_parser import added_lines_with_numbers
from decision_guard.errors import DecisionGuardError, UnsafeRegexError
from decision_guard.metrics import MetricsCollector
from decision_guard.models import (
    ContentRule,
    FileDiff,
    FullFileContentRule,
    JsonPathContentRule,
    LineRangeContentRule,
    RegexContentRule,
    StringContentRule,
)
from decision_guard.regex_safety import (
    RegexResultCache,
    RegexSandbox,
    check_regex_safety,
    validate_flags,
)

logger = structlog.get_logger(__name__)

FULL_FILE_EVIDENCE = "full_file"


@dataclass(slots=True)
class ContentMatchResult:
    """Outcome of one content rule against one file."""

    matched: bool
    matched_patterns: list[str] = field(default_factory=list)


NO_MATCH = ContentMatchResult(matched=False)


class ContentMatchers:
    """The five content strategies plus the regex safety pipeline.

    Each instance owns its regex result cache; build one per run, or keep
    one around in a long-lived process to reuse the cache.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        cache: RegexResultCache | None = None,
        sandbox: RegexSandbox | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.cache = cache or RegexResultCache(self.config.regex_cache_size)
        self.sandbox = sandbox or RegexSandbox(self.config.regex_timeout_ms)
        self.metrics = metrics

    async def match(self, rule: ContentRule, file_diff: FileDiff) -> ContentMatchResult:
        """Dispatch ``rule`` to its strategy."""
        if isinstance(rule, StringContentRule):
            return self.match_string(rule, file_diff)
        if isinstance(rule, RegexContentRule):
            return await self.match_regex(rule, file_diff)
        if isinstance(rule, LineRangeContentRule):
            return self.match_line_range(rule, file_diff)
        if isinstance(rule, FullFileContentRule):
            return self.match_full_file(file_diff)
        if isinstance(rule, JsonPathContentRule):
            return self.match_json_path(rule, file_diff)
        assert_never(rule)

    def match_string(self, rule: StringContentRule, file_diff: FileDiff) -> ContentMatchResult:
        lines = self.changed_lines(file_diff)
        matched = [pattern for pattern in rule.patterns if any(pattern in line for line in lines)]
        return ContentMatchResult(matched=bool(matched), matched_patterns=matched)

    def match_line_range(
        self, rule: LineRangeContentRule, file_diff: FileDiff
    ) -> ContentMatchResult:
        numbered = self.changed_lines_with_numbers(file_diff)
        if any(rule.start <= lineno <= rule.end for _, lineno in numbered):
            return ContentMatchResult(True, [f"lines {rule.start}-{rule.end}"])
        return NO_MATCH

    def match_full_file(self, file_diff: FileDiff) -> ContentMatchResult:
        return ContentMatchResult(True, [FULL_FILE_EVIDENCE])

    def match_json_path(self, rule: JsonPathContentRule, file_diff: FileDiff) -> ContentMatchResult:
        numbered = self.changed_lines_with_numbers(file_diff)
        matched = [path for path in rule.paths if _json_path_present(path, numbered)]
        return ContentMatchResult(matched=bool(matched), matched_patterns=matched)

    async def match_regex(self, rule: RegexContentRule, file_diff: FileDiff) -> ContentMatchResult:
        pattern, flags = rule.pattern, rule.flags
        if not self._regex_allowed(rule):
            return NO_MATCH

        content = "\n".join(self.changed_lines(file_diff))
        if len(content) > self.config.max_content_size:
            self._count("regex_rejections")
            logger.warning(
                "regex_content_too_large",
                file=file_diff.filename,
                size=len(content),
                limit=self.config.max_content_size,
            )
            return NO_MATCH

        key = self.cache.key(pattern, flags, content)
        cached = self.cache.get(key)
        if cached is not None:
            self._count("regex_cache_hits")
            return ContentMatchResult(cached, [pattern] if cached else [])

        try:
            matched = await asyncio.to_thread(self.sandbox.search, pattern, flags, content)
        except (DecisionGuardError, OSError) as exc:
            self._count("regex_failures")
            logger.warning(
                "regex_check_failed",
                pattern=pattern,
                file=file_diff.filename,
                error=str(exc),
                policy=self.config.regex_error_policy,
            )
            if self.config.regex_error_policy == "match":
                return ContentMatchResult(True, [f"regex check failed: {exc}"])
            return NO_MATCH

        self._count("regex_executions")
        self.cache.put(key, matched)
        return ContentMatchResult(matched, [pattern] if matched else [])

    def _regex_allowed(self, rule: RegexContentRule) -> bool:
        if len(rule.pattern) > self.config.max_regex_length:
            self._count("regex_rejections")
            logger.warning(
                "regex_pattern_too_long",
                length=len(rule.pattern),
                limit=self.config.max_regex_length,
            )
            return False
        try:
            validate_flags(rule.flags)
        except UnsafeRegexError:
            self._count("regex_rejections")
            logger.warning("invalid_regex_flags", flags=rule.flags)
            return False
        try:
            check_regex_safety(
                rule.pattern,
                rule.flags,
                max_repetitions=self.config.max_regex_repetitions,
                max_length=self.config.max_regex_length,
            )
        except UnsafeRegexError as exc:
            self._count("regex_rejections")
            logger.warning("unsafe_regex_rejected", pattern=rule.pattern, reason=str(exc))
            return False
        return True

    def changed_lines(self, file_diff: FileDiff) -> list[str]:
        """Added lines of the patch; empty when the patch cannot be parsed."""
        return [line for line, _ in self.changed_lines_with_numbers(file_diff)]

    def changed_lines_with_numbers(self, file_diff: FileDiff) -> list[tuple[str, int]]:
        try:
            return added_lines_with_numbers(file_diff.patch)
        except ValueError as exc:
            logger.warning("diff_parse_failed", file=file_diff.filename, error=str(exc))
            return []

    def close(self) -> None:
        """Release the regex workers held by the sandbox."""
        self.sandbox.close()

    def _count(self, name: str) -> None:
        if self.metrics is not None:
            self.metrics.add(name)


def _json_path_present(path: str, numbered: list[tuple[str, int]]) -> bool:
    """Each key of ``a.b.c`` must appear as ``"key":`` at or after the previous key's line."""
    keys = [key for key in path.split(".") if key]
    if not keys:
        return False
    floor = 0
    for key in keys:
        key_re = re.compile(rf'"{re.escape(key)}"\s*:')
        found = next(
            (lineno for line, lineno in numbered if lineno >= floor and key_re.search(line)),
            None,
        )
        if found is None:
            return False
        floor = found
    return True
