"""Builds typed rule trees from decoded JSON rule definitions."""

from __future__ import annotations

import json
from typing import Any

from decision_guard.errors import RuleParseError
from decision_guard.globs import normalize_path
from decision_guard.models import (
    MAX_RULE_DEPTH,
    ContentRule,
    FileRule,
    FullFileContentRule,
    JsonPathContentRule,
    LineRangeContentRule,
    RegexContentRule,
    RuleCondition,
    RuleNode,
    StringContentRule,
)
from decision_guard.regex_safety import MAX_REPETITIONS, check_regex_safety

CONTENT_MODES = ("string", "regex", "line_range", "full_file", "json_path")
MATCH_MODES = ("any", "all")


def parse_rules_json(text: str, *, max_repetitions: int = MAX_REPETITIONS) -> RuleNode:
    """Decode and validate a JSON rule document."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RuleParseError(f"Invalid JSON: {exc}") from exc
    return parse_rule_node(raw, max_repetitions=max_repetitions)


def parse_rule_node(
    raw: Any,
    *,
    depth: int = 0,
    max_repetitions: int = MAX_REPETITIONS,
) -> RuleNode:
    """Validate ``raw`` and return a ``RuleCondition`` or a bare ``FileRule``.

    A mapping with ``pattern`` and no ``conditions`` is a file rule; anything
    with ``conditions`` is a condition whose children may be either kind.
    Raises ``RuleParseError`` on the first problem found.
    """
    if depth > MAX_RULE_DEPTH:
        raise RuleParseError(f"Rule nesting exceeds max depth of {MAX_RULE_DEPTH}")
    mapping = _as_mapping(raw, "rule")

    if "conditions" not in mapping:
        if "pattern" in mapping:
            return parse_file_rule(mapping, max_repetitions=max_repetitions)
        raise RuleParseError("Rule must define 'pattern' or 'conditions'")

    match_mode = mapping.get("match_mode", "any")
    if match_mode not in MATCH_MODES:
        raise RuleParseError(f"Invalid match_mode: {match_mode!r} (expected 'any' or 'all')")

    raw_conditions = mapping["conditions"]
    if not isinstance(raw_conditions, list):
        raise RuleParseError("'conditions' must be a list")

    children: list[RuleNode] = []
    for item in raw_conditions:
        child = _as_mapping(item, "condition")
        if "pattern" in child and "conditions" not in child:
            children.append(parse_file_rule(child, max_repetitions=max_repetitions))
        else:
            children.append(
                parse_rule_node(child, depth=depth + 1, max_repetitions=max_repetitions)
            )
    return RuleCondition(match_mode=match_mode, conditions=tuple(children))


def parse_file_rule(
    mapping: dict[str, Any],
    *,
    max_repetitions: int = MAX_REPETITIONS,
) -> FileRule:
    rule_type = mapping.get("type", "file")
    if rule_type != "file":
        raise RuleParseError(f"Unsupported rule type: {rule_type!r}")

    pattern = mapping.get("pattern")
    if not isinstance(pattern, str) or not pattern.strip():
        raise RuleParseError("FileRule must have a pattern")

    raw_content = mapping.get("content_rules")
    if raw_content is None and "content" in mapping:
        raw_content = [mapping["content"]]
    if raw_content is None:
        raw_content = []
    if not isinstance(raw_content, list):
        raise RuleParseError("'content_rules' must be a list")

    return FileRule(
        pattern=normalize_path(pattern),
        exclude=tuple(normalize_path(item) for item in _exclude_list(mapping.get("exclude"))),
        content_rules=tuple(
            parse_content_rule(item, max_repetitions=max_repetitions) for item in raw_content
        ),
    )


def parse_content_rule(raw: Any, *, max_repetitions: int = MAX_REPETITIONS) -> ContentRule:
    mapping = _as_mapping(raw, "content rule")
    mode = mapping.get("mode")

    if mode == "string":
        return StringContentRule(patterns=tuple(_str_list(mapping.get("patterns"), "patterns")))

    if mode == "regex":
        pattern = mapping.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise RuleParseError("Regex mode requires pattern")
        flags = mapping.get("flags") or ""
        if not isinstance(flags, str):
            raise RuleParseError("Regex flags must be a string")
        check_regex_safety(pattern, flags, max_repetitions=max_repetitions)
        return RegexContentRule(pattern=pattern, flags=flags)

    if mode == "line_range":
        start = mapping.get("start")
        end = mapping.get("end")
        if not _is_int(start) or not _is_int(end):
            raise RuleParseError("Line range mode requires start and end numbers")
        if start > end:
            raise RuleParseError("Line range start must be <= end")
        return LineRangeContentRule(start=start, end=end)

    if mode == "full_file":
        return FullFileContentRule()

    if mode == "json_path":
        return JsonPathContentRule(paths=tuple(_str_list(mapping.get("paths"), "paths")))

    expected = ", ".join(CONTENT_MODES)
    raise RuleParseError(f"Invalid content rule mode: {mode!r} (expected one of {expected})")


def _as_mapping(raw: Any, what: str) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise RuleParseError(f"Each {what} must be a JSON object")
    return raw


def _exclude_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return _str_list(value, "exclude")


def _str_list(value: Any, field_name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise RuleParseError(f"'{field_name}' must be a list of strings")
    return list(value)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
