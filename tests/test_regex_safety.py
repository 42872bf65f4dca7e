"""Tests for the regex safety gate, result cache and sandbox."""

import re

import pytest

from decision_guard.errors import DecisionGuardError, RegexTimeoutError, UnsafeRegexError
from decision_guard.regex_safety import (
    RegexResultCache,
    RegexSandbox,
    check_regex_safety,
    python_flags,
    repetition_profile,
)


@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("abc", (0, 0)),
        ("a+", (1, 1)),
        ("password\\s*:", (1, 1)),
        ("(a+)+", (2, 2)),
        ("(a|b*)*", (2, 2)),
        ("(?:x?y+)z{2,3}", (1, 3)),
        ("(?=a+)b", (1, 1)),
        ("a++", (1, 1)),
        ("(?>a+)+", (2, 2)),
        ("(a)?(?(1)b+|c)", (1, 2)),
    ],
)
def test_repetition_profile(pattern: str, expected: tuple[int, int]) -> None:
    assert repetition_profile(pattern) == expected


@pytest.mark.parametrize("pattern", ["(a+)+$", "(a*)*b", "((ab)+c?)+", "(.*a){2,}"])
def test_nested_repetition_is_rejected(pattern: str) -> None:
    with pytest.raises(UnsafeRegexError, match="nested repetition"):
        check_regex_safety(pattern)


def test_safe_pattern_passes() -> None:
    check_regex_safety("password\\s*:", "i")
    check_regex_safety("^import (os|sys)$", "m")


def test_too_many_repetitions_is_rejected() -> None:
    pattern = "a?" * 5
    check_regex_safety(pattern, max_repetitions=5)
    with pytest.raises(UnsafeRegexError, match="repetitions"):
        check_regex_safety(pattern, max_repetitions=4)


def test_length_flags_and_syntax_are_checked() -> None:
    with pytest.raises(UnsafeRegexError, match="too long"):
        check_regex_safety("a" * 11, max_length=10)
    with pytest.raises(UnsafeRegexError, match="Invalid regex flags"):
        check_regex_safety("a", "ix")
    with pytest.raises(UnsafeRegexError, match="Invalid regex pattern"):
        check_regex_safety("(unclosed")


def test_python_flags_maps_letters() -> None:
    assert python_flags("gimsuy") == re.IGNORECASE | re.MULTILINE | re.DOTALL
    assert python_flags("") == 0


def test_cache_evicts_oldest_tenth_when_full() -> None:
    cache = RegexResultCache(max_size=10)
    keys = [cache.key("p", "", str(index)) for index in range(10)]
    for key in keys:
        cache.put(key, True)
    assert len(cache) == 10

    cache.put(cache.key("p", "", "new"), False)
    assert len(cache) == 10
    assert keys[0] not in cache
    assert keys[1] in cache
    assert cache.get(cache.key("p", "", "new")) is False


def test_cache_key_depends_on_pattern_flags_and_content() -> None:
    base = RegexResultCache.key("a+", "i", "content")
    assert base == RegexResultCache.key("a+", "i", "content")
    assert base != RegexResultCache.key("a+", "", "content")
    assert base != RegexResultCache.key("a*", "i", "content")
    assert base != RegexResultCache.key("a+", "i", "other")


def test_sandbox_search_reuses_one_worker() -> None:
    sandbox = RegexSandbox(timeout_ms=10_000)
    try:
        assert sandbox.search("password\\s*:", "i", "PASSWORD: x") is True
        assert sandbox.search("^b", "", "a\nb") is False
        assert sandbox.search("^b", "m", "a\nb") is True
        assert sandbox.search("b", "y", "ab") is False
        assert sandbox.workers_started == 1
    finally:
        sandbox.close()


def test_sandbox_budget_excludes_worker_startup() -> None:
    sandbox = RegexSandbox(timeout_ms=200)
    try:
        assert sandbox.search("secret", "", "a secret value") is True
    finally:
        sandbox.close()


def test_sandbox_times_out_and_replaces_the_worker() -> None:
    sandbox = RegexSandbox(timeout_ms=300)
    try:
        with pytest.raises(RegexTimeoutError):
            sandbox.search("(a+)+$", "", "a" * 40 + "!")
        assert sandbox.search("a+", "", "aaa") is True
        assert sandbox.workers_started == 2
    finally:
        sandbox.close()


def test_sandbox_reports_worker_side_errors() -> None:
    sandbox = RegexSandbox(timeout_ms=10_000)
    try:
        with pytest.raises(DecisionGuardError, match="Regex execution failed"):
            sandbox.search("(unclosed", "", "text")
        assert sandbox.search("text", "", "text") is True
        assert sandbox.workers_started == 1
    finally:
        sandbox.close()


def test_sandbox_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        RegexSandbox(timeout_ms=0)
