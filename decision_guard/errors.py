"""Exception types raised by decision-guard."""

from __future__ import annotations


class DecisionGuardError(Exception):
    """Base class for decision-guard errors."""


class ConfigError(DecisionGuardError, ValueError):
    """Raised when configuration values are invalid."""


class RuleParseError(DecisionGuardError, ValueError):
    """Raised when a rule tree is malformed."""


class UnsafeRegexError(RuleParseError):
    """Raised when a regex pattern fails the safety gate."""


class RegexTimeoutError(DecisionGuardError, TimeoutError):
    """Raised when a regex search exceeds its wall-clock budget."""


class GitError(DecisionGuardError, RuntimeError):
    """Raised when git command execution fails."""
