"""Shared pytest fixtures."""

from __future__ import annotations

import re

import pytest
import structlog

from decision_guard.errors import RegexTimeoutError
from decision_guard.regex_safety import python_flags


@pytest.fixture(autouse=True)
def _reset_structlog():
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


class FakeSandbox:
    """In-process stand-in for ``RegexSandbox`` that records every call."""

    def __init__(self, *, raises: Exception | None = None) -> None:
        self.raises = raises
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    def search(self, pattern: str, flags: str, text: str) -> bool:
        self.calls.append((pattern, flags, text))
        if self.raises is not None:
            raise self.raises
        return re.search(pattern, text, python_flags(flags)) is not None

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def timeout_sandbox() -> FakeSandbox:
    return FakeSandbox(raises=RegexTimeoutError("Regex execution exceeded 50 ms"))
