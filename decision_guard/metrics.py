"""Run counters collected while checking a changeset."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Immutable copy of the counters at one point in time."""

    files_processed: int = 0
    decisions_evaluated: int = 0
    matches_found: int = 0
    critical_matches: int = 0
    warning_matches: int = 0
    info_matches: int = 0
    duration_ms: int = 0
    parse_errors: int = 0
    parse_warnings: int = 0
    regex_executions: int = 0
    regex_cache_hits: int = 0
    regex_rejections: int = 0
    regex_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetricsCollector:
    """Mutable counters owned by one run; pass the instance to whoever counts."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self.reset()

    def add(self, name: str, count: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown metric: {name}")
        self._counts[name] += count

    def set_duration(self, ms: int) -> None:
        self._counts["duration_ms"] = ms

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(**self._counts)

    def reset(self) -> None:
        self._counts = {item.name: 0 for item in fields(MetricsSnapshot)}
