"""Segment trie that narrows which decisions may apply to a path."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from decision_guard.globs import has_magic
from decision_guard.models import Decision

GLOBSTAR = "**"


@dataclass(slots=True)
class _TrieNode:
    children: dict[str, _TrieNode] = field(default_factory=dict)
    # Decisions whose pattern ends exactly here, e.g. "src/app.py".
    decisions: list[Decision] = field(default_factory=list)
    # Decisions with a wildcard segment at this depth, e.g. "src/*.py" or "src/**".
    wildcard_decisions: list[Decision] = field(default_factory=list)


class PatternTrie:
    """Index of decisions keyed by the literal segments of their file globs.

    ``find_candidates`` over-approximates: every decision whose pattern could
    match the path is returned, and callers confirm with an exact glob test.
    The trie is never mutated after construction.
    """

    def __init__(self, decisions: Iterable[Decision]) -> None:
        self._root = _TrieNode()
        for decision in decisions:
            if not decision.is_active:
                continue
            for pattern in decision.files:
                if pattern.startswith("!"):
                    continue
                self._insert(self._root, pattern.split("/"), decision)

    def _insert(self, node: _TrieNode, parts: list[str], decision: Decision) -> None:
        while parts:
            part, parts = parts[0], parts[1:]
            if part == GLOBSTAR:
                # "**" may swallow any number of segments; keep indexing the
                # literal suffix so "src/**/auth/*.go" still lands under "src".
                node.wildcard_decisions.append(decision)
                if not parts:
                    return
                continue
            if has_magic(part) or "\\" in part:
                node.wildcard_decisions.append(decision)
                return
            node = node.children.setdefault(part, _TrieNode())
        node.decisions.append(decision)

    def find_candidates(self, path: str) -> set[Decision]:
        """Return decisions that might match ``path`` (already normalized)."""
        candidates: set[Decision] = set()
        node: _TrieNode | None = self._root
        parts = path.split("/")
        for part in parts:
            if node is None:
                break
            candidates.update(node.wildcard_decisions)
            node = node.children.get(part)
        else:
            if node is not None:
                candidates.update(node.wildcard_decisions)
                candidates.update(node.decisions)
        return candidates
