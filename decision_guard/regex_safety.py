"""Regex safety gate, result cache and isolated execution.

``re`` backtracks, so a hostile pattern can pin a CPU indefinitely and a
search running in a thread cannot be interrupted. Patterns therefore pass a
static star-height check first, results are cached, and the search itself
runs in a spawned worker process that is terminated when its wall-clock
budget runs out.
"""

from __future__ import annotations

import hashlib
import multiprocessing
import re
import threading
from collections.abc import Iterator
from multiprocessing.connection import Connection

# Private CPython modules, laid out as in 3.11 through 3.14. Only _parse_tree,
# _REPEAT_OPS and _children may touch them.
from re import _constants as sre_constants  # type: ignore[attr-defined]
from re import _parser as sre_parser  # type: ignore[attr-defined]
from typing import Any

from decision_guard.errors import DecisionGuardError, RegexTimeoutError, UnsafeRegexError

ALLOWED_FLAGS = frozenset("gimsuy")
MAX_PATTERN_LENGTH = 1000
MAX_REPETITIONS = 25
MAX_CONTENT_SIZE = 1024 * 1024
DEFAULT_TIMEOUT_MS = 5000
DEFAULT_CACHE_SIZE = 500

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}

_REPEAT_OPS = {
    sre_constants.MAX_REPEAT,
    sre_constants.MIN_REPEAT,
    sre_constants.POSSESSIVE_REPEAT,
}


def python_flags(flags: str) -> int:
    """Translate ECMAScript-style flag letters to ``re`` flags.

    ``g`` and ``u`` have no effect on a single boolean search of a ``str``;
    ``y`` (sticky) is handled by anchoring the search at position 0.
    """
    value = 0
    for letter in flags:
        value |= _FLAG_MAP.get(letter, 0)
    return value


def validate_flags(flags: str) -> None:
    invalid = sorted(set(flags) - ALLOWED_FLAGS)
    if invalid:
        raise UnsafeRegexError(f"Invalid regex flags: {flags!r}")


def repetition_profile(pattern: str, flags: str = "") -> tuple[int, int]:
    """Return ``(star_height, repetition_count)`` for a pattern.

    Star height is the deepest nesting of repetition operators in the parse
    tree: ``a+`` is 1, ``(a+)+`` is 2.
    """
    tree = _parse_tree(pattern, flags)
    counter = [0]
    height = _height(tree, counter)
    return height, counter[0]


def _parse_tree(pattern: str, flags: str) -> Any:
    return sre_parser.parse(pattern, python_flags(flags))


def _height(subpattern: Any, counter: list[int]) -> int:
    deepest = 0
    for op, av in subpattern:
        if op in _REPEAT_OPS:
            counter[0] += 1
            deepest = max(deepest, 1 + _height(av[2], counter))
            continue
        for child in _children(op, av):
            deepest = max(deepest, _height(child, counter))
    return deepest


def _children(op: Any, av: Any) -> Iterator[Any]:
    if op is sre_constants.SUBPATTERN:
        yield av[3]
    elif op is sre_constants.BRANCH:
        yield from av[1]
    elif op in (sre_constants.ASSERT, sre_constants.ASSERT_NOT):
        yield av[1]
    elif op is sre_constants.ATOMIC_GROUP:
        yield av
    elif op is sre_constants.GROUPREF_EXISTS:
        yield av[1]
        if av[2] is not None:
            yield av[2]


def check_regex_safety(
    pattern: str,
    flags: str = "",
    *,
    max_repetitions: int = MAX_REPETITIONS,
    max_length: int = MAX_PATTERN_LENGTH,
) -> None:
    """Raise ``UnsafeRegexError`` unless the pattern is safe to execute."""
    if len(pattern) > max_length:
        raise UnsafeRegexError(
            f"Regex pattern too long: {len(pattern)} characters (limit {max_length})"
        )
    validate_flags(flags)
    try:
        height, repetitions = repetition_profile(pattern, flags)
    except (re.error, RecursionError, OverflowError) as exc:
        raise UnsafeRegexError(f"Invalid regex pattern {pattern!r}: {exc}") from exc
    if height > 1:
        raise UnsafeRegexError(f"Unsafe regex pattern {pattern!r}: nested repetition")
    if repetitions > max_repetitions:
        raise UnsafeRegexError(
            f"Unsafe regex pattern {pattern!r}: {repetitions} repetitions "
            f"(limit {max_repetitions})"
        )
    try:
        re.compile(pattern, python_flags(flags))
    except re.error as exc:
        raise UnsafeRegexError(f"Invalid regex pattern {pattern!r}: {exc}") from exc


class RegexResultCache:
    """Bounded map of (pattern, flags, content digest) to search results.

    When full, the oldest tenth of the entries is dropped in one pass.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE, evict_fraction: float = 0.1) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self.max_size = max_size
        self._evict_count = max(1, int(max_size * evict_fraction))
        self._entries: dict[str, bool] = {}

    @staticmethod
    def key(pattern: str, flags: str, content: str) -> str:
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]
        return f"{pattern}:{flags}:{digest}"

    def get(self, key: str) -> bool | None:
        return self._entries.get(key)

    def put(self, key: str, value: bool) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            for stale in list(self._entries)[: self._evict_count]:
                del self._entries[stale]
        self._entries[key] = value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


def _worker_loop(conn: Connection) -> None:
    conn.send(("ready", None))
    while True:
        try:
            request = conn.recv()
        except EOFError:
            break
        if request is None:
            break
        pattern, flags, text = request
        try:
            compiled = re.compile(pattern, python_flags(flags))
            if "y" in flags:
                found = compiled.match(text) is not None
            else:
                found = compiled.search(text) is not None
            conn.send(("ok", found))
        except Exception as exc:
            conn.send(("error", f"{type(exc).__name__}: {exc}"))
    conn.close()


class _Worker:
    def __init__(self, context: Any, startup_timeout_s: float) -> None:
        self.conn, child = context.Pipe()
        self.process = context.Process(
            target=_worker_loop,
            args=(child,),
            name="decision-guard-regex",
            daemon=True,
        )
        self.process.start()
        child.close()
        if not self.conn.poll(startup_timeout_s):
            self.kill()
            raise DecisionGuardError("Regex worker did not start in time")
        try:
            self.conn.recv()
        except EOFError as exc:
            self.kill()
            raise DecisionGuardError("Regex worker exited during startup") from exc

    def kill(self) -> None:
        self.conn.close()
        if self.process.is_alive():
            self.process.terminate()
        self.process.join()


class RegexSandbox:
    """Runs regex searches in spawned worker processes with a timeout.

    Workers are started on demand, wait for requests on a pipe and are
    reused between searches; the timeout only starts once a worker has
    reported ready, so interpreter startup never eats into it. A worker
    that times out or breaks is terminated and replaced on the next call.
    Up to ``max_idle_workers`` are kept around between searches.

    The worker is a plain child interpreter with the parent's file, network
    and process access. It bounds how long a search may run; it is not a
    capability sandbox. Only the pattern, flags and text go in and a boolean
    comes back.
    """

    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        *,
        max_idle_workers: int = 4,
        startup_timeout_s: float = 30.0,
    ) -> None:
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        self.timeout_ms = timeout_ms
        self.max_idle_workers = max_idle_workers
        self.startup_timeout_s = startup_timeout_s
        self._context = multiprocessing.get_context("spawn")
        self._idle: list[_Worker] = []
        self._lock = threading.Lock()
        self.workers_started = 0

    def search(self, pattern: str, flags: str, text: str) -> bool:
        """Return whether ``pattern`` matches ``text``.

        Raises ``RegexTimeoutError`` when the budget is exhausted and
        ``DecisionGuardError`` when the worker fails.
        """
        worker = self._acquire()
        healthy = False
        try:
            try:
                worker.conn.send((pattern, flags, text))
                ready = worker.conn.poll(self.timeout_ms / 1000)
            except OSError as exc:
                raise DecisionGuardError("Regex worker is not reachable") from exc
            if not ready:
                raise RegexTimeoutError(f"Regex execution exceeded {self.timeout_ms} ms")
            try:
                status, payload = worker.conn.recv()
            except (EOFError, OSError) as exc:
                raise DecisionGuardError("Regex worker exited without a result") from exc
            healthy = True
        finally:
            if healthy:
                self._release(worker)
            else:
                worker.kill()

        if status != "ok":
            raise DecisionGuardError(f"Regex execution failed: {payload}")
        return bool(payload)

    def close(self) -> None:
        """Terminate every idle worker."""
        with self._lock:
            idle, self._idle = self._idle, []
        for worker in idle:
            worker.kill()

    def _acquire(self) -> _Worker:
        with self._lock:
            while self._idle:
                worker = self._idle.pop()
                if worker.process.is_alive():
                    return worker
                worker.kill()
            self.workers_started += 1
        return _Worker(self._context, self.startup_timeout_s)

    def _release(self, worker: _Worker) -> None:
        with self._lock:
            if len(self._idle) < self.max_idle_workers:
                self._idle.append(worker)
                return
        worker.kill()
