"""Path-glob matching with globstar and brace support.

``fnmatch`` lets ``*`` cross directory separators and has no notion of
``**``; decision patterns need both, so patterns are translated to anchored
regular expressions here:

* ``*`` and ``?`` never match ``/``
* a ``**`` segment matches zero or more whole path segments
* ``{a,b}`` alternatives are expanded before translation
* ``[...]`` classes are supported, ``!`` or ``^`` negates
* leading dots are not special
"""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache

GLOB_METACHARS = frozenset("*?[]{}")


def normalize_path(path: str) -> str:
    """Use forward slashes and NFC so platform differences never break a match."""
    return unicodedata.normalize("NFC", path.replace("\\", "/"))


def has_magic(segment: str) -> bool:
    return any(char in GLOB_METACHARS for char in segment)


def glob_match(path: str, pattern: str) -> bool:
    """Return True if ``path`` matches ``pattern``."""
    return any(regex.fullmatch(path) is not None for regex in compile_glob(pattern))


@lru_cache(maxsize=2048)
def compile_glob(pattern: str) -> tuple[re.Pattern[str], ...]:
    """Compile a glob into one regex per brace expansion."""
    return tuple(re.compile(_translate(expanded)) for expanded in expand_braces(pattern))


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives; braces without a comma stay literal."""
    start = _find_brace_group(pattern)
    if start is None:
        return [pattern]
    open_idx, close_idx, options = start
    prefix = pattern[:open_idx]
    suffix = pattern[close_idx + 1 :]
    expanded: list[str] = []
    for option in options:
        for tail in expand_braces(option + suffix):
            expanded.append(prefix + tail)
    return expanded


def _find_brace_group(pattern: str) -> tuple[int, int, list[str]] | None:
    index = 0
    while index < len(pattern):
        if pattern[index] == "{":
            depth = 0
            options: list[str] = []
            current: list[str] = []
            for cursor in range(index, len(pattern)):
                char = pattern[cursor]
                if char == "{":
                    depth += 1
                    if depth == 1:
                        continue
                elif char == "}":
                    depth -= 1
                    if depth == 0:
                        options.append("".join(current))
                        if len(options) > 1:
                            return index, cursor, options
                        break
                elif char == "," and depth == 1:
                    options.append("".join(current))
                    current = []
                    continue
                current.append(char)
        index += 1
    return None


def _translate(pattern: str) -> str:
    segments = _collapse_globstars(pattern.split("/"))
    last = len(segments) - 1
    parts: list[str] = []
    after_globstar = False
    for index, segment in enumerate(segments):
        if segment == "**":
            if index == last:
                parts.append(".*" if index == 0 else "(?:/.*)?")
            else:
                parts.append("(?:.*/)?" if index == 0 else "/(?:.*/)?")
            after_globstar = True
            continue
        if index > 0 and not after_globstar:
            parts.append("/")
        parts.append(_translate_segment(segment))
        after_globstar = False
    return "".join(parts)


def _collapse_globstars(segments: list[str]) -> list[str]:
    collapsed: list[str] = []
    for segment in segments:
        if segment == "**" and collapsed and collapsed[-1] == "**":
            continue
        collapsed.append(segment)
    return collapsed


def _translate_segment(segment: str) -> str:
    output: list[str] = []
    index = 0
    length = len(segment)
    while index < length:
        char = segment[index]
        index += 1
        if char == "*":
            while index < length and segment[index] == "*":
                index += 1
            output.append("[^/]*")
        elif char == "?":
            output.append("[^/]")
        elif char == "[":
            closing = _class_end(segment, index)
            if closing is None:
                output.append(re.escape(char))
                continue
            body = segment[index:closing]
            index = closing + 1
            negate = body[:1] in {"!", "^"}
            if negate:
                body = body[1:]
            body = body.replace("\\", "\\\\")
            output.append(f"[^/{body}]" if negate else f"[{body}]")
        elif char == "\\" and index < length:
            output.append(re.escape(segment[index]))
            index += 1
        else:
            output.append(re.escape(char))
    return "".join(output)


def _class_end(segment: str, start: int) -> int | None:
    index = start
    if index < len(segment) and segment[index] in {"!", "^"}:
        index += 1
    if index < len(segment) and segment[index] == "]":
        index += 1
    closing = segment.find("]", index)
    return closing if closing != -1 else None
