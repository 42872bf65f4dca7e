"""Unified diff parsing and added-line extraction."""

from __future__ import annotations

from dataclasses import dataclass, field
from re import Match, compile
from typing import Literal

from decision_guard.models import FileDiff, FileStatus

HUNK_HEADER_RE = compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<section>.*)$"
)

DEV_NULL = "/dev/null"

# Lets a hunk-only patch go through the same parser as a full git diff.
SYNTHETIC_HEADER = "diff --git a/file b/file\n--- a/file\n+++ b/file\n"


@dataclass(slots=True)
class Line:
    """A single line within a diff hunk."""

    kind: Literal["context", "add", "delete", "meta"]
    content: str
    old_lineno: int | None
    new_lineno: int | None

    def render(self) -> str:
        prefix = {"context": " ", "add": "+", "delete": "-", "meta": "\\ "}[self.kind]
        return f"{prefix}{self.content}"


@dataclass(slots=True)
class Hunk:
    """A diff hunk."""

    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[Line] = field(default_factory=list)


@dataclass(slots=True)
class PatchFile:
    """One file section of a unified diff."""

    old_path: str | None
    new_path: str | None
    hunks: list[Hunk] = field(default_factory=list)
    metadata: list[str] = field(default_factory=list)

    @property
    def path(self) -> str:
        """Best-effort canonical path for reporting."""
        if self.new_path and self.new_path != DEV_NULL:
            return self.new_path
        if self.old_path and self.old_path != DEV_NULL:
            return self.old_path
        return "<unknown>"

    @property
    def is_new_file(self) -> bool:
        return self.old_path == DEV_NULL and self.new_path not in {None, DEV_NULL}

    @property
    def is_deleted_file(self) -> bool:
        return self.new_path == DEV_NULL and self.old_path not in {None, DEV_NULL}

    @property
    def is_rename(self) -> bool:
        return any(line.startswith("rename from ") for line in self.metadata)


def parse_unified_diff(diff_text: str) -> list[PatchFile]:
    """Parse unified diff text into file/hunk/line models.

    Raises ``ValueError`` on a malformed hunk header.
    """
    files: list[PatchFile] = []
    current_file: PatchFile | None = None
    current_hunk: Hunk | None = None
    old_lineno = 0
    new_lineno = 0
    old_left = 0
    new_left = 0

    def flush_hunk() -> None:
        nonlocal current_hunk
        if current_file is not None and current_hunk is not None:
            current_file.hunks.append(current_hunk)
        current_hunk = None

    def flush_file() -> None:
        nonlocal current_file
        flush_hunk()
        if current_file is not None:
            files.append(current_file)
        current_file = None

    for raw_line in _split_diff_lines(diff_text):
        if raw_line.startswith("diff --git "):
            flush_file()
            current_file = _start_file_from_diff_header(raw_line)
            continue

        if current_hunk is None and raw_line.startswith(("--- ", "+++ ")):
            if raw_line.startswith("--- ") and current_file is not None and current_file.hunks:
                # Plain "diff -u" output has no "diff --git" line between files.
                flush_file()
            if current_file is None:
                current_file = PatchFile(old_path=None, new_path=None)
            if raw_line.startswith("--- "):
                current_file.old_path = _parse_path(raw_line[4:])
            else:
                current_file.new_path = _parse_path(raw_line[4:])
            current_file.metadata.append(raw_line)
            continue

        if raw_line.startswith("@@ "):
            if current_file is None:
                current_file = PatchFile(old_path=None, new_path=None)
            flush_hunk()
            current_hunk = _parse_hunk_header(raw_line)
            old_lineno = current_hunk.old_start
            new_lineno = current_hunk.new_start
            old_left = current_hunk.old_count
            new_left = current_hunk.new_count
            continue

        if current_hunk is None:
            if raw_line.startswith("\\ ") and current_file is not None and current_file.hunks:
                # "\ No newline at end of file" trails a hunk whose counts are already used up.
                current_file.hunks[-1].lines.append(Line("meta", raw_line[2:], None, None))
            elif current_file is not None:
                current_file.metadata.append(raw_line)
            continue

        if raw_line.startswith("+"):
            current_hunk.lines.append(Line("add", raw_line[1:], None, new_lineno))
            new_lineno += 1
            new_left -= 1
        elif raw_line.startswith("-"):
            current_hunk.lines.append(Line("delete", raw_line[1:], old_lineno, None))
            old_lineno += 1
            old_left -= 1
        elif raw_line.startswith("\\ "):
            current_hunk.lines.append(Line("meta", raw_line[2:], None, None))
        else:
            # Editors sometimes strip the leading space of blank context lines.
            content = raw_line[1:] if raw_line.startswith(" ") else raw_line
            current_hunk.lines.append(Line("context", content, old_lineno, new_lineno))
            old_lineno += 1
            new_lineno += 1
            old_left -= 1
            new_left -= 1

        if old_left <= 0 and new_left <= 0:
            flush_hunk()

    flush_file()
    return files


def parse_patch(patch: str) -> list[Hunk]:
    """Parse a hunk-only patch, as carried by ``FileDiff.patch``."""
    if not patch:
        return []
    hunks: list[Hunk] = []
    for patch_file in parse_unified_diff(SYNTHETIC_HEADER + patch):
        hunks.extend(patch_file.hunks)
    return hunks


def added_lines(patch: str) -> list[str]:
    """Return the content of every ``+`` line in a hunk-only patch."""
    return [line for line, _ in added_lines_with_numbers(patch)]


def added_lines_with_numbers(patch: str) -> list[tuple[str, int]]:
    """Return ``(content, new_lineno)`` for every ``+`` line in a hunk-only patch."""
    output: list[tuple[str, int]] = []
    for hunk in parse_patch(patch):
        for line in hunk.lines:
            if line.kind == "add" and line.new_lineno is not None:
                output.append((line.content, line.new_lineno))
    return output


def render_hunks(hunks: list[Hunk]) -> str:
    """Render hunks back to hunk-only patch text."""
    lines: list[str] = []
    for hunk in hunks:
        lines.append(hunk.header)
        lines.extend(line.render() for line in hunk.lines)
    return "\n".join(lines)


def file_diffs_from_unified_diff(diff_text: str) -> list[FileDiff]:
    """Convert a full unified diff into per-file ``FileDiff`` values."""
    return [to_file_diff(patch_file) for patch_file in parse_unified_diff(diff_text)]


def to_file_diff(patch_file: PatchFile) -> FileDiff:
    additions = 0
    deletions = 0
    for hunk in patch_file.hunks:
        for line in hunk.lines:
            if line.kind == "add":
                additions += 1
            elif line.kind == "delete":
                deletions += 1

    status: FileStatus = "modified"
    previous: str | None = None
    if patch_file.is_new_file:
        status = "added"
    elif patch_file.is_deleted_file:
        status = "removed"
    elif patch_file.is_rename or (
        patch_file.old_path and patch_file.new_path and patch_file.old_path != patch_file.new_path
    ):
        status = "renamed"
        previous = patch_file.old_path

    return FileDiff(
        filename=patch_file.path,
        status=status,
        additions=additions,
        deletions=deletions,
        changes=additions + deletions,
        patch=render_hunks(patch_file.hunks),
        previous_filename=previous,
    )


def _start_file_from_diff_header(line: str) -> PatchFile:
    parts = line.split(maxsplit=3)
    old_path = _strip_ab_prefix(parts[2]) if len(parts) > 2 else None
    new_path = _strip_ab_prefix(parts[3]) if len(parts) > 3 else None
    patch_file = PatchFile(old_path=old_path, new_path=new_path)
    patch_file.metadata.append(line)
    return patch_file


def _parse_path(value: str) -> str:
    token = value.strip().split("\t", 1)[0]
    return _strip_ab_prefix(token)


def _strip_ab_prefix(path: str) -> str:
    if path.startswith("a/") or path.startswith("b/"):
        return path[2:]
    return path


def _split_diff_lines(diff_text: str) -> list[str]:
    # str.splitlines() also breaks on form feeds and unicode separators that
    # can sit inside a source line.
    lines = [line.removesuffix("\r") for line in diff_text.split("\n")]
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def _parse_hunk_header(header: str) -> Hunk:
    match: Match[str] | None = HUNK_HEADER_RE.match(header)
    if match is None:
        raise ValueError(f"Invalid hunk header: {header}")

    old_count = int(match.group("old_count")) if match.group("old_count") else 1
    new_count = int(match.group("new_count")) if match.group("new_count") else 1
    return Hunk(
        header=header,
        old_start=int(match.group("old_start")),
        old_count=old_count,
        new_start=int(match.group("new_start")),
        new_count=new_count,
    )
