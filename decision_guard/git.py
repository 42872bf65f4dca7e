"""Git subprocess helpers."""

from __future__ import annotations

import re
from pathlib import Path
from subprocess import CalledProcessError, run

from decision_guard.diff_parser import file_diffs_from_unified_diff
from decision_guard.errors import GitError
from decision_guard.models import FileDiff

DIFF_MODES = ("staged", "branch", "all")

_BRANCH_NAME_RE = re.compile(r"^[A-Za-z0-9._/-]{1,255}$")


def diff_args(mode: str, base_branch: str = "main") -> list[str]:
    """Return the revision arguments that select the changes for ``mode``."""
    if mode == "staged":
        return ["--cached"]
    if mode == "branch":
        if not is_valid_branch_name(base_branch):
            raise GitError(
                f"Invalid base branch {base_branch!r}: only letters, digits, '-', '_', '/' and '.' are allowed"
            )
        return [f"{base_branch}...HEAD"]
    if mode == "all":
        return ["HEAD"]
    raise GitError(f"Unknown diff mode {mode!r}; expected one of: {', '.join(DIFF_MODES)}")


def is_valid_branch_name(name: str) -> bool:
    return bool(_BRANCH_NAME_RE.match(name))


def get_diff(repo: Path, mode: str = "staged", base_branch: str = "main") -> str:
    """Return the unified diff for ``mode``."""
    return _run_git(repo, ["diff", "--no-color", "-U3", *diff_args(mode, base_branch)])


def get_file_diffs(repo: Path, mode: str = "staged", base_branch: str = "main") -> list[FileDiff]:
    """Return changed files with their hunk-only patches."""
    text = get_diff(repo, mode, base_branch)
    try:
        return file_diffs_from_unified_diff(text)
    except ValueError as exc:
        raise GitError(f"could not parse git diff output: {exc}") from exc


def get_changed_files(repo: Path, mode: str = "staged", base_branch: str = "main") -> list[str]:
    """Return changed paths only, with forward slashes."""
    output = _run_git(repo, ["diff", "--no-color", "--name-only", *diff_args(mode, base_branch)])
    return [line.strip().replace("\\", "/") for line in output.splitlines() if line.strip()]


def _run_git(repo: Path, args: list[str]) -> str:
    try:
        completed = run(
            ["git", *args],
            cwd=repo,
            check=True,
            capture_output=True,
            text=True,
        )
    except CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise GitError(stderr or f"git {' '.join(args)} failed") from exc
    except FileNotFoundError as exc:
        raise GitError("git executable not found") from exc

    return completed.stdout
