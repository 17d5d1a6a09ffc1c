"""Reading diffs out of a git repository."""

from __future__ import annotations

from pathlib import Path
from subprocess import CalledProcessError, run

DIFF_ARGS = ("diff", "--no-color", "--no-ext-diff")


class GitError(RuntimeError):
    """Raised when a git invocation fails or git is missing."""


def get_working_tree_diff(repo: Path) -> str:
    """Unstaged changes of ``repo`` as a unified diff."""
    return _run_git(repo, [*DIFF_ARGS])


def get_diff_between(repo: Path, base: str, head: str) -> str:
    return _run_git(repo, [*DIFF_ARGS, f"{base}..{head}"])


def read_git_diff(repo: Path, base: str | None = None, head: str | None = None) -> str:
    """Diff of ``base..head`` when both are given, else of the working tree."""
    if base is not None and head is not None:
        return get_diff_between(repo, base, head)
    return get_working_tree_diff(repo)


def _run_git(repo: Path, args: list[str]) -> str:
    command = ["git", *args]
    try:
        completed = run(command, cwd=repo, check=True, capture_output=True, text=True)
    except CalledProcessError as exc:
        message = (exc.stderr or "").strip()
        raise GitError(message or f"{' '.join(command)} exited with {exc.returncode}") from exc
    except FileNotFoundError as exc:
        raise GitError(f"git executable not found: {exc}") from exc
    return completed.stdout
