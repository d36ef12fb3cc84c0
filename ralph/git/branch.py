"""Branch and history queries."""

from pathlib import Path

from ralph.git.runner import git_output


def is_git_repo(path: Path) -> bool:
    out = git_output(["rev-parse", "--is-inside-work-tree"], path)
    return out is not None and out.strip() == "true"


def get_current_branch(worktree: Path) -> str | None:
    """Current branch name, or None if detached HEAD or not a repo."""
    out = git_output(["branch", "--show-current"], worktree)
    return (out or "").strip() or None


def get_log_oneline(worktree: Path, count: int = 5) -> list[str]:
    """Most recent commits as one-line summaries, newest first."""
    out = git_output(["log", "--oneline", f"-{count}"], worktree, timeout=10)
    return [line for line in (out or "").splitlines() if line.strip()]
