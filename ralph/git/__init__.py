"""Git plumbing used by the init phase and dry run.

All of it is read-only and best-effort: a missing git binary or a
directory outside any repository yields False/None/empty results. The
loop itself never depends on git.
"""

from ralph.git.status import get_changed_files
from ralph.git.branch import (
    is_git_repo,
    get_current_branch,
    get_log_oneline,
)

__all__ = [
    "get_changed_files",
    "is_git_repo",
    "get_current_branch",
    "get_log_oneline",
]
