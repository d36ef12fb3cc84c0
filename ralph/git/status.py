"""Working tree status."""

from pathlib import Path

from ralph.git.runner import git_output


def get_changed_files(worktree: Path) -> list[str]:
    """Changed paths (staged + unstaged + untracked), [] on git failure.

    Uses -z so names with spaces survive; renames report the new name.
    """
    out = git_output(["status", "--porcelain", "-z"], worktree)
    if not out:
        return []

    files = []
    entries = out.split('\0')
    i = 0
    while i < len(entries):
        entry = entries[i]
        if len(entry) < 4:
            i += 1
            continue
        status, filename = entry[:2], entry[3:]
        files.append(filename)
        # -z prints the rename source as a separate trailing entry
        i += 2 if status[0] in ('R', 'C') else 1

    return files
