"""
Per-PRD run lock.

Two controllers writing the same PRD would break the single-writer
discipline, so each run holds an exclusive flock on .ralph/run.lock.
The lock file is never deleted: deleting it would let two processes hold
"exclusive" locks on different inodes with the same path.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from ralph.lib.errors import RalphError


class LockTimeout(RalphError):
    """Lock acquisition timed out."""
    pass


@contextmanager
def run_lock(lock_file: Path, timeout: float = 0):
    """
    Hold an exclusive lock on lock_file for the duration of the block.

    Args:
        lock_file: Path to the lock file (parent dirs are created)
        timeout: Seconds to keep retrying; 0 fails immediately

    Raises:
        LockTimeout: if another process holds the lock
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'a+')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start >= timeout:
                fd.close()
                raise LockTimeout(
                    f"Another ralph run holds {lock_file}; wait for it to finish"
                ) from None
            time.sleep(0.5)

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()
