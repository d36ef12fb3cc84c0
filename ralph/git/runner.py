"""Read-only git queries for the init phase and dry run."""

import logging
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30


def git_output(args: list[str], cwd: Path, timeout: float = GIT_TIMEOUT) -> Optional[str]:
    """stdout of `git -C <cwd> <args>`, or None if git failed, timed out or is not installed."""
    cmd = ["git", "-C", str(cwd), *args]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"git {args[0]} timed out after {timeout:g}s in {cwd}")
        return None
    except FileNotFoundError:
        logger.debug("git executable not found")
        return None

    if result.returncode != 0:
        logger.debug(f"git {args[0]} exited {result.returncode}: {result.stderr.strip()}")
        return None
    return result.stdout
