"""Run the PRD's verification commands."""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ralph.lib.document import VerifyCommand

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600


@dataclass
class VerifyResult:
    name: str
    command: str
    passed: bool
    exit_code: int | None
    output: str
    duration: float

    @property
    def label(self) -> str:
        if self.passed:
            return "PASS"
        return "FAIL" if self.exit_code is not None else "ERROR"


def run_command(cmd: VerifyCommand, cwd: Path, timeout: float = DEFAULT_TIMEOUT) -> VerifyResult:
    """Run one command through `sh -c`; a timeout or spawn failure counts as failed."""
    start = time.monotonic()
    try:
        result = subprocess.run(
            ["sh", "-c", cmd.command],
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return VerifyResult(cmd.name, cmd.command, False, None,
                            f"Timed out after {timeout:g}s", time.monotonic() - start)
    except OSError as e:
        return VerifyResult(cmd.name, cmd.command, False, None, str(e), time.monotonic() - start)

    passed = result.returncode == 0
    if not passed:
        logger.info(f"Verification '{cmd.name}' failed with exit code {result.returncode}")
    return VerifyResult(
        name=cmd.name,
        command=cmd.command,
        passed=passed,
        exit_code=result.returncode,
        output=result.stdout + result.stderr,
        duration=time.monotonic() - start,
    )


def run_verification(
    commands: Iterable[VerifyCommand],
    cwd: Path,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[VerifyResult]:
    """Run every command in order; a failure does not stop the rest."""
    return [run_command(cmd, cwd, timeout) for cmd in commands]


def all_passed(results: list[VerifyResult]) -> bool:
    return all(r.passed for r in results)


def describe_failures(results: list[VerifyResult]) -> str:
    return ", ".join(f"{r.name} ({r.label})" for r in results if not r.passed)
