"""
Claude agent integration for ralph.

Claude does the actual feature work. Each iteration spawns one `claude`
process with the prompt on stdin, streams its merged output to a log file
(and optionally the terminal), and races it against a wall-clock deadline
and the run's cancel token. The process group is always terminated and
reaped before invoke() returns.
"""

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ralph.lib.constants import RATE_LIMIT_MARKERS, RATE_LIMIT_TAIL_CHARS
from ralph.lib.errors import AgentProcessError, AgentTimeoutError, RalphError, RateLimitError
from ralph.runner.cancel import CancelToken

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    PROCESS_ERROR = "process_error"
    CANCELLED = "cancelled"


@dataclass
class AgentOutcome:
    kind: OutcomeKind
    exit_code: Optional[int]
    output: str
    duration: float
    marker_seen: bool = False
    error: Optional[RalphError] = None
    log_file: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS


def detect_rate_limit(output: str) -> bool:
    """Look for a rate-limit marker in the tail of the agent's output."""
    tail = output[-RATE_LIMIT_TAIL_CHARS:].lower()
    return any(marker in tail for marker in RATE_LIMIT_MARKERS)


class ClaudeAgent:
    POLL_INTERVAL = 0.2
    TERMINATE_GRACE = 5.0

    def __init__(
        self,
        cwd: Path,
        permission_mode: str = "acceptEdits",
        skip_permissions: bool = False,
        continue_session: bool = False,
        executable: Optional[list[str]] = None,
        echo: bool = False,
    ):
        self.cwd = Path(cwd)
        self.permission_mode = permission_mode
        self.skip_permissions = skip_permissions
        self.continue_session = continue_session
        self.executable = executable or ["claude"]
        self.echo = echo

    def build_command(self) -> list[str]:
        cmd = [*self.executable, "--permission-mode", self.permission_mode]
        if self.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        cmd.append("--continue" if self.continue_session else "--print")
        return cmd

    def invoke(
        self,
        prompt: str,
        timeout: float,
        cancel: Optional[CancelToken] = None,
        log_file: Optional[Path] = None,
        completion_marker: Optional[str] = None,
    ) -> AgentOutcome:
        """
        Run one agent session.

        Uses: echo "<prompt>" | claude --permission-mode <mode> --print
        Passes prompt via stdin to avoid CLI argument length limits.

        Never raises for agent failures: the classification is carried on
        the returned outcome (kind + error).
        """
        cmd = self.build_command()
        start = time.monotonic()
        deadline = start + timeout

        log_fh = None
        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_fh = open(log_file, "w", encoding="utf-8")
            log_fh.write(f"=== COMMAND ===\n{' '.join(cmd)}\n\n=== OUTPUT ===\n")
            log_fh.flush()

        try:
            try:
                proc = subprocess.Popen(
                    cmd,
                    cwd=str(self.cwd),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    start_new_session=True,
                )
            except OSError as e:
                error = AgentProcessError(-1, f"Failed to start {cmd[0]}: {e}")
                logger.error(str(error))
                if log_fh:
                    log_fh.write(f"{error}\n")
                return AgentOutcome(
                    kind=OutcomeKind.PROCESS_ERROR,
                    exit_code=None,
                    output="",
                    duration=time.monotonic() - start,
                    error=error,
                    log_file=log_file,
                )

            chunks: list[str] = []
            reader = threading.Thread(target=self._pump, args=(proc.stdout, chunks, log_fh), daemon=True)
            writer = threading.Thread(target=self._feed, args=(proc.stdin, prompt), daemon=True)
            interrupted: Optional[OutcomeKind] = None

            try:
                reader.start()
                writer.start()
                while True:
                    try:
                        proc.wait(timeout=self.POLL_INTERVAL)
                        break
                    except subprocess.TimeoutExpired:
                        pass
                    if cancel is not None and cancel.cancelled:
                        interrupted = OutcomeKind.CANCELLED
                        break
                    if time.monotonic() >= deadline:
                        interrupted = OutcomeKind.TIMEOUT
                        break
            finally:
                # The leader may be gone while children it spawned still hold the pipe
                self._stop(proc)
                writer.join(timeout=self.TERMINATE_GRACE)
                reader.join(timeout=self.TERMINATE_GRACE)
                if reader.is_alive():
                    logger.warning("Agent output pipe still open after the process group was stopped")

            output = "".join(chunks)
            exit_code = proc.returncode
            if log_fh:
                log_fh.write(f"\n=== EXIT CODE ===\n{exit_code}\n")
        finally:
            if log_fh:
                log_fh.close()

        outcome = AgentOutcome(
            kind=OutcomeKind.SUCCESS,
            exit_code=exit_code,
            output=output,
            duration=time.monotonic() - start,
            marker_seen=bool(completion_marker) and completion_marker in output,
            log_file=log_file,
        )

        if interrupted == OutcomeKind.CANCELLED:
            outcome.kind = OutcomeKind.CANCELLED
        elif interrupted == OutcomeKind.TIMEOUT:
            outcome.kind = OutcomeKind.TIMEOUT
            outcome.error = AgentTimeoutError(timeout)
        elif exit_code != 0:
            if detect_rate_limit(output):
                outcome.kind = OutcomeKind.RATE_LIMITED
                outcome.error = RateLimitError(f"Agent hit a rate limit (exit code {exit_code})")
            else:
                outcome.kind = OutcomeKind.PROCESS_ERROR
                outcome.error = AgentProcessError(exit_code)

        logger.debug(f"Agent finished: {outcome.kind.value} (exit {exit_code}) in {outcome.duration:.1f}s")
        return outcome

    def _pump(self, stream, chunks: list[str], log_fh) -> None:
        for line in stream:
            chunks.append(line)
            if log_fh and not log_fh.closed:
                log_fh.write(line)
                log_fh.flush()
            if self.echo:
                sys.stdout.write(line)
                sys.stdout.flush()
        stream.close()

    @staticmethod
    def _feed(stdin, prompt: str) -> None:
        try:
            stdin.write(prompt)
            stdin.close()
        except (BrokenPipeError, ValueError):
            # Agent exited (or was killed) before reading all of stdin
            logger.debug("Agent closed stdin before the prompt was fully written")

    def _stop(self, proc: subprocess.Popen) -> None:
        """SIGTERM the agent's process group, then SIGKILL whatever is left after a grace period."""
        for sig in (signal.SIGTERM, signal.SIGKILL):
            try:
                os.killpg(proc.pid, sig)
            except ProcessLookupError:
                break
            if self._wait_for_group(proc):
                break
            logger.warning(f"Agent process group still running after {sig.name}")
        if proc.poll() is None:
            proc.wait()

    def _wait_for_group(self, proc: subprocess.Popen) -> bool:
        """Reap the leader and poll until no process is left in its group. False on grace timeout."""
        deadline = time.monotonic() + self.TERMINATE_GRACE
        while True:
            proc.poll()
            try:
                os.killpg(proc.pid, 0)
            except ProcessLookupError:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)
