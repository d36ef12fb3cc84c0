"""
Error taxonomy for the ralph loop.

Ordinary failures (validation, timeout, process) are retried up to the
failure limit. RateLimitError is transient. StuckLoopError and
MaxFailuresExceeded end the run.
"""


class RalphError(Exception):
    """Base class for ralph errors."""


class ConfigError(RalphError):
    """Malformed PRD, profile or arguments. Fatal at init."""


class ValidationError(RalphError):
    """The agent changed fields it is not allowed to change."""

    def __init__(self, paths: list[str], feature_id: str | None = None):
        self.paths = sorted(paths)
        self.feature_id = feature_id
        super().__init__(
            "Invalid PRD modification: only the attempted feature's status may change. "
            f"Offending fields: {', '.join(self.paths)}"
        )


class AgentTimeoutError(RalphError):
    """The agent process exceeded its deadline and was killed."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Agent exceeded the {timeout:g}s deadline and was killed")


class AgentProcessError(RalphError):
    """The agent exited nonzero without a rate-limit marker, or failed to start."""

    def __init__(self, exit_code: int, message: str = ""):
        self.exit_code = exit_code
        super().__init__(message or f"Agent exited with code {exit_code}")


class RateLimitError(RalphError):
    """The agent reported a rate limit. Transient."""


class StuckLoopError(RalphError):
    """The same non-progressing iteration repeated too many times."""

    def __init__(self, signature, count: int):
        self.signature = signature
        self.count = count
        super().__init__(
            f"Stuck loop: feature '{signature.feature_id}' produced the same "
            f"result ({signature.result}) {count} times in a row"
        )


class MaxFailuresExceeded(RalphError):
    """Too many consecutive ordinary failures."""

    def __init__(self, failures: int, last_error: Exception | None = None):
        self.failures = failures
        self.last_error = last_error
        message = f"Too many consecutive failures ({failures})"
        if last_error:
            message += f"; last: {last_error}"
        super().__init__(message)


class VerificationFailed(RalphError):
    """One or more verification commands failed."""

    def __init__(self, failures: str):
        self.failures = failures
        super().__init__(f"Verification failed: {failures}")
