"""
Run configuration for ralph.

Settings are layered: built-in defaults, then the optional ralph.env
profile next to the PRD, then command-line options. Anything left as
None on the argparse namespace falls through to the profile.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ralph.lib import envparse
from ralph.lib.constants import (
    DEFAULT_PROFILE_NAME,
    ITERATION_LOG_NAME,
    PROGRESS_FILE_NAME,
    STATE_DIR_NAME,
)
from ralph.lib.errors import ConfigError

PERMISSION_MODES = ("acceptEdits", "bypassPermissions", "default", "plan")


@dataclass
class RunConfig:
    """Everything a run needs, resolved from profile and CLI."""
    prd_path: Path
    prompt_path: Optional[Path] = None
    max_iterations: int = 10  # 0 = unlimited
    delay: float = 2.0
    timeout: float = 1800.0
    permission_mode: str = "acceptEdits"
    continue_session: bool = False
    skip_permissions: bool = False
    skip_init: bool = False
    completion_marker: Optional[str] = None  # None = use the PRD's marker
    max_failures: int = 3
    max_feature_errors: int = 0  # 0 = never auto-block
    cooldown: float = 60.0
    max_rate_limit_retries: int = 10  # 0 = unlimited
    stuck_window: int = 3
    resume_in_progress: bool = True
    webhook_url: Optional[str] = None
    summary_size: int = 5
    echo_output: bool = True

    @property
    def project_dir(self) -> Path:
        return self.prd_path.parent

    @property
    def state_dir(self) -> Path:
        return self.project_dir / STATE_DIR_NAME

    @property
    def log_dir(self) -> Path:
        return self.state_dir / "logs"

    @property
    def progress_path(self) -> Path:
        return self.project_dir / PROGRESS_FILE_NAME

    @property
    def iteration_log_path(self) -> Path:
        return self.state_dir / ITERATION_LOG_NAME

    @property
    def lock_path(self) -> Path:
        return self.state_dir / "run.lock"


def _int(value: str, key: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got '{value}'") from None
    if number < 0:
        raise ConfigError(f"{key} must not be negative, got {number}")
    return number


def _float(value: str, key: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got '{value}'") from None
    if number < 0:
        raise ConfigError(f"{key} must not be negative, got {number:g}")
    return number


def _bool(value: str, key: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be true or false, got '{value}'")


def _str(value: str, key: str) -> str:
    return value


# profile key -> (RunConfig field, parser)
PROFILE_KEYS = {
    "MAX_ITERATIONS": ("max_iterations", _int),
    "DELAY": ("delay", _float),
    "AGENT_TIMEOUT": ("timeout", _float),
    "PERMISSION_MODE": ("permission_mode", _str),
    "MAX_CONSECUTIVE_FAILURES": ("max_failures", _int),
    "MAX_FEATURE_ERRORS": ("max_feature_errors", _int),
    "RATE_LIMIT_COOLDOWN": ("cooldown", _float),
    "MAX_RATE_LIMIT_RETRIES": ("max_rate_limit_retries", _int),
    "STUCK_WINDOW": ("stuck_window", _int),
    "RESUME_IN_PROGRESS": ("resume_in_progress", _bool),
    "WEBHOOK_URL": ("webhook_url", _str),
}

# argparse dest -> RunConfig field
ARG_FIELDS = {
    "max_iterations": "max_iterations",
    "delay": "delay",
    "timeout": "timeout",
    "permission_mode": "permission_mode",
    "continue_session": "continue_session",
    "dangerously_skip_permissions": "skip_permissions",
    "skip_init": "skip_init",
    "completion_marker": "completion_marker",
    "max_failures": "max_failures",
    "max_feature_errors": "max_feature_errors",
    "cooldown": "cooldown",
    "max_rate_limit_retries": "max_rate_limit_retries",
    "stuck_window": "stuck_window",
    "webhook": "webhook_url",
}


def load_profile(prd_path: Path) -> dict[str, str]:
    """Read ralph.env next to the PRD, or {} if absent."""
    return envparse.load_env(Path(prd_path).parent / DEFAULT_PROFILE_NAME)


def build_config(args, profile: Optional[dict[str, str]] = None) -> RunConfig:
    """
    Resolve a RunConfig from parsed arguments layered over a profile.

    Raises:
        ConfigError: unknown profile key or invalid value
    """
    config = RunConfig(prd_path=Path(args.prd).resolve())

    for key, value in (profile or {}).items():
        if key not in PROFILE_KEYS:
            raise ConfigError(f"Unknown profile key '{key}' in {DEFAULT_PROFILE_NAME}")
        field_name, parse = PROFILE_KEYS[key]
        setattr(config, field_name, parse(value, key))

    for dest, field_name in ARG_FIELDS.items():
        value = getattr(args, dest, None)
        if value is None or value is False:
            continue
        setattr(config, field_name, value)

    if getattr(args, "prompt", None):
        config.prompt_path = Path(args.prompt).resolve()
    if getattr(args, "reset_in_progress", False):
        config.resume_in_progress = False

    _check(config)
    return config


def _check(config: RunConfig) -> None:
    if config.permission_mode not in PERMISSION_MODES:
        raise ConfigError(
            f"Unknown permission mode '{config.permission_mode}' "
            f"(expected one of: {', '.join(PERMISSION_MODES)})"
        )
    if config.timeout <= 0:
        raise ConfigError("Agent timeout must be positive")
    if config.max_failures < 1:
        raise ConfigError("Failure limit must be at least 1")
    if config.stuck_window < 2:
        raise ConfigError("Stuck window must be at least 2")
    for name in ("max_iterations", "delay", "cooldown", "max_rate_limit_retries", "max_feature_errors"):
        if getattr(config, name) < 0:
            raise ConfigError(f"{name.replace('_', ' ')} must not be negative")
