"""Shared constants for the ralph loop."""

import re

# Feature statuses, as spelled in the PRD
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETE = "complete"
STATUS_BLOCKED = "blocked"

STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETE, STATUS_BLOCKED)
CATEGORIES = ("functional", "bugfix", "refactor", "test", "docs")

# Statuses a feature may reach from each status within one iteration.
# pending -> complete is the composition pending -> in-progress -> complete.
ALLOWED_STATUS_CHANGES = {
    STATUS_PENDING: {STATUS_IN_PROGRESS, STATUS_COMPLETE, STATUS_BLOCKED},
    STATUS_IN_PROGRESS: {STATUS_COMPLETE, STATUS_BLOCKED},
    STATUS_COMPLETE: set(),
    STATUS_BLOCKED: set(),
}

# Exit codes, one per terminal state
EXIT_SUCCESS = 0
EXIT_MAX_FAILURES = 1
EXIT_CONFIG_ERROR = 2
EXIT_LOCKED = 3
EXIT_STUCK_LOOP = 4
EXIT_STOPPED = 5
EXIT_VERIFICATION_FAILED = 6
EXIT_BLOCKED = 8
EXIT_CANCELLED = 130

# Defaults
DEFAULT_PRD_PATH = "prd.jsonc"
DEFAULT_PROMPT_PATH = "prompt.md"
DEFAULT_PROFILE_NAME = "ralph.env"
DEFAULT_COMPLETION_MARKER = "<promise>COMPLETE</promise>"
STATE_DIR_NAME = ".ralph"
PROGRESS_FILE_NAME = "progress.txt"
ITERATION_LOG_NAME = "iterations.jsonl"

# Rate-limit markers, matched case-insensitively against the output tail
RATE_LIMIT_MARKERS = ("rate limit", "too many requests")
RATE_LIMIT_TAIL_CHARS = 1000

# Feature ids: anything printable without surrounding whitespace
FEATURE_ID_PATTERN = re.compile(r'^\S(.*\S)?$')
