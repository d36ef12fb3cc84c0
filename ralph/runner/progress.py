"""
Progress tracking for a run.

Every iteration appends one IterationRecord to .ralph/iterations.jsonl.
Records are validated against the iteration schema before each write and
are never rewritten. The agent-facing progress.txt (free-form notes the
agent appends to) is only created here, never edited.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ralph.lib.constants import STATUS_COMPLETE
from ralph.lib.validate import validate_before_write

logger = logging.getLogger(__name__)

RECORD_VERSION = 1

OUTCOMES = (
    "success",
    "no_op",
    "rate_limited",
    "timeout",
    "process_error",
    "validation_error",
    "verification_failed",
    "cancelled",
    "feature_blocked",
)

PROGRESS_HEADER = "# Ralph Progress Log\n\nAppend-only log of session activity.\n\n---\n\n"


@dataclass(frozen=True)
class IterationRecord:
    run_id: str
    iteration: int
    feature_id: Optional[str]
    outcome: str
    timestamp: str
    changed_paths: tuple[str, ...] = ()
    new_status: Optional[str] = None
    detail: str = ""
    duration_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        data = {"version": RECORD_VERSION, **asdict(self)}
        data["changed_paths"] = list(self.changed_paths)
        for key in ("new_status", "duration_seconds"):
            if data[key] is None:
                del data[key]
        if not data["detail"]:
            del data["detail"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "IterationRecord":
        return cls(
            run_id=data["run_id"],
            iteration=data["iteration"],
            feature_id=data["feature_id"],
            outcome=data["outcome"],
            timestamp=data["timestamp"],
            changed_paths=tuple(data.get("changed_paths", ())),
            new_status=data.get("new_status"),
            detail=data.get("detail", ""),
            duration_seconds=data.get("duration_seconds"),
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class ProgressTracker:
    """Append-only iteration log for one run."""

    def __init__(self, log_path: Path, run_id: str):
        self.log_path = Path(log_path)
        self.run_id = run_id
        self._records: list[IterationRecord] = []

    @property
    def records(self) -> tuple[IterationRecord, ...]:
        return tuple(self._records)

    def record(
        self,
        iteration: int,
        feature_id: Optional[str],
        outcome: str,
        changed_paths=(),
        new_status: Optional[str] = None,
        detail: str = "",
        duration: Optional[float] = None,
    ) -> IterationRecord:
        """Build, persist and return a record for this run."""
        rec = IterationRecord(
            run_id=self.run_id,
            iteration=iteration,
            feature_id=feature_id,
            outcome=outcome,
            timestamp=_now(),
            changed_paths=tuple(sorted(changed_paths)),
            new_status=new_status,
            detail=detail,
            duration_seconds=round(duration, 3) if duration is not None else None,
        )
        self.append(rec)
        return rec

    def append(self, rec: IterationRecord) -> None:
        data = rec.to_dict()
        validate_before_write(data, "iteration", self.log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "a") as f:
            f.write(json.dumps(data) + "\n")
            f.flush()
        self._records.append(rec)
        logger.debug(f"[PROGRESS] #{rec.iteration} {rec.feature_id} {rec.outcome}")

    def completed_features(self) -> list[str]:
        """Features this run moved to complete, in order."""
        return [
            r.feature_id for r in self._records
            if r.new_status == STATUS_COMPLETE and r.feature_id is not None
        ]

    def last(self, n: int) -> list[IterationRecord]:
        return self._records[-n:] if n > 0 else []

    def summary(self, n: int = 5) -> str:
        """Human-readable summary of the last n records."""
        recent = self.last(n)
        if not recent:
            return "No iterations recorded."
        lines = [f"Last {len(recent)} of {len(self._records)} iteration(s):"]
        for r in recent:
            line = f"  #{r.iteration:<3} {r.feature_id or '-':<24} {r.outcome}"
            if r.new_status:
                line += f" -> {r.new_status}"
            if r.detail:
                line += f"  ({_truncate(r.detail, 100)})"
            lines.append(line)
        return "\n".join(lines)


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit - 3] + "..."


def load_records(log_path: Path) -> list[IterationRecord]:
    """Load all records from an iteration log. Skips corrupted lines."""
    log_path = Path(log_path)
    if not log_path.exists():
        return []

    records = []
    for line_num, line in enumerate(log_path.read_text().splitlines(), 1):
        if not line.strip():
            continue
        try:
            records.append(IterationRecord.from_dict(json.loads(line)))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"Skipping corrupted record line {line_num} in {log_path}: {e}")
    return records


def ensure_progress_file(path: Path) -> bool:
    """Create progress.txt with its header if missing. Returns True if created."""
    path = Path(path)
    if path.exists():
        return False
    path.write_text(PROGRESS_HEADER)
    logger.info(f"Created progress file {path}")
    return True
