"""
Document store for the PRD (requirements document).

The PRD is a JSONC file (comments and trailing commas allowed). It is
parsed with json5, checked against schemas/prd.schema.json, and exposed as
frozen dataclasses so no caller can mutate a snapshot out of band.

Writes are atomic: a temp file in the same directory is fsynced and then
os.replace()d over the target, so a crash mid-write never leaves a torn PRD.
"""

import json
import logging
import os
import stat
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

import json5

from ralph.lib.constants import (
    STATUS_BLOCKED,
    STATUS_COMPLETE,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUSES,
)
from ralph.lib.errors import ConfigError
from ralph.lib.validate import validate

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "templates" / "prd.jsonc"


@dataclass(frozen=True)
class Project:
    name: str
    description: str
    repository: Optional[str] = None


@dataclass(frozen=True)
class VerifyCommand:
    name: str
    command: str
    description: Optional[str] = None


@dataclass(frozen=True)
class Verification:
    commands: tuple[VerifyCommand, ...]
    run_after_each_feature: bool


@dataclass(frozen=True)
class Feature:
    id: str
    category: str
    description: str
    steps: tuple[str, ...]
    status: str
    notes: Optional[str] = None

    @property
    def is_selectable(self) -> bool:
        """Pending features are started, in-progress ones resumed."""
        return self.status in (STATUS_PENDING, STATUS_IN_PROGRESS)


@dataclass(frozen=True)
class Completion:
    all_features_complete: bool
    all_verifications_passing: bool
    marker: str


@dataclass(frozen=True)
class StatusCounts:
    pending: int = 0
    in_progress: int = 0
    complete: int = 0
    blocked: int = 0

    def describe(self) -> str:
        return (f"{self.complete} complete, {self.in_progress} in-progress, "
                f"{self.pending} pending, {self.blocked} blocked")


@dataclass(frozen=True)
class RequirementsDocument:
    project: Project
    verification: Verification
    features: tuple[Feature, ...]
    completion: Completion

    @classmethod
    def from_dict(cls, data: dict) -> "RequirementsDocument":
        """Build a document from schema-valid parsed data."""
        project = data["project"]
        verification = data["verification"]
        completion = data["completion"]
        return cls(
            project=Project(
                name=project["name"],
                description=project["description"],
                repository=project.get("repository"),
            ),
            verification=Verification(
                commands=tuple(
                    VerifyCommand(
                        name=c["name"],
                        command=c["command"],
                        description=c.get("description"),
                    )
                    for c in verification["commands"]
                ),
                run_after_each_feature=verification["runAfterEachFeature"],
            ),
            features=tuple(
                Feature(
                    id=f["id"],
                    category=f["category"],
                    description=f["description"],
                    steps=tuple(f["steps"]),
                    status=f["status"],
                    notes=f.get("notes"),
                )
                for f in data["features"]
            ),
            completion=Completion(
                all_features_complete=completion["allFeaturesComplete"],
                all_verifications_passing=completion["allVerificationsPassing"],
                marker=completion["marker"],
            ),
        )

    def to_dict(self) -> dict:
        """Serialise back to the PRD wire shape. Optional fields are omitted when unset."""
        project = {"name": self.project.name, "description": self.project.description}
        if self.project.repository is not None:
            project["repository"] = self.project.repository

        commands = []
        for c in self.verification.commands:
            entry = {"name": c.name, "command": c.command}
            if c.description is not None:
                entry["description"] = c.description
            commands.append(entry)

        features = []
        for f in self.features:
            entry = {
                "id": f.id,
                "category": f.category,
                "description": f.description,
                "steps": list(f.steps),
                "status": f.status,
            }
            if f.notes is not None:
                entry["notes"] = f.notes
            features.append(entry)

        return {
            "project": project,
            "verification": {
                "commands": commands,
                "runAfterEachFeature": self.verification.run_after_each_feature,
            },
            "features": features,
            "completion": {
                "allFeaturesComplete": self.completion.all_features_complete,
                "allVerificationsPassing": self.completion.all_verifications_passing,
                "marker": self.completion.marker,
            },
        }

    def feature(self, feature_id: str) -> Optional[Feature]:
        for f in self.features:
            if f.id == feature_id:
                return f
        return None

    def next_feature(self) -> Optional[Feature]:
        """First feature in document order that is pending or in-progress."""
        for f in self.features:
            if f.is_selectable:
                return f
        return None

    @property
    def all_complete(self) -> bool:
        return bool(self.features) and all(f.status == STATUS_COMPLETE for f in self.features)

    def status_counts(self) -> StatusCounts:
        counts = {status: 0 for status in STATUSES}
        for f in self.features:
            counts[f.status] += 1
        return StatusCounts(
            pending=counts[STATUS_PENDING],
            in_progress=counts[STATUS_IN_PROGRESS],
            complete=counts[STATUS_COMPLETE],
            blocked=counts[STATUS_BLOCKED],
        )

    def with_status(self, feature_id: str, status: str) -> "RequirementsDocument":
        """Return a copy with one feature's status replaced."""
        if status not in STATUSES:
            raise ValueError(f"Unknown status '{status}'")
        if self.feature(feature_id) is None:
            raise KeyError(feature_id)
        features = tuple(
            replace(f, status=status) if f.id == feature_id else f
            for f in self.features
        )
        return replace(self, features=features)


@dataclass(frozen=True)
class Snapshot:
    """A parsed document together with the exact bytes it was parsed from."""
    document: RequirementsDocument
    raw: str


def parse_document(text: str, source: str = "<string>") -> RequirementsDocument:
    """
    Parse PRD text into a RequirementsDocument.

    Raises:
        ConfigError: malformed JSONC, schema violation or duplicate feature ids
    """
    try:
        data = json5.loads(text)
    except ValueError as e:
        raise ConfigError(f"Failed to parse PRD file {source}: {e}") from e

    validate(data, "prd")

    seen = set()
    for f in data["features"]:
        if f["id"] in seen:
            raise ConfigError(f"Duplicate feature id '{f['id']}' in {source}")
        seen.add(f["id"])

    return RequirementsDocument.from_dict(data)


def serialize_document(doc: RequirementsDocument) -> str:
    return json.dumps(doc.to_dict(), indent=2, ensure_ascii=False) + "\n"


def atomic_write(path: Path, text: str) -> None:
    """Write text to path via temp file + os.replace. The old content survives any crash."""
    path = Path(path)
    mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else 0o644
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class DocumentStore:
    """Single authoritative on-disk copy of the PRD."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read_raw(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ConfigError(f"PRD file not found: {self.path}") from None
        except OSError as e:
            raise ConfigError(f"Failed to read PRD file {self.path}: {e}") from e

    def load(self) -> RequirementsDocument:
        return self.snapshot().document

    def snapshot(self) -> Snapshot:
        raw = self.read_raw()
        return Snapshot(document=parse_document(raw, str(self.path)), raw=raw)

    def save(self, doc: RequirementsDocument) -> None:
        """Persist a document as canonical JSON (comments are not preserved)."""
        atomic_write(self.path, serialize_document(doc))
        logger.debug(f"Saved PRD to {self.path}")

    def restore(self, snapshot: Snapshot) -> None:
        """Put back the exact bytes of an earlier snapshot."""
        atomic_write(self.path, snapshot.raw)
        logger.info(f"Restored pre-iteration PRD at {self.path}")

    def commit(self, snapshot: Snapshot) -> None:
        """Persist a validated snapshot as the new authoritative copy."""
        atomic_write(self.path, snapshot.raw)

    def set_status(self, feature_id: str, status: str) -> RequirementsDocument:
        """Change one feature's status on disk, keeping the file's formatting where possible."""
        current = self.snapshot()
        updated = current.document.with_status(feature_id, status)
        text = _replace_status_in_text(current.raw, feature_id, status)
        if text is not None and _parses_to(text, updated):
            atomic_write(self.path, text)
        else:
            self.save(updated)
        return updated


def _replace_status_in_text(raw: str, feature_id: str, status: str) -> Optional[str]:
    """Rewrite the status value of one feature in place, or None if it can't be located."""
    id_marker = json.dumps(feature_id)
    lines = raw.splitlines(keepends=True)
    in_feature = False
    for i, line in enumerate(lines):
        if '"id"' in line and id_marker in line:
            in_feature = True
        if in_feature and '"status"' in line:
            for old in STATUSES:
                token = json.dumps(old)
                if token in line.split('"status"', 1)[1]:
                    head, tail = line.split('"status"', 1)
                    lines[i] = head + '"status"' + tail.replace(token, json.dumps(status), 1)
                    return "".join(lines)
            return None
    return None


def _parses_to(text: str, expected: RequirementsDocument) -> bool:
    try:
        return parse_document(text) == expected
    except ConfigError:
        return False


def write_template(path: Path) -> None:
    """Create a commented PRD template. Refuses to overwrite."""
    path = Path(path)
    if path.exists():
        raise ConfigError(f"Refusing to overwrite existing file: {path}")
    path.write_text(TEMPLATE_PATH.read_text())
