"""
Structural diff of two PRD snapshots.

The diff runs over the typed document tree, not the text, so comment or
whitespace reformatting by the agent is never reported. Features are
matched by id; a changed position among surviving ids is reported once as
"features".

Path forms:
    project.name
    verification.runAfterEachFeature
    verification.commands[0].command
    verification.commands[2]            (command added or removed)
    features[auth-login].status
    features[auth-login]                (feature added or removed)
    features                            (feature order changed)
    completion.marker
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ralph.lib.constants import ALLOWED_STATUS_CHANGES
from ralph.lib.document import RequirementsDocument
from ralph.lib.errors import ValidationError

logger = logging.getLogger(__name__)

_PROJECT_FIELDS = (("name", "name"), ("description", "description"), ("repository", "repository"))
_COMMAND_FIELDS = (("name", "name"), ("command", "command"), ("description", "description"))
_FEATURE_FIELDS = (
    ("category", "category"),
    ("description", "description"),
    ("steps", "steps"),
    ("status", "status"),
    ("notes", "notes"),
)
_COMPLETION_FIELDS = (
    ("all_features_complete", "allFeaturesComplete"),
    ("all_verifications_passing", "allVerificationsPassing"),
    ("marker", "marker"),
)


@dataclass(frozen=True)
class ChangeSet:
    """Accepted changes of one iteration."""
    feature_id: str
    paths: tuple[str, ...]
    old_status: Optional[str] = None
    new_status: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return not self.paths


def _diff_fields(prefix: str, before, after, fields) -> list[str]:
    return [
        f"{prefix}.{wire}"
        for attr, wire in fields
        if getattr(before, attr) != getattr(after, attr)
    ]


def diff_documents(before: RequirementsDocument, after: RequirementsDocument) -> list[str]:
    """Every field path that differs between two documents, sorted."""
    paths = []

    paths += _diff_fields("project", before.project, after.project, _PROJECT_FIELDS)

    if before.verification.run_after_each_feature != after.verification.run_after_each_feature:
        paths.append("verification.runAfterEachFeature")
    old_cmds, new_cmds = before.verification.commands, after.verification.commands
    for i in range(max(len(old_cmds), len(new_cmds))):
        if i >= len(old_cmds) or i >= len(new_cmds):
            paths.append(f"verification.commands[{i}]")
        else:
            paths += _diff_fields(f"verification.commands[{i}]", old_cmds[i], new_cmds[i], _COMMAND_FIELDS)

    old_by_id = {f.id: f for f in before.features}
    new_by_id = {f.id: f for f in after.features}
    for fid in old_by_id.keys() | new_by_id.keys():
        if fid not in old_by_id or fid not in new_by_id:
            paths.append(f"features[{fid}]")
        else:
            paths += _diff_fields(f"features[{fid}]", old_by_id[fid], new_by_id[fid], _FEATURE_FIELDS)

    old_order = [f.id for f in before.features if f.id in new_by_id]
    new_order = [f.id for f in after.features if f.id in old_by_id]
    if old_order != new_order:
        paths.append("features")

    paths += _diff_fields("completion", before.completion, after.completion, _COMPLETION_FIELDS)

    return sorted(paths)


def validate_change(
    before: RequirementsDocument,
    after: RequirementsDocument,
    feature_id: str,
) -> ChangeSet:
    """
    Accept the post-iteration document only if it differs from the
    pre-iteration one by the attempted feature's status, moved along a
    valid transition.

    Raises:
        ValidationError: carrying exactly the non-permitted differing paths
    """
    paths = diff_documents(before, after)
    status_path = f"features[{feature_id}].status"
    offending = []
    old_status = new_status = None

    for path in paths:
        if path != status_path:
            offending.append(path)
            continue
        old_status = before.feature(feature_id).status
        new_status = after.feature(feature_id).status
        if new_status not in ALLOWED_STATUS_CHANGES[old_status]:
            logger.debug(f"Rejected status change {old_status} -> {new_status} for {feature_id}")
            offending.append(path)

    if offending:
        raise ValidationError(offending, feature_id)

    return ChangeSet(
        feature_id=feature_id,
        paths=tuple(paths),
        old_status=old_status,
        new_status=new_status,
    )
