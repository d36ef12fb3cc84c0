"""Shared fixtures: PRD builders and on-disk PRD files."""

import json

import pytest


def _feature(fid, status="pending", **extra):
    feature = {
        "id": fid,
        "category": "functional",
        "description": f"Implement {fid}",
        "steps": [f"Write {fid}", "Run tests"],
        "status": status,
    }
    feature.update(extra)
    return feature


def _prd(features=None, commands=None, run_after_each=False, all_verifications=False):
    if features is None:
        features = [_feature("a"), _feature("b")]
    if commands is None:
        commands = [{"name": "test", "command": "true", "description": "Test suite"}]
    return {
        "project": {"name": "demo", "description": "Demo project"},
        "verification": {"commands": commands, "runAfterEachFeature": run_after_each},
        "features": features,
        "completion": {
            "allFeaturesComplete": True,
            "allVerificationsPassing": all_verifications,
            "marker": "<promise>COMPLETE</promise>",
        },
    }


@pytest.fixture
def feature():
    """Build one feature dict: feature("a", status="complete")."""
    return _feature


@pytest.fixture
def make_prd():
    """Build a PRD dict; defaults to features a, b (pending) and one passing command."""
    return _prd


@pytest.fixture
def write_prd(tmp_path):
    """Write a PRD dict as commented JSONC and return its path."""
    def _write(data, name="prd.jsonc"):
        path = tmp_path / name
        path.write_text("// demo PRD\n" + json.dumps(data, indent=2) + "\n")
        return path
    return _write


@pytest.fixture
def prd_file(write_prd, make_prd):
    return write_prd(make_prd())
