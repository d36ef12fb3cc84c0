"""Tests for ralph.lib.diff module."""

import copy

import pytest

from ralph.lib.diff import diff_documents, validate_change
from ralph.lib.document import RequirementsDocument
from ralph.lib.errors import ValidationError


@pytest.fixture
def base(make_prd):
    return make_prd()


def doc(data) -> RequirementsDocument:
    return RequirementsDocument.from_dict(data)


def mutated(data, fn):
    new = copy.deepcopy(data)
    fn(new)
    return new


class TestDiffDocuments:
    """Tests for structural diff paths."""

    def test_identical_documents(self, base):
        assert diff_documents(doc(base), doc(base)) == []

    @pytest.mark.parametrize("mutate,expected", [
        (lambda d: d["project"].update(name="other"), ["project.name"]),
        (lambda d: d["project"].update(repository="x"), ["project.repository"]),
        (lambda d: d["verification"].update(runAfterEachFeature=True), ["verification.runAfterEachFeature"]),
        (lambda d: d["verification"]["commands"][0].update(command="make test"),
         ["verification.commands[0].command"]),
        (lambda d: d["verification"]["commands"].append({"name": "lint", "command": "ruff"}),
         ["verification.commands[1]"]),
        (lambda d: d["features"][1].update(description="changed"), ["features[b].description"]),
        (lambda d: d["features"][0]["steps"].append("extra"), ["features[a].steps"]),
        (lambda d: d["features"][0].update(category="docs"), ["features[a].category"]),
        (lambda d: d["features"][0].update(notes="new note"), ["features[a].notes"]),
        (lambda d: d["features"].pop(), ["features[b]"]),
        (lambda d: d["completion"].update(marker="DONE"), ["completion.marker"]),
        (lambda d: d["completion"].update(allVerificationsPassing=True), ["completion.allVerificationsPassing"]),
    ])
    def test_reports_changed_path(self, base, mutate, expected):
        assert diff_documents(doc(base), doc(mutated(base, mutate))) == expected

    def test_added_feature(self, base, feature):
        after = mutated(base, lambda d: d["features"].append(feature("c")))
        assert diff_documents(doc(base), doc(after)) == ["features[c]"]

    def test_reordered_features(self, base):
        after = mutated(base, lambda d: d["features"].reverse())
        assert diff_documents(doc(base), doc(after)) == ["features"]

    def test_renamed_feature_is_remove_plus_add(self, base):
        after = mutated(base, lambda d: d["features"][0].update(id="a2"))
        assert diff_documents(doc(base), doc(after)) == ["features[a2]", "features[a]"]

    def test_multiple_changes_sorted(self, base):
        def fn(d):
            d["features"][0]["status"] = "complete"
            d["features"][1]["description"] = "x"
            d["project"]["name"] = "y"
        paths = diff_documents(doc(base), doc(mutated(base, fn)))
        assert paths == sorted(["features[a].status", "features[b].description", "project.name"])


class TestValidateChange:
    """Tests for the status-only change policy."""

    def test_status_change_accepted(self, base):
        after = mutated(base, lambda d: d["features"][0].update(status="complete"))
        change = validate_change(doc(base), doc(after), "a")
        assert change.paths == ("features[a].status",)
        assert (change.old_status, change.new_status) == ("pending", "complete")
        assert not change.is_noop

    @pytest.mark.parametrize("old,new", [
        ("pending", "in-progress"),
        ("pending", "complete"),
        ("pending", "blocked"),
        ("in-progress", "complete"),
        ("in-progress", "blocked"),
    ])
    def test_valid_transitions(self, make_prd, feature, old, new):
        before = make_prd(features=[feature("a", status=old)])
        after = make_prd(features=[feature("a", status=new)])
        assert validate_change(doc(before), doc(after), "a").new_status == new

    @pytest.mark.parametrize("old,new", [
        ("in-progress", "pending"),
        ("complete", "pending"),
        ("complete", "in-progress"),
        ("blocked", "pending"),
        ("blocked", "complete"),
    ])
    def test_invalid_transitions(self, make_prd, feature, old, new):
        before = make_prd(features=[feature("a", status=old)])
        after = make_prd(features=[feature("a", status=new)])
        with pytest.raises(ValidationError) as exc:
            validate_change(doc(before), doc(after), "a")
        assert exc.value.paths == ["features[a].status"]

    def test_no_change_is_noop(self, base):
        change = validate_change(doc(base), doc(base), "a")
        assert change.is_noop
        assert change.new_status is None

    def test_other_feature_description_rejected(self, base):
        def fn(d):
            d["features"][0]["status"] = "complete"
            d["features"][1]["description"] = "sneaky"
        with pytest.raises(ValidationError) as exc:
            validate_change(doc(base), doc(mutated(base, fn)), "a")
        assert exc.value.paths == ["features[b].description"]
        assert exc.value.feature_id == "a"
        assert "features[b].description" in str(exc.value)

    def test_status_of_other_feature_rejected(self, base):
        after = mutated(base, lambda d: d["features"][1].update(status="complete"))
        with pytest.raises(ValidationError) as exc:
            validate_change(doc(base), doc(after), "a")
        assert exc.value.paths == ["features[b].status"]

    def test_offending_paths_match_actual_differences(self, base, feature):
        def fn(d):
            d["features"][0]["status"] = "in-progress"
            d["features"][0]["steps"] = ["rewritten"]
            d["verification"]["commands"][0]["command"] = "exit 0"
            d["features"].append(feature("c"))
        after = doc(mutated(base, fn))
        with pytest.raises(ValidationError) as exc:
            validate_change(doc(base), after, "a")

        actual = set(diff_documents(doc(base), after)) - {"features[a].status"}
        assert set(exc.value.paths) == actual
        assert actual == {"features[a].steps", "verification.commands[0].command", "features[c]"}
