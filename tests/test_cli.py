"""Tests for the ralph command line."""

from ralph.agents.claude import AgentOutcome, OutcomeKind
from ralph.cli import main
from ralph.lib.document import DocumentStore
from ralph.runner.locking import run_lock


class CompletingAgent:
    """Marks whichever feature is next as complete."""

    def __init__(self, prd_path):
        self.store = DocumentStore(prd_path)

    def invoke(self, prompt, timeout, cancel=None, log_file=None, completion_marker=None):
        feature = self.store.load().next_feature()
        self.store.set_status(feature.id, "complete")
        return AgentOutcome(OutcomeKind.SUCCESS, 0, "", 0.1)


class TestInitCommands:
    def test_init_writes_template(self, tmp_path, capsys):
        path = tmp_path / "prd.jsonc"
        assert main(["--init", "--prd", str(path)]) == 0
        assert DocumentStore(path).load().features
        assert "Created PRD template" in capsys.readouterr().out

    def test_init_refuses_overwrite(self, prd_file, capsys):
        original = prd_file.read_text()
        assert main(["--init", "--prd", str(prd_file)]) == 2
        assert prd_file.read_text() == original
        assert "Refusing to overwrite" in capsys.readouterr().out

    def test_init_prompt(self, tmp_path):
        path = tmp_path / "my-prompt.md"
        assert main(["--init-prompt", "--prompt", str(path)]) == 0
        assert "{feature_id}" in path.read_text()


class TestRunCommand:
    def test_missing_prd(self, tmp_path, capsys):
        assert main(["--prd", str(tmp_path / "nope.jsonc")]) == 2
        out = capsys.readouterr().out
        assert "PRD file not found" in out
        assert "ralph --init" in out

    def test_bad_profile(self, prd_file, capsys):
        (prd_file.parent / "ralph.env").write_text("STUCK_WINDOW=1\n")
        assert main(["--prd", str(prd_file)]) == 2
        assert "Stuck window" in capsys.readouterr().out

    def test_invalid_prd(self, tmp_path):
        path = tmp_path / "prd.jsonc"
        path.write_text('{"project": {}}')
        assert main(["--prd", str(path), "--skip-init"]) == 2

    def test_lock_held(self, prd_file, capsys):
        with run_lock(prd_file.parent / ".ralph" / "run.lock"):
            assert main(["--prd", str(prd_file), "--skip-init"]) == 3
        assert "Another ralph run" in capsys.readouterr().out

    def test_everything_complete(self, write_prd, make_prd, feature, capsys):
        path = write_prd(make_prd(features=[feature("a", status="complete")]))
        assert main(["--prd", str(path)]) == 0
        out = capsys.readouterr().out
        assert "Initialization" in out
        assert "All 1 features complete" in out

    def test_run_with_fake_agent(self, prd_file, monkeypatch):
        monkeypatch.setattr("ralph.commands.run.make_agent", lambda config: CompletingAgent(config.prd_path))
        assert main(["--prd", str(prd_file), "--skip-init", "--delay", "0"]) == 0
        assert {f.status for f in DocumentStore(prd_file).load().features} == {"complete"}


class TestDryRun:
    def test_passing_commands(self, prd_file, capsys):
        assert main(["--dry-run", "--prd", str(prd_file)]) == 0
        out = capsys.readouterr().out
        assert "Next feature: a" in out
        assert "test: PASS" in out

    def test_failing_commands(self, write_prd, make_prd, capsys):
        path = write_prd(make_prd(commands=[{"name": "lint", "command": "false"}]))
        assert main(["--dry-run", "--prd", str(path)]) == 6
        assert "lint: FAIL" in capsys.readouterr().out

    def test_does_not_touch_prd(self, prd_file):
        original = prd_file.read_text()
        main(["--dry-run", "--prd", str(prd_file)])
        assert prd_file.read_text() == original
        assert not (prd_file.parent / ".ralph").exists()
