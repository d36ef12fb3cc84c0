"""Tests for ralph.runner.verify module."""

from ralph.lib.document import VerifyCommand
from ralph.runner.verify import all_passed, describe_failures, run_command, run_verification


def cmd(name, command):
    return VerifyCommand(name=name, command=command)


class TestRunCommand:
    def test_pass(self, tmp_path):
        res = run_command(cmd("ok", "echo hello"), tmp_path)
        assert res.passed
        assert res.label == "PASS"
        assert "hello" in res.output

    def test_fail_keeps_exit_code_and_stderr(self, tmp_path):
        res = run_command(cmd("bad", "echo oops >&2; exit 4"), tmp_path)
        assert not res.passed
        assert res.exit_code == 4
        assert res.label == "FAIL"
        assert "oops" in res.output

    def test_runs_in_project_dir(self, tmp_path):
        (tmp_path / "marker.txt").write_text("x")
        assert run_command(cmd("ls", "test -f marker.txt"), tmp_path).passed

    def test_timeout_is_error(self, tmp_path):
        res = run_command(cmd("slow", "sleep 5"), tmp_path, timeout=0.2)
        assert not res.passed
        assert res.exit_code is None
        assert res.label == "ERROR"


class TestRunVerification:
    def test_runs_all_by_default(self, tmp_path):
        results = run_verification([cmd("a", "false"), cmd("b", "true")], tmp_path)
        assert [r.passed for r in results] == [False, True]
        assert not all_passed(results)
        assert describe_failures(results) == "a (FAIL)"

    def test_no_commands_pass(self, tmp_path):
        assert all_passed(run_verification([], tmp_path))
