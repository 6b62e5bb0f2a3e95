"""Tests for the benchmon command line."""

import psutil
import pytest

from benchmon import cli
from benchmon.errors import ProbeUnavailable


def current_user() -> str:
    return psutil.Process().username()


class TestParser:
    """Tests for build_parser."""

    def test_run_defaults(self):
        """Test run uses the default interval and basename."""
        args = cli.build_parser().parse_args(["run", "sleep", "1"])

        assert args.mode == "run"
        assert args.interval == 10
        assert args.basename == "stats"
        assert args.gpu is False
        assert cli._target(args) == ["sleep", "1"]

    def test_run_options(self):
        """Test run options and a command with its own flags."""
        args = cli.build_parser().parse_args(
            ["run", "-i", "5", "-n", "exp1", "-g", "--", "python3", "-u", "train.py"]
        )

        assert args.interval == 5
        assert args.basename == "exp1"
        assert args.gpu is True
        assert cli._target(args) == ["python3", "-u", "train.py"]

    def test_watch_requires_username(self):
        """Test watch refuses to run without a username."""
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["watch", "true"])

    def test_bench_has_no_gpu_flag(self):
        """Test bench decides GPU monitoring on its own."""
        args = cli.build_parser().parse_args(["bench", "-n", "b", "true"])

        assert args.mode == "bench"
        assert not hasattr(args, "gpu")


class TestMain:
    """Tests for main."""

    def test_missing_command(self):
        """Test a subcommand without a target command is a usage error."""
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["run"])

        assert excinfo.value.code == 2

    def test_bad_interval(self):
        """Test a non-positive interval is a usage error."""
        with pytest.raises(SystemExit):
            cli.main(["run", "-i", "0", "true"])

    def test_watch(self, capsys):
        """Test watch mode reports events and the tree, returning the exit code."""
        code = cli.main(["watch", "-u", current_user(), "-i", "1", "--", "sh", "-c", "exit 5"])

        assert code == 5
        out = capsys.readouterr().out
        assert f"=== Process Events for user '{current_user()}' ===" in out
        assert "=== Final Process Tree ===" in out

    def test_run_passes_configuration(self, monkeypatch):
        """Test run hands the command and options to the session."""
        calls = []

        class FakeSession:
            def __init__(self, **kwargs):
                calls.append(kwargs)

            def run(self, command, interval, basename, gpu_enabled):
                calls.append((command, interval, basename, gpu_enabled))
                return 9

        monkeypatch.setattr(cli, "MonitoringSession", FakeSession)

        assert cli.main(["run", "-i", "3", "-n", "x", "-g", "echo", "hi"]) == 9
        assert calls == [{"stop_timeout": 5.0}, (["echo", "hi"], 3, "x", True)]

    def test_wrapper_failure_exit_status(self, monkeypatch):
        """Test a wrapper that cannot start gives exit status 1."""
        class FailingSession:
            def __init__(self, **kwargs):
                pass

            def run(self, *args):
                raise ProbeUnavailable("pidstat", "pidstat")

        monkeypatch.setattr(cli, "MonitoringSession", FailingSession)

        assert cli.main(["run", "true"]) == 1

    def test_watch_unknown_command(self):
        """Test a target command that cannot be launched gives exit status 1."""
        code = cli.main(["watch", "-u", current_user(), "-i", "1", "benchmon-no-such-tool"])

        assert code == 1
