"""Tests for runner.py module.

Tests command execution and build log framing. Short shell commands run
for real; timeouts and start failures use a mocked subprocess.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from unraid_nvidia.errors import CommandError
from unraid_nvidia.runner import CommandResult, CommandRunner


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    path = tmp_path / "logfile_2024.01.01_1.log"
    path.write_text("existing line\n")
    return path


class TestCommandRunner:
    """Tests for CommandRunner.run."""

    def test_success_appends_output(self, log_path: Path):
        """Output should be appended to the build log, never truncating it."""
        runner = CommandRunner(log_path)
        result = runner.run(["sh", "-c", "echo compiled; echo warning >&2"])

        assert isinstance(result, CommandResult)
        assert result.success
        assert result.exit_code == 0
        assert result.duration >= 0

        log = log_path.read_text()
        assert log.startswith("existing line\n")
        assert "# Command: sh -c 'echo compiled; echo warning >&2'" in log
        assert "compiled" in log
        assert "warning" in log
        assert "# Exit code: 0" in log

    def test_cwd(self, log_path: Path, tmp_path: Path):
        workdir = tmp_path / "tree"
        workdir.mkdir()
        CommandRunner(log_path).run(["sh", "-c", "pwd"], cwd=workdir)
        assert str(workdir) in log_path.read_text()

    def test_non_zero_exit_raises(self, log_path: Path):
        runner = CommandRunner(log_path)
        with pytest.raises(CommandError) as exc_info:
            runner.run(["sh", "-c", "exit 3"])

        error = exc_info.value
        assert error.exit_code == 3
        assert error.code == "command_failed"
        assert error.log_path == log_path
        assert error.command == "sh -c 'exit 3'"
        assert "# Exit code: 3" in log_path.read_text()

    def test_non_zero_exit_without_check(self, log_path: Path):
        result = CommandRunner(log_path).run(["sh", "-c", "exit 1"], check=False)
        assert not result.success
        assert result.exit_code == 1

    def test_env_override(self, log_path: Path):
        CommandRunner(log_path).run(
            ["sh", "-c", 'echo "arch=$ARCH"'], env_override={"ARCH": "x86_64"}
        )
        assert "arch=x86_64" in log_path.read_text()

    def test_timeout(self, log_path: Path):
        runner = CommandRunner(log_path, timeout=5)
        with patch(
            "unraid_nvidia.runner.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="make", timeout=5),
        ):
            with pytest.raises(CommandError) as exc_info:
                runner.run(["make", "-j4"])

        assert exc_info.value.code == "command_timeout"
        assert exc_info.value.exit_code == -1
        assert "TIMEOUT after 5 seconds" in log_path.read_text()

    def test_missing_executable(self, log_path: Path):
        runner = CommandRunner(log_path)
        with pytest.raises(CommandError) as exc_info:
            runner.run(["/nonexistent/makepkg", "-l", "n"])
        assert exc_info.value.code == "execution_error"
