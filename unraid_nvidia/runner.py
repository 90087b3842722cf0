"""External command runner.

This module handles:
- Executing the opaque external tools (make, patch, the driver installer,
  makepkg) as blocking subprocesses
- Appending their stdout/stderr to the session build log
- Enforcing optional timeouts
- Turning non-zero exits into CommandError with a log pointer
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from unraid_nvidia.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        command: The command line that was executed.
        exit_code: Process exit code (-1 on timeout).
        log_path: Build log holding the command output.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class CommandRunner:
    """Run external commands with their output appended to the build log."""

    def __init__(self, log_path: Path, timeout: int | None = None) -> None:
        """Initialize CommandRunner.

        Args:
            log_path: Build log file the output is appended to.
            timeout: Default timeout in seconds (None = no timeout).
        """
        self.log_path = log_path
        self.timeout = timeout

    def run(
        self,
        cmd: list[str],
        cwd: Path | None = None,
        check: bool = True,
        timeout: int | None = None,
        env_override: dict[str, str] | None = None,
    ) -> CommandResult:
        """Execute a command and wait for it.

        Args:
            cmd: Command as list of strings.
            cwd: Working directory.
            check: Raise CommandError on non-zero exit.
            timeout: Override of the default timeout.
            env_override: Optional environment variable overrides.

        Returns:
            CommandResult with execution details.

        Raises:
            CommandError: If the command fails to start, times out, or exits
                non-zero while ``check`` is set.
        """
        cmd_str = shlex.join(cmd)
        effective_timeout = timeout if timeout is not None else self.timeout
        logger.debug("Executing: %s (cwd=%s)", cmd_str, cwd or Path.cwd())

        env: dict[str, str] | None = None
        if env_override:
            env = dict(os.environ)
            env.update(env_override)

        started_at = datetime.now(timezone.utc)
        try:
            with self.log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"\n# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
                log_file.write("# " + "=" * 70 + "\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=effective_timeout,
                    env=env,
                    check=False,
                )
                exit_code = result.returncode

        except subprocess.TimeoutExpired as e:
            with self.log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"\n# TIMEOUT after {effective_timeout} seconds\n")
            raise CommandError(
                f"Command timed out after {effective_timeout} seconds: {cmd_str}",
                command=cmd_str,
                exit_code=-1,
                code="command_timeout",
                log_path=self.log_path,
            ) from e

        except OSError as e:
            raise CommandError(
                f"Failed to execute {cmd_str}: {e}",
                command=cmd_str,
                code="execution_error",
                log_path=self.log_path,
            ) from e

        finished_at = datetime.now(timezone.utc)
        with self.log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")

        command_result = CommandResult(
            command=cmd_str,
            exit_code=exit_code,
            log_path=self.log_path,
            started_at=started_at,
            finished_at=finished_at,
        )

        if check and not command_result.success:
            raise CommandError(
                f"{cmd[0]} exited with code {exit_code}. See log: {self.log_path}",
                command=cmd_str,
                exit_code=exit_code,
                log_path=self.log_path,
            )

        return command_result


__all__ = ["CommandResult", "CommandRunner"]
