"""Test doubles and archive helpers shared by the test modules.

External tools are never executed: FakeRunner records every command and
simulates the side effects the pipeline relies on (the installer's log,
the archive produced by makepkg).
"""

import io
import shlex
import stat
import tarfile
from datetime import datetime, timezone
from pathlib import Path

from unraid_nvidia.errors import CommandError
from unraid_nvidia.runner import CommandResult, CommandRunner

DRIVER_VERSION = "535.129.03"
KERNEL_ID = "6.1.15-Unraid"
INSTALL_MARKER = "installation is now complete"


class FakeRunner(CommandRunner):
    """CommandRunner double that records commands instead of running them."""

    def __init__(
        self,
        log_path: Path,
        installer_log: Path | None = None,
        write_marker: bool = True,
        fail_on: tuple[str, ...] = (),
    ) -> None:
        super().__init__(log_path)
        self.installer_log = installer_log
        self.write_marker = write_marker
        self.fail_on = fail_on
        self.commands: list[list[str]] = []
        self.cwds: list[Path | None] = []

    def ran(self, program: str) -> list[list[str]]:
        return [cmd for cmd in self.commands if Path(cmd[0]).name == program]

    def _simulate(self, cmd: list[str]) -> None:
        program = Path(cmd[0]).name
        if program == "makepkg":
            Path(cmd[-1]).write_bytes(b"slackware package payload")
        elif any(arg.startswith("--kernel-name=") for arg in cmd):
            if self.installer_log is not None:
                text = "Installing...\n"
                if self.write_marker:
                    text += f"{INSTALL_MARKER}.\n"
                self.installer_log.write_text(text)

    def run(self, cmd, cwd=None, check=True, timeout=None, env_override=None):
        self.commands.append(list(cmd))
        self.cwds.append(cwd)
        cmd_str = shlex.join(cmd)
        exit_code = 2 if any(token in cmd_str for token in self.fail_on) else 0
        if exit_code == 0:
            self._simulate(cmd)

        now = datetime.now(timezone.utc)
        result = CommandResult(
            command=cmd_str,
            exit_code=exit_code,
            log_path=self.log_path,
            started_at=now,
            finished_at=now,
        )
        if check and exit_code != 0:
            raise CommandError(
                f"{cmd[0]} exited with code {exit_code}",
                command=cmd_str,
                exit_code=exit_code,
                log_path=self.log_path,
            )
        return result


def make_tarball(path: Path, files: dict[str, bytes], mode: str = "w:gz") -> Path:
    """Write a tar archive holding ``files`` (name -> content)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, mode) as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(content))
    return path


def tarball_bytes(files: dict[str, bytes], mode: str = "w:gz") -> bytes:
    """Build a tar archive in memory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode=mode) as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def write_driver(path: Path, version: str = DRIVER_VERSION) -> Path:
    """Write a stand-in driver installer answering ``--version``."""
    path.write_text(
        "#!/bin/bash\n"
        'if [ "$1" = "--version" ]; then\n'
        f'  echo "nvidia-installer:  version {version}  (buildmeister@builder)"\n'
        "  exit 0\n"
        "fi\n"
        "exit 0\n"
    )
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path
