"""Logging setup for console and the persistent build log.

Console output is rendered by rich; the build log receives the same records
with timestamps, interleaved with the output of every external command the
runner appends to it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from rich.console import Console
from rich.logging import RichHandler

from unraid_nvidia.types import BuildLog

PACKAGE_LOGGER = "unraid_nvidia"
FILE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Install a rich console handler on the package logger.

    Calling this more than once replaces the previous console handler.

    Args:
        level: Logging level name.
        console: Console to render to (stderr by default).
    """
    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.setLevel(level)
    root.addHandler(handler)


def attach_build_log(build_log: BuildLog, level: str = "DEBUG") -> Callable[[], None]:
    """Mirror package log records into the build log file.

    Args:
        build_log: Session build log.
        level: Minimum level written to the file.

    Returns:
        Callable that detaches and closes the file handler.
    """
    root = logging.getLogger(PACKAGE_LOGGER)
    handler = logging.FileHandler(build_log.path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
    root.addHandler(handler)
    previous_level = root.level
    if root.level == logging.NOTSET or root.level > handler.level:
        root.setLevel(handler.level)

    def detach() -> None:
        root.removeHandler(handler)
        handler.close()
        root.setLevel(previous_level)

    return detach


__all__ = ["FILE_LOG_FORMAT", "PACKAGE_LOGGER", "attach_build_log", "configure_logging"]
