"""
Logging for XIP.

Every module logs through `get_logger("<subsystem>")`, a child of the "xip"
logger (xip.ledger, xip.chain, xip.solver, xip.relayer, ...). Handlers live
on the "xip" logger only: a colored console handler, plus a plain file
handler when requested.

Modules grab their logger at import time, before any CLI flag is parsed, so
setup() may run again later to change the level.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

import colorlog

ROOT = "xip"

CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s"
FILE_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class XIPLogger:
    """Owns the handlers of the "xip" logger hierarchy."""

    _console: Optional[logging.Handler] = None
    _file: Optional[logging.Handler] = None

    @classmethod
    def setup(
        cls,
        level: Optional[int] = None,
        log_dir: Optional[str] = None,
        log_to_file: bool = False,
    ):
        """
        Configure (or reconfigure) XIP logging.

        Args:
            level: Logging level; defaults to LOG_LEVEL from the environment, else INFO
            log_dir: Directory for xip.log. If None, uses ./logs
            log_to_file: Also write plain-text logs to log_dir/xip.log
        """
        if level is None:
            level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
            if not isinstance(level, int):
                level = logging.INFO

        root_logger = logging.getLogger(ROOT)
        root_logger.setLevel(level)

        if cls._console is None:
            cls._console = colorlog.StreamHandler(sys.stdout)
            cls._console.setFormatter(colorlog.ColoredFormatter(
                CONSOLE_FORMAT,
                datefmt=DATE_FORMAT,
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            ))
            root_logger.addHandler(cls._console)
        cls._console.setLevel(level)

        if log_to_file and cls._file is None:
            directory = Path(log_dir) if log_dir else Path("logs")
            directory.mkdir(exist_ok=True, parents=True)
            cls._file = logging.FileHandler(directory / "xip.log")
            cls._file.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(cls._file)
        if cls._file is not None:
            cls._file.setLevel(level)

        # Per-request client logs only help when debugging
        noisy_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(noisy_level)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a logger for a subsystem.

        Args:
            name: Subsystem name (e.g., 'ledger', 'solver', 'relayer.http')
        """
        if cls._console is None:
            cls.setup()
        return logging.getLogger(f"{ROOT}.{name}")


def get_logger(name: str) -> logging.Logger:
    return XIPLogger.get_logger(name)


def setup_logging(level: Optional[int] = None, log_dir: Optional[str] = None, log_to_file: bool = False):
    XIPLogger.setup(level=level, log_dir=log_dir, log_to_file=log_to_file)
