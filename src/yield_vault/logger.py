"""Console logging for the vault monitor."""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chain client libraries; chatty below WARNING unless TRACE is asked for
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp")

_LEVEL_COLORS = {
    TRACE: "\033[90m",
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"
_BOLD = "\033[1m"


class ColoredFormatter(logging.Formatter):
    """Bold, colored level names when writing to a terminal."""

    def __init__(
        self,
        fmt: str = LOG_FORMAT,
        datefmt: str = DATE_FORMAT,
        use_color: bool = True,
    ):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelno)
        if not self.use_color or color is None:
            return super().format(record)
        # Format a copy so other handlers still see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{_BOLD}{record.levelname}{_RESET}"
        return super().format(colored)


def resolve_level(log_level: str) -> int:
    """Map a level name (including TRACE) to its numeric value."""
    name = log_level.upper()
    if name == "TRACE":
        return TRACE
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _tune_noisy_loggers(level: int) -> None:
    if level <= TRACE:
        target = TRACE
    elif level <= logging.DEBUG:
        target = logging.WARNING
    else:
        return
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(target)


def setup_logging(log_level: str | None = None, stream: TextIO | None = None) -> None:
    """Install a single console handler on the root logger.

    The level comes from ``log_level``, else ``LOG_LEVEL``, else INFO. At
    DEBUG the chain client loggers stay at WARNING; TRACE lets every RPC
    request through. Colors are used only when ``stream`` is a terminal.
    """
    level = resolve_level(log_level or os.getenv("LOG_LEVEL", "INFO"))
    stream = stream or sys.stdout

    handler = logging.StreamHandler(stream)
    handler.setFormatter(ColoredFormatter(use_color=stream.isatty()))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    _tune_noisy_loggers(level)


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)
