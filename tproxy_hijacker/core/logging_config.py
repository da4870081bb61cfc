"""
Logging setup shared by the CLI and library callers.

Verbosity 0 shows warnings and errors, 1 (-v) adds the commands issued on
the target host, 2 (-vv) also lets paramiko's transport log through.
"""

import copy
import logging
import sys
from typing import Dict, Optional, Tuple

PACKAGE_LOGGER = "tproxy_hijacker"
LOG_FORMAT = "%(levelname)s: %(message)s"

RESET = "\033[0m"
LEVEL_COLORS: Dict[int, str] = {
    logging.DEBUG: "\033[90m",
    logging.INFO: "\033[94m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[1;91m",
}

# verbosity -> (handler level, package level, paramiko level)
VERBOSITY_LEVELS: Dict[int, Tuple[int, int, int]] = {
    0: (logging.WARNING, logging.WARNING, logging.WARNING),
    1: (logging.DEBUG, logging.DEBUG, logging.WARNING),
    2: (logging.DEBUG, logging.DEBUG, logging.DEBUG),
}


class ColoredFormatter(logging.Formatter):
    """Colours the level name; the record seen by other handlers is untouched."""

    def format(self, record):
        color = LEVEL_COLORS.get(record.levelno)
        if color:
            record = copy.copy(record)
            record.levelname = f"{color}{record.levelname}{RESET}"
        return super().format(record)


def setup_logging(verbosity: int = 0, use_colors: bool = True) -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        verbosity: 0, 1 or 2; larger values are treated as 2
        use_colors: colour level names when stderr is a terminal
    """
    handler_level, package_level, paramiko_level = VERBOSITY_LEVELS[
        max(0, min(verbosity, 2))
    ]

    if use_colors and sys.stderr.isatty():
        formatter: logging.Formatter = ColoredFormatter(LOG_FORMAT)
    else:
        formatter = logging.Formatter(LOG_FORMAT)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(handler_level)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    logging.getLogger(PACKAGE_LOGGER).setLevel(package_level)
    logging.getLogger("paramiko").setLevel(paramiko_level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger placed under the package namespace."""
    if name == "__main__":
        name = f"{PACKAGE_LOGGER}.cli"
    elif not name.startswith(PACKAGE_LOGGER) and "." not in name:
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def log_success(message: str, logger: Optional[logging.Logger] = None) -> None:
    (logger or get_logger(PACKAGE_LOGGER)).info(f"✓ {message}")


def log_error(message: str, logger: Optional[logging.Logger] = None) -> None:
    (logger or get_logger(PACKAGE_LOGGER)).error(f"✗ {message}")
