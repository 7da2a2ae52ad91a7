"""
Logging setup for certpilot.

Diagnostic output goes to stderr with a bullet prefix per level, so that
stdout stays reserved for the doctor and request results (text or JSON).
"""

import logging as _logging
import sys
from typing import Dict

_IS_VERBOSE = False


def set_verbose(is_verbose: bool) -> None:
    """
    Toggle verbose mode (stack traces on handled errors).

    Args:
        is_verbose: Whether verbose output is enabled
    """
    global _IS_VERBOSE
    _IS_VERBOSE = is_verbose  # type: ignore


def is_verbose() -> bool:
    """Return True when verbose mode is enabled."""
    return _IS_VERBOSE


BULLET_POINTS: Dict[int, str] = {
    _logging.INFO: "[*]",
    _logging.DEBUG: "[+]",
    _logging.WARNING: "[!]",
    _logging.ERROR: "[-]",
    _logging.CRITICAL: "[-]",
}


class Formatter(_logging.Formatter):
    """
    Formatter that prefixes every message with a level bullet.

    - INFO:    [*]
    - DEBUG:   [+]
    - WARNING: [!]
    - ERROR:   [-]
    - CRITICAL:[-]
    """

    def __init__(self) -> None:
        super().__init__("%(bullet)s %(message)s")

    def format(self, record: _logging.LogRecord) -> str:
        record.bullet = BULLET_POINTS.get(record.levelno, "[-]")
        return super().format(record)


def init(
    level: int = _logging.INFO,
    logger_name: str = "certpilot",
    propagate: bool = False,
) -> None:
    """
    Attach the bullet formatter to the certpilot logger.

    Calling this more than once replaces the previous handler instead of
    stacking duplicates.

    Args:
        level: Log level to set (default: INFO)
        logger_name: Name of the logger to configure
        propagate: Whether records also reach the root logger
    """
    handler = _logging.StreamHandler(sys.stderr)
    handler.setFormatter(Formatter())

    logger = _logging.getLogger(logger_name)

    if logger.handlers:
        logger.handlers.clear()

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


logging = _logging.getLogger("certpilot")
