"""
Logging configuration using loguru.
"""

import sys
from pathlib import Path
from typing import Optional, TextIO

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {process} | {name}:{function}:{line} | {message}"

# (file name, minimum level, retention)
LOG_FILES = (
    ("netdash.log", "DEBUG", "30 days"),
    ("netdash_errors.log", "ERROR", "90 days"),
)


def setup_logging(
    output_dir: Optional[Path] = None,
    verbose: bool = False,
    console: Optional[TextIO] = None,
) -> logger:
    """
    Setup application logging.

    The console stays at WARNING unless verbose; the main log file always
    records DEBUG.

    Args:
        output_dir: Directory for log files (console only when None)
        verbose: Enable debug output on the console
        console: Stream for console output, stderr by default

    Returns:
        Configured logger instance
    """
    logger.remove()
    logger.add(
        console or sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=CONSOLE_FORMAT,
    )

    if output_dir is None:
        return logger

    paths = []
    for name, level, retention in LOG_FILES:
        path = output_dir / name
        logger.add(
            path,
            rotation="10 MB",
            retention=retention,
            level=level,
            format=FILE_FORMAT,
            enqueue=True,
        )
        paths.append(path)

    logger.info("Logging initialized")
    logger.debug(f"Log files: {', '.join(str(p) for p in paths)}")
    return logger
