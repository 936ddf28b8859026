"""
Logging configuration for the import pipeline.

Every record carries a ``job`` field. The orchestrator fills it with
``logger.contextualize(job=...)`` while it works on a batch, so lines
from readers, stages and stores can be traced back to their import job.
Outside a batch the field is ``-``.
"""

import os
import sys
from pathlib import Path

from loguru import logger

from importer.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[job]: <8}</magenta> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | job={extra[job]} | {name}:{function}:{line} - {message}"


def setup_logging(
    level: str | None = None,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "1 week",
) -> None:
    """
    Configure loguru sinks for the importer.

    Args:
        level: Log level, defaults to ``LOG_LEVEL``
        log_file: Optional log file, defaults to ``LOG_FILE``
        rotation: When to rotate the log file (e.g. "10 MB", "1 day")
        retention: How long rotated files are kept (e.g. "1 week")
    """
    level = (level or settings.pipeline.log_level).upper()
    log_file = log_file or settings.pipeline.log_file

    logger.remove()
    logger.configure(extra={"job": "-"})
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # enqueue: batches of several jobs may log from worker threads
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            compression="gz",
            enqueue=True,
        )

    logger.debug(f"Logging configured: level={level}, file={log_file or '-'}")


if os.environ.get("DISABLE_LOGGING") != "1":
    setup_logging()
