from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO

from url_poller.config.models import LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# aiohttp logs every connection at DEBUG; keep it out of --debug output.
_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.internal")


def resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _build_file_handler(path: Path, backup_count: int) -> TimedRotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        interval=1,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    return handler


def init_logging(settings: LoggingSettings, *, stream: Optional[TextIO] = None) -> None:
    """
    Configure the root logger for the command-line runner.

    Existing root handlers are replaced. Log records go to ``stream``
    (stderr by default) so that they never mix with the output of the
    triggered command, and to a daily-rotated file when one is configured.
    """
    level = resolve_level(settings.level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    stream_handler = logging.StreamHandler(stream or sys.stderr)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    file_path = settings.file.path.strip()
    if not file_path:
        return
    try:
        file_handler = _build_file_handler(Path(file_path), settings.file.rotation.backup_count)
    except OSError:
        root_logger.error("File logging handler failed to initialize path=%s", file_path, exc_info=True)
        return
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


__all__ = ["init_logging", "resolve_level"]
