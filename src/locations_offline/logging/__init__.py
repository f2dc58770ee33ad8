from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from locations_offline.config.models import FileLoggingSettings, LoggingSettings

LOG_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Library loggers that would otherwise repeat every proxied request.
NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client")


def resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _rotating_file_handler(settings: FileLoggingSettings) -> Optional[logging.Handler]:
    file_path = settings.path.strip()
    if not file_path:
        return None
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        interval=1,
        backupCount=settings.rotation.backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Configure the root logger for the agent process.

    Console output is always on. When ``logging.file.path`` is set, a daily
    rotating file handler is added next to it. Existing root handlers are
    replaced, so a second call reconfigures instead of duplicating output.
    """
    level = resolve_level(settings.level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_error: Optional[OSError] = None
    try:
        file_handler = _rotating_file_handler(settings.file)
    except OSError as e:
        file_handler = None
        file_error = e
    if file_handler is not None:
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if file_error is not None:
        root_logger.error("File logging disabled. path=%s error=%s", settings.file.path, file_error)


__all__ = ["init_logging", "resolve_level"]
