"""Logging helpers."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from config.settings import AppConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
LOG_FILE_NAME = "nexus_studio.log"

# client libraries that log every request (video polls, streamed chunks) at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "google_genai")


def _resolve_level(level: Union[int, str, None], fallback: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if level:
        named = logging.getLevelName(str(level).upper())
        if isinstance(named, int):
            return named
    return fallback


def setup_logging(config: AppConfig, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """Send application logs to a size-capped file under ``config.log_dir`` and the console.

    ``level`` overrides ``config.log_level``. Safe to call more than once; the
    root handlers are replaced rather than stacked.
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    resolved = _resolve_level(level if level is not None else config.log_level)

    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        handlers=[file_handler, logging.StreamHandler()],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    return logging.getLogger("nexus_studio")
