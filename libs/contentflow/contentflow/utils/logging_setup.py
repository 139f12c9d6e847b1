"""Logging for the repository layer and the psycopg driver beneath it."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from contentflow.config import LoggingSettings, Settings

DRIVER_LOGGERS = ("psycopg", "psycopg.pool")

_CONFIGURED_FLAG = "_contentflow_configured"


def _level(name: str | None, default: int) -> int:
    level = logging.getLevelName(str(name or "").upper())
    return level if isinstance(level, int) else default


def _log_file(settings: Settings) -> Path | None:
    if not settings.logging.file:
        return None
    path = Path(str(settings.logging.file))
    return path if path.is_absolute() else Path(settings.log_dir) / path


def _handlers(settings: Settings) -> list[logging.Handler]:
    cfg: LoggingSettings = settings.logging
    formatter = logging.Formatter(fmt=str(cfg.format), datefmt=str(cfg.datefmt))
    handlers: list[logging.Handler] = []
    if cfg.console:
        handlers.append(logging.StreamHandler())
    path = _log_file(settings)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                path,
                maxBytes=int(cfg.max_bytes),
                backupCount=int(cfg.backup_count),
                encoding="utf-8",
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(settings: Settings) -> None:
    """Route ``contentflow`` and psycopg driver logs to the configured handlers.

    Repository loggers use ``LOG_LEVEL``; the ``psycopg`` and ``psycopg.pool``
    loggers use ``LOG_DRIVER_LEVEL`` so pool growth, connection failures and
    returned-in-transaction warnings surface without flooding the output.
    Runs once per process; later calls are no-ops.
    """
    root = logging.getLogger("contentflow")
    if getattr(root, _CONFIGURED_FLAG, False):
        return

    handlers = _handlers(settings)
    levels = {"contentflow": _level(settings.logging.level, logging.INFO)}
    for name in DRIVER_LOGGERS:
        levels[name] = _level(settings.logging.driver_level, logging.WARNING)

    for name, level in levels.items():
        logger = logging.getLogger(name)
        logger.setLevel(level)
        # psycopg.pool records reach the handlers through psycopg.
        if name == "psycopg.pool":
            continue
        logger.handlers = list(handlers)
        logger.propagate = False

    setattr(root, _CONFIGURED_FLAG, True)
