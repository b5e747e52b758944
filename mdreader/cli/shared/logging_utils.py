"""Loguru helpers for consistent console and file logging in CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from mdreader.config.schema import LoggingConfig

_SINK_IDS: dict[str, int] = {}


def default_log_dir() -> Path:
    return Path.home() / ".mdreader" / "logs"


def ensure_rotating_log_file(
    name: str,
    level: str = "INFO",
    log_dir: Path | None = None,
    filename: str | None = None,
) -> Path:
    """Ensure a rotating log sink for the given command name.

    Writes to ``<log_dir>/<name>.log`` unless an explicit filename is given.
    """
    directory = log_dir or default_log_dir()
    log_path = directory / (filename or f"{name}.log")
    if name in _SINK_IDS:
        return log_path
    directory.mkdir(parents=True, exist_ok=True)
    sink_id = logger.add(
        str(log_path),
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    _SINK_IDS[name] = sink_id
    return log_path


def configure_logging(cfg: LoggingConfig, *, verbose: bool = False) -> Path | None:
    """Replace all sinks: stderr at the configured level, plus the log file if set.

    Returns the log file path, or None when file logging is off.
    """
    logger.remove()
    _SINK_IDS.clear()
    logger.add(sys.stderr, level="DEBUG" if verbose else cfg.level.upper())
    if not cfg.file.strip():
        return None
    path = Path(cfg.file).expanduser()
    return ensure_rotating_log_file(str(path), level=cfg.level.upper(), log_dir=path.parent, filename=path.name)
