"""Logging setup for the bridge process."""
from __future__ import annotations

from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
RUNTIME_LOG_NAME = "facebridge-runtime.log"

# Third-party loggers that are too chatty at INFO for a long-running bridge.
NOISY_LOGGERS = ("websockets", "uvicorn.access")


def _file_handler(level: str, log_dir: Path, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "default",
        "level": level,
        "filename": str(log_dir / RUNTIME_LOG_NAME),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    retention_days: int = 14,
    *,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Route the root logger to stderr and, when ``log_dir`` is set, a rotated runtime log.

    Loggers named in ``quiet`` are capped at WARNING.
    """
    level = level.upper()
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {"class": "logging.StreamHandler", "formatter": "default", "level": level},
    }
    if log_dir is not None:
        log_dir = Path(log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["runtime_file"] = _file_handler(level, log_dir, retention_days)

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": LOG_FORMAT}},
            "handlers": handlers,
            "loggers": {name: {"level": "WARNING"} for name in quiet},
            "root": {"level": level, "handlers": list(handlers)},
        }
    )


__all__ = ["configure_logging", "LOG_FORMAT", "NOISY_LOGGERS"]
