"""Logging bootstrap for the liveness controller."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Any, Dict, Optional

RUNTIME_LOG = "liveness-controller.log"
FAILURES_LOG = "liveness-failures.log"

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _rotating_file(path: Path, level: str, retention_days: int) -> Dict[str, Any]:
    return {
        "class": "logging.handlers.TimedRotatingFileHandler",
        "formatter": "default",
        "level": level,
        "filename": str(path),
        "when": "midnight",
        "backupCount": max(int(retention_days), 1),
        "utc": True,
        "delay": True,
        "encoding": "utf-8",
    }


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> Path:
    """
    Console plus two midnight-rotating files under ``log_dir``.

    ``liveness-controller.log`` gets everything at ``level``; ``liveness-failures.log``
    keeps only warnings and errors (camera, capture and oracle failures) for auditing.
    Returns the runtime log path.
    """
    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    runtime_log = log_dir / RUNTIME_LOG

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": _FORMAT}},
            "handlers": {
                "console": {"class": "logging.StreamHandler", "formatter": "default", "level": level},
                "runtime_file": _rotating_file(runtime_log, level, retention_days),
                "failures_file": _rotating_file(log_dir / FAILURES_LOG, "WARNING", retention_days),
            },
            "loggers": {
                # Request lines would otherwise repeat every oracle call
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
            },
            "root": {"level": level, "handlers": ["console", "runtime_file", "failures_file"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s, dir=%s)", level, log_dir)
    return runtime_log


__all__ = ["FAILURES_LOG", "RUNTIME_LOG", "configure_logging"]
