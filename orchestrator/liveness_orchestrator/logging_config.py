"""Logging bootstrap for the orchestrator service."""
from __future__ import annotations

import logging
import re
from logging.config import dictConfig
from pathlib import Path

from .config import Settings

# Loggers whose records also go to the per-attempt flow log
ATTEMPT_LOGGERS = (
    "liveness_orchestrator.orchestrator",
    "liveness_orchestrator.session_manager",
    "liveness_orchestrator.completion",
    "liveness_orchestrator.task_state",
)

_DATA_URL_RE = re.compile(r"(data:image/[\w.+-]+;base64,)[A-Za-z0-9+/=]+")


class FramePayloadFilter(logging.Filter):
    """Collapses base64 frame payloads to their length.

    Error bodies echoed back by the verification service can contain the
    submitted frame.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "base64," in message:
            record.msg = _DATA_URL_RE.sub(lambda m: f"{m.group(1)}<{len(m.group(0)) - len(m.group(1))} chars>", message)
            record.args = None
        return True


def configure_logging(settings: Settings) -> Path:
    """Console, a midnight-rotated runtime log and an attempt flow log.

    Returns the directory the log files are written to.
    """
    log_dir = Path(settings.log_directory).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    level = settings.log_level
    backup_count = max(int(settings.log_retention_days), 1)

    def rotating(filename: str) -> dict:
        return {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "formatter": "default",
            "filters": ["frame_payload"],
            "level": level,
            "filename": str(log_dir / filename),
            "when": "midnight",
            "backupCount": backup_count,
            "utc": True,
            "delay": True,
            "encoding": "utf-8",
        }

    attempt_logger = {"level": level, "handlers": ["attempt_file"]}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                }
            },
            "filters": {
                "frame_payload": {"()": FramePayloadFilter},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["frame_payload"],
                    "level": level,
                },
                "runtime_file": rotating("orchestrator-runtime.log"),
                "attempt_file": rotating("attempts.log"),
            },
            "loggers": {
                # httpx logs every request at INFO; frame submissions would flood the log
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
                **{name: dict(attempt_logger) for name in ATTEMPT_LOGGERS},
            },
            "root": {"level": level, "handlers": ["console", "runtime_file"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s, dir=%s)", level, log_dir)
    return log_dir


__all__ = ["ATTEMPT_LOGGERS", "FramePayloadFilter", "configure_logging"]
