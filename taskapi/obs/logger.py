"""Structured JSON logging to stdout.

One JSON object per line, low overhead, safe for production stdout collectors.
"""

from typing import Any, Dict, Optional, TextIO
from datetime import datetime, timezone
import json
import sys
import traceback

from taskapi.obs.context import request_id_var


LEVELS: Dict[str, int] = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


def parse_level(name: Optional[str]) -> str:
    """Map LOG_LEVEL values (debug, info, warn/warning, error) to a level name."""
    value = (name or "").strip().upper()
    if value == "WARNING":
        return "WARN"
    return value if value in LEVELS else "INFO"


class JsonLogger:
    def __init__(self, level: str = "INFO", stream: Optional[TextIO] = None):
        self.level = parse_level(level)
        self._stream = stream

    def enabled(self, level: str) -> bool:
        return LEVELS.get(level, 20) >= LEVELS[self.level]

    def log(self, event: str, level: str = "INFO", **fields: Any) -> None:
        level = parse_level(level)
        if not self.enabled(level):
            return
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "request_id": request_id_var.get(),
        }
        payload.update(fields)

        stream = self._stream or sys.stdout
        try:
            stream.write(json.dumps(payload, separators=(",", ":"), default=str) + "\n")
            stream.flush()
        except (TypeError, ValueError, OSError):
            # Logging must never take a request down with it
            pass

    def debug(self, event: str, **fields: Any) -> None:
        self.log(event, level="DEBUG", **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log(event, level="INFO", **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(event, level="WARN", **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log(event, level="ERROR", **fields)

    def exception(self, event: str, exc: BaseException, **fields: Any) -> None:
        self.log(
            event,
            level="ERROR",
            error=str(exc),
            error_type=type(exc).__name__,
            traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            **fields,
        )


_default_logger = JsonLogger()


def get_default_logger() -> JsonLogger:
    return _default_logger


def log_event(event: str, **fields: Any) -> None:
    level = fields.pop("level", "INFO")
    _default_logger.log(event, level=level, **fields)
