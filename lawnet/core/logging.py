import json
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone

from lawnet.core.config import settings

# Our request_logging middleware already writes one line per request
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; known `extra=` fields are lifted to the top level."""

    EXTRA_FIELDS = (
        "request_id", "path", "method", "status_code", "latency_ms", "error",
        "subject", "feature", "feature_id", "submission_id", "status",
        "expires_at", "actor", "event_type", "connections", "delivered",
        "count", "attempt", "delay_seconds", "breaker_name", "old_state", "new_state",
    )

    def __init__(self, service: str = "lawnet-access") -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    """Root logger to JSON on stderr, plus a rotating file when LOG_FILE is set. Safe to call twice."""
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
