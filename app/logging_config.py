"""JSON logging for the Melo bot API.

Records carry structured data in ``extra={"context": {...}}``. Customer phone
numbers inside the context are masked before they reach the log stream.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

SERVICE_NAME = "melo-bot-api"
LOGGER_PREFIX = "melo_bot"
PHONE_KEYS = ("phone", "to")


def mask_phone(value: Any) -> Any:
    """Keep the country code and the last four digits: 57******2233."""
    if not isinstance(value, str) or not value.isdigit() or len(value) < 8:
        return value
    return f"{value[:2]}{'*' * (len(value) - 6)}{value[-4:]}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the conversation phone hoisted to the top level."""

    def __init__(self, service: str = SERVICE_NAME, mask_phones: bool = True):
        super().__init__()
        self.service = service
        self.mask_phones = mask_phones

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            context = dict(context)
            if self.mask_phones:
                for key in PHONE_KEYS:
                    if key in context:
                        context[key] = mask_phone(context[key])
            if "phone" in context:
                log_data["phone"] = context.pop("phone")
            if context:
                log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", mask_phones: bool = True) -> None:
    """Route every logger through a single JSON stdout handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(mask_phones=mask_phones))
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_PREFIX}.{name}")


class PhoneLoggerAdapter(logging.LoggerAdapter):
    """Tags every record with the conversation phone; ``context=`` adds per-call fields."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs
