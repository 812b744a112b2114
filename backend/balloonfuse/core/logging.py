import json
import logging
import sys
from typing import Any, Dict, Iterable

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

# Third-party loggers that chatter at INFO on every request or prediction.
_NOISY_LOGGERS = ("httpx", "httpcore", "google_genai", "ultralytics")


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: level, logger, event message, time and every ``extra`` field."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "info", quiet: Iterable[str] = _NOISY_LOGGERS) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    # Replace handlers so repeated calls never duplicate output
    root.handlers.clear()
    root.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
