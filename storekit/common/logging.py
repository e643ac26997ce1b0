import json
import logging
from logging.config import dictConfig

# Fields every LogRecord carries; anything else was passed through ``extra``
_RESERVED_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def setup_logging(debug: bool = False) -> None:
    """Emit storekit logs as JSON lines; ``debug`` also surfaces botocore wire logs."""
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": JsonFormatter,
                },
                "wire": {
                    "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "wire_console": {
                    "class": "logging.StreamHandler",
                    "formatter": "wire",
                },
            },
            "root": {
                "level": "WARNING",
                "handlers": ["console"],
            },
            "loggers": {
                "storekit": {
                    "level": "DEBUG" if debug else "INFO",
                },
                # botocore logs raw requests; keep them out of the JSON stream
                "botocore": {
                    "handlers": ["wire_console"],
                    "level": "DEBUG" if debug else "WARNING",
                    "propagate": False,
                },
            },
        }
    )


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        else:
            payload.update(
                (key, value)
                for key, value in vars(record).items()
                if key not in _RESERVED_FIELDS
            )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
