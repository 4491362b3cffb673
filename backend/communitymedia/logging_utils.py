from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any, Dict

# Attributes every LogRecord carries; anything else arrived via ``extra=``.
_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

# Promoted to top-level keys so request logs can be grepped without jq.
_REQUEST_FIELDS = ("request_id", "media_path")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line. Request id and media path sit at the top level;
    other ``extra=`` values are grouped under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting only
        data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _REQUEST_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                data[field] = value
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in _REQUEST_FIELDS and value is not None
        }
        if context:
            data["context"] = context
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """
    Route the root logger through ``JSONFormatter`` with request context
    attached. The reconcile script passes ``DEBUG`` to log every rewrite.
    Calling it again replaces the previous configuration.
    """

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_context": {"()": "communitymedia.logging_context.RequestContextFilter"},
            },
            "formatters": {
                "json": {
                    "()": "communitymedia.logging_utils.JSONFormatter",
                    "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "filters": ["request_context"],
                },
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
            },
            "root": {"handlers": ["stderr"], "level": level.upper()},
        }
    )
