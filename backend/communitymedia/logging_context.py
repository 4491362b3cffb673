from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from typing import Any

import sentry_sdk

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


class RequestContextFilter(logging.Filter):
    """Copy the request id and requested media path onto every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - formatting only
        context = _log_context.get({})
        record.request_id = context.get("request_id")
        record.media_path = context.get("media_path")
        return True


def push_request_context(request_id: str, media_path: str | None = None) -> Token:
    return _log_context.set({"request_id": request_id, "media_path": media_path})


def pop_request_context(token: Token) -> None:
    _log_context.reset(token)


def current_request_id() -> str | None:
    return _log_context.get({}).get("request_id")


def set_media_path_context(media_path: str | None) -> None:
    context = _log_context.get({})
    if context:
        context["media_path"] = media_path
    else:  # no middleware in batch scripts and unit tests
        _log_context.set({"request_id": None, "media_path": media_path})
    sentry_sdk.set_tag("media_path", media_path or "")


__all__ = [
    "RequestContextFilter",
    "current_request_id",
    "pop_request_context",
    "push_request_context",
    "set_media_path_context",
]
