from __future__ import annotations

import uuid

import sentry_sdk
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings
from ..logging_context import pop_request_context, push_request_context


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (and the media path for proxy hits) for logging."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        media_path = None
        if request.url.path.startswith(settings.storage_proxy_prefix + "/"):
            media_path = request.url.path[len(settings.storage_proxy_prefix) :]
        token = push_request_context(request_id, media_path)
        request.state.request_id = request_id
        sentry_sdk.get_current_scope().set_tag("request_id", request_id)
        try:
            response: Response = await call_next(request)
        finally:
            pop_request_context(token)
        response.headers.setdefault("X-Request-ID", request_id)
        return response
