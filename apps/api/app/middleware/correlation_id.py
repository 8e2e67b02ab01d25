from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_correlation_id, set_correlation_id
from app.core.context import studio_slug_from_path


CORRELATION_HEADER = "x-correlation-id"
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _incoming_correlation_id(request: Request) -> str | None:
    value = (request.headers.get(CORRELATION_HEADER) or "").strip()
    if value and _ACCEPTED_ID.match(value):
        return value
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopt the caller's correlation id, or mint one, for the whole request.

    Ids that are empty, too long or carry characters unsafe for log lines and
    response headers are replaced by a fresh uuid4.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = _incoming_correlation_id(request) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            studio_slug = studio_slug_from_path(request.url.path)
            if studio_slug is not None:
                span.set_attribute("studio_slug", studio_slug)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
