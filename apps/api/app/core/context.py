from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_studio_slug, set_studio_slug


@dataclass
class RequestContext:
    request_id: str
    correlation_id: str
    user_id: str | None
    studio_slug: str | None
    timezone: str


def studio_slug_from_path(path: str) -> str | None:
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 3 and parts[0] == "api" and parts[1] == "studios":
        return parts[2]
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        studio_slug = studio_slug_from_path(request.url.path)
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            user_id=None,
            studio_slug=studio_slug,
            timezone=request.headers.get("x-timezone", "America/Mexico_City"),
        )
        token = set_studio_slug(studio_slug)
        try:
            response = await call_next(request)
        finally:
            reset_studio_slug(token)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
