from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.commercial.errors import CommercialError
from app.context import get_correlation_id


T = TypeVar("T")

logger = logging.getLogger("app.commercial.actions")


class ActionResponse(BaseModel, Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None
    correlation_id: str | None = None


def _correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None) or None


def error_response(request: Request, exc: CommercialError) -> JSONResponse:
    payload = ActionResponse[Any](
        success=False,
        error=exc.message,
        code=exc.code,
        correlation_id=_correlation_id(request),
    )
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump(mode="json"))


def run_action(
    request: Request,
    action: Callable[[], Any],
    *,
    session: Session | None = None,
    success_status: int = status.HTTP_200_OK,
) -> JSONResponse:
    """Run a service call and wrap its outcome in the ``{success, data, error}`` envelope.

    Domain errors map to their taxonomy status. Anything else is logged and
    reported as a generic 500 so nothing escapes to the client uncaught.
    """
    try:
        data = action()
    except CommercialError as exc:
        if session is not None:
            session.rollback()
        logger.warning(
            "commercial_action_rejected",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
        return error_response(request, exc)
    except Exception as exc:
        if session is not None:
            session.rollback()
        logger.exception("commercial_action_failed", extra={"path": request.url.path, "error": str(exc)[:500]})
        payload = ActionResponse[Any](
            success=False,
            error="unexpected error",
            code="internal_error",
            correlation_id=_correlation_id(request),
        )
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=payload.model_dump(mode="json"))

    content = {
        "success": True,
        "data": jsonable_encoder(data),
        "error": None,
        "code": None,
        "correlation_id": _correlation_id(request),
    }
    return JSONResponse(status_code=success_status, content=content)
