from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.commercial.errors import CommercialError
from app.commercial.realtime import ROW_CHANGED_EVENT
from app.commercial.responses import ActionResponse, error_response
from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.context import RequestContextMiddleware
from app.core.events import InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name, "event_payload": event.payload})


def _on_row_changed(event: InternalEvent) -> None:
    if not isinstance(event.payload, dict):
        return
    payload: dict[str, Any] = event.payload
    logger.debug(
        "commercial_row_changed",
        extra={
            "action": f"{payload.get('table')}.{payload.get('operation')}",
            "promise_id": payload.get("promise_id"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        event_bus.subscribe(ROW_CHANGED_EVENT, _on_row_changed)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


app = FastAPI(title="Studio Commercial API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(CommercialError)
async def commercial_error_handler(request: Request, exc: CommercialError) -> JSONResponse:
    return error_response(request, exc)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(str(item.get("msg", "invalid value")) for item in errors) or "invalid request"
    payload = ActionResponse[Any](
        success=False,
        error=message,
        code="validation_error",
        correlation_id=get_correlation_id() or None,
    )
    content = payload.model_dump(mode="json")
    content["details"] = jsonable_encoder(errors, custom_encoder={Exception: str})
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=content)


settings = get_settings()
if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
