from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.commercial.actors import StudioActor
from app.commercial.contacts import contact_service
from app.commercial.errors import ForbiddenError
from app.commercial.logs import promise_log_service
from app.commercial.promises import promise_service
from app.commercial.quotations import quotation_service
from app.commercial.responses import run_action
from app.commercial.schemas import (
    BusinessTermCreate,
    ContactCreate,
    ContactUpdate,
    PipelineStageCreate,
    PipelineStageUpdate,
    PromiseCreate,
    PromiseLogActionRequest,
    PromiseLogCreate,
    PromiseLogUpdate,
    PromiseMoveRequest,
    PromiseUpdate,
    QuotationAuthorizeRequest,
    QuotationCreate,
    QuotationRename,
    QuotationUpdate,
    ReorderRequest,
)
from app.commercial.stages import pipeline_stage_service
from app.commercial.terms import business_term_service
from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db

STUDIO_PREFIX = "/api/studios/{studio_slug}"

stages_router = APIRouter(prefix=STUDIO_PREFIX, tags=["commercial.stages"])
promises_router = APIRouter(prefix=STUDIO_PREFIX, tags=["commercial.promises"])
quotations_router = APIRouter(prefix=STUDIO_PREFIX, tags=["commercial.quotations"])
logs_router = APIRouter(prefix=STUDIO_PREFIX, tags=["commercial.logs"])
contacts_router = APIRouter(prefix=STUDIO_PREFIX, tags=["commercial.contacts"])
terms_router = APIRouter(prefix=STUDIO_PREFIX, tags=["commercial.business_terms"])


def get_current_actor(studio_slug: str, request: Request, auth_user: AuthUser = Depends(get_current_user)) -> StudioActor:
    if not auth_user.can_access_studio(studio_slug):
        raise ForbiddenError(f"no access to studio {studio_slug}", code="studio_forbidden")
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return StudioActor(user_id=auth_user.sub, roles=set(auth_user.roles), correlation_id=correlation_id)


# pipeline stages


@stages_router.get("/pipeline-stages")
def list_pipeline_stages(
    studio_slug: str,
    request: Request,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: pipeline_stage_service.list_stages(db, studio_slug, include_inactive=include_inactive),
        session=db,
    )


@stages_router.post("/pipeline-stages")
def create_pipeline_stage(
    studio_slug: str,
    payload: PipelineStageCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: pipeline_stage_service.create_stage(db, studio_slug, payload),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@stages_router.post("/pipeline-stages/reorder")
def reorder_pipeline_stages(
    studio_slug: str,
    payload: ReorderRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: pipeline_stage_service.reorder_stages(db, studio_slug, payload.ids), session=db)


@stages_router.patch("/pipeline-stages/{stage_id}")
def update_pipeline_stage(
    studio_slug: str,
    stage_id: uuid.UUID,
    payload: PipelineStageUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: pipeline_stage_service.update_stage(db, studio_slug, stage_id, payload), session=db)


# promises


@promises_router.get("/promises/test-data")
def count_test_promises(
    studio_slug: str,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.count_test_promises(db, studio_slug), session=db)


@promises_router.delete("/promises/test-data")
def purge_test_promises(
    studio_slug: str,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.delete_test_promises(db, studio_slug), session=db)


@promises_router.get("/promises")
def list_promises(
    studio_slug: str,
    request: Request,
    stage_id: uuid.UUID | None = Query(default=None),
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_service.list_promises(db, studio_slug, stage_id=stage_id, include_archived=include_archived),
        session=db,
    )


@promises_router.post("/promises")
def create_promise(
    studio_slug: str,
    payload: PromiseCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_service.create_promise(db, actor, studio_slug, payload),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@promises_router.get("/promises/{promise_id}")
def get_promise(
    studio_slug: str,
    promise_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.get_promise(db, studio_slug, promise_id), session=db)


@promises_router.patch("/promises/{promise_id}")
def update_promise(
    studio_slug: str,
    promise_id: uuid.UUID,
    payload: PromiseUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.update_promise(db, actor, studio_slug, promise_id, payload), session=db)


@promises_router.delete("/promises/{promise_id}")
def delete_promise(
    studio_slug: str,
    promise_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.delete_promise(db, studio_slug, promise_id), session=db)


@promises_router.post("/promises/{promise_id}/move")
def move_promise(
    studio_slug: str,
    promise_id: uuid.UUID,
    payload: PromiseMoveRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_service.move_promise(db, actor, studio_slug, promise_id, payload.stage_id, payload.reason),
        session=db,
    )


@promises_router.post("/promises/{promise_id}/archive")
def archive_promise(
    studio_slug: str,
    promise_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.archive_promise(db, actor, studio_slug, promise_id), session=db)


@promises_router.post("/promises/{promise_id}/unarchive")
def unarchive_promise(
    studio_slug: str,
    promise_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_service.unarchive_promise(db, actor, studio_slug, promise_id), session=db)


# quotations


@quotations_router.get("/promises/{promise_id}/quotations")
def list_quotations(
    studio_slug: str,
    promise_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: quotation_service.list_quotations(db, studio_slug, promise_id), session=db)


@quotations_router.post("/promises/{promise_id}/quotations")
def create_quotation(
    studio_slug: str,
    promise_id: uuid.UUID,
    payload: QuotationCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: quotation_service.create_quotation(db, actor, studio_slug, promise_id, payload),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@quotations_router.post("/promises/{promise_id}/quotations/reorder")
def reorder_quotations(
    studio_slug: str,
    promise_id: uuid.UUID,
    payload: ReorderRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: quotation_service.reorder_quotations(db, studio_slug, promise_id, payload.ids),
        session=db,
    )


@quotations_router.get("/quotations/{quotation_id}")
def get_quotation(
    studio_slug: str,
    quotation_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: quotation_service.get_quotation(db, studio_slug, quotation_id), session=db)


@quotations_router.patch("/quotations/{quotation_id}")
def update_quotation(
    studio_slug: str,
    quotation_id: uuid.UUID,
    payload: QuotationUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: quotation_service.update_quotation(db, actor, studio_slug, quotation_id, payload),
        session=db,
    )


@quotations_router.delete("/quotations/{quotation_id}")
def delete_quotation(
    studio_slug: str,
    quotation_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: quotation_service.delete_quotation(db, actor, studio_slug, quotation_id), session=db)


@quotations_router.post("/quotations/{quotation_id}/rename")
def rename_quotation(
    studio_slug: str,
    quotation_id: uuid.UUID,
    payload: QuotationRename,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: quotation_service.rename_quotation(db, actor, studio_slug, quotation_id, payload),
        session=db,
    )


@quotations_router.post("/quotations/{quotation_id}/authorize")
def authorize_quotation(
    studio_slug: str,
    quotation_id: uuid.UUID,
    request: Request,
    payload: QuotationAuthorizeRequest | None = None,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: quotation_service.authorize_quotation(db, actor, studio_slug, quotation_id, payload),
        session=db,
    )


@quotations_router.post("/quotations/{quotation_id}/visibility")
def toggle_quotation_visibility(
    studio_slug: str,
    quotation_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: quotation_service.toggle_visibility(db, studio_slug, quotation_id), session=db)


# actions that only need (session, actor, slug, quotation_id)
_QUOTATION_ACTIONS = {
    "duplicate": quotation_service.duplicate_quotation,
    "negotiation": quotation_service.toggle_negotiation,
    "closing": quotation_service.move_to_closing,
    "cancel-closing": quotation_service.cancel_closing,
    "cancel": quotation_service.cancel_quotation,
    "cancel-with-event": quotation_service.cancel_with_event,
    "archive": quotation_service.archive_quotation,
    "unarchive": quotation_service.unarchive_quotation,
}


def _register_quotation_action(path: str, handler) -> None:  # type: ignore[no-untyped-def]
    def endpoint(
        studio_slug: str,
        quotation_id: uuid.UUID,
        request: Request,
        db: Session = Depends(get_db),
        actor: StudioActor = Depends(get_current_actor),
    ) -> JSONResponse:
        return run_action(request, lambda: handler(db, actor, studio_slug, quotation_id), session=db)

    endpoint.__name__ = f"quotation_{path.replace('-', '_')}"
    quotations_router.add_api_route(f"/quotations/{{quotation_id}}/{path}", endpoint, methods=["POST"])


for _path, _handler in _QUOTATION_ACTIONS.items():
    _register_quotation_action(_path, _handler)


# promise logs


@logs_router.get("/promises/{promise_id}/logs")
def list_promise_logs(
    studio_slug: str,
    promise_id: uuid.UUID,
    request: Request,
    origin_context: str | None = Query(default=None),
    fresh: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_log_service.get_logs(db, studio_slug, promise_id, origin_context=origin_context, fresh=fresh),
        session=db,
    )


@logs_router.post("/promises/{promise_id}/logs")
def create_promise_note(
    studio_slug: str,
    promise_id: uuid.UUID,
    payload: PromiseLogCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_log_service.create_note(
            db, actor, studio_slug, promise_id, payload.content, payload.log_type, payload.origin_context
        ),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@logs_router.post("/promises/{promise_id}/logs/actions")
def log_promise_action(
    studio_slug: str,
    promise_id: uuid.UUID,
    payload: PromiseLogActionRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_log_service.log_action(
            db,
            actor,
            studio_slug,
            promise_id,
            payload.action,
            payload.metadata,
            payload.origin_context,
        ),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@logs_router.patch("/promises/{promise_id}/logs/{log_id}")
def update_promise_note(
    studio_slug: str,
    promise_id: uuid.UUID,
    log_id: uuid.UUID,
    payload: PromiseLogUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: promise_log_service.update_note(db, studio_slug, promise_id, log_id, payload.content),
        session=db,
    )


@logs_router.delete("/promises/{promise_id}/logs/{log_id}")
def delete_promise_note(
    studio_slug: str,
    promise_id: uuid.UUID,
    log_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: promise_log_service.delete_note(db, studio_slug, promise_id, log_id), session=db)


# contacts and business terms


@contacts_router.post("/contacts")
def create_contact(
    studio_slug: str,
    payload: ContactCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: contact_service.create_contact(db, studio_slug, payload),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@contacts_router.patch("/contacts/{contact_id}")
def update_contact(
    studio_slug: str,
    contact_id: uuid.UUID,
    payload: ContactUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: contact_service.update_contact(db, actor, studio_slug, contact_id, payload), session=db)


@terms_router.get("/business-terms")
def list_business_terms(
    studio_slug: str,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: business_term_service.list_terms(db, studio_slug), session=db)


@terms_router.post("/business-terms")
def create_business_term(
    studio_slug: str,
    payload: BusinessTermCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: business_term_service.create_term(db, studio_slug, payload),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


routers = [stages_router, promises_router, quotations_router, logs_router, contacts_router, terms_router]
