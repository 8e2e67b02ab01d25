from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.commercial.actors import StudioActor
from app.commercial.api import STUDIO_PREFIX, get_current_actor
from app.commercial.responses import run_action
from app.commercial.schemas import ReorderRequest
from app.core.database import get_db
from app.offers.schemas import OfferCreate, OfferUpdate
from app.offers.service import offer_service

router = APIRouter(prefix=STUDIO_PREFIX, tags=["offers"])


@router.get("/offers/public")
def list_public_offers(studio_slug: str, request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    return run_action(request, lambda: offer_service.list_public_active(db, studio_slug), session=db)


@router.get("/offers/slug-check")
def check_offer_slug(
    studio_slug: str,
    request: Request,
    slug: str = Query(min_length=1),
    exclude_offer_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: offer_service.check_slug_exists(db, studio_slug, slug, exclude_offer_id=exclude_offer_id),
        session=db,
    )


@router.get("/offers")
def list_offers(
    studio_slug: str,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: offer_service.list_offers(db, studio_slug), session=db)


@router.post("/offers")
def create_offer(
    studio_slug: str,
    payload: OfferCreate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: offer_service.create_offer(db, studio_slug, payload),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )


@router.post("/offers/reorder")
def reorder_offers(
    studio_slug: str,
    payload: ReorderRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: offer_service.reorder_offers(db, studio_slug, payload.ids), session=db)


@router.get("/offers/{offer_id}")
def get_offer(
    studio_slug: str,
    offer_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: offer_service.get_offer(db, studio_slug, offer_id), session=db)


@router.patch("/offers/{offer_id}")
def update_offer(
    studio_slug: str,
    offer_id: uuid.UUID,
    payload: OfferUpdate,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: offer_service.update_offer(db, studio_slug, offer_id, payload), session=db)


@router.delete("/offers/{offer_id}")
def delete_offer(
    studio_slug: str,
    offer_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(request, lambda: offer_service.delete_offer(db, studio_slug, offer_id), session=db)


@router.post("/offers/{offer_id}/duplicate")
def duplicate_offer(
    studio_slug: str,
    offer_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    actor: StudioActor = Depends(get_current_actor),
) -> JSONResponse:
    return run_action(
        request,
        lambda: offer_service.duplicate_offer(db, studio_slug, offer_id),
        session=db,
        success_status=status.HTTP_201_CREATED,
    )
