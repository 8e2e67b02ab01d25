from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.commercial.errors import NotFoundError
from app.commercial.models import PipelineStage, Promise, Quotation, StudioEvent


class PromiseRepository:
    def get(self, session: Session, studio_id: uuid.UUID, promise_id: uuid.UUID) -> Promise:
        promise = session.scalar(select(Promise).where(Promise.id == promise_id, Promise.studio_id == studio_id))
        if promise is None:
            raise NotFoundError("promise not found", code="promise_not_found")
        return promise

    def get_event(self, session: Session, promise_id: uuid.UUID) -> StudioEvent | None:
        return session.scalar(select(StudioEvent).where(StudioEvent.promise_id == promise_id))


class StageRepository:
    def list(self, session: Session, studio_id: uuid.UUID, *, include_inactive: bool = True) -> list[PipelineStage]:
        stmt = select(PipelineStage).where(PipelineStage.studio_id == studio_id)
        if not include_inactive:
            stmt = stmt.where(PipelineStage.is_active.is_(True))
        return list(session.scalars(stmt.order_by(PipelineStage.order.asc(), PipelineStage.created_at.asc())))

    def get_by_slug(self, session: Session, studio_id: uuid.UUID, slug: str) -> PipelineStage | None:
        return session.scalar(
            select(PipelineStage).where(PipelineStage.studio_id == studio_id, PipelineStage.slug == slug)
        )

    def next_order(self, session: Session, studio_id: uuid.UUID) -> int:
        current = session.scalar(select(func.max(PipelineStage.order)).where(PipelineStage.studio_id == studio_id))
        return 0 if current is None else current + 1


class QuotationRepository:
    def get(self, session: Session, studio_id: uuid.UUID, quotation_id: uuid.UUID) -> Quotation:
        quotation = session.scalar(
            select(Quotation).where(Quotation.id == quotation_id, Quotation.studio_id == studio_id)
        )
        if quotation is None:
            raise NotFoundError("quotation not found", code="quotation_not_found")
        return quotation

    def list_for_promise(self, session: Session, promise_id: uuid.UUID) -> list[Quotation]:
        return list(
            session.scalars(
                select(Quotation)
                .where(Quotation.promise_id == promise_id)
                .order_by(Quotation.order.asc(), Quotation.created_at.asc())
            )
        )

    def next_order(self, session: Session, promise_id: uuid.UUID) -> int:
        current = session.scalar(select(func.max(Quotation.order)).where(Quotation.promise_id == promise_id))
        return 0 if current is None else current + 1
