from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.commercial.actors import resolve_studio
from app.commercial.errors import NotFoundError
from app.commercial.models import BusinessTerm
from app.commercial.schemas import BusinessTermCreate, BusinessTermRead


class BusinessTermService:
    def create_term(self, session: Session, studio_slug: str, dto: BusinessTermCreate) -> BusinessTermRead:
        studio = resolve_studio(session, studio_slug)
        term = BusinessTerm(studio_id=studio.id, type="standard", **dto.model_dump())
        session.add(term)
        session.commit()
        session.refresh(term)
        return BusinessTermRead.model_validate(term)

    def list_terms(self, session: Session, studio_slug: str) -> list[BusinessTermRead]:
        studio = resolve_studio(session, studio_slug)
        terms = session.scalars(
            select(BusinessTerm)
            .where(BusinessTerm.studio_id == studio.id, BusinessTerm.is_active.is_(True))
            .order_by(BusinessTerm.created_at.asc())
        )
        return [BusinessTermRead.model_validate(term) for term in terms]

    def get_for_studio(self, session: Session, studio_id: uuid.UUID, term_id: uuid.UUID) -> BusinessTerm:
        term = session.get(BusinessTerm, term_id)
        if term is None or term.studio_id != studio_id:
            raise NotFoundError("business term not found", code="business_term_not_found")
        return term


business_term_service = BusinessTermService()
