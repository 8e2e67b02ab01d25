from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.commercial.actors import resolve_studio
from app.commercial.cache import offers_path, tag_cache
from app.commercial.errors import ConflictError, NotFoundError, ValidationFailedError
from app.commercial.models import BusinessTerm
from app.commercial.realtime import publish_change
from app.commercial.terms import business_term_service
from app.offers.models import Offer
from app.offers.schemas import (
    OfferCreate,
    OfferRead,
    OfferUpdate,
    PublicOfferRead,
    SlugCheckRead,
    availability_error,
)


logger = logging.getLogger("app.offers.service")

DUPLICATE_SLUG_MESSAGE = "an offer with this slug already exists"


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class OfferService:
    def check_slug_exists(
        self,
        session: Session,
        studio_slug: str,
        slug: str,
        *,
        exclude_offer_id: uuid.UUID | None = None,
    ) -> SlugCheckRead:
        studio = resolve_studio(session, studio_slug)
        return SlugCheckRead(slug=slug, exists=self._slug_taken(session, studio.id, slug, exclude_offer_id))

    def create_offer(self, session: Session, studio_slug: str, dto: OfferCreate) -> OfferRead:
        studio = resolve_studio(session, studio_slug)
        if self._slug_taken(session, studio.id, dto.slug):
            raise ConflictError(DUPLICATE_SLUG_MESSAGE, code="duplicate_offer_slug")
        term = None
        if dto.business_term_id is not None:
            term = business_term_service.get_for_studio(session, studio.id, dto.business_term_id)

        offer = Offer(
            studio_id=studio.id,
            name=dto.name.strip(),
            description=dto.description,
            slug=dto.slug,
            cover_media_url=dto.cover_media_url,
            cover_media_type=dto.cover_media_type,
            is_active=dto.is_active,
            is_permanent=dto.is_permanent,
            has_date_range=dto.has_date_range,
            start_date=dto.start_date if dto.has_date_range else None,
            end_date=dto.end_date if dto.has_date_range else None,
            order=self._next_order(session, studio.id),
            landing_page=dto.landing_page.model_dump(),
            leadform=dto.leadform.model_dump(),
        )
        session.add(offer)
        session.flush()
        if term is not None:
            self._attach_term(term, offer.id)
        self._commit(session)
        session.refresh(offer)

        self._changed(studio.id, studio_slug, offer.id, "INSERT")
        logger.info("offer_created", extra={"studio_slug": studio_slug, "offer_id": str(offer.id)})
        return self._to_read(session, offer)

    def update_offer(self, session: Session, studio_slug: str, offer_id: uuid.UUID, dto: OfferUpdate) -> OfferRead:
        studio = resolve_studio(session, studio_slug)
        offer = self._get(session, studio.id, offer_id)
        changes = dto.model_dump(exclude_unset=True)

        if changes.get("slug") is not None and changes["slug"] != offer.slug:
            if self._slug_taken(session, studio.id, changes["slug"], offer.id):
                raise ConflictError(DUPLICATE_SLUG_MESSAGE, code="duplicate_offer_slug")

        is_permanent = changes.get("is_permanent", offer.is_permanent)
        has_date_range = changes.get("has_date_range", offer.has_date_range)
        start_date = changes["start_date"] if "start_date" in changes else offer.start_date
        end_date = changes["end_date"] if "end_date" in changes else offer.end_date
        error = availability_error(bool(is_permanent), bool(has_date_range), _aware(start_date), _aware(end_date))
        if error is not None:
            raise ValidationFailedError(error, code="invalid_offer_availability")

        for field_name in ("description", "cover_media_url", "cover_media_type"):
            if field_name in changes:
                setattr(offer, field_name, changes[field_name])
        for field_name in ("name", "slug", "is_active"):
            if changes.get(field_name) is not None:
                setattr(offer, field_name, changes[field_name])
        offer.is_permanent = bool(is_permanent)
        offer.has_date_range = bool(has_date_range)
        offer.start_date = start_date if offer.has_date_range else None
        offer.end_date = end_date if offer.has_date_range else None
        if dto.landing_page is not None:
            offer.landing_page = dto.landing_page.model_dump()
        if dto.leadform is not None:
            offer.leadform = dto.leadform.model_dump()

        if "business_term_id" in changes:
            current = self._term_for(session, offer.id)
            new_id = changes["business_term_id"]
            if current is not None and current.id != new_id:
                self._release_term(current)
            if new_id is not None and (current is None or current.id != new_id):
                self._attach_term(business_term_service.get_for_studio(session, studio.id, new_id), offer.id)

        self._commit(session)
        session.refresh(offer)
        self._changed(studio.id, studio_slug, offer.id, "UPDATE")
        return self._to_read(session, offer)

    def get_offer(self, session: Session, studio_slug: str, offer_id: uuid.UUID) -> OfferRead:
        studio = resolve_studio(session, studio_slug)
        return self._to_read(session, self._get(session, studio.id, offer_id))

    def list_offers(self, session: Session, studio_slug: str) -> list[OfferRead]:
        studio = resolve_studio(session, studio_slug)
        offers = session.scalars(
            select(Offer).where(Offer.studio_id == studio.id).order_by(Offer.order.asc(), Offer.created_at.asc())
        )
        return [self._to_read(session, offer) for offer in offers]

    def list_public_active(self, session: Session, studio_slug: str, now: datetime | None = None) -> list[PublicOfferRead]:
        """Active offers that are permanent or whose date range contains ``now``."""
        studio = resolve_studio(session, studio_slug)
        moment = _aware(now) or datetime.now(timezone.utc)
        offers = session.scalars(
            select(Offer)
            .where(Offer.studio_id == studio.id, Offer.is_active.is_(True))
            .order_by(Offer.created_at.desc())
        )
        visible: list[PublicOfferRead] = []
        for offer in offers:
            if offer.is_permanent:
                visible.append(PublicOfferRead.model_validate(offer))
                continue
            start, end = _aware(offer.start_date), _aware(offer.end_date)
            if offer.has_date_range and start is not None and end is not None and start <= moment <= end:
                visible.append(PublicOfferRead.model_validate(offer))
        return visible

    def delete_offer(self, session: Session, studio_slug: str, offer_id: uuid.UUID) -> dict[str, str]:
        studio = resolve_studio(session, studio_slug)
        offer = self._get(session, studio.id, offer_id)
        term = self._term_for(session, offer.id)
        if term is not None:
            self._release_term(term)
        session.delete(offer)
        session.commit()
        self._changed(studio.id, studio_slug, offer_id, "DELETE")
        logger.info("offer_deleted", extra={"studio_slug": studio_slug, "offer_id": str(offer_id)})
        return {"id": str(offer_id)}

    def duplicate_offer(self, session: Session, studio_slug: str, offer_id: uuid.UUID) -> OfferRead:
        """Copy an offer as an inactive draft under the first free ``-copia`` slug."""
        studio = resolve_studio(session, studio_slug)
        original = self._get(session, studio.id, offer_id)

        slug = f"{original.slug}-copia"
        counter = 1
        while self._slug_taken(session, studio.id, slug):
            counter += 1
            slug = f"{original.slug}-copia-{counter}"

        copy = Offer(
            studio_id=studio.id,
            name=f"{original.name} (Copia)",
            description=original.description,
            slug=slug,
            cover_media_url=original.cover_media_url,
            cover_media_type=original.cover_media_type,
            is_active=False,
            is_permanent=original.is_permanent,
            has_date_range=original.has_date_range,
            start_date=original.start_date,
            end_date=original.end_date,
            order=self._next_order(session, studio.id),
            landing_page=dict(original.landing_page or {}),
            leadform=dict(original.leadform or {}),
        )
        session.add(copy)
        self._commit(session)
        session.refresh(copy)
        self._changed(studio.id, studio_slug, copy.id, "INSERT")
        return self._to_read(session, copy)

    def reorder_offers(self, session: Session, studio_slug: str, offer_ids: list[uuid.UUID]) -> list[OfferRead]:
        studio = resolve_studio(session, studio_slug)
        if not offer_ids:
            raise ValidationFailedError("no offers to reorder", code="invalid_offer_order")
        offers = {
            offer.id: offer
            for offer in session.scalars(select(Offer).where(Offer.studio_id == studio.id, Offer.id.in_(offer_ids)))
        }
        if len(offers) != len(set(offer_ids)) or len(offer_ids) != len(set(offer_ids)):
            raise ValidationFailedError("some offers were not found", code="invalid_offer_order")

        for index, item_id in enumerate(offer_ids):
            offers[item_id].order = index
        session.commit()
        tag_cache.revalidate_path(offers_path(studio_slug))
        return [self._to_read(session, offers[item_id]) for item_id in offer_ids]

    def _get(self, session: Session, studio_id: uuid.UUID, offer_id: uuid.UUID) -> Offer:
        offer = session.scalar(select(Offer).where(Offer.id == offer_id, Offer.studio_id == studio_id))
        if offer is None:
            raise NotFoundError("offer not found", code="offer_not_found")
        return offer

    def _slug_taken(
        self,
        session: Session,
        studio_id: uuid.UUID,
        slug: str,
        exclude_offer_id: uuid.UUID | None = None,
    ) -> bool:
        stmt = select(Offer.id).where(Offer.studio_id == studio_id, Offer.slug == slug)
        if exclude_offer_id is not None:
            stmt = stmt.where(Offer.id != exclude_offer_id)
        return session.scalar(stmt) is not None

    def _next_order(self, session: Session, studio_id: uuid.UUID) -> int:
        current = session.scalar(select(func.max(Offer.order)).where(Offer.studio_id == studio_id))
        return 0 if current is None else current + 1

    def _term_for(self, session: Session, offer_id: uuid.UUID) -> BusinessTerm | None:
        return session.scalar(select(BusinessTerm).where(BusinessTerm.offer_id == offer_id))

    @staticmethod
    def _attach_term(term: BusinessTerm, offer_id: uuid.UUID) -> None:
        term.offer_id = offer_id
        term.type = "offer"

    @staticmethod
    def _release_term(term: BusinessTerm) -> None:
        term.offer_id = None
        term.type = "standard"

    def _commit(self, session: Session) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError(DUPLICATE_SLUG_MESSAGE, code="duplicate_offer_slug") from None

    def _changed(self, studio_id: uuid.UUID, studio_slug: str, offer_id: uuid.UUID, operation: str) -> None:
        tag_cache.revalidate_path(offers_path(studio_slug))
        publish_change(studio_id=studio_id, table="offers", operation=operation, record_id=offer_id)

    def _to_read(self, session: Session, offer: Offer) -> OfferRead:
        term = self._term_for(session, offer.id)
        result = OfferRead.model_validate(offer)
        result.business_term_id = term.id if term is not None else None
        return result


offer_service = OfferService()
