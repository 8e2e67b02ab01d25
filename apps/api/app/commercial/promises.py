from __future__ import annotations

import logging
import uuid
from datetime import date

from opentelemetry import trace
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from app.commercial.actors import StudioActor, resolve_studio, resolve_studio_user_id
from app.commercial.cache import revalidate_promise
from app.commercial.contacts import contact_service
from app.commercial.errors import BusinessRuleError, NotFoundError, ValidationFailedError
from app.commercial.lifecycle import AUTHORIZED_STATUSES, parse_status
from app.commercial.logs import promise_log_service
from app.commercial.models import (
    AcquisitionChannel,
    AgendaEntry,
    Contact,
    EventType,
    Payment,
    PayrollEntry,
    PipelineStage,
    Promise,
    PromiseLog,
    PromiseStatusHistory,
    Quotation,
    SocialNetwork,
    Studio,
    StudioEvent,
)
from app.commercial.realtime import publish_change
from app.commercial.repository import PromiseRepository, StageRepository
from app.commercial.schemas import PromiseCreate, PromiseRead, PromiseUpdate, PurgeSummary
from app.commercial.stages import APPROVED_SLUG, ARCHIVED_SLUG, PENDING_SLUG, pipeline_stage_service
from app.metrics import observe_stage_move, observe_test_promises_purged
from app.otel import annotate_span


logger = logging.getLogger("app.commercial.promises")
tracer = trace.get_tracer("app.commercial.promises")

SOCIAL_CHANNEL_MARKERS = ("red", "social")
REFERRAL_CHANNEL_MARKERS = ("referido", "referral")


def _parse_stage_id(raw: str | uuid.UUID) -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationFailedError("stage id is not a valid identifier", code="invalid_stage_id") from None


class PromiseService:
    def __init__(self) -> None:
        self.promises = PromiseRepository()
        self.stages = StageRepository()

    # reads

    def get_promise(self, session: Session, studio_slug: str, promise_id: uuid.UUID) -> PromiseRead:
        studio = resolve_studio(session, studio_slug)
        return self._to_read(self.promises.get(session, studio.id, promise_id))

    def list_promises(
        self,
        session: Session,
        studio_slug: str,
        *,
        stage_id: uuid.UUID | None = None,
        include_archived: bool = False,
    ) -> list[PromiseRead]:
        studio = resolve_studio(session, studio_slug)
        stmt = (
            select(Promise)
            .join(PipelineStage, PipelineStage.id == Promise.pipeline_stage_id)
            .where(Promise.studio_id == studio.id)
        )
        if stage_id is not None:
            stmt = stmt.where(Promise.pipeline_stage_id == stage_id)
        if not include_archived:
            stmt = stmt.where(PipelineStage.slug != ARCHIVED_SLUG)
        stmt = stmt.order_by(PipelineStage.order.asc(), Promise.created_at.desc())
        return [self._to_read(promise) for promise in session.scalars(stmt)]

    def has_valid_linked_event(self, session: Session, promise_id: uuid.UUID) -> bool:
        event = self.promises.get_event(session, promise_id)
        if event is None:
            return False
        statuses = session.scalars(
            select(Quotation.status).where(
                Quotation.promise_id == promise_id,
                or_(Quotation.id == event.quotation_id, Quotation.evento_id == event.id),
            )
        )
        return any(parse_status(value) in AUTHORIZED_STATUSES for value in statuses)

    # writes

    def create_promise(self, session: Session, actor: StudioActor | None, studio_slug: str, dto: PromiseCreate) -> PromiseRead:
        studio = resolve_studio(session, studio_slug)
        channel = session.get(AcquisitionChannel, dto.acquisition_channel_id)
        if channel is None or channel.studio_id != studio.id:
            raise NotFoundError("acquisition channel not found", code="channel_not_found")

        channel_name = channel.name.lower()
        if any(marker in channel_name for marker in SOCIAL_CHANNEL_MARKERS) and dto.social_network_id is None:
            raise ValidationFailedError(
                "social network is required for social media channels",
                code="social_network_required",
            )
        if any(marker in channel_name for marker in REFERRAL_CHANNEL_MARKERS):
            if dto.referrer_contact_id is None and not (dto.referrer_name or "").strip():
                raise ValidationFailedError("referrer is required for referral channels", code="referrer_required")
        if dto.social_network_id is not None and session.get(SocialNetwork, dto.social_network_id) is None:
            raise NotFoundError("social network not found", code="social_network_not_found")
        if dto.event_type_id is not None:
            event_type = session.get(EventType, dto.event_type_id)
            if event_type is None or event_type.studio_id != studio.id:
                raise NotFoundError("event type not found", code="event_type_not_found")

        initial_stage = self._initial_stage(session, studio)
        try:
            contact = contact_service.upsert(
                session,
                studio.id,
                name=dto.contact_name,
                phone=dto.phone,
                email=dto.email,
                acquisition_channel_id=channel.id,
                social_network_id=dto.social_network_id,
                referrer_contact_id=dto.referrer_contact_id,
                referrer_name=dto.referrer_name,
                is_test=dto.is_test,
            )
            promise = Promise(
                studio_id=studio.id,
                contact_id=contact.id,
                event_type_id=dto.event_type_id,
                pipeline_stage_id=initial_stage.id,
                name=dto.name,
                event_date=dto.tentative_dates[0] if dto.tentative_dates else None,
                tentative_dates=[value.isoformat() for value in dto.tentative_dates],
                event_location=dto.event_location,
                notes=dto.notes,
                is_test=dto.is_test,
            )
            session.add(promise)
            session.commit()
        except Exception:
            session.rollback()
            raise

        contact_name = contact.name
        promise_log_service.record_best_effort(
            session,
            studio_id=studio.id,
            studio_slug=studio_slug,
            promise_id=promise.id,
            action="promise_created",
            metadata={"contactName": contact_name, "channelName": channel.name},
            user_id=resolve_studio_user_id(session, studio.id, actor),
        )
        revalidate_promise(studio_slug, promise.id)
        publish_change(studio_id=studio.id, table="promises", operation="INSERT", record_id=promise.id, promise_id=promise.id)
        logger.info("promise_created", extra={"studio_slug": studio_slug, "promise_id": str(promise.id)})
        return self._to_read(promise)

    def update_promise(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        promise_id: uuid.UUID,
        dto: PromiseUpdate,
    ) -> PromiseRead:
        studio = resolve_studio(session, studio_slug)
        promise = self.promises.get(session, studio.id, promise_id)
        values = dto.model_dump(exclude_unset=True)

        if values.get("event_type_id") is not None:
            event_type = session.get(EventType, values["event_type_id"])
            if event_type is None or event_type.studio_id != studio.id:
                raise NotFoundError("event type not found", code="event_type_not_found")
            promise.event_type_id = event_type.id
        for field_name in ("name", "notes", "event_location"):
            if field_name in values:
                setattr(promise, field_name, values[field_name])
        if values.get("tentative_dates") is not None:
            dates: list[date] = values["tentative_dates"]
            promise.tentative_dates = [value.isoformat() for value in dates]
            promise.event_date = dates[0] if dates else None

        contact_changes: list[str] = []
        contact = promise.contact
        if values.get("contact_name") is not None and values["contact_name"].strip() != contact.name:
            contact.name = values["contact_name"].strip()
            contact_changes.append("nombre")
        if "contact_email" in values and values["contact_email"] != contact.email:
            contact.email = values["contact_email"]
            contact_changes.append("email")

        session.commit()
        if contact_changes:
            promise_log_service.record_best_effort(
                session,
                studio_id=studio.id,
                studio_slug=studio_slug,
                promise_id=promise.id,
                action="contact_updated",
                metadata={"changes": contact_changes},
                user_id=resolve_studio_user_id(session, studio.id, actor),
            )
        revalidate_promise(studio_slug, promise.id)
        publish_change(studio_id=studio.id, table="promises", operation="UPDATE", record_id=promise.id, promise_id=promise.id)
        return self._to_read(promise)

    def apply_stage_change(
        self,
        session: Session,
        promise: Promise,
        target: PipelineStage,
        *,
        reason: str | None,
        user_id: uuid.UUID | None,
        trigger: str,
    ) -> PipelineStage:
        """Point ``promise`` at ``target`` and append the status history row, without committing."""
        current = session.get(PipelineStage, promise.pipeline_stage_id)
        promise.stage = target
        session.add(
            PromiseStatusHistory(
                promise_id=promise.id,
                from_stage_id=current.id if current is not None else None,
                to_stage_id=target.id,
                from_stage_slug=current.slug if current is not None else None,
                to_stage_slug=target.slug,
                reason=reason,
                user_id=user_id,
                history_metadata={
                    "trigger": trigger,
                    "from_stage_name": current.name if current is not None else None,
                    "to_stage_name": target.name,
                },
            )
        )
        session.flush()
        return current

    def move_promise(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        promise_id: uuid.UUID,
        stage_id: str | uuid.UUID,
        reason: str | None = None,
    ) -> PromiseRead:
        with tracer.start_as_current_span("commercial.promise.move") as span:
            annotate_span(span, promise_id=promise_id, stage_id=stage_id)
            try:
                result = self._move(session, actor, studio_slug, promise_id, stage_id, reason)
            except (BusinessRuleError, NotFoundError, ValidationFailedError) as exc:
                observe_stage_move(exc.code)
                span.set_attribute("outcome", exc.code)
                raise
            observe_stage_move("moved")
            span.set_attribute("outcome", "moved")
            return result

    def _move(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        promise_id: uuid.UUID,
        raw_stage_id: str | uuid.UUID,
        reason: str | None,
    ) -> PromiseRead:
        target_id = _parse_stage_id(raw_stage_id)
        studio = resolve_studio(session, studio_slug)
        promise = self.promises.get(session, studio.id, promise_id)

        target = session.get(PipelineStage, target_id)
        if target is None:
            raise NotFoundError("stage not found", code="stage_not_found")
        if target.studio_id != studio.id:
            raise NotFoundError("stage does not belong to this studio", code="stage_wrong_tenant")
        if not target.is_active:
            raise BusinessRuleError("stage is not active", code="stage_inactive")
        if target.id == promise.pipeline_stage_id:
            return self._to_read(promise)

        current = session.get(PipelineStage, promise.pipeline_stage_id)
        if (
            current is not None
            and current.slug == APPROVED_SLUG
            and target.slug != ARCHIVED_SLUG
            and self.has_valid_linked_event(session, promise.id)
        ):
            raise BusinessRuleError(
                "promise has an authorized event and can only be moved to the archived stage",
                code="restricted_linked_event",
            )

        user_id = resolve_studio_user_id(session, studio.id, actor)
        try:
            self.apply_stage_change(session, promise, target, reason=reason, user_id=user_id, trigger="manual_move")
            session.commit()
        except Exception:
            session.rollback()
            raise

        promise_log_service.record_best_effort(
            session,
            studio_id=studio.id,
            studio_slug=studio_slug,
            promise_id=promise.id,
            action="stage_change",
            metadata={"from": current.name if current is not None else None, "to": target.name},
            user_id=user_id,
        )
        revalidate_promise(studio_slug, promise.id)
        publish_change(studio_id=studio.id, table="promises", operation="UPDATE", record_id=promise.id, promise_id=promise.id)
        logger.info(
            "promise_stage_changed",
            extra={"studio_slug": studio_slug, "promise_id": str(promise.id), "stage_id": str(target.id)},
        )
        return self._to_read(promise)

    def archive_promise(self, session: Session, actor: StudioActor | None, studio_slug: str, promise_id: uuid.UUID) -> PromiseRead:
        studio = resolve_studio(session, studio_slug)
        promise = self.promises.get(session, studio.id, promise_id)
        if promise.stage.slug == ARCHIVED_SLUG:
            return self._to_read(promise)

        user_id = resolve_studio_user_id(session, studio.id, actor)
        try:
            archived = pipeline_stage_service.get_or_create_archived_stage(session, studio)
            self.apply_stage_change(session, promise, archived, reason=None, user_id=user_id, trigger="archive")
            session.commit()
        except Exception:
            session.rollback()
            raise

        promise_log_service.record_best_effort(
            session,
            studio_id=studio.id,
            studio_slug=studio_slug,
            promise_id=promise.id,
            action="archived",
            user_id=user_id,
        )
        revalidate_promise(studio_slug, promise.id)
        publish_change(studio_id=studio.id, table="promises", operation="UPDATE", record_id=promise.id, promise_id=promise.id)
        return self._to_read(promise)

    def unarchive_promise(self, session: Session, actor: StudioActor | None, studio_slug: str, promise_id: uuid.UUID) -> PromiseRead:
        """Move an archived promise to the first active non-archived stage; its previous stage is not restored."""
        studio = resolve_studio(session, studio_slug)
        promise = self.promises.get(session, studio.id, promise_id)
        if promise.stage.slug != ARCHIVED_SLUG:
            raise BusinessRuleError("promise is not archived", code="promise_not_archived")

        target = next(
            (stage for stage in self.stages.list(session, studio.id, include_inactive=False) if stage.slug != ARCHIVED_SLUG),
            None,
        )
        if target is None:
            raise BusinessRuleError("no active stage available to unarchive into", code="no_active_stage")

        user_id = resolve_studio_user_id(session, studio.id, actor)
        try:
            self.apply_stage_change(session, promise, target, reason=None, user_id=user_id, trigger="unarchive")
            session.commit()
        except Exception:
            session.rollback()
            raise

        promise_log_service.record_best_effort(
            session,
            studio_id=studio.id,
            studio_slug=studio_slug,
            promise_id=promise.id,
            action="unarchived",
            user_id=user_id,
        )
        revalidate_promise(studio_slug, promise.id)
        publish_change(studio_id=studio.id, table="promises", operation="UPDATE", record_id=promise.id, promise_id=promise.id)
        return self._to_read(promise)

    def delete_promise(self, session: Session, studio_slug: str, promise_id: uuid.UUID) -> dict[str, str]:
        studio = resolve_studio(session, studio_slug)
        promise = self.promises.get(session, studio.id, promise_id)
        try:
            self._purge(session, [promise.id])
            session.commit()
        except Exception:
            session.rollback()
            raise

        revalidate_promise(studio_slug, promise_id)
        publish_change(studio_id=studio.id, table="promises", operation="DELETE", record_id=promise_id, promise_id=promise_id)
        logger.info("promise_deleted", extra={"studio_slug": studio_slug, "promise_id": str(promise_id)})
        return {"id": str(promise_id)}

    def count_test_promises(self, session: Session, studio_slug: str) -> PurgeSummary:
        studio = resolve_studio(session, studio_slug)
        count = session.scalar(
            select(func.count()).select_from(Promise).where(Promise.studio_id == studio.id, Promise.is_test.is_(True))
        )
        return PurgeSummary(count=count or 0)

    def delete_test_promises(self, session: Session, studio_slug: str) -> PurgeSummary:
        with tracer.start_as_current_span("commercial.test_promises.purge") as span:
            studio = resolve_studio(session, studio_slug)
            promise_ids = list(
                session.scalars(select(Promise.id).where(Promise.studio_id == studio.id, Promise.is_test.is_(True)))
            )
            try:
                self._purge(session, promise_ids)
                orphan_contacts = (
                    select(Contact.id)
                    .outerjoin(Promise, Promise.contact_id == Contact.id)
                    .where(Contact.studio_id == studio.id, Contact.is_test.is_(True), Promise.id.is_(None))
                )
                session.execute(delete(Contact).where(Contact.id.in_(list(session.scalars(orphan_contacts)))))
                session.commit()
            except Exception as exc:
                session.rollback()
                logger.exception("test_promises_purge_failed", extra={"studio_slug": studio_slug, "error": str(exc)[:500]})
                raise

            annotate_span(span, purged_count=len(promise_ids))
            observe_test_promises_purged(len(promise_ids))
            logger.info("test_promises_purged", extra={"studio_slug": studio_slug, "purged_count": len(promise_ids)})
            revalidate_promise(studio_slug)
            return PurgeSummary(count=len(promise_ids))

    def _purge(self, session: Session, promise_ids: list[uuid.UUID]) -> None:
        if not promise_ids:
            return
        event_ids = list(session.scalars(select(StudioEvent.id).where(StudioEvent.promise_id.in_(promise_ids))))
        session.execute(
            delete(AgendaEntry).where(or_(AgendaEntry.promise_id.in_(promise_ids), AgendaEntry.evento_id.in_(event_ids)))
        )
        session.execute(delete(PayrollEntry).where(PayrollEntry.evento_id.in_(event_ids)))
        session.execute(delete(Payment).where(Payment.promise_id.in_(promise_ids)))
        session.execute(delete(Quotation).where(Quotation.promise_id.in_(promise_ids)))
        session.execute(delete(StudioEvent).where(StudioEvent.id.in_(event_ids)))
        session.execute(delete(PromiseLog).where(PromiseLog.promise_id.in_(promise_ids)))
        session.execute(delete(PromiseStatusHistory).where(PromiseStatusHistory.promise_id.in_(promise_ids)))
        session.execute(delete(Promise).where(Promise.id.in_(promise_ids)))

    def _initial_stage(self, session: Session, studio: Studio) -> PipelineStage:
        pipeline_stage_service.ensure_default_stages(session, studio)
        pending = self.stages.get_by_slug(session, studio.id, PENDING_SLUG)
        if pending is not None and pending.is_active:
            return pending
        for stage in self.stages.list(session, studio.id, include_inactive=False):
            if not stage.is_system:
                return stage
        raise BusinessRuleError("studio has no active pipeline stage", code="no_active_stage")

    def _to_read(self, promise: Promise) -> PromiseRead:
        return PromiseRead(
            id=promise.id,
            studio_id=promise.studio_id,
            contact_id=promise.contact_id,
            contact_name=promise.contact.name,
            contact_phone=promise.contact.phone,
            event_type_id=promise.event_type_id,
            pipeline_stage_id=promise.pipeline_stage_id,
            stage_slug=promise.stage.slug,
            stage_name=promise.stage.name,
            name=promise.name,
            event_date=promise.event_date,
            tentative_dates=[date.fromisoformat(value) for value in promise.tentative_dates or []],
            event_location=promise.event_location,
            notes=promise.notes,
            is_test=promise.is_test,
            created_at=promise.created_at,
            updated_at=promise.updated_at,
        )


promise_service = PromiseService()
