from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.commercial.actors import StudioActor, resolve_studio, resolve_studio_user_id
from app.commercial.cache import revalidate_promise
from app.commercial.errors import BusinessRuleError, CommercialError, ValidationFailedError
from app.commercial.lifecycle import (
    EDITABLE_STATUSES,
    QuotationAction,
    QuotationStatus,
    check_transition,
    is_active_with_event,
    is_authorized,
    negotiation_action,
    parse_status,
)
from app.commercial.logs import promise_log_service
from app.commercial.models import AgendaEntry, PayrollEntry, PipelineStage, Quotation, Studio, StudioEvent
from app.commercial.promises import promise_service
from app.commercial.realtime import publish_change
from app.commercial.repository import PromiseRepository, QuotationRepository, StageRepository
from app.commercial.schemas import (
    QuotationAuthorizeRequest,
    QuotationCreate,
    QuotationRead,
    QuotationRename,
    QuotationUpdate,
)
from app.commercial.stages import APPROVED_SLUG, pipeline_stage_service
from app.commercial.terms import business_term_service
from app.metrics import observe_quotation_transition
from app.otel import annotate_span


logger = logging.getLogger("app.commercial.quotations")
tracer = trace.get_tracer("app.commercial.quotations")

CLOSING_CATEGORY = "cierre"
CLOSING_ACTIONS = frozenset(
    {QuotationAction.MOVE_TO_CLOSING, QuotationAction.CANCEL_CLOSING, QuotationAction.AUTHORIZE}
)


def _copy_name(base: str, taken: set[str]) -> str:
    candidate = f"{base} (Copia)"
    counter = 2
    while candidate in taken:
        candidate = f"{base} (Copia {counter})"
        counter += 1
    return candidate


def _amount(quotation: Quotation) -> float:
    return float(quotation.price - (quotation.discount or Decimal("0")))


def _status_change(
    quotation: Quotation, previous: QuotationStatus, target: QuotationStatus, action: QuotationAction
) -> dict[str, object]:
    return {"quotationName": quotation.name, "from": previous.value, "to": target.value, "action": action.value}


class QuotationService:
    def __init__(self) -> None:
        self.quotations = QuotationRepository()
        self.promises = PromiseRepository()
        self.stages = StageRepository()

    # reads

    def list_quotations(self, session: Session, studio_slug: str, promise_id: uuid.UUID) -> list[QuotationRead]:
        studio = resolve_studio(session, studio_slug)
        self.promises.get(session, studio.id, promise_id)
        return [QuotationRead.model_validate(item) for item in self.quotations.list_for_promise(session, promise_id)]

    def get_quotation(self, session: Session, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        studio = resolve_studio(session, studio_slug)
        return QuotationRead.model_validate(self.quotations.get(session, studio.id, quotation_id))

    # edits

    def create_quotation(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        promise_id: uuid.UUID,
        dto: QuotationCreate,
    ) -> QuotationRead:
        studio = resolve_studio(session, studio_slug)
        promise = self.promises.get(session, studio.id, promise_id)
        if dto.business_term_id is not None:
            business_term_service.get_for_studio(session, studio.id, dto.business_term_id)
        name = dto.name.strip()
        if not name:
            raise ValidationFailedError("quotation name is required", code="invalid_quotation_name")

        quotation = Quotation(
            studio_id=studio.id,
            promise_id=promise.id,
            name=name,
            description=dto.description,
            price=dto.price,
            discount=dto.discount,
            status=QuotationStatus.PENDIENTE.value,
            visible_to_client=True,
            order=self.quotations.next_order(session, promise.id),
            business_term_id=dto.business_term_id,
        )
        session.add(quotation)
        session.commit()
        session.refresh(quotation)

        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            operation="INSERT",
            log_action="quotation_created",
            log_metadata={"quotationName": quotation.name, "price": float(quotation.price)},
        )
        return QuotationRead.model_validate(quotation)

    def rename_quotation(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
        dto: QuotationRename,
    ) -> QuotationRead:
        studio = resolve_studio(session, studio_slug)
        quotation = self.quotations.get(session, studio.id, quotation_id)
        name = dto.name.strip()
        if not name:
            raise ValidationFailedError("quotation name is required", code="invalid_quotation_name")
        if name == quotation.name:
            return QuotationRead.model_validate(quotation)

        quotation.name = name
        session.commit()
        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            log_action="quotation_updated",
            log_metadata={"quotationName": name},
        )
        return QuotationRead.model_validate(quotation)

    def update_quotation(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
        dto: QuotationUpdate,
    ) -> QuotationRead:
        studio = resolve_studio(session, studio_slug)
        quotation = self.quotations.get(session, studio.id, quotation_id)
        if parse_status(quotation.status) not in EDITABLE_STATUSES:
            raise BusinessRuleError(
                f"quotation in status {parse_status(quotation.status).value} cannot be edited",
                code="quotation_locked",
            )

        for field_name, value in dto.model_dump(exclude_unset=True).items():
            if field_name == "price" and value is None:
                continue
            setattr(quotation, field_name, value)
        session.commit()
        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            log_action="quotation_updated",
            log_metadata={"quotationName": quotation.name},
        )
        return QuotationRead.model_validate(quotation)

    def duplicate_quotation(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
    ) -> QuotationRead:
        studio = resolve_studio(session, studio_slug)
        source = self.quotations.get(session, studio.id, quotation_id)
        taken = {
            item.name
            for item in self.quotations.list_for_promise(session, source.promise_id)
            if parse_status(item.status) != QuotationStatus.ARCHIVADA
        }
        copy = Quotation(
            studio_id=studio.id,
            promise_id=source.promise_id,
            name=_copy_name(source.name, taken),
            description=source.description,
            price=source.price,
            discount=source.discount,
            status=QuotationStatus.PENDIENTE.value,
            visible_to_client=source.visible_to_client,
            order=self.quotations.next_order(session, source.promise_id),
            business_term_id=source.business_term_id,
        )
        session.add(copy)
        session.commit()
        session.refresh(copy)
        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            copy,
            operation="INSERT",
            log_action="quotation_created",
            log_metadata={"quotationName": copy.name, "price": float(copy.price)},
        )
        return QuotationRead.model_validate(copy)

    def reorder_quotations(
        self,
        session: Session,
        studio_slug: str,
        promise_id: uuid.UUID,
        quotation_ids: list[uuid.UUID],
    ) -> list[QuotationRead]:
        studio = resolve_studio(session, studio_slug)
        self.promises.get(session, studio.id, promise_id)
        existing = {item.id: item for item in self.quotations.list_for_promise(session, promise_id)}
        if len(set(quotation_ids)) != len(quotation_ids):
            raise ValidationFailedError("quotation ids must be unique", code="invalid_quotation_order")
        missing = [item_id for item_id in quotation_ids if item_id not in existing]
        if missing:
            raise ValidationFailedError(
                f"quotation {missing[0]} does not belong to this promise",
                code="invalid_quotation_order",
            )

        for index, item_id in enumerate(quotation_ids):
            existing[item_id].order = index
        session.commit()

        revalidate_promise(studio_slug, promise_id)
        for item_id in quotation_ids:
            publish_change(
                studio_id=studio.id,
                table="quotations",
                operation="UPDATE",
                record_id=item_id,
                promise_id=promise_id,
            )
        return [QuotationRead.model_validate(existing[item_id]) for item_id in quotation_ids]

    def delete_quotation(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
    ) -> dict[str, str]:
        studio = resolve_studio(session, studio_slug)
        quotation = self.quotations.get(session, studio.id, quotation_id)
        if is_active_with_event(quotation):
            raise BusinessRuleError(
                "cannot delete a quotation that is in closing or authorized with an event",
                code="quotation_active_with_event",
            )

        name = quotation.name
        promise_id = quotation.promise_id
        session.delete(quotation)
        session.commit()

        promise_log_service.record_best_effort(
            session,
            studio_id=studio.id,
            studio_slug=studio_slug,
            promise_id=promise_id,
            action="quotation_deleted",
            metadata={"quotationName": name},
            user_id=resolve_studio_user_id(session, studio.id, actor),
        )
        revalidate_promise(studio_slug, promise_id)
        publish_change(
            studio_id=studio.id,
            table="quotations",
            operation="DELETE",
            record_id=quotation_id,
            promise_id=promise_id,
        )
        return {"id": str(quotation_id)}

    def toggle_visibility(self, session: Session, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        studio = resolve_studio(session, studio_slug)
        quotation = self.quotations.get(session, studio.id, quotation_id)
        quotation.visible_to_client = not quotation.visible_to_client
        session.commit()
        revalidate_promise(studio_slug, quotation.promise_id)
        publish_change(
            studio_id=studio.id,
            table="quotations",
            operation="UPDATE",
            record_id=quotation.id,
            promise_id=quotation.promise_id,
        )
        return QuotationRead.model_validate(quotation)

    # lifecycle

    def toggle_negotiation(self, session: Session, actor: StudioActor | None, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        return self._transition(session, actor, studio_slug, quotation_id, None)

    def move_to_closing(self, session: Session, actor: StudioActor | None, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        return self._transition(session, actor, studio_slug, quotation_id, QuotationAction.MOVE_TO_CLOSING)

    def cancel_closing(self, session: Session, actor: StudioActor | None, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        return self._transition(session, actor, studio_slug, quotation_id, QuotationAction.CANCEL_CLOSING)

    def archive_quotation(self, session: Session, actor: StudioActor | None, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        return self._transition(session, actor, studio_slug, quotation_id, QuotationAction.ARCHIVE)

    def unarchive_quotation(self, session: Session, actor: StudioActor | None, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        return self._transition(session, actor, studio_slug, quotation_id, QuotationAction.UNARCHIVE)

    def authorize_quotation(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
        dto: QuotationAuthorizeRequest | None = None,
    ) -> QuotationRead:
        """Authorize a quotation in closing.

        Creates the promise's event (or reuses the existing one), links it to
        the quotation and moves the promise to the ``approved`` stage with a
        status history row, all in one commit.
        """
        action = QuotationAction.AUTHORIZE
        with tracer.start_as_current_span("commercial.quotation.authorize") as span:
            studio = resolve_studio(session, studio_slug)
            quotation = self.quotations.get(session, studio.id, quotation_id)
            annotate_span(span, quotation_id=quotation.id, promise_id=quotation.promise_id)
            previous = parse_status(quotation.status)
            target = self._check(session, quotation, action)

            promise = self.promises.get(session, studio.id, quotation.promise_id)
            approved = self._approved_stage(session, studio)
            user_id = resolve_studio_user_id(session, studio.id, actor)
            event_date = dto.event_date if dto is not None and dto.event_date is not None else promise.event_date

            event = self.promises.get_event(session, promise.id)
            if event is None:
                event = StudioEvent(studio_id=studio.id, promise_id=promise.id, quotation_id=quotation.id, event_date=event_date)
                session.add(event)
            else:
                event.quotation_id = quotation.id
                event.status = "active"
                if event_date is not None:
                    event.event_date = event_date
            session.flush()

            quotation.evento_id = event.id
            quotation.status = target.value
            if promise.pipeline_stage_id != approved.id:
                promise_service.apply_stage_change(
                    session,
                    promise,
                    approved,
                    reason=None,
                    user_id=user_id,
                    trigger="quotation_authorized",
                )
            self._commit(session, action)
            span.set_attribute("outcome", "applied")

        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            log_action="quotation_authorized",
            log_metadata={**_status_change(quotation, previous, target, action), "amount": _amount(quotation)},
            category=CLOSING_CATEGORY,
        )
        publish_change(
            studio_id=studio.id,
            table="promises",
            operation="UPDATE",
            record_id=promise.id,
            promise_id=promise.id,
        )
        return QuotationRead.model_validate(quotation)

    def cancel_quotation(self, session: Session, actor: StudioActor | None, studio_slug: str, quotation_id: uuid.UUID) -> QuotationRead:
        """Cancel an authorized quotation; its event is kept."""
        action = QuotationAction.CANCEL
        studio = resolve_studio(session, studio_slug)
        quotation = self.quotations.get(session, studio.id, quotation_id)
        previous = parse_status(quotation.status)
        target = self._check(session, quotation, action)

        quotation.status = target.value
        quotation.evento_id = None
        quotation.discount = None
        self._commit(session, action)
        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            log_action="quotation_updated",
            log_metadata=_status_change(quotation, previous, target, action),
        )
        return QuotationRead.model_validate(quotation)

    def cancel_with_event(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
    ) -> QuotationRead:
        """Cancel an authorized quotation and remove its event when nothing else uses it.

        The event is kept while another authorized quotation references it.
        Pending payroll entries block the removal.
        """
        action = QuotationAction.CANCEL_WITH_EVENT
        with tracer.start_as_current_span("commercial.quotation.cancel_with_event") as span:
            studio = resolve_studio(session, studio_slug)
            quotation = self.quotations.get(session, studio.id, quotation_id)
            annotate_span(span, quotation_id=quotation.id, promise_id=quotation.promise_id)
            previous = parse_status(quotation.status)
            target = self._check(session, quotation, action)

            event = session.get(StudioEvent, quotation.evento_id) if quotation.evento_id is not None else None
            if event is None:
                event = self.promises.get_event(session, quotation.promise_id)
                if event is not None and event.quotation_id != quotation.id:
                    event = None

            event_removed = False
            if event is not None:
                still_used = any(
                    sibling.id != quotation.id and sibling.evento_id == event.id and is_authorized(sibling.status)
                    for sibling in self.quotations.list_for_promise(session, quotation.promise_id)
                )
                if not still_used:
                    pending = session.scalar(
                        select(func.count())
                        .select_from(PayrollEntry)
                        .where(PayrollEntry.evento_id == event.id, PayrollEntry.status == "pendiente")
                    ) or 0
                    if pending:
                        observe_quotation_transition(action.value, "rejected")
                        noun = "entry" if pending == 1 else "entries"
                        raise BusinessRuleError(
                            f"cannot delete event: {pending} pending payroll {noun}",
                            code="pending_payroll",
                        )
                    session.execute(delete(AgendaEntry).where(AgendaEntry.evento_id == event.id))
                    session.delete(event)
                    event_removed = True

            quotation.status = target.value
            quotation.evento_id = None
            quotation.discount = None
            self._commit(session, action)
            span.set_attribute("outcome", "event_removed" if event_removed else "event_kept")

        promise = self.promises.get(session, studio.id, quotation.promise_id)
        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            log_action="event_cancelled" if event_removed else "quotation_updated",
            log_metadata=(
                {
                    **_status_change(quotation, previous, target, action),
                    "eventName": promise.name or promise.contact.name,
                }
                if event_removed
                else _status_change(quotation, previous, target, action)
            ),
            category=CLOSING_CATEGORY,
        )
        return QuotationRead.model_validate(quotation)

    # internals

    def _transition(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        quotation_id: uuid.UUID,
        action: QuotationAction | None,
    ) -> QuotationRead:
        with tracer.start_as_current_span("commercial.quotation.transition") as span:
            studio = resolve_studio(session, studio_slug)
            quotation = self.quotations.get(session, studio.id, quotation_id)
            if action is None:
                action = negotiation_action(quotation.status)
            annotate_span(span, quotation_id=quotation.id, action=action.value)
            try:
                previous = parse_status(quotation.status)
                target = self._check(session, quotation, action)
                quotation.status = target.value
                self._commit(session, action)
            except CommercialError as exc:
                span.set_attribute("outcome", exc.code)
                raise
            span.set_attribute("outcome", "applied")

        logger.info(
            "quotation_transition_applied",
            extra={"studio_slug": studio_slug, "quotation_id": str(quotation.id), "action": action.value},
        )
        self._after_write(
            session,
            actor,
            studio,
            studio_slug,
            quotation,
            log_action="quotation_updated",
            log_metadata=_status_change(quotation, previous, target, action),
            category=CLOSING_CATEGORY if action in CLOSING_ACTIONS else None,
        )
        return QuotationRead.model_validate(quotation)

    def _check(self, session: Session, quotation: Quotation, action: QuotationAction) -> QuotationStatus:
        siblings = self.quotations.list_for_promise(session, quotation.promise_id)
        try:
            return check_transition(quotation, action, siblings)
        except CommercialError:
            observe_quotation_transition(action.value, "rejected")
            raise

    def _commit(self, session: Session, action: QuotationAction) -> None:
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            observe_quotation_transition(action.value, "conflict")
            raise BusinessRuleError(
                "another quotation of this promise is already in closing or authorized with an event",
                code="closing_slot_taken",
            ) from None
        observe_quotation_transition(action.value, "applied")

    def _approved_stage(self, session: Session, studio: Studio) -> PipelineStage:
        pipeline_stage_service.ensure_default_stages(session, studio)
        stage = self.stages.get_by_slug(session, studio.id, APPROVED_SLUG)
        if stage is None:
            raise BusinessRuleError("studio has no approved stage", code="approved_stage_missing")
        return stage

    def _after_write(
        self,
        session: Session,
        actor: StudioActor | None,
        studio: Studio,
        studio_slug: str,
        quotation: Quotation,
        *,
        log_action: str,
        log_metadata: dict[str, object],
        operation: str = "UPDATE",
        category: str | None = None,
    ) -> None:
        promise_log_service.record_best_effort(
            session,
            studio_id=studio.id,
            studio_slug=studio_slug,
            promise_id=quotation.promise_id,
            action=log_action,
            metadata=log_metadata,
            user_id=resolve_studio_user_id(session, studio.id, actor),
        )
        revalidate_promise(studio_slug, quotation.promise_id)
        publish_change(
            studio_id=studio.id,
            table="quotations",
            operation=operation,
            record_id=quotation.id,
            promise_id=quotation.promise_id,
            category=category,
        )


quotation_service = QuotationService()
