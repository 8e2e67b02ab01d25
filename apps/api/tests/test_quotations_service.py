from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.commercial.actors import StudioActor
from app.commercial.cache import tag_cache
from app.commercial.errors import BusinessRuleError, NotFoundError, ValidationFailedError
from app.commercial.models import (
    AcquisitionChannel,
    AgendaEntry,
    PayrollEntry,
    PipelineStage,
    Promise,
    PromiseLog,
    PromiseStatusHistory,
    Quotation,
    Studio,
    StudioEvent,
    StudioUser,
)
from app.commercial.promises import promise_service
from app.commercial.quotations import quotation_service
from app.commercial.schemas import (
    PromiseCreate,
    QuotationAuthorizeRequest,
    QuotationCreate,
    QuotationRename,
    QuotationUpdate,
)
from app.core.database import Base


STUDIO_SLUG = "luna-studio"
ACTOR = StudioActor(user_id="user-1")


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    tag_cache.clear()
    yield
    events.published_events.clear()
    tag_cache.clear()


@pytest.fixture()
def promise_id(db_session: Session) -> uuid.UUID:
    studio = Studio(slug=STUDIO_SLUG, name="Luna Studio")
    db_session.add(studio)
    db_session.flush()
    channel = AcquisitionChannel(studio_id=studio.id, name="Web")
    db_session.add_all([channel, StudioUser(studio_id=studio.id, platform_user_id="user-1", full_name="Ana Ruiz")])
    db_session.commit()

    promise = promise_service.create_promise(
        db_session,
        ACTOR,
        STUDIO_SLUG,
        PromiseCreate(
            contact_name="Laura Gómez",
            phone="55 1234 5678",
            acquisition_channel_id=channel.id,
            name="Boda Laura",
            tentative_dates=[date(2027, 3, 20)],
        ),
    )
    return promise.id


def _create(session: Session, promise_id: uuid.UUID, name: str = "Paquete Oro", price: str = "15000") -> uuid.UUID:
    quotation = quotation_service.create_quotation(
        session,
        ACTOR,
        STUDIO_SLUG,
        promise_id,
        QuotationCreate(name=name, price=Decimal(price)),
    )
    return quotation.id


def _log_contents(session: Session, promise_id: uuid.UUID, log_type: str) -> list[str]:
    return list(
        session.scalars(
            select(PromiseLog.content)
            .where(PromiseLog.promise_id == promise_id, PromiseLog.log_type == log_type)
            .order_by(PromiseLog.created_at.asc())
        )
    )


def test_create_quotation_appends_in_order_and_logs(db_session: Session, promise_id: uuid.UUID) -> None:
    first = _create(db_session, promise_id)
    second = _create(db_session, promise_id, name="Paquete Plata", price="9000")

    listed = quotation_service.list_quotations(db_session, STUDIO_SLUG, promise_id)
    assert [item.id for item in listed] == [first, second]
    assert [item.order for item in listed] == [0, 1]
    assert all(item.status == "pendiente" and item.visible_to_client for item in listed)

    assert _log_contents(db_session, promise_id, "quotation_created") == [
        "Cotización creada: Paquete Oro ($15,000.00)",
        "Cotización creada: Paquete Plata ($9,000.00)",
    ]


def test_create_quotation_rejects_blank_name(db_session: Session, promise_id: uuid.UUID) -> None:
    with pytest.raises(ValidationFailedError) as exc_info:
        quotation_service.create_quotation(
            db_session, ACTOR, STUDIO_SLUG, promise_id, QuotationCreate(name="   ", price=Decimal("10"))
        )
    assert exc_info.value.code == "invalid_quotation_name"


def test_negotiation_toggles_back_and_forth(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)

    assert quotation_service.toggle_negotiation(db_session, ACTOR, STUDIO_SLUG, quotation_id).status == "negociacion"
    assert quotation_service.toggle_negotiation(db_session, ACTOR, STUDIO_SLUG, quotation_id).status == "pendiente"


def test_only_one_quotation_per_promise_can_be_in_closing(db_session: Session, promise_id: uuid.UUID) -> None:
    first = _create(db_session, promise_id)
    second = _create(db_session, promise_id, name="Paquete Plata")

    assert quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, first).status == "en_cierre"
    with pytest.raises(BusinessRuleError) as exc_info:
        quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, second)
    assert exc_info.value.code == "closing_slot_taken"

    quotation_service.cancel_closing(db_session, ACTOR, STUDIO_SLUG, first)
    assert quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, second).status == "en_cierre"


def test_partial_unique_index_rejects_second_closing_row(db_session: Session, promise_id: uuid.UUID) -> None:
    promise = db_session.get(Promise, promise_id)
    assert promise is not None
    db_session.add(Quotation(studio_id=promise.studio_id, promise_id=promise_id, name="A", status="en_cierre"))
    db_session.commit()

    db_session.add(Quotation(studio_id=promise.studio_id, promise_id=promise_id, name="B", status="en_cierre"))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_authorize_creates_event_and_moves_promise_to_approved(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    authorized = quotation_service.authorize_quotation(
        db_session,
        ACTOR,
        STUDIO_SLUG,
        quotation_id,
        QuotationAuthorizeRequest(event_date=date(2027, 4, 2)),
    )

    assert authorized.status == "autorizada"
    assert authorized.evento_id is not None
    event = db_session.get(StudioEvent, authorized.evento_id)
    assert event is not None
    assert event.promise_id == promise_id
    assert event.quotation_id == quotation_id
    assert event.event_date == date(2027, 4, 2)

    promise = promise_service.get_promise(db_session, STUDIO_SLUG, promise_id)
    assert promise.stage_slug == "approved"

    history = db_session.scalars(
        select(PromiseStatusHistory).where(PromiseStatusHistory.promise_id == promise_id)
    ).all()
    assert [row.to_stage_slug for row in history] == ["approved"]
    assert history[0].from_stage_slug == "pending"
    assert history[0].history_metadata["trigger"] == "quotation_authorized"

    assert _log_contents(db_session, promise_id, "quotation_authorized") == [
        "Cotización autorizada: Paquete Oro ($15,000.00)"
    ]
    closing_events = [item for item in events.published_events if item.get("category") == "cierre"]
    assert {item["table"] for item in closing_events} == {"quotations"}


def test_authorize_requires_closing(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)

    with pytest.raises(BusinessRuleError) as exc_info:
        quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    assert exc_info.value.code == "invalid_transition"
    assert db_session.scalar(select(StudioEvent).where(StudioEvent.promise_id == promise_id)) is None


def test_active_quotation_cannot_be_edited_or_deleted(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    with pytest.raises(BusinessRuleError) as update_exc:
        quotation_service.update_quotation(
            db_session, ACTOR, STUDIO_SLUG, quotation_id, QuotationUpdate(price=Decimal("1"))
        )
    assert update_exc.value.code == "quotation_locked"

    with pytest.raises(BusinessRuleError) as delete_exc:
        quotation_service.delete_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    assert delete_exc.value.code == "quotation_active_with_event"


def test_update_rename_and_delete_pending_quotation(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)

    updated = quotation_service.update_quotation(
        db_session,
        ACTOR,
        STUDIO_SLUG,
        quotation_id,
        QuotationUpdate(price=Decimal("18000"), discount=Decimal("500")),
    )
    assert updated.price == Decimal("18000")
    assert updated.discount == Decimal("500")

    renamed = quotation_service.rename_quotation(
        db_session, ACTOR, STUDIO_SLUG, quotation_id, QuotationRename(name="Paquete Diamante")
    )
    assert renamed.name == "Paquete Diamante"

    assert quotation_service.delete_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id) == {"id": str(quotation_id)}
    assert db_session.get(Quotation, quotation_id) is None
    assert _log_contents(db_session, promise_id, "quotation_deleted") == ["Cotización eliminada: Paquete Diamante"]


def test_duplicate_uses_next_free_copy_name(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id, name="Boda")

    first = quotation_service.duplicate_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    second = quotation_service.duplicate_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    assert first.name == "Boda (Copia)"
    assert second.name == "Boda (Copia 2)"
    assert first.status == "pendiente"
    assert first.price == Decimal("15000")
    assert second.order == 2


def test_reorder_rejects_foreign_ids(db_session: Session, promise_id: uuid.UUID) -> None:
    first = _create(db_session, promise_id)
    second = _create(db_session, promise_id, name="Paquete Plata")

    reordered = quotation_service.reorder_quotations(db_session, STUDIO_SLUG, promise_id, [second, first])
    assert [(item.id, item.order) for item in reordered] == [(second, 0), (first, 1)]

    with pytest.raises(ValidationFailedError) as exc_info:
        quotation_service.reorder_quotations(db_session, STUDIO_SLUG, promise_id, [first, uuid.uuid4()])
    assert exc_info.value.code == "invalid_quotation_order"


def test_archive_blocked_while_sibling_is_authorized(db_session: Session, promise_id: uuid.UUID) -> None:
    authorized_id = _create(db_session, promise_id)
    other_id = _create(db_session, promise_id, name="Paquete Plata")
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, authorized_id)
    quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, authorized_id)

    with pytest.raises(BusinessRuleError) as exc_info:
        quotation_service.archive_quotation(db_session, ACTOR, STUDIO_SLUG, other_id)
    assert exc_info.value.code == "archive_blocked"


def test_archive_and_unarchive_round_trip(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)

    assert quotation_service.archive_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id).status == "archivada"
    assert quotation_service.unarchive_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id).status == "pendiente"


def test_toggle_visibility_flips_flag(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)

    assert quotation_service.toggle_visibility(db_session, STUDIO_SLUG, quotation_id).visible_to_client is False
    assert quotation_service.toggle_visibility(db_session, STUDIO_SLUG, quotation_id).visible_to_client is True


def test_cancel_keeps_event(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    event_id = quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id).evento_id

    cancelled = quotation_service.cancel_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    assert cancelled.status == "cancelada"
    assert cancelled.evento_id is None
    assert cancelled.discount is None
    assert db_session.get(StudioEvent, event_id) is not None


def test_cancel_with_event_removes_event_and_agenda(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    authorized = quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    event_id = authorized.evento_id
    db_session.add(
        AgendaEntry(studio_id=authorized.studio_id, evento_id=event_id, scheduled_for=date(2027, 4, 2), concept="Sesión")
    )
    db_session.add(
        PayrollEntry(studio_id=authorized.studio_id, evento_id=event_id, concept="Fotógrafo", status="pagado")
    )
    db_session.commit()

    cancelled = quotation_service.cancel_with_event(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    assert cancelled.status == "cancelada"
    assert cancelled.evento_id is None
    assert db_session.get(StudioEvent, event_id) is None
    assert db_session.scalars(select(AgendaEntry).where(AgendaEntry.evento_id == event_id)).all() == []
    assert _log_contents(db_session, promise_id, "event_cancelled") == [
        "Evento cancelado: Boda Laura (Cotización: Paquete Oro)"
    ]


def test_cancel_with_event_blocked_by_pending_payroll(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    authorized = quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    db_session.add_all(
        [
            PayrollEntry(studio_id=authorized.studio_id, evento_id=authorized.evento_id, concept="Fotógrafo"),
            PayrollEntry(studio_id=authorized.studio_id, evento_id=authorized.evento_id, concept="Video"),
        ]
    )
    db_session.commit()

    with pytest.raises(BusinessRuleError) as exc_info:
        quotation_service.cancel_with_event(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    assert exc_info.value.code == "pending_payroll"
    assert exc_info.value.message == "cannot delete event: 2 pending payroll entries"
    db_session.rollback()
    assert db_session.get(StudioEvent, authorized.evento_id) is not None
    assert quotation_service.get_quotation(db_session, STUDIO_SLUG, quotation_id).status == "autorizada"


def test_quotations_are_scoped_to_studio(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)
    db_session.add(Studio(slug="otro-studio", name="Otro"))
    db_session.commit()

    with pytest.raises(NotFoundError) as exc_info:
        quotation_service.get_quotation(db_session, "otro-studio", quotation_id)
    assert exc_info.value.code == "quotation_not_found"


def test_authorize_reuses_existing_event(db_session: Session, promise_id: uuid.UUID) -> None:
    first = _create(db_session, promise_id)
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, first)
    event_id = quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, first).evento_id
    quotation_service.cancel_quotation(db_session, ACTOR, STUDIO_SLUG, first)

    second = _create(db_session, promise_id, name="Paquete Plata")
    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, second)
    reauthorized = quotation_service.authorize_quotation(db_session, ACTOR, STUDIO_SLUG, second)

    assert reauthorized.evento_id == event_id
    assert db_session.scalars(select(StudioEvent).where(StudioEvent.promise_id == promise_id)).all() != []
    approved = db_session.scalar(select(PipelineStage).where(PipelineStage.slug == "approved"))
    assert approved is not None
    assert db_session.get(Promise, promise_id).pipeline_stage_id == approved.id


def test_transition_logs_record_previous_and_new_status(db_session: Session, promise_id: uuid.UUID) -> None:
    quotation_id = _create(db_session, promise_id)

    quotation_service.move_to_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)
    quotation_service.cancel_closing(db_session, ACTOR, STUDIO_SLUG, quotation_id)

    assert _log_contents(db_session, promise_id, "quotation_updated") == [
        "Cotización actualizada: Paquete Oro (pendiente → en_cierre)",
        "Cotización actualizada: Paquete Oro (en_cierre → pendiente)",
    ]
    metadata = db_session.scalars(
        select(PromiseLog.log_metadata)
        .where(PromiseLog.promise_id == promise_id, PromiseLog.log_type == "quotation_updated")
        .order_by(PromiseLog.created_at.asc())
    ).first()
    assert metadata == {
        "quotationName": "Paquete Oro",
        "from": "pendiente",
        "to": "en_cierre",
        "action": "move_to_closing",
    }
