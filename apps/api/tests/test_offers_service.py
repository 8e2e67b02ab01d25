from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.commercial.cache import offers_path, tag_cache
from app.commercial.errors import ConflictError, NotFoundError, ValidationFailedError
from app.commercial.models import BusinessTerm, Studio
from app.core.database import Base
from app.offers.schemas import LeadFormConfig, OfferCreate, OfferUpdate
from app.offers.service import offer_service


STUDIO_SLUG = "luna-studio"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


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
def studio(db_session: Session) -> Studio:
    studio = Studio(slug=STUDIO_SLUG, name="Luna Studio")
    db_session.add(studio)
    db_session.commit()
    return studio


def _term(session: Session, studio: Studio, name: str) -> BusinessTerm:
    term = BusinessTerm(studio_id=studio.id, name=name, discount_percentage=Decimal("10"))
    session.add(term)
    session.commit()
    return term


def _permanent(slug: str = "promo-boda", **overrides: object) -> OfferCreate:
    data: dict[str, object] = {"name": "Promo Boda", "slug": slug, "is_permanent": True}
    data.update(overrides)
    return OfferCreate(**data)


def test_offer_create_requires_exactly_one_availability_mode() -> None:
    with pytest.raises(ValidationError):
        OfferCreate(name="Promo", slug="promo")
    with pytest.raises(ValidationError):
        OfferCreate(name="Promo", slug="promo", is_permanent=True, has_date_range=True, start_date=NOW, end_date=NOW)
    with pytest.raises(ValidationError):
        OfferCreate(name="Promo", slug="promo", has_date_range=True, start_date=NOW, end_date=NOW - timedelta(days=1))
    with pytest.raises(ValidationError):
        OfferCreate(name="Promo", slug="Promo Boda", is_permanent=True)


def test_create_offer_fills_defaults_and_rejects_duplicate_slug(db_session: Session, studio: Studio) -> None:
    offer = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())

    assert offer.order == 0
    assert offer.landing_page == {"content_blocks": [], "cta_config": {"buttons": []}}
    assert offer.leadform["fields_config"] == {"fields": []}
    assert offer.leadform["success_message"] == "¡Gracias! Nos pondremos en contacto contigo pronto."
    assert offers_path(STUDIO_SLUG) in tag_cache.revalidated_paths

    with pytest.raises(ConflictError) as exc_info:
        offer_service.create_offer(db_session, STUDIO_SLUG, _permanent(name="Otra"))
    assert exc_info.value.code == "duplicate_offer_slug"
    assert exc_info.value.message == "an offer with this slug already exists"


def test_slug_check_excludes_current_offer(db_session: Session, studio: Studio) -> None:
    offer = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())

    assert offer_service.check_slug_exists(db_session, STUDIO_SLUG, "promo-boda").exists is True
    assert offer_service.check_slug_exists(db_session, STUDIO_SLUG, "promo-boda", exclude_offer_id=offer.id).exists is False
    assert offer_service.check_slug_exists(db_session, STUDIO_SLUG, "otra").exists is False


def test_update_offer_validates_availability(db_session: Session, studio: Studio) -> None:
    offer = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())

    with pytest.raises(ValidationFailedError) as exc_info:
        offer_service.update_offer(db_session, STUDIO_SLUG, offer.id, OfferUpdate(is_permanent=False))
    assert exc_info.value.code == "invalid_offer_availability"

    ranged = offer_service.update_offer(
        db_session,
        STUDIO_SLUG,
        offer.id,
        OfferUpdate(is_permanent=False, has_date_range=True, start_date=NOW, end_date=NOW + timedelta(days=30)),
    )
    assert ranged.has_date_range is True
    assert ranged.start_date is not None

    back = offer_service.update_offer(
        db_session, STUDIO_SLUG, offer.id, OfferUpdate(is_permanent=True, has_date_range=False)
    )
    assert back.start_date is None
    assert back.end_date is None


def test_update_offer_slug_collision(db_session: Session, studio: Studio) -> None:
    offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())
    other = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent("promo-xv"))

    with pytest.raises(ConflictError):
        offer_service.update_offer(db_session, STUDIO_SLUG, other.id, OfferUpdate(slug="promo-boda"))

    renamed = offer_service.update_offer(
        db_session,
        STUDIO_SLUG,
        other.id,
        OfferUpdate(name="Promo XV Años", leadform=LeadFormConfig(title="Cotiza tus XV", email_required=True)),
    )
    assert renamed.name == "Promo XV Años"
    assert renamed.slug == "promo-xv"
    assert renamed.leadform["title"] == "Cotiza tus XV"
    assert renamed.leadform["email_required"] is True


def test_public_offers_respect_active_flag_and_window(db_session: Session, studio: Studio) -> None:
    permanent = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())
    offer_service.create_offer(db_session, STUDIO_SLUG, _permanent("apagada", is_active=False))
    current = offer_service.create_offer(
        db_session,
        STUDIO_SLUG,
        OfferCreate(
            name="Octubre",
            slug="octubre",
            has_date_range=True,
            start_date=NOW - timedelta(days=5),
            end_date=NOW + timedelta(days=5),
        ),
    )
    offer_service.create_offer(
        db_session,
        STUDIO_SLUG,
        OfferCreate(
            name="Verano",
            slug="verano",
            has_date_range=True,
            start_date=NOW - timedelta(days=120),
            end_date=NOW - timedelta(days=60),
        ),
    )

    visible = offer_service.list_public_active(db_session, STUDIO_SLUG, now=NOW)

    assert {item.id for item in visible} == {permanent.id, current.id}


def test_duplicate_offer_picks_free_slug_and_starts_inactive(db_session: Session, studio: Studio) -> None:
    original = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())

    first = offer_service.duplicate_offer(db_session, STUDIO_SLUG, original.id)
    second = offer_service.duplicate_offer(db_session, STUDIO_SLUG, original.id)

    assert first.slug == "promo-boda-copia"
    assert second.slug == "promo-boda-copia-2"
    assert first.name == "Promo Boda (Copia)"
    assert first.is_active is False
    assert [item.order for item in (original, first, second)] == [0, 1, 2]


def test_business_term_follows_offer(db_session: Session, studio: Studio) -> None:
    first_term = _term(db_session, studio, "Anticipo 30%")
    second_term = _term(db_session, studio, "Contado")

    offer = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent(business_term_id=first_term.id))
    assert offer.business_term_id == first_term.id
    db_session.refresh(first_term)
    assert first_term.type == "offer"
    assert first_term.offer_id == offer.id

    swapped = offer_service.update_offer(
        db_session, STUDIO_SLUG, offer.id, OfferUpdate(business_term_id=second_term.id)
    )
    assert swapped.business_term_id == second_term.id
    db_session.refresh(first_term)
    assert first_term.type == "standard"
    assert first_term.offer_id is None

    offer_service.delete_offer(db_session, STUDIO_SLUG, offer.id)
    db_session.refresh(second_term)
    assert second_term.offer_id is None
    assert second_term.type == "standard"


def test_reorder_offers(db_session: Session, studio: Studio) -> None:
    first = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())
    second = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent("promo-xv"))

    reordered = offer_service.reorder_offers(db_session, STUDIO_SLUG, [second.id, first.id])
    assert [item.id for item in reordered] == [second.id, first.id]
    assert [item.id for item in offer_service.list_offers(db_session, STUDIO_SLUG)] == [second.id, first.id]

    with pytest.raises(ValidationFailedError) as exc_info:
        offer_service.reorder_offers(db_session, STUDIO_SLUG, [first.id, uuid.uuid4()])
    assert exc_info.value.code == "invalid_offer_order"


def test_offers_are_scoped_to_studio(db_session: Session, studio: Studio) -> None:
    offer = offer_service.create_offer(db_session, STUDIO_SLUG, _permanent())
    db_session.add(Studio(slug="otro-studio", name="Otro"))
    db_session.commit()

    with pytest.raises(NotFoundError) as exc_info:
        offer_service.get_offer(db_session, "otro-studio", offer.id)
    assert exc_info.value.code == "offer_not_found"
    # slugs are unique per studio only
    assert offer_service.create_offer(db_session, "otro-studio", _permanent()).slug == "promo-boda"
