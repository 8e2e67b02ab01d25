from __future__ import annotations

import os
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app import events
from app.commercial.cache import tag_cache
from app.commercial.models import AcquisitionChannel, Studio
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.otel import setup_inmemory_otel


STUDIO_SLUG = "luna-studio"
BASE = f"/api/studios/{STUDIO_SLUG}"


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
def setup_env() -> Generator[None, None, None]:
    events.published_events.clear()
    tag_cache.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    tag_cache.clear()
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def channel_id(db_session: Session) -> str:
    studio = Studio(slug=STUDIO_SLUG, name="Luna Studio")
    db_session.add(studio)
    db_session.flush()
    channel = AcquisitionChannel(studio_id=studio.id, name="Web")
    db_session.add(channel)
    db_session.commit()
    return str(channel.id)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=["user"], studios=[STUDIO_SLUG])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_promise(client: TestClient, channel_id: str) -> str:
    response = client.post(
        f"{BASE}/promises",
        json={"contact_name": "Laura", "phone": "5512345678", "acquisition_channel_id": channel_id},
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


def test_request_span_contains_correlation_id(
    client: TestClient, channel_id: str, span_exporter: InMemorySpanExporter
) -> None:
    response = client.get(f"{BASE}/pipeline-stages", headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_move_span_records_outcome(client: TestClient, channel_id: str, span_exporter: InMemorySpanExporter) -> None:
    promise_id = _create_promise(client, channel_id)
    stages = client.get(f"{BASE}/pipeline-stages").json()["data"]
    negotiation_id = next(stage["id"] for stage in stages if stage["slug"] == "negotiation")

    moved = client.post(
        f"{BASE}/promises/{promise_id}/move",
        json={"stage_id": negotiation_id},
        headers={"X-Correlation-Id": "otel-move-1"},
    )
    assert moved.status_code == 200
    rejected = client.post(
        f"{BASE}/promises/{promise_id}/move",
        json={"stage_id": str(uuid.uuid4())},
        headers={"X-Correlation-Id": "otel-move-2"},
    )
    assert rejected.status_code == 404

    move_spans = [span for span in span_exporter.get_finished_spans() if span.name == "commercial.promise.move"]
    assert any(
        span.attributes.get("outcome") == "moved"
        and span.attributes.get("promise_id") == promise_id
        and span.attributes.get("correlation_id") == "otel-move-1"
        and span.attributes.get("studio_slug") == STUDIO_SLUG
        for span in move_spans
    )
    assert any(
        span.attributes.get("outcome") == "stage_not_found" and span.attributes.get("correlation_id") == "otel-move-2"
        for span in move_spans
    )


def test_quotation_transition_span(client: TestClient, channel_id: str, span_exporter: InMemorySpanExporter) -> None:
    promise_id = _create_promise(client, channel_id)
    quotation_id = client.post(
        f"{BASE}/promises/{promise_id}/quotations", json={"name": "Paquete Oro", "price": "15000"}
    ).json()["data"]["id"]

    closing = client.post(f"{BASE}/quotations/{quotation_id}/closing", headers={"X-Correlation-Id": "otel-q-1"})
    assert closing.status_code == 200

    transition_spans = [
        span for span in span_exporter.get_finished_spans() if span.name == "commercial.quotation.transition"
    ]
    assert any(
        span.attributes.get("quotation_id") == quotation_id
        and span.attributes.get("action") == "move_to_closing"
        and span.attributes.get("outcome") == "applied"
        and span.attributes.get("correlation_id") == "otel-q-1"
        for span in transition_spans
    )
