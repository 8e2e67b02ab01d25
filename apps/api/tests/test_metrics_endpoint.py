from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.commercial.cache import tag_cache
from app.commercial.models import AcquisitionChannel, Studio
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    events.published_events.clear()
    tag_cache.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    tag_cache.clear()
    get_settings.cache_clear()


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
def auth_user() -> AuthUser:
    return AuthUser(sub="metrics-admin", roles=["user", "system.metrics.read"], studios=[STUDIO_SLUG])


@pytest.fixture()
def client(db_session: Session, auth_user: AuthUser) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return auth_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_auth_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_commercial_metrics(client: TestClient, channel_id: str) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    promise = client.post(
        f"{BASE}/promises",
        json={"contact_name": "Laura", "phone": "5512345678", "acquisition_channel_id": channel_id},
    )
    assert promise.status_code == 201
    promise_id = promise.json()["data"]["id"]

    stages = client.get(f"{BASE}/pipeline-stages").json()["data"]
    negotiation_id = next(stage["id"] for stage in stages if stage["slug"] == "negotiation")
    moved = client.post(f"{BASE}/promises/{promise_id}/move", json={"stage_id": negotiation_id})
    assert moved.status_code == 200

    quotation = client.post(f"{BASE}/promises/{promise_id}/quotations", json={"name": "Paquete Oro", "price": "15000"})
    assert quotation.status_code == 201
    closing = client.post(f"{BASE}/quotations/{quotation.json()['data']['id']}/closing")
    assert closing.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "commercial_quotation_transitions_total" in body
    assert "commercial_stage_moves_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/studios/{studio_slug}/promises/{id}/move"' in body
    assert 'action="move_to_closing",outcome="applied"' in body
    assert 'outcome="moved"' in body


def test_metrics_requires_permission(client: TestClient, auth_user: AuthUser) -> None:
    auth_user.roles = ["user"]

    response = client.get("/metrics")

    assert response.status_code == 403


def test_metrics_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
