from __future__ import annotations

import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.commercial.cache import tag_cache
from app.commercial.models import AcquisitionChannel, Studio
from app.commercial.realtime import ROW_CHANGED_EVENT
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
def clear_stubs() -> Generator[None, None, None]:
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


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient, channel_id: str) -> None:
    response = client.get(f"{BASE}/promises/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient, channel_id: str) -> None:
    response = client.get(f"{BASE}/promises/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_success_envelope_carries_correlation_id(client: TestClient, channel_id: str) -> None:
    response = client.get(f"{BASE}/pipeline-stages", headers={"X-Correlation-Id": "corr-ok-1"})
    assert response.status_code == 200
    assert response.json()["correlation_id"] == "corr-ok-1"


def test_validation_envelope_carries_correlation_id(client: TestClient, channel_id: str) -> None:
    response = client.post(f"{BASE}/promises", json={}, headers={"X-Correlation-Id": "corr-422"})
    assert response.status_code == 422
    assert response.json()["correlation_id"] == "corr-422"


def test_event_envelope_includes_correlation_id(client: TestClient, channel_id: str) -> None:
    response = client.post(
        f"{BASE}/promises",
        json={"contact_name": "Laura", "phone": "5512345678", "acquisition_channel_id": channel_id},
        headers={"X-Correlation-Id": "corr-event-1"},
    )
    assert response.status_code == 201

    changes = [item for item in events.published_events if item.get("event_type") == ROW_CHANGED_EVENT]
    assert changes
    assert changes[-1].get("correlation_id") == "corr-event-1"
    assert changes[-1]["meta"]["studio_slug"] == STUDIO_SLUG


def test_action_logs_use_request_correlation_id(
    client: TestClient, channel_id: str, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        f"{BASE}/promises/{uuid.uuid4()}/archive", headers={"X-Correlation-Id": "corr-log-1"}
    )
    assert response.status_code == 404

    rejected = [record for record in caplog.records if record.getMessage() == "commercial_action_rejected"]
    assert rejected
    assert getattr(rejected[-1], "correlation_id", None) == "corr-log-1"
    assert getattr(rejected[-1], "code", None) == "promise_not_found"


def test_unsafe_correlation_id_is_replaced(client: TestClient, channel_id: str) -> None:
    response = client.get(f"{BASE}/pipeline-stages", headers={"X-Correlation-Id": "bad id with spaces"})
    assert response.status_code == 200
    header_value = response.headers.get("x-correlation-id")
    assert header_value != "bad id with spaces"
    assert uuid.UUID(header_value)
    assert response.json()["correlation_id"] == header_value
