from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from app.offers.editor import (
    LeadFormField,
    NavigationDecision,
    OfferDraft,
    OfferEditorState,
    freeze,
    thaw,
)
from app.offers.models import default_landing_page, default_leadform
from app.offers.schemas import OfferRead, OfferUpdate


def _offer(**overrides: object) -> OfferRead:
    now = datetime(2026, 10, 19, tzinfo=timezone.utc)
    leadform = default_leadform()
    leadform["fields_config"] = {"fields": [{"id": "name", "type": "text", "label": "Nombre", "required": True}]}
    data: dict[str, object] = {
        "id": uuid.uuid4(),
        "studio_id": uuid.uuid4(),
        "name": "Promo Boda",
        "description": None,
        "slug": "promo-boda",
        "cover_media_url": None,
        "cover_media_type": None,
        "is_active": True,
        "is_permanent": True,
        "has_date_range": False,
        "start_date": None,
        "end_date": None,
        "order": 0,
        "landing_page": {
            "content_blocks": [{"type": "hero", "title": "Tu boda"}],
            "cta_config": {"buttons": [{"label": "Cotizar"}]},
        },
        "leadform": leadform,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return OfferRead(**data)


def test_freeze_compares_json_by_value() -> None:
    left = freeze({"b": [1, {"c": 2}], "a": "x"})
    right = freeze({"a": "x", "b": [1, {"c": 2}]})

    assert left == right
    assert hash(left) == hash(right)
    assert thaw(left) == {"a": "x", "b": [1, {"c": 2}]}


def test_loaded_editor_is_clean() -> None:
    state = OfferEditorState.load(_offer())

    assert state.is_dirty is False
    assert state.changed_sections() == []
    assert state.draft.leadform.fields == (LeadFormField(id="name", type="text", label="Nombre", required=True),)


def test_edits_mark_sections_dirty_and_reverting_cleans() -> None:
    state = OfferEditorState.load(_offer())

    state.update_basic(name="Promo Boda 2027")
    state.update_landing(content_blocks=[{"type": "hero", "title": "Tu boda"}, {"type": "gallery"}])
    assert state.is_dirty is True
    assert state.changed_sections() == ["basic", "landing"]

    state.update_basic(name="Promo Boda")
    state.update_landing(content_blocks=[{"title": "Tu boda", "type": "hero"}])
    assert state.is_dirty is False


def test_navigation_allowed_when_clean() -> None:
    state = OfferEditorState.load(_offer())

    assert state.request_navigation("/ofertas") == NavigationDecision.ALLOWED
    assert state.pending_target is None


def test_navigation_blocked_until_saved() -> None:
    state = OfferEditorState.load(_offer())
    state.update_leadform(title="Cotiza tu boda")
    saved: list[OfferDraft] = []

    assert state.request_navigation("/ofertas") == NavigationDecision.BLOCKED
    assert state.pending_target == "/ofertas"

    target = state.save_and_continue(lambda draft: saved.append(draft))

    assert target == "/ofertas"
    assert saved and saved[0].leadform.title == "Cotiza tu boda"
    assert state.is_dirty is False
    assert state.pending_target is None


def test_failed_save_keeps_draft_and_target() -> None:
    state = OfferEditorState.load(_offer())
    state.update_basic(slug="promo-boda-2027")
    state.request_navigation("/ofertas")

    def failing_save(draft: OfferDraft) -> OfferDraft:
        raise RuntimeError("slug taken")

    with pytest.raises(RuntimeError):
        state.save_and_continue(failing_save)

    assert state.is_dirty is True
    assert state.draft.basic.slug == "promo-boda-2027"
    assert state.pending_target == "/ofertas"


def test_discard_restores_snapshot() -> None:
    state = OfferEditorState.load(_offer())
    state.update_basic(is_active=False)
    state.request_navigation("/ofertas/nueva")

    assert state.discard_and_continue() == "/ofertas/nueva"
    assert state.draft.basic.is_active is True
    assert state.is_dirty is False


def test_cancel_navigation_keeps_edits() -> None:
    state = OfferEditorState.load(_offer())
    state.update_basic(description="Incluye sesión previa")
    state.request_navigation("/ofertas")

    state.cancel_navigation()

    assert state.pending_target is None
    assert state.is_dirty is True


def test_save_can_replace_snapshot_with_stored_draft() -> None:
    state = OfferEditorState.load(_offer())
    state.update_basic(name="  Promo Boda  ")
    stored = OfferEditorState.load(_offer(name="Promo Boda")).draft

    state.save_and_continue(lambda draft: stored)

    assert state.draft == stored
    assert state.is_dirty is False


def test_payload_is_a_valid_update_body() -> None:
    state = OfferEditorState.load(_offer(landing_page=default_landing_page()))
    state.update_leadform(subject_options=("Boda", "XV Años"))

    payload = OfferUpdate.model_validate(state.draft.to_payload())

    assert payload.name == "Promo Boda"
    assert payload.landing_page is not None
    assert payload.landing_page.cta_config == {"buttons": []}
    assert payload.leadform is not None
    assert payload.leadform.subject_options == ["Boda", "XV Años"]
    assert payload.leadform.fields_config["fields"][0]["label"] == "Nombre"


def test_freeze_keeps_empty_objects_and_pair_lists_apart() -> None:
    value = {
        "content_blocks": [{"type": "hero", "style": {}}],
        "pairs": [["color", "#fff"], ["size", 2]],
        "empty_list": [],
    }

    assert thaw(freeze(value)) == value
    assert freeze({}) != freeze([])


def test_save_payload_keeps_every_leadform_setting() -> None:
    leadform = default_leadform()
    leadform.update(
        use_event_types=True,
        selected_event_type_ids=["boda", "xv"],
        show_packages_after_submit=True,
        subject_options=[],
        fields_config={
            "layout": "stacked",
            "fields": [
                {"id": "name", "type": "text", "label": "Nombre", "required": True, "width": "half"},
                {"id": "kind", "type": "select", "label": "Tipo", "required": False, "options": ["Boda", "XV"]},
            ],
        },
    )
    landing = {
        "content_blocks": [{"type": "hero", "style": {}, "items": [["a", 1]]}],
        "cta_config": {},
    }
    offer = _offer(leadform=leadform, landing_page=landing)

    payload = OfferUpdate.model_validate(OfferEditorState.load(offer).draft.to_payload())

    assert payload.leadform is not None
    assert payload.leadform.use_event_types is True
    assert payload.leadform.selected_event_type_ids == ["boda", "xv"]
    assert payload.leadform.show_packages_after_submit is True
    assert payload.leadform.subject_options == []
    assert payload.leadform.fields_config == leadform["fields_config"]
    assert payload.landing_page is not None
    assert payload.landing_page.model_dump() == landing
