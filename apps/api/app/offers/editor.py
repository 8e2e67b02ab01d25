"""Draft state for the offer editor.

Drafts are immutable values compared structurally: the editor is dirty when
the current draft differs from the snapshot taken at load or save time.
While dirty, navigation is held until the caller saves, discards or cancels.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
import uuid

from app.offers.schemas import OfferRead


FrozenValue = Any


@dataclass(frozen=True)
class FrozenMap:
    """A JSON object frozen to sorted key/value pairs, kept apart from frozen arrays."""

    items: tuple[tuple[str, FrozenValue], ...] = ()


def freeze(value: Any) -> FrozenValue:
    """Turn JSON-like dicts and lists into hashable values that compare by content."""
    if isinstance(value, Mapping):
        return FrozenMap(tuple(sorted((str(key), freeze(item)) for key, item in value.items())))
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: FrozenValue) -> Any:
    if isinstance(value, FrozenMap):
        return {key: thaw(item) for key, item in value.items}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class OfferBasicInfo:
    name: str
    slug: str
    description: str | None = None
    cover_media_url: str | None = None
    cover_media_type: str | None = None
    is_active: bool = True
    is_permanent: bool = True
    has_date_range: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    business_term_id: uuid.UUID | None = None


@dataclass(frozen=True)
class LandingContent:
    content_blocks: tuple[FrozenValue, ...] = ()
    cta_config: FrozenValue = field(default_factory=lambda: freeze({"buttons": []}))


_FIELD_KEYS = {"id", "type", "label", "required", "placeholder", "options"}


@dataclass(frozen=True)
class LeadFormField:
    id: str
    type: str
    label: str
    required: bool = False
    placeholder: str | None = None
    options: tuple[str, ...] | None = None
    # keys the editor does not model, written back untouched
    extra: FrozenMap = FrozenMap()

    @classmethod
    def from_dict(cls, item: Mapping[str, Any]) -> LeadFormField:
        options = item.get("options")
        return cls(
            id=str(item.get("id", "")),
            type=str(item.get("type", "text")),
            label=str(item.get("label", "")),
            required=bool(item.get("required", False)),
            placeholder=item.get("placeholder"),
            options=tuple(options) if options is not None else None,
            extra=freeze({key: value for key, value in item.items() if key not in _FIELD_KEYS}),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = thaw(self.extra)
        data.update(id=self.id, type=self.type, label=self.label, required=self.required)
        if self.placeholder is not None:
            data["placeholder"] = self.placeholder
        if self.options is not None:
            data["options"] = list(self.options)
        return data


@dataclass(frozen=True)
class LeadFormConfig:
    title: str | None = None
    description: str | None = None
    success_message: str = ""
    success_redirect_url: str | None = None
    fields: tuple[LeadFormField, ...] = ()
    fields_config_extra: FrozenMap = FrozenMap()
    subject_options: tuple[str, ...] | None = None
    use_event_types: bool = False
    selected_event_type_ids: tuple[str, ...] | None = None
    show_packages_after_submit: bool = False
    email_required: bool = False
    enable_interest_date: bool = False
    validate_with_calendar: bool = False


def _optional_tuple(value: Any) -> tuple[Any, ...] | None:
    return tuple(value) if value is not None else None


def _optional_list(value: tuple[Any, ...] | None) -> list[Any] | None:
    return list(value) if value is not None else None


@dataclass(frozen=True)
class OfferDraft:
    basic: OfferBasicInfo
    landing: LandingContent = field(default_factory=LandingContent)
    leadform: LeadFormConfig = field(default_factory=LeadFormConfig)

    @classmethod
    def from_offer(cls, offer: OfferRead) -> OfferDraft:
        landing = offer.landing_page or {}
        leadform = offer.leadform or {}
        fields_config = leadform.get("fields_config") or {}
        return cls(
            basic=OfferBasicInfo(
                name=offer.name,
                slug=offer.slug,
                description=offer.description,
                cover_media_url=offer.cover_media_url,
                cover_media_type=offer.cover_media_type,
                is_active=offer.is_active,
                is_permanent=offer.is_permanent,
                has_date_range=offer.has_date_range,
                start_date=offer.start_date,
                end_date=offer.end_date,
                business_term_id=offer.business_term_id,
            ),
            landing=LandingContent(
                content_blocks=freeze(landing.get("content_blocks") or []),
                cta_config=freeze(landing.get("cta_config", {"buttons": []})),
            ),
            leadform=LeadFormConfig(
                title=leadform.get("title"),
                description=leadform.get("description"),
                success_message=leadform.get("success_message") or "",
                success_redirect_url=leadform.get("success_redirect_url"),
                fields=tuple(LeadFormField.from_dict(item) for item in fields_config.get("fields") or []),
                fields_config_extra=freeze({key: value for key, value in fields_config.items() if key != "fields"}),
                subject_options=_optional_tuple(leadform.get("subject_options")),
                use_event_types=bool(leadform.get("use_event_types", False)),
                selected_event_type_ids=_optional_tuple(leadform.get("selected_event_type_ids")),
                show_packages_after_submit=bool(leadform.get("show_packages_after_submit", False)),
                email_required=bool(leadform.get("email_required", False)),
                enable_interest_date=bool(leadform.get("enable_interest_date", False)),
                validate_with_calendar=bool(leadform.get("validate_with_calendar", False)),
            ),
        )

    def to_payload(self) -> dict[str, Any]:
        """Shape the draft as an ``OfferUpdate`` body."""
        basic = self.basic
        leadform = self.leadform
        fields_config: dict[str, Any] = thaw(leadform.fields_config_extra)
        fields_config["fields"] = [item.to_dict() for item in leadform.fields]
        return {
            "name": basic.name,
            "slug": basic.slug,
            "description": basic.description,
            "cover_media_url": basic.cover_media_url,
            "cover_media_type": basic.cover_media_type,
            "is_active": basic.is_active,
            "is_permanent": basic.is_permanent,
            "has_date_range": basic.has_date_range,
            "start_date": basic.start_date,
            "end_date": basic.end_date,
            "business_term_id": basic.business_term_id,
            "landing_page": {
                "content_blocks": thaw(self.landing.content_blocks),
                "cta_config": thaw(self.landing.cta_config),
            },
            "leadform": {
                "title": leadform.title,
                "description": leadform.description,
                "success_message": leadform.success_message,
                "success_redirect_url": leadform.success_redirect_url,
                "fields_config": fields_config,
                "subject_options": _optional_list(leadform.subject_options),
                "use_event_types": leadform.use_event_types,
                "selected_event_type_ids": _optional_list(leadform.selected_event_type_ids),
                "show_packages_after_submit": leadform.show_packages_after_submit,
                "email_required": leadform.email_required,
                "enable_interest_date": leadform.enable_interest_date,
                "validate_with_calendar": leadform.validate_with_calendar,
            },
        }


SECTIONS = ("basic", "landing", "leadform")


class NavigationDecision(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"


class OfferEditorState:
    def __init__(self, draft: OfferDraft) -> None:
        self.draft = draft
        self.snapshot = draft
        self.pending_target: str | None = None

    @classmethod
    def load(cls, offer: OfferRead) -> OfferEditorState:
        return cls(OfferDraft.from_offer(offer))

    @property
    def is_dirty(self) -> bool:
        return self.draft != self.snapshot

    def changed_sections(self) -> list[str]:
        return [name for name in SECTIONS if getattr(self.draft, name) != getattr(self.snapshot, name)]

    def update_basic(self, **changes: Any) -> None:
        self.draft = replace(self.draft, basic=replace(self.draft.basic, **changes))

    def update_landing(self, **changes: Any) -> None:
        frozen = {key: freeze(value) for key, value in changes.items()}
        self.draft = replace(self.draft, landing=replace(self.draft.landing, **frozen))

    def update_leadform(self, **changes: Any) -> None:
        self.draft = replace(self.draft, leadform=replace(self.draft.leadform, **changes))

    def request_navigation(self, target: str) -> NavigationDecision:
        if not self.is_dirty:
            self.pending_target = None
            return NavigationDecision.ALLOWED
        self.pending_target = target
        return NavigationDecision.BLOCKED

    def save_and_continue(self, save: Callable[[OfferDraft], OfferDraft | None]) -> str | None:
        """Persist through ``save`` and release the held navigation target.

        ``save`` may return the stored draft, which becomes the new snapshot.
        If it raises, the draft and the pending target are left untouched.
        """
        saved = save(self.draft)
        if saved is not None:
            self.draft = saved
        self.snapshot = self.draft
        return self._release()

    def discard_and_continue(self) -> str | None:
        self.draft = self.snapshot
        return self._release()

    def cancel_navigation(self) -> None:
        self.pending_target = None

    def _release(self) -> str | None:
        target, self.pending_target = self.pending_target, None
        return target
