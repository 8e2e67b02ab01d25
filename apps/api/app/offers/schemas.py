from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.offers.models import default_landing_page, default_leadform


SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


def availability_error(
    is_permanent: bool,
    has_date_range: bool,
    start_date: datetime | None,
    end_date: datetime | None,
) -> str | None:
    """Return why the availability window is invalid, or ``None`` when it is valid."""
    if is_permanent and has_date_range:
        return "an offer cannot be permanent and date-ranged at the same time"
    if not is_permanent and not has_date_range:
        return "an offer must be permanent or have a date range"
    if has_date_range:
        if start_date is None or end_date is None:
            return "a date range needs a start and an end date"
        if end_date < start_date:
            return "the end date must not be before the start date"
    return None


class LandingPageConfig(BaseModel):
    content_blocks: list[dict[str, Any]] = Field(default_factory=list)
    cta_config: dict[str, Any] = Field(default_factory=lambda: {"buttons": []})


class LeadFormConfig(BaseModel):
    title: str | None = None
    description: str | None = None
    success_message: str = Field(default_factory=lambda: default_leadform()["success_message"])
    success_redirect_url: str | None = None
    fields_config: dict[str, Any] = Field(default_factory=lambda: {"fields": []})
    subject_options: list[str] | None = None
    use_event_types: bool = False
    selected_event_type_ids: list[str] | None = None
    show_packages_after_submit: bool = False
    email_required: bool = False
    enable_interest_date: bool = False
    validate_with_calendar: bool = False


class OfferCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    slug: str = Field(min_length=1, max_length=128, pattern=SLUG_PATTERN)
    cover_media_url: str | None = None
    cover_media_type: Literal["image", "video"] | None = None
    is_active: bool = True
    is_permanent: bool = False
    has_date_range: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    landing_page: LandingPageConfig = Field(default_factory=lambda: LandingPageConfig(**default_landing_page()))
    leadform: LeadFormConfig = Field(default_factory=LeadFormConfig)
    business_term_id: UUID | None = None

    @model_validator(mode="after")
    def check_availability(self) -> OfferCreate:
        error = availability_error(self.is_permanent, self.has_date_range, self.start_date, self.end_date)
        if error is not None:
            raise ValueError(error)
        return self


class OfferUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    slug: str | None = Field(default=None, min_length=1, max_length=128, pattern=SLUG_PATTERN)
    cover_media_url: str | None = None
    cover_media_type: Literal["image", "video"] | None = None
    is_active: bool | None = None
    is_permanent: bool | None = None
    has_date_range: bool | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    landing_page: LandingPageConfig | None = None
    leadform: LeadFormConfig | None = None
    business_term_id: UUID | None = None


class OfferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    studio_id: UUID
    name: str
    description: str | None
    slug: str
    cover_media_url: str | None
    cover_media_type: str | None
    is_active: bool
    is_permanent: bool
    has_date_range: bool
    start_date: datetime | None
    end_date: datetime | None
    order: int
    landing_page: dict[str, Any]
    leadform: dict[str, Any]
    business_term_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class PublicOfferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    slug: str
    cover_media_url: str | None
    cover_media_type: str | None
    is_permanent: bool
    has_date_range: bool
    start_date: datetime | None
    end_date: datetime | None


class SlugCheckRead(BaseModel):
    slug: str
    exists: bool
