from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


OriginContext = Literal["PROMISE", "EVENT"]


class PipelineStageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    color: str = Field(default="#3B82F6", pattern=r"^#[0-9A-Fa-f]{6}$")
    slug: str | None = Field(default=None, max_length=128)


class PipelineStageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    is_active: bool | None = None


class PipelineStageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    studio_id: UUID
    name: str
    slug: str
    color: str
    order: int
    is_system: bool
    is_active: bool


class ReorderRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1)


class ContactCreate(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1, max_length=32)
    email: str | None = None
    acquisition_channel_id: UUID | None = None
    social_network_id: UUID | None = None
    referrer_contact_id: UUID | None = None
    referrer_name: str | None = None
    is_test: bool = False


class ContactUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    phone: str | None = Field(default=None, min_length=1, max_length=32)
    email: str | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    studio_id: UUID
    name: str
    phone: str
    email: str | None
    acquisition_channel_id: UUID | None
    social_network_id: UUID | None
    referrer_contact_id: UUID | None
    referrer_name: str | None
    is_test: bool


class PromiseCreate(BaseModel):
    contact_name: str = Field(min_length=1)
    phone: str = Field(min_length=1, max_length=32)
    email: str | None = None
    acquisition_channel_id: UUID
    social_network_id: UUID | None = None
    referrer_contact_id: UUID | None = None
    referrer_name: str | None = None
    event_type_id: UUID | None = None
    name: str | None = None
    tentative_dates: list[date] = Field(default_factory=list)
    event_location: str | None = None
    notes: str | None = None
    is_test: bool = False


class PromiseUpdate(BaseModel):
    name: str | None = None
    notes: str | None = None
    event_type_id: UUID | None = None
    tentative_dates: list[date] | None = None
    event_location: str | None = None
    contact_name: str | None = Field(default=None, min_length=1)
    contact_email: str | None = None


class PromiseRead(BaseModel):
    id: UUID
    studio_id: UUID
    contact_id: UUID
    contact_name: str
    contact_phone: str
    event_type_id: UUID | None
    pipeline_stage_id: UUID
    stage_slug: str
    stage_name: str
    name: str | None
    event_date: date | None
    tentative_dates: list[date]
    event_location: str | None
    notes: str | None
    is_test: bool
    created_at: datetime
    updated_at: datetime


class PromiseMoveRequest(BaseModel):
    # kept as a string so malformed ids surface as a domain validation error
    stage_id: str
    reason: str | None = None


class QuotationCreate(BaseModel):
    name: str = Field(min_length=1)
    price: Decimal = Field(ge=Decimal("0"))
    discount: Decimal | None = Field(default=None, ge=Decimal("0"))
    description: str | None = None
    business_term_id: UUID | None = None


class QuotationUpdate(BaseModel):
    price: Decimal | None = Field(default=None, ge=Decimal("0"))
    discount: Decimal | None = Field(default=None, ge=Decimal("0"))
    description: str | None = None


class QuotationRename(BaseModel):
    name: str


class QuotationAuthorizeRequest(BaseModel):
    event_date: date | None = None


class QuotationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    studio_id: UUID
    promise_id: UUID
    name: str
    description: str | None
    price: Decimal
    discount: Decimal | None
    status: str
    visible_to_client: bool
    order: int
    evento_id: UUID | None
    revision_status: str | None
    business_term_id: UUID | None
    created_at: datetime
    updated_at: datetime


class PromiseLogRead(BaseModel):
    id: UUID
    promise_id: UUID
    user_id: UUID | None
    user_name: str | None = None
    content: str
    log_type: str
    metadata: dict[str, Any] | None
    origin_context: OriginContext
    created_at: datetime
    updated_at: datetime | None


class PromiseLogCreate(BaseModel):
    content: str
    log_type: str = "user_note"
    origin_context: OriginContext = "PROMISE"


class PromiseLogUpdate(BaseModel):
    content: str


class PromiseLogActionRequest(BaseModel):
    action: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    origin_context: OriginContext = "PROMISE"


class BusinessTermCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    discount_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))
    advance_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"))


class BusinessTermRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    studio_id: UUID
    name: str
    description: str | None
    discount_percentage: Decimal | None
    advance_percentage: Decimal | None
    type: str
    offer_id: UUID | None
    is_active: bool


class PurgeSummary(BaseModel):
    count: int
