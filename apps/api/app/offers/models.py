from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.commercial.models import utcnow
from app.core.database import Base


def default_landing_page() -> dict[str, Any]:
    return {"content_blocks": [], "cta_config": {"buttons": []}}


def default_leadform() -> dict[str, Any]:
    return {
        "title": None,
        "description": None,
        "success_message": "¡Gracias! Nos pondremos en contacto contigo pronto.",
        "success_redirect_url": None,
        "fields_config": {"fields": []},
        "subject_options": None,
        "use_event_types": False,
        "selected_event_type_ids": None,
        "show_packages_after_submit": False,
        "email_required": False,
        "enable_interest_date": False,
        "validate_with_calendar": False,
    }


class Offer(Base):
    __tablename__ = "studio_offer"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    studio_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("studio.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    slug: Mapped[str] = mapped_column(String(128), nullable=False)
    cover_media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_media_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    is_permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    has_date_range: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    landing_page: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=default_landing_page)
    leadform: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=default_leadform)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (UniqueConstraint("studio_id", "slug", name="uq_studio_offer_studio_slug"),)


Index("ix_studio_offer_studio_order", Offer.studio_id, Offer.order)
