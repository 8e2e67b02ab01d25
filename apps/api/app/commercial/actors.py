from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.commercial.errors import NotFoundError
from app.commercial.models import Studio, StudioUser


@dataclass
class StudioActor:
    user_id: str
    roles: set[str] = field(default_factory=set)
    correlation_id: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return not self.user_id or self.user_id == "anonymous"


def resolve_studio(session: Session, studio_slug: str) -> Studio:
    studio = session.scalar(select(Studio).where(Studio.slug == studio_slug))
    if studio is None:
        raise NotFoundError("studio not found", code="studio_not_found")
    return studio


def resolve_studio_user_id(session: Session, studio_id: uuid.UUID, actor: StudioActor | None) -> uuid.UUID | None:
    """Map the authenticated subject to an active studio user of ``studio_id``.

    Returns ``None`` when there is no actor or no matching studio user; log
    entries are then attributed to the system rather than failing.
    """
    if actor is None or actor.is_anonymous:
        return None
    return session.scalar(
        select(StudioUser.id).where(
            StudioUser.studio_id == studio_id,
            StudioUser.platform_user_id == actor.user_id,
            StudioUser.is_active.is_(True),
        )
    )
