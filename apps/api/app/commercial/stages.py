from __future__ import annotations

import logging
import re
import unicodedata
import uuid

from sqlalchemy.orm import Session

from app.commercial.actors import resolve_studio
from app.commercial.cache import revalidate_promise
from app.commercial.errors import BusinessRuleError, ConflictError, NotFoundError, ValidationFailedError
from app.commercial.models import PipelineStage, Studio
from app.commercial.realtime import publish_change
from app.commercial.repository import StageRepository
from app.commercial.schemas import PipelineStageCreate, PipelineStageRead, PipelineStageUpdate
from app.core.config import get_settings


logger = logging.getLogger("app.commercial.stages")

PENDING_SLUG = "pending"
APPROVED_SLUG = "approved"
ARCHIVED_SLUG = "archived"

# (name, slug, color, is_system)
DEFAULT_STAGES: list[tuple[str, str, str, bool]] = [
    ("Pending", PENDING_SLUG, "#3B82F6", False),
    ("Negotiation", "negotiation", "#F59E0B", False),
    ("Approved", APPROVED_SLUG, "#10B981", True),
    ("Archived", ARCHIVED_SLUG, "#6B7280", True),
]

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _NON_SLUG_RE.sub("-", normalized.lower()).strip("-")


class PipelineStageService:
    def __init__(self) -> None:
        self.stages = StageRepository()

    def ensure_default_stages(self, session: Session, studio: Studio) -> list[PipelineStage]:
        existing = self.stages.list(session, studio.id)
        if existing:
            return existing
        created = [
            PipelineStage(studio_id=studio.id, name=name, slug=slug, color=color, order=index, is_system=is_system)
            for index, (name, slug, color, is_system) in enumerate(DEFAULT_STAGES)
        ]
        session.add_all(created)
        session.flush()
        logger.info("pipeline_default_stages_seeded", extra={"studio_slug": studio.slug})
        return created

    def get_or_create_archived_stage(self, session: Session, studio: Studio) -> PipelineStage:
        stage = self.stages.get_by_slug(session, studio.id, ARCHIVED_SLUG)
        if stage is not None:
            return stage
        stage = PipelineStage(
            studio_id=studio.id,
            name="Archived",
            slug=ARCHIVED_SLUG,
            color=get_settings().archived_stage_color,
            order=self.stages.next_order(session, studio.id),
            is_system=True,
        )
        session.add(stage)
        session.flush()
        return stage

    def list_stages(self, session: Session, studio_slug: str, *, include_inactive: bool = False) -> list[PipelineStageRead]:
        studio = resolve_studio(session, studio_slug)
        stages = self.stages.list(session, studio.id, include_inactive=include_inactive)
        if not stages:
            self.ensure_default_stages(session, studio)
            session.commit()
            stages = self.stages.list(session, studio.id, include_inactive=include_inactive)
        return [PipelineStageRead.model_validate(stage) for stage in stages]

    def create_stage(self, session: Session, studio_slug: str, dto: PipelineStageCreate) -> PipelineStageRead:
        studio = resolve_studio(session, studio_slug)
        name = dto.name.strip()
        if not name:
            raise ValidationFailedError("stage name is required", code="invalid_stage_name")
        slug = slugify(dto.slug or name)
        if not slug:
            raise ValidationFailedError("stage slug is empty", code="invalid_stage_slug")
        if self.stages.get_by_slug(session, studio.id, slug) is not None:
            raise ConflictError(f"a stage with slug '{slug}' already exists", code="duplicate_stage_slug")

        stage = PipelineStage(
            studio_id=studio.id,
            name=name,
            slug=slug,
            color=dto.color,
            order=self.stages.next_order(session, studio.id),
            is_system=False,
        )
        session.add(stage)
        session.commit()
        session.refresh(stage)
        revalidate_promise(studio_slug)
        publish_change(studio_id=studio.id, table="pipeline_stages", operation="INSERT", record_id=stage.id)
        return PipelineStageRead.model_validate(stage)

    def update_stage(
        self,
        session: Session,
        studio_slug: str,
        stage_id: uuid.UUID,
        dto: PipelineStageUpdate,
    ) -> PipelineStageRead:
        studio = resolve_studio(session, studio_slug)
        stage = session.get(PipelineStage, stage_id)
        if stage is None or stage.studio_id != studio.id:
            raise NotFoundError("stage not found", code="stage_not_found")

        changes = dto.model_dump(exclude_unset=True)
        if stage.is_system:
            if "name" in changes and changes["name"] != stage.name:
                raise BusinessRuleError("system stages cannot be renamed", code="system_stage_locked")
            if changes.get("is_active") is False:
                raise BusinessRuleError("system stages cannot be deactivated", code="system_stage_locked")

        if changes.get("name") is not None:
            name = changes["name"].strip()
            if not name:
                raise ValidationFailedError("stage name is required", code="invalid_stage_name")
            stage.name = name
        if changes.get("color") is not None:
            stage.color = changes["color"]
        if changes.get("is_active") is not None:
            stage.is_active = changes["is_active"]

        session.commit()
        session.refresh(stage)
        revalidate_promise(studio_slug)
        publish_change(studio_id=studio.id, table="pipeline_stages", operation="UPDATE", record_id=stage.id)
        return PipelineStageRead.model_validate(stage)

    def reorder_stages(self, session: Session, studio_slug: str, stage_ids: list[uuid.UUID]) -> list[PipelineStageRead]:
        """Persist ``order = position`` for the given sequence; ``is_system`` is left untouched."""
        studio = resolve_studio(session, studio_slug)
        stages = {stage.id: stage for stage in self.stages.list(session, studio.id)}
        if len(set(stage_ids)) != len(stage_ids):
            raise ValidationFailedError("stage ids must be unique", code="invalid_stage_order")
        if set(stage_ids) != set(stages):
            raise ValidationFailedError("stage ids must match the studio pipeline", code="invalid_stage_order")

        for index, stage_id in enumerate(stage_ids):
            stages[stage_id].order = index
        session.commit()

        revalidate_promise(studio_slug)
        for stage_id in stage_ids:
            publish_change(studio_id=studio.id, table="pipeline_stages", operation="UPDATE", record_id=stage_id)
        return [PipelineStageRead.model_validate(stages[stage_id]) for stage_id in stage_ids]


pipeline_stage_service = PipelineStageService()
