from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.commercial.actors import StudioActor, resolve_studio, resolve_studio_user_id
from app.commercial.cache import promise_logs_tag, revalidate_promise_logs, tag_cache
from app.commercial.errors import BusinessRuleError, NotFoundError, ValidationFailedError
from app.commercial.models import PromiseLog, StudioUser
from app.commercial.realtime import publish_change
from app.commercial.repository import PromiseRepository
from app.commercial.schemas import PromiseLogRead
from app.core.config import get_settings
from app.metrics import observe_promise_log_write_failure


logger = logging.getLogger("app.commercial.logs")

USER_NOTE = "user_note"
ORIGIN_CONTEXTS = {"PROMISE", "EVENT"}

_WEEKDAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
_MONTHS_SHORT = ["ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sept", "oct", "nov", "dic"]

Metadata = Mapping[str, Any]


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def format_long_date(value: Any) -> str | None:
    parsed = _parse_date(value)
    if parsed is None:
        return None
    return f"{_WEEKDAYS[parsed.weekday()]}, {parsed.day} de {_MONTHS_SHORT[parsed.month - 1]} de {parsed.year}"


def format_short_date(value: Any) -> str | None:
    parsed = _parse_date(value)
    if parsed is None:
        return None
    return f"{parsed.day} {_MONTHS_SHORT[parsed.month - 1]} {parsed.year}"


def format_money(value: Any) -> str | None:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not amount:
        return None
    return f"${amount:,.2f}"


def _text(meta: Metadata, key: str, default: str) -> str:
    value = meta.get(key)
    return str(value) if value else default


def _with_suffix(base: str, suffix: str | None, template: str = " ({})") -> str:
    return f"{base}{template.format(suffix)}" if suffix else base


def _agenda(verb: str, *, with_time: bool) -> Callable[[Metadata], str]:
    def render(meta: Metadata) -> str:
        when = format_long_date(meta.get("date")) or "fecha no especificada"
        text = f"Cita {verb} para {when}"
        if with_time and meta.get("time"):
            text += f" a las {meta['time']}"
        if meta.get("concept"):
            text += f": {meta['concept']}"
        return text

    return render


def _reminder(verb: str, *, with_date: bool) -> Callable[[Metadata], str]:
    def render(meta: Metadata) -> str:
        text = f"Seguimiento {verb}: {_text(meta, 'subject_text', 'seguimiento')}"
        if with_date:
            text = _with_suffix(text, format_short_date(meta.get("reminder_date")))
        return text

    return render


def _quotation_updated(meta: Metadata) -> str:
    text = f"Cotización actualizada: {_text(meta, 'quotationName', 'cotización')}"
    if meta.get("from") and meta.get("to"):
        text += f" ({meta['from']} → {meta['to']})"
    return text


def _contact_updated(meta: Metadata) -> str:
    changes = meta.get("changes") or []
    if not changes:
        return "Datos de contacto actualizados"
    return f"Datos de contacto actualizados: {', '.join(str(change) for change in changes)}"


LOG_ACTIONS: dict[str, Callable[[Metadata], str]] = {
    "promise_created": lambda meta: (
        f"Prospecto {_text(meta, 'contactName', 'Prospecto')} "
        f"registrado desde canal {_text(meta, 'channelName', 'canal desconocido')}"
    ),
    "stage_change": lambda meta: (
        f"Cambio de etapa: {_text(meta, 'from', 'desconocida')} → {_text(meta, 'to', 'desconocida')}"
    ),
    "whatsapp_sent": lambda meta: f"WhatsApp enviado a {_text(meta, 'contactName', 'contacto')}",
    "call_made": lambda meta: f"Llamada realizada a {_text(meta, 'contactName', 'contacto')}",
    "profile_shared": lambda meta: f"Perfil compartido: {_text(meta, 'contactName', 'contacto')}",
    "archived": lambda meta: "Promesa archivada",
    "unarchived": lambda meta: "Promesa desarchivada",
    "email_sent": lambda meta: f"Email enviado a {_text(meta, 'contactName', 'contacto')}",
    "quotation_created": lambda meta: _with_suffix(
        f"Cotización creada: {_text(meta, 'quotationName', 'cotización')}", format_money(meta.get("price"))
    ),
    "quotation_updated": _quotation_updated,
    "quotation_deleted": lambda meta: f"Cotización eliminada: {_text(meta, 'quotationName', 'cotización')}",
    "quotation_authorized": lambda meta: _with_suffix(
        f"Cotización autorizada: {_text(meta, 'quotationName', 'cotización')}", format_money(meta.get("amount"))
    ),
    "contact_updated": _contact_updated,
    "agenda_created": _agenda("agendada", with_time=True),
    "agenda_updated": _agenda("actualizada", with_time=True),
    "agenda_cancelled": _agenda("cancelada", with_time=False),
    "event_cancelled": lambda meta: _with_suffix(
        f"Evento cancelado: {_text(meta, 'eventName', 'evento')}",
        meta.get("quotationName"),
        " (Cotización: {})",
    ),
    "reminder_created": _reminder("creado", with_date=True),
    "reminder_updated": _reminder("actualizado", with_date=True),
    "reminder_completed": _reminder("completado", with_date=False),
    "reminder_deleted": _reminder("eliminado", with_date=False),
}


def render_log_content(action: str, metadata: Metadata | None = None) -> str:
    formatter = LOG_ACTIONS.get(action)
    if formatter is None:
        raise ValidationFailedError(f"unknown log action: {action}", code="unknown_log_action")
    return formatter(metadata or {})


class PromiseLogService:
    """Append-only promise activity trail.

    System entries are written through ``record_best_effort`` after the
    mutation they describe has committed: a failed insert is rolled back,
    logged and counted, and never reported to the caller.
    """

    def __init__(self) -> None:
        self.promises = PromiseRepository()

    def _validate_origin(self, origin_context: str) -> str:
        if origin_context not in ORIGIN_CONTEXTS:
            raise ValidationFailedError(f"unknown origin context: {origin_context}", code="invalid_origin_context")
        return origin_context

    def _insert(
        self,
        session: Session,
        *,
        promise_id: uuid.UUID,
        log_type: str,
        content: str,
        metadata: Metadata | None,
        user_id: uuid.UUID | None,
        origin_context: str,
    ) -> PromiseLog:
        entry = PromiseLog(
            promise_id=promise_id,
            user_id=user_id,
            content=content,
            log_type=log_type,
            log_metadata=dict(metadata) if metadata else None,
            origin_context=self._validate_origin(origin_context),
        )
        session.add(entry)
        session.flush()
        return entry

    def record_best_effort(
        self,
        session: Session,
        *,
        studio_id: uuid.UUID,
        studio_slug: str,
        promise_id: uuid.UUID,
        action: str,
        metadata: Metadata | None = None,
        user_id: uuid.UUID | None = None,
        origin_context: str = "PROMISE",
    ) -> PromiseLog | None:
        try:
            content = render_log_content(action, metadata)
            entry = self._insert(
                session,
                promise_id=promise_id,
                log_type=action,
                content=content,
                metadata=metadata,
                user_id=user_id,
                origin_context=origin_context,
            )
            session.commit()
        except Exception as exc:
            session.rollback()
            observe_promise_log_write_failure(action)
            logger.exception(
                "promise_log_write_failed",
                extra={"promise_id": str(promise_id), "action": action, "error": str(exc)[:500]},
            )
            return None

        revalidate_promise_logs(studio_slug, promise_id)
        publish_change(studio_id=studio_id, table="promise_logs", operation="INSERT", record_id=entry.id, promise_id=promise_id)
        return entry

    def log_action(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        promise_id: uuid.UUID,
        action: str,
        metadata: Metadata | None = None,
        origin_context: str = "PROMISE",
    ) -> PromiseLogRead:
        """Record ``action`` explicitly; unlike system entries, failures reach the caller."""
        studio = resolve_studio(session, studio_slug)
        self.promises.get(session, studio.id, promise_id)
        content = render_log_content(action, metadata)
        entry = self._insert(
            session,
            promise_id=promise_id,
            log_type=action,
            content=content,
            metadata=metadata,
            user_id=resolve_studio_user_id(session, studio.id, actor),
            origin_context=origin_context,
        )
        session.commit()
        revalidate_promise_logs(studio_slug, promise_id)
        publish_change(studio_id=studio.id, table="promise_logs", operation="INSERT", record_id=entry.id, promise_id=promise_id)
        return self._to_read(session, entry)

    def create_note(
        self,
        session: Session,
        actor: StudioActor | None,
        studio_slug: str,
        promise_id: uuid.UUID,
        content: str,
        log_type: str = USER_NOTE,
        origin_context: str = "PROMISE",
    ) -> PromiseLogRead:
        text = (content or "").strip()
        if not text:
            raise ValidationFailedError("note content is required", code="empty_note")
        studio = resolve_studio(session, studio_slug)
        self.promises.get(session, studio.id, promise_id)
        entry = self._insert(
            session,
            promise_id=promise_id,
            log_type=USER_NOTE if log_type == "note" else log_type,
            content=text,
            metadata=None,
            user_id=resolve_studio_user_id(session, studio.id, actor),
            origin_context=origin_context,
        )
        session.commit()
        revalidate_promise_logs(studio_slug, promise_id)
        publish_change(studio_id=studio.id, table="promise_logs", operation="INSERT", record_id=entry.id, promise_id=promise_id)
        return self._to_read(session, entry)

    def _get_note(self, session: Session, studio_slug: str, promise_id: uuid.UUID, log_id: uuid.UUID) -> tuple[uuid.UUID, PromiseLog]:
        studio = resolve_studio(session, studio_slug)
        self.promises.get(session, studio.id, promise_id)
        entry = session.scalar(select(PromiseLog).where(PromiseLog.id == log_id, PromiseLog.promise_id == promise_id))
        if entry is None:
            raise NotFoundError("log entry not found", code="log_not_found")
        if entry.log_type != USER_NOTE:
            raise BusinessRuleError("only user notes can be modified", code="log_not_editable")
        return studio.id, entry

    def update_note(
        self,
        session: Session,
        studio_slug: str,
        promise_id: uuid.UUID,
        log_id: uuid.UUID,
        content: str,
    ) -> PromiseLogRead:
        text = (content or "").strip()
        if not text:
            raise ValidationFailedError("note content is required", code="empty_note")
        studio_id, entry = self._get_note(session, studio_slug, promise_id, log_id)
        entry.content = text
        entry.updated_at = datetime.now(timezone.utc)
        session.commit()
        revalidate_promise_logs(studio_slug, promise_id)
        publish_change(studio_id=studio_id, table="promise_logs", operation="UPDATE", record_id=entry.id, promise_id=promise_id)
        return self._to_read(session, entry)

    def delete_note(self, session: Session, studio_slug: str, promise_id: uuid.UUID, log_id: uuid.UUID) -> dict[str, str]:
        studio_id, entry = self._get_note(session, studio_slug, promise_id, log_id)
        session.delete(entry)
        session.commit()
        revalidate_promise_logs(studio_slug, promise_id)
        publish_change(studio_id=studio_id, table="promise_logs", operation="DELETE", record_id=log_id, promise_id=promise_id)
        return {"id": str(log_id)}

    def get_logs(
        self,
        session: Session,
        studio_slug: str,
        promise_id: uuid.UUID,
        *,
        origin_context: str | None = None,
        fresh: bool = False,
    ) -> list[PromiseLogRead]:
        studio = resolve_studio(session, studio_slug)
        self.promises.get(session, studio.id, promise_id)
        if origin_context is not None:
            self._validate_origin(origin_context)

        def load() -> list[PromiseLogRead]:
            query = (
                select(PromiseLog, StudioUser.full_name)
                .outerjoin(StudioUser, StudioUser.id == PromiseLog.user_id)
                .where(PromiseLog.promise_id == promise_id)
            )
            if origin_context is not None:
                query = query.where(PromiseLog.origin_context == origin_context)
            rows = session.execute(
                query.order_by(PromiseLog.created_at.asc())
                .limit(get_settings().promise_log_page_size)
            ).all()
            return [self._build_read(entry, user_name) for entry, user_name in rows]

        entries = tag_cache.get_or_load(promise_logs_tag(promise_id), load, variant=origin_context, fresh=fresh)
        return list(entries)

    def _to_read(self, session: Session, entry: PromiseLog) -> PromiseLogRead:
        user_name = None
        if entry.user_id is not None:
            user_name = session.scalar(select(StudioUser.full_name).where(StudioUser.id == entry.user_id))
        return self._build_read(entry, user_name)

    @staticmethod
    def _build_read(entry: PromiseLog, user_name: str | None) -> PromiseLogRead:
        return PromiseLogRead(
            id=entry.id,
            promise_id=entry.promise_id,
            user_id=entry.user_id,
            user_name=user_name,
            content=entry.content,
            log_type=entry.log_type,
            metadata=entry.log_metadata,
            origin_context=entry.origin_context,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


promise_log_service = PromiseLogService()
