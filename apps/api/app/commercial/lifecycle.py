"""Quotation status lifecycle.

Statuses form a closed enumeration and every legal change is one row of
``QUOTATION_TRANSITIONS``. Guards that depend on sibling quotations of the
same promise live here too, so services never compare raw status strings.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Protocol
import uuid

from app.commercial.errors import BusinessRuleError, ValidationFailedError


class QuotationStatus(str, Enum):
    PENDIENTE = "pendiente"
    NEGOCIACION = "negociacion"
    EN_CIERRE = "en_cierre"
    APROBADA = "aprobada"
    AUTORIZADA = "autorizada"
    APPROVED = "approved"
    ARCHIVADA = "archivada"
    CANCELADA = "cancelada"


class QuotationAction(str, Enum):
    START_NEGOTIATION = "start_negotiation"
    END_NEGOTIATION = "end_negotiation"
    MOVE_TO_CLOSING = "move_to_closing"
    CANCEL_CLOSING = "cancel_closing"
    AUTHORIZE = "authorize"
    CANCEL = "cancel"
    CANCEL_WITH_EVENT = "cancel_with_event"
    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"


AUTHORIZED_STATUSES = frozenset({QuotationStatus.APROBADA, QuotationStatus.AUTORIZADA, QuotationStatus.APPROVED})
INACTIVE_STATUSES = frozenset({QuotationStatus.CANCELADA, QuotationStatus.ARCHIVADA})
EDITABLE_STATUSES = frozenset({QuotationStatus.PENDIENTE, QuotationStatus.NEGOCIACION})

_STATUS_ALIASES: dict[str, QuotationStatus] = {
    "pending": QuotationStatus.PENDIENTE,
    "negotiation": QuotationStatus.NEGOCIACION,
    "closing": QuotationStatus.EN_CIERRE,
    "archived": QuotationStatus.ARCHIVADA,
    "cancelled": QuotationStatus.CANCELADA,
    "canceled": QuotationStatus.CANCELADA,
    "authorized": QuotationStatus.AUTORIZADA,
}

QUOTATION_TRANSITIONS: dict[tuple[QuotationStatus, QuotationAction], QuotationStatus] = {
    (QuotationStatus.PENDIENTE, QuotationAction.START_NEGOTIATION): QuotationStatus.NEGOCIACION,
    (QuotationStatus.NEGOCIACION, QuotationAction.END_NEGOTIATION): QuotationStatus.PENDIENTE,
    (QuotationStatus.PENDIENTE, QuotationAction.MOVE_TO_CLOSING): QuotationStatus.EN_CIERRE,
    (QuotationStatus.NEGOCIACION, QuotationAction.MOVE_TO_CLOSING): QuotationStatus.EN_CIERRE,
    (QuotationStatus.EN_CIERRE, QuotationAction.CANCEL_CLOSING): QuotationStatus.PENDIENTE,
    (QuotationStatus.EN_CIERRE, QuotationAction.AUTHORIZE): QuotationStatus.AUTORIZADA,
    (QuotationStatus.PENDIENTE, QuotationAction.ARCHIVE): QuotationStatus.ARCHIVADA,
    (QuotationStatus.NEGOCIACION, QuotationAction.ARCHIVE): QuotationStatus.ARCHIVADA,
    (QuotationStatus.ARCHIVADA, QuotationAction.UNARCHIVE): QuotationStatus.PENDIENTE,
}
for _authorized in AUTHORIZED_STATUSES:
    QUOTATION_TRANSITIONS[(_authorized, QuotationAction.CANCEL)] = QuotationStatus.CANCELADA
    QUOTATION_TRANSITIONS[(_authorized, QuotationAction.CANCEL_WITH_EVENT)] = QuotationStatus.CANCELADA


class QuotationLike(Protocol):
    id: uuid.UUID
    status: str
    evento_id: uuid.UUID | None


def parse_status(value: str | QuotationStatus) -> QuotationStatus:
    if isinstance(value, QuotationStatus):
        return value
    normalized = (value or "").strip().lower()
    try:
        return QuotationStatus(normalized)
    except ValueError:
        alias = _STATUS_ALIASES.get(normalized)
        if alias is None:
            raise ValidationFailedError(f"unknown quotation status: {value}", code="invalid_status") from None
        return alias


def is_authorized(value: str | QuotationStatus) -> bool:
    return parse_status(value) in AUTHORIZED_STATUSES


def is_active_with_event(quotation: QuotationLike) -> bool:
    """True while the quotation holds the promise's single closing/event slot."""
    current = parse_status(quotation.status)
    if current == QuotationStatus.EN_CIERRE:
        return True
    return current in AUTHORIZED_STATUSES and quotation.evento_id is not None


def resolve_transition(current: str | QuotationStatus, action: QuotationAction) -> QuotationStatus:
    current_status = parse_status(current)
    target = QUOTATION_TRANSITIONS.get((current_status, action))
    if target is None:
        raise BusinessRuleError(
            f"invalid quotation transition {current_status.value} -> {action.value}",
            code="invalid_transition",
        )
    return target


def negotiation_action(current: str | QuotationStatus) -> QuotationAction:
    current_status = parse_status(current)
    if current_status == QuotationStatus.PENDIENTE:
        return QuotationAction.START_NEGOTIATION
    if current_status == QuotationStatus.NEGOCIACION:
        return QuotationAction.END_NEGOTIATION
    raise BusinessRuleError(
        f"negotiation can only be toggled from pendiente or negociacion, not {current_status.value}",
        code="invalid_transition",
    )


def _other_active(quotation: QuotationLike, siblings: Iterable[QuotationLike]) -> list[QuotationLike]:
    return [
        sibling
        for sibling in siblings
        if sibling.id != quotation.id and parse_status(sibling.status) not in INACTIVE_STATUSES
    ]


def check_transition(
    quotation: QuotationLike,
    action: QuotationAction,
    siblings: Iterable[QuotationLike],
) -> QuotationStatus:
    """Validate ``action`` against the table and the sibling guards, returning the new status."""
    target = resolve_transition(quotation.status, action)
    others = _other_active(quotation, siblings)

    if action == QuotationAction.MOVE_TO_CLOSING:
        if any(is_active_with_event(sibling) for sibling in others):
            raise BusinessRuleError(
                "another quotation of this promise is already in closing or authorized with an event",
                code="closing_slot_taken",
            )

    if action == QuotationAction.ARCHIVE:
        if any(is_authorized(sibling.status) and sibling.evento_id is not None for sibling in others):
            raise BusinessRuleError(
                "cannot archive while another quotation of this promise is authorized with an event",
                code="archive_blocked",
            )

    return target
