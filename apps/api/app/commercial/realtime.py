from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app import events
from app.core.events import InternalEvent, event_bus


ROW_CHANGED_EVENT = "commercial.row_changed"

logger = logging.getLogger("app.commercial.realtime")


@dataclass(frozen=True)
class RowChange:
    studio_id: str
    table: str
    operation: str
    record_id: str
    promise_id: str | None
    change_id: str
    category: str | None = None


def publish_change(
    *,
    studio_id: uuid.UUID,
    table: str,
    operation: str,
    record_id: uuid.UUID,
    promise_id: uuid.UUID | None = None,
    category: str | None = None,
    change_id: str | None = None,
) -> str:
    """Broadcast a row change and return its change id so callers can mark it local."""
    resolved_change_id = change_id or str(uuid.uuid4())
    events.publish(
        {
            "event_id": str(uuid.uuid4()),
            "event_type": ROW_CHANGED_EVENT,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
            "studio_id": str(studio_id),
            "promise_id": str(promise_id) if promise_id is not None else None,
            "table": table,
            "operation": operation,
            "record_id": str(record_id),
            "category": category,
            "change_id": resolved_change_id,
        }
    )
    return resolved_change_id


@dataclass(eq=False)
class ChangeFeedSubscription:
    """Listen for row changes of one studio, optionally narrowed to one promise.

    Changes in ``ignore_categories`` (for example ``"cierre"``) and changes whose
    id was registered with ``mark_local`` are dropped before ``on_change`` runs.
    """

    studio_id: uuid.UUID
    on_change: Callable[[RowChange], None]
    promise_id: uuid.UUID | None = None
    ignore_categories: frozenset[str] = frozenset()
    ignore_tables: frozenset[str] = frozenset()
    _local_change_ids: set[str] = field(default_factory=set, init=False, repr=False)
    _active: bool = field(default=False, init=False, repr=False)

    def start(self) -> ChangeFeedSubscription:
        if not self._active:
            event_bus.subscribe(ROW_CHANGED_EVENT, self._handle)
            self._active = True
        return self

    def stop(self) -> None:
        if self._active:
            event_bus.unsubscribe(ROW_CHANGED_EVENT, self._handle)
            self._active = False

    def mark_local(self, change_ids: Iterable[str]) -> None:
        self._local_change_ids.update(change_ids)

    def __enter__(self) -> ChangeFeedSubscription:
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def _handle(self, event: InternalEvent) -> None:
        payload = event.payload
        if payload.get("studio_id") != str(self.studio_id):
            return
        if self.promise_id is not None and payload.get("promise_id") != str(self.promise_id):
            return
        if payload.get("category") in self.ignore_categories or payload.get("table") in self.ignore_tables:
            return
        change_id = str(payload.get("change_id"))
        if change_id in self._local_change_ids:
            self._local_change_ids.discard(change_id)
            return

        change = RowChange(
            studio_id=str(payload["studio_id"]),
            table=str(payload["table"]),
            operation=str(payload["operation"]),
            record_id=str(payload["record_id"]),
            promise_id=payload.get("promise_id"),
            change_id=change_id,
            category=payload.get("category"),
        )
        try:
            self.on_change(change)
        except Exception as exc:
            logger.exception("change_feed_handler_failed", extra={"error": str(exc)[:500]})
