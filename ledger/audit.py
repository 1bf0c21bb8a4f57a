"""Append-only audit sink notified after every committed mutation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

EXTENSION_KEY = "audit_sink"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    entity: str
    entity_id: Any
    actor_id: Optional[int]
    details: Dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:  # pragma: no cover - interface
        ...


class LoggingAuditSink:
    """Write audit events to the ``evergreen.audit`` logger."""

    def __init__(self, logger_name: str = "evergreen.audit"):
        self._logger = logging.getLogger(logger_name)

    def record(self, event: AuditEvent) -> None:
        self._logger.info(
            {
                "event": "audit",
                "action": event.action,
                "entity": event.entity,
                "entity_id": event.entity_id,
                "actor_id": event.actor_id,
                "details": event.details,
            }
        )


class MemoryAuditSink:
    def __init__(self):
        self._events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self._events.append(event)

    @property
    def events(self) -> List[AuditEvent]:
        return list(self._events)

    def actions(self) -> List[str]:
        return [event.action for event in self._events]


def init_audit(app, sink: Optional[AuditSink] = None) -> AuditSink:
    sink = sink or LoggingAuditSink()
    app.extensions[EXTENSION_KEY] = sink
    return sink


def _resolve_sink(sink: Optional[AuditSink]) -> Optional[AuditSink]:
    if sink is not None:
        return sink
    if has_app_context():
        return current_app.extensions.get(EXTENSION_KEY)
    return None


def notify(
    action: str,
    entity: str,
    entity_id: Any,
    *,
    actor_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    sink: Optional[AuditSink] = None,
) -> None:
    """Fire-and-forget delivery; a failing sink never undoes the mutation."""

    target = _resolve_sink(sink)
    if target is None:
        return
    event = AuditEvent(
        action=action,
        entity=entity,
        entity_id=entity_id,
        actor_id=actor_id,
        details=dict(details or {}),
    )
    try:
        target.record(event)
    except Exception:
        logger.exception(
            {"event": "audit_sink_failed", "action": action, "entity": entity, "entity_id": entity_id}
        )
