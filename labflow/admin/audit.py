"""Audit trail subscriber: records every SystemEvent as an AuditEntry.

Registered as a global subscriber (receives ALL events). Entries mirror the
laboratory's audit log: who did what, in which module, and whether it
succeeded. The trail is bounded; the oldest entries drop off first.

Never raises: a failure is logged and never propagates to the event bus.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime

from pydantic import BaseModel

from labflow.config import settings
from labflow.models.enums import AuditStatus
from labflow.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# event type -> (module, action)
EVENT_ACTIONS: dict[EventType, tuple[str, str]] = {
    EventType.REQUEST_CREATED: ("Request", "CREATE"),
    EventType.REQUEST_STATUS_CHANGED: ("Request", "STATUS"),
    EventType.QUOTATION_CREATED: ("Quotation", "CREATE"),
    EventType.QUOTATION_UPDATED: ("Quotation", "UPDATE"),
    EventType.CRF_CREATED: ("CRF", "CREATE"),
    EventType.CRF_UPDATED: ("CRF", "UPDATE"),
    EventType.CRF_STATUS_CHANGED: ("CRF", "STATUS"),
    EventType.ASSIGNMENTS_SET: ("Parameter Assignment", "UPDATE"),
    EventType.ASSIGNMENTS_LOCKED: ("Parameter Assignment", "LOCK"),
    EventType.RESULT_RECORDED: ("Data Entry", "CREATE"),
    EventType.RESULT_UPDATED: ("Data Entry", "UPDATE"),
    EventType.SAMPLE_RESULT_RECORDED: ("Data Entry", "UPDATE"),
    EventType.RESULTS_SUBMITTED: ("Data Entry", "SUBMIT"),
    EventType.REVIEW_RECORDED: ("Review", "SIGN"),
    EventType.SYSTEM_STARTUP: ("System", "STARTUP"),
    EventType.SYSTEM_SHUTDOWN: ("System", "SHUTDOWN"),
}


class AuditEntry(BaseModel):
    """One line of the audit log."""

    username: str
    action: str
    module: str
    details: str
    status: AuditStatus
    timestamp: datetime


class AuditTrail:
    """Thread-safe bounded list of audit entries, newest last."""

    def __init__(self, max_entries: int | None = None) -> None:
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries or settings.audit.audit_max_entries)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(
        self,
        module: str | None = None,
        username: str | None = None,
        status: AuditStatus | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Entries newest first, optionally filtered."""
        with self._lock:
            items = list(reversed(self._entries))
        if module is not None:
            items = [e for e in items if e.module == module]
        if username is not None:
            items = [e for e in items if e.username == username]
        if status is not None:
            items = [e for e in items if e.status == status]
        return items[:limit] if limit is not None else items

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def entry_from_event(event: SystemEvent) -> AuditEntry:
    if event.event_type == EventType.OPERATION_REJECTED:
        module = event.data.get("module", "Workflow")
        action = str(event.data.get("operation", "UNKNOWN")).upper()
        status = AuditStatus.FAILED
    else:
        module, action = EVENT_ACTIONS.get(event.event_type, ("Workflow", event.event_type.value))
        status = AuditStatus.SUCCESS
    details = {"entity_id": event.entity_id, **event.data}
    return AuditEntry(
        username=event.actor_id or SYSTEM_ACTOR,
        action=action,
        module=module,
        details=json.dumps(details, default=str, sort_keys=True),
        status=status,
        timestamp=event.timestamp,
    )


# Module-level singleton
audit_trail = AuditTrail()


async def audit_on_event(event: SystemEvent) -> None:
    """Append a SystemEvent to the audit trail.

    Failures are logged and swallowed; audit logging must never
    break the workflow operation that triggered it.
    """
    try:
        audit_trail.append(entry_from_event(event))
    except Exception:
        logger.exception(
            "Failed to record audit event: %s (entity=%s)",
            event.event_type.value,
            event.entity_id,
        )
