"""SystemEvent schema: the event type that flows through the whole system.

Every accepted or rejected workflow operation emits a SystemEvent.
Subscribers (the audit trail, dashboards) consume these asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Requests
    REQUEST_CREATED = "request.created"
    REQUEST_STATUS_CHANGED = "request.status_changed"

    # Quotations
    QUOTATION_CREATED = "quotation.created"
    QUOTATION_UPDATED = "quotation.updated"

    # CRFs
    CRF_CREATED = "crf.created"
    CRF_UPDATED = "crf.updated"
    CRF_STATUS_CHANGED = "crf.status_changed"

    # Assignments
    ASSIGNMENTS_SET = "assignment.set"
    ASSIGNMENTS_LOCKED = "assignment.locked"

    # Data entry
    RESULT_RECORDED = "result.recorded"
    RESULT_UPDATED = "result.updated"
    SAMPLE_RESULT_RECORDED = "result.sample_recorded"
    RESULTS_SUBMITTED = "result.submitted"

    # Review
    REVIEW_RECORDED = "review.recorded"

    # Rejections
    OPERATION_REJECTED = "operation.rejected"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core event that flows through the workflow system.

    Immutable once created. Consumed by:
    - audit_on_event → appends to the in-memory audit trail
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Context (optional, not every event concerns a CRF)
    entity_id: str | None = None
    crf_id: str | None = None
    actor_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
