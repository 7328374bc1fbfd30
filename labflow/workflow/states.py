"""Status definitions and transition maps for requests and CRFs.

Transitions are explicit: nothing advances on its own. Every edge is keyed by
a trigger so callers and the audit trail can name the action taken.
"""

from __future__ import annotations

from labflow.models.enums import CRFStatus, RequestStatus

# Transition map: {current_state: {trigger_name: next_state}}
REQUEST_TRANSITIONS: dict[RequestStatus, dict[str, RequestStatus]] = {
    RequestStatus.PENDING: {
        "confirm": RequestStatus.CONFIRMED,
    },
    RequestStatus.CONFIRMED: {},
}

CRF_TRANSITIONS: dict[CRFStatus, dict[str, CRFStatus]] = {
    CRFStatus.DRAFT: {
        "submit": CRFStatus.SUBMITTED,
    },
    CRFStatus.SUBMITTED: {
        "assign": CRFStatus.ASSIGNED,
    },
    CRFStatus.ASSIGNED: {
        "start_testing": CRFStatus.TESTING,
    },
    CRFStatus.TESTING: {
        "submit_results": CRFStatus.REVIEW,
    },
    CRFStatus.REVIEW: {
        "approve": CRFStatus.APPROVED,
        "reject": CRFStatus.TESTING,
    },
    CRFStatus.APPROVED: {
        "complete": CRFStatus.COMPLETED,
    },
    CRFStatus.COMPLETED: {},
}

# Edges only a review outcome may take; a direct status change cannot.
REVIEW_TRIGGERS: frozenset[str] = frozenset({"approve", "reject"})

# The forward path from draft, in order.
CRF_MAIN_PATH: tuple[CRFStatus, ...] = (
    CRFStatus.DRAFT,
    CRFStatus.SUBMITTED,
    CRFStatus.ASSIGNED,
    CRFStatus.TESTING,
    CRFStatus.REVIEW,
    CRFStatus.APPROVED,
    CRFStatus.COMPLETED,
)

# Statuses reached once results have been handed to review.
RESULTS_SUBMITTED_STATES: frozenset[CRFStatus] = frozenset(
    {CRFStatus.REVIEW, CRFStatus.APPROVED, CRFStatus.COMPLETED}
)
