"""Domain enums used across the entity models and API schemas.

All enums use str mixin for JSON serialization.
"""

from __future__ import annotations

from enum import Enum


class RequestStatus(str, Enum):
    """Customer request lifecycle."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


class CRFType(str, Enum):
    """CRF sub-type: decides the sample id prefix."""

    CS = "CS"  # customer submission, quotation-backed
    LS = "LS"  # lab service / walk-in


class CRFStatus(str, Enum):
    """Status machine states for a Customer Request Form."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    TESTING = "testing"
    REVIEW = "review"
    APPROVED = "approved"
    COMPLETED = "completed"


class SampleStatus(str, Enum):
    """Testing state of one sample, derived from its assignments and results."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    TESTING = "testing"
    COMPLETED = "completed"


class ReviewStatus(str, Enum):
    """Supervisor review outcome."""

    APPROVED = "approved"
    REJECTED = "rejected"


class Priority(str, Enum):
    """Turnaround priority requested by the customer."""

    NORMAL = "Normal"
    URGENT = "Urgent"
    RUSH = "Rush"


class SamplingType(str, Enum):
    """How often the customer's site is sampled."""

    ONE_TIME = "One Time"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUALLY = "Annually"


class WorkflowStage(str, Enum):
    """Pipeline stages shown on the progress timeline, in order."""

    REQUEST = "request"
    QUOTATION = "quotation"
    CRF = "crf"
    ASSIGNMENT = "assignment"
    TESTING = "testing"
    REVIEW = "review"
    REPORT = "report"


class AuditStatus(str, Enum):
    """Outcome recorded on an audit entry."""

    SUCCESS = "Success"
    FAILED = "Failed"
