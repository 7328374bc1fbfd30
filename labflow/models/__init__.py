"""Entity models for labflow.

Import all models here so the store and the API share one definition.
"""

from __future__ import annotations

from labflow.models.base import CustomerSnapshot, GeoPoint
from labflow.models.crf import CRF, Sample
from labflow.models.enums import (
    AuditStatus,
    CRFStatus,
    CRFType,
    Priority,
    RequestStatus,
    ReviewStatus,
    SampleStatus,
    SamplingType,
    WorkflowStage,
)
from labflow.models.quotation import Quotation, QuotationLine
from labflow.models.request import Request
from labflow.models.review import Review
from labflow.models.testing import ParameterAssignment, TestResult

__all__ = [
    # Value objects
    "CustomerSnapshot",
    "GeoPoint",
    # Entities
    "Request",
    "Quotation",
    "QuotationLine",
    "CRF",
    "Sample",
    "ParameterAssignment",
    "TestResult",
    "Review",
    # Enums
    "AuditStatus",
    "CRFStatus",
    "CRFType",
    "Priority",
    "RequestStatus",
    "ReviewStatus",
    "SampleStatus",
    "SamplingType",
    "WorkflowStage",
]
