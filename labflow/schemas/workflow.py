"""Pydantic input schemas for workflow operations.

These are what the form/UI layer hands to the engine. Server-assigned fields
(ids, statuses, timestamps, samples) are absent on purpose: callers cannot
set them. Update schemas forbid unknown keys so immutable fields such as a
CRF's id, type or sample count cannot be smuggled into a partial update.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from labflow.models.base import CustomerSnapshot, GeoPoint
from labflow.models.enums import CRFStatus, CRFType, Priority, RequestStatus, ReviewStatus, SamplingType
from labflow.models.quotation import QuotationLine


# ── Requests ──────────────────────────────────────────────────────────


class RequestCreate(BaseModel):
    """New customer request as captured by intake staff."""

    customer: CustomerSnapshot
    sample_type: str
    test_parameters: list[str] = Field(default_factory=list)
    number_of_samples: int = Field(gt=0)
    sampling_type: SamplingType = SamplingType.ONE_TIME
    requested_date: date
    priority: Priority = Priority.NORMAL


class RequestStatusUpdate(BaseModel):
    status: RequestStatus
    force: bool = False


# ── Quotations ────────────────────────────────────────────────────────


class QuotationCreate(BaseModel):
    """Lines default to the request's parameters at catalogue prices."""

    lines: list[QuotationLine] | None = None
    signature: str = ""
    approved: bool = False


class QuotationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lines: list[QuotationLine] | None = None
    signature: str | None = None
    approved: bool | None = None


class QuotationLineEdit(BaseModel):
    """Edit one line. A new parameter without a price takes its catalogue price."""

    model_config = ConfigDict(extra="forbid")

    parameter: str | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)
    quantity: int | None = Field(default=None, ge=0)


# ── CRFs ──────────────────────────────────────────────────────────────


class SampleDetail(BaseModel):
    """Optional per-sample description captured at intake."""

    description: str = ""
    submission_detail: str = ""


class CRFCreate(BaseModel):
    """Intake form contents. Also the result of pre-filling from a quotation."""

    crf_type: CRFType = CRFType.CS
    customer: CustomerSnapshot
    sample_type: str
    test_parameters: list[str] = Field(default_factory=list)
    number_of_samples: int = Field(gt=0)
    sample_details: list[SampleDetail] = Field(default_factory=list)
    sampling_type: SamplingType = SamplingType.ONE_TIME
    reception_date: datetime | None = None
    received_by: str = ""
    signature: str = ""
    submission_date: date | None = None
    priority: Priority = Priority.NORMAL
    quotation_ref: str | None = None
    sample_images: list[str] = Field(default_factory=list)
    location: GeoPoint | None = None


class CRFUpdate(BaseModel):
    """Editable CRF fields. Id, type, sample count, status and creation time are not here."""

    model_config = ConfigDict(extra="forbid")

    customer: CustomerSnapshot | None = None
    sample_type: str | None = None
    test_parameters: list[str] | None = None
    sampling_type: SamplingType | None = None
    reception_date: datetime | None = None
    received_by: str | None = None
    signature: str | None = None
    submission_date: date | None = None
    priority: Priority | None = None
    sample_images: list[str] | None = None
    location: GeoPoint | None = None


class CRFStatusUpdate(BaseModel):
    status: CRFStatus
    force: bool = False


# ── Assignments, results, reviews ─────────────────────────────────────


class AssignmentIn(BaseModel):
    """Unit and method default to the catalogue entry for the parameter."""

    sample_id: str
    parameter: str
    unit: str = ""
    method: str = ""
    chemist: str = ""
    due_date: date | None = None


class TestResultIn(BaseModel):
    __test__ = False

    sample_id: str
    parameter: str
    test_value: str
    remarks: str = ""
    tested_by: str = ""
    tested_date: datetime | None = None


class TestResultUpdate(BaseModel):
    __test__ = False

    model_config = ConfigDict(extra="forbid")

    test_value: str | None = None
    remarks: str | None = None
    tested_by: str | None = None
    tested_date: datetime | None = None


class SampleResultIn(BaseModel):
    """Summary value written onto an embedded sample at data entry."""

    test_value: str
    remarks: str = ""
    image: str | None = None


class ReviewIn(BaseModel):
    reviewed_by: str
    signature: str = ""
    status: ReviewStatus
    comments: str = ""
    review_date: datetime | None = None
