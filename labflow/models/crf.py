"""CRF aggregate and its embedded samples."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from labflow.models.base import CustomerSnapshot, GeoPoint
from labflow.models.enums import CRFStatus, CRFType, Priority, SamplingType


class Sample(BaseModel):
    """A physical sample received under a CRF.

    Test fields are written only by the data-entry stage.
    """

    id: str
    description: str = ""
    submission_detail: str = ""
    test_value: str | None = None
    remarks: str | None = None
    image: str | None = None


class CRF(BaseModel):
    """Customer Request Form: one intake batch and its lifecycle status."""

    id: str
    crf_type: CRFType
    customer: CustomerSnapshot
    sample_type: str
    test_parameters: list[str] = Field(default_factory=list)
    number_of_samples: int = Field(gt=0)
    samples: list[Sample]
    sampling_type: SamplingType = SamplingType.ONE_TIME
    reception_date: datetime
    received_by: str = ""
    signature: str = ""
    submission_date: date | None = None
    priority: Priority = Priority.NORMAL
    quotation_ref: str | None = None
    sample_images: list[str] = Field(default_factory=list)
    location: GeoPoint | None = None
    status: CRFStatus = CRFStatus.DRAFT
    created_at: datetime

    @model_validator(mode="after")
    def check_samples(self) -> CRF:
        """Sample count is fixed at creation and sample ids are unique."""
        if len(self.samples) != self.number_of_samples:
            msg = f"CRF {self.id} has {len(self.samples)} samples, expected {self.number_of_samples}"
            raise ValueError(msg)
        ids = [s.id for s in self.samples]
        if len(set(ids)) != len(ids):
            msg = f"CRF {self.id} has duplicate sample ids"
            raise ValueError(msg)
        return self

    @property
    def sample_ids(self) -> list[str]:
        return [s.id for s in self.samples]

    def sample(self, sample_id: str) -> Sample | None:
        for s in self.samples:
            if s.id == sample_id:
                return s
        return None

    def __repr__(self) -> str:
        return f"<CRF id={self.id} type={self.crf_type.value} status={self.status.value}>"
