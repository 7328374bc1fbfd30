"""Request: the customer's initial ask, before pricing or intake."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from labflow.models.base import CustomerSnapshot
from labflow.models.enums import Priority, RequestStatus, SamplingType


class Request(BaseModel):
    """Customer testing request. Only its status changes after creation."""

    id: str
    customer: CustomerSnapshot
    sample_type: str
    test_parameters: list[str] = Field(default_factory=list)
    number_of_samples: int = Field(gt=0)
    sampling_type: SamplingType = SamplingType.ONE_TIME
    requested_date: date
    priority: Priority = Priority.NORMAL
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime

    def __repr__(self) -> str:
        return f"<Request id={self.id} status={self.status.value}>"
