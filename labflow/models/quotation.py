"""Quotation: priced parameter lines for a confirmed request."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from labflow.models.base import CustomerSnapshot
from labflow.models.enums import Priority


class QuotationLine(BaseModel):
    """One priced parameter. ``line_total`` is derived, never stored."""

    parameter: str
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    quantity: int = Field(default=1, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Quotation(BaseModel):
    """Active quotation for a request, keyed by ``request_id``.

    Customer, sample type, sample count and priority are copied from the
    request at creation time. ``grand_total`` is recomputed from the current
    lines on every read, so it always equals the sum of the line totals.
    """

    request_id: str
    quotation_no: str
    customer: CustomerSnapshot
    sample_type: str
    number_of_samples: int = Field(gt=0)
    priority: Priority = Priority.NORMAL
    lines: list[QuotationLine] = Field(default_factory=list)
    signature: str = ""
    approved: bool = False
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def grand_total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    @property
    def parameter_names(self) -> list[str]:
        return [line.parameter for line in self.lines if line.parameter]

    def __repr__(self) -> str:
        return f"<Quotation no={self.quotation_no} request_id={self.request_id} approved={self.approved}>"
