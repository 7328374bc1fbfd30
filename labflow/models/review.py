"""Supervisor review of a CRF's results."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from labflow.models.enums import ReviewStatus


class Review(BaseModel):
    """One review outcome. The most recent review of a CRF is the active one."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    crf_id: str
    reviewed_by: str
    signature: str = ""
    status: ReviewStatus
    comments: str = ""
    review_date: datetime
