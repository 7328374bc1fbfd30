"""Parameter assignments and test results, keyed by (crf, sample, parameter)."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

TripleKey = tuple[str, str, str]


class ParameterAssignment(BaseModel):
    """Who tests which parameter on which sample, and by when."""

    crf_id: str
    sample_id: str
    parameter: str
    unit: str = ""
    method: str = ""
    chemist: str = ""
    due_date: date | None = None

    @property
    def key(self) -> TripleKey:
        return (self.crf_id, self.sample_id, self.parameter)


class TestResult(BaseModel):
    """Measured value for one triple. Upserted, one per triple."""

    __test__ = False

    crf_id: str
    sample_id: str
    parameter: str
    test_value: str
    remarks: str = ""
    tested_by: str = ""
    tested_date: datetime

    @property
    def key(self) -> TripleKey:
        return (self.crf_id, self.sample_id, self.parameter)
