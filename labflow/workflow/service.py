"""Workflow service: the engine's operations plus events and audit.

Each method runs one engine operation. On success it emits the matching
SystemEvent; on a WorkflowError it logs the rejection, emits
``operation.rejected`` with the reason, and re-raises so the caller can
show the operator why the action was refused.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from labflow.admin.events import emit
from labflow.errors import WorkflowError
from labflow.models.crf import CRF
from labflow.models.enums import CRFStatus, RequestStatus
from labflow.models.quotation import Quotation, QuotationLine
from labflow.models.request import Request
from labflow.models.review import Review
from labflow.models.testing import ParameterAssignment, TestResult
from labflow.schemas.events import EventType, SystemEvent
from labflow.schemas.workflow import (
    AssignmentIn,
    CRFCreate,
    CRFUpdate,
    QuotationCreate,
    QuotationLineEdit,
    QuotationUpdate,
    RequestCreate,
    ReviewIn,
    SampleResultIn,
    TestResultIn,
    TestResultUpdate,
)
from labflow.store import EntityStore
from labflow.workflow.engine import WorkflowEngine

logger = logging.getLogger(__name__)

R = TypeVar("R")

SOURCE = "workflow.service"


class WorkflowService:
    """Async facade over WorkflowEngine used by the API layer."""

    def __init__(self, engine: WorkflowEngine | None = None) -> None:
        self.engine = engine or WorkflowEngine()

    @property
    def store(self) -> EntityStore:
        return self.engine.store

    async def _run(
        self,
        operation: str,
        module: str,
        entity_id: str | None,
        actor: str | None,
        fn: Callable[..., R],
        *args: Any,
    ) -> R:
        try:
            return fn(*args)
        except WorkflowError as exc:
            logger.warning("Rejected %s (%s %s): %s", operation, module, entity_id, exc)
            await emit(SystemEvent(
                event_type=EventType.OPERATION_REJECTED,
                entity_id=entity_id,
                actor_id=actor,
                data={
                    "operation": operation,
                    "module": module,
                    "error": exc.code,
                    "reason": str(exc),
                },
                source_module=SOURCE,
            ))
            raise

    async def _emit(
        self,
        event_type: EventType,
        entity_id: str,
        actor: str | None,
        data: dict[str, Any] | None = None,
        crf_id: str | None = None,
    ) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            entity_id=entity_id,
            crf_id=crf_id,
            actor_id=actor,
            data=data or {},
            source_module=SOURCE,
        ))

    # ── Requests ─────────────────────────────────────────────────────

    async def add_request(self, data: RequestCreate, actor: str | None = None) -> Request:
        request = await self._run("add_request", "Request", None, actor, self.engine.add_request, data)
        await self._emit(
            EventType.REQUEST_CREATED,
            request.id,
            actor,
            {"customer": request.customer.name, "sample_type": request.sample_type},
        )
        return request

    async def update_request_status(
        self,
        request_id: str,
        status: RequestStatus,
        force: bool = False,
        actor: str | None = None,
    ) -> Request:
        previous = self.store.requests.find(request_id)
        request = await self._run(
            "update_request_status", "Request", request_id, actor,
            self.engine.update_request_status, request_id, status, force,
        )
        await self._emit(
            EventType.REQUEST_STATUS_CHANGED,
            request_id,
            actor,
            {
                "from_status": previous.status.value if previous else None,
                "to_status": request.status.value,
                "forced": force,
            },
        )
        return request

    # ── Quotations ───────────────────────────────────────────────────

    async def create_quotation(
        self,
        request_id: str,
        data: QuotationCreate | None = None,
        actor: str | None = None,
    ) -> Quotation:
        quotation = await self._run(
            "create_quotation", "Quotation", request_id, actor,
            self.engine.create_quotation, request_id, data,
        )
        await self._emit(
            EventType.QUOTATION_CREATED,
            request_id,
            actor,
            {
                "quotation_no": quotation.quotation_no,
                "grand_total": str(quotation.grand_total),
                "approved": quotation.approved,
            },
        )
        return quotation

    async def update_quotation(
        self,
        request_id: str,
        data: QuotationUpdate,
        actor: str | None = None,
    ) -> Quotation:
        quotation = await self._run(
            "update_quotation", "Quotation", request_id, actor,
            self.engine.update_quotation, request_id, data,
        )
        await self._quotation_updated(quotation, actor, sorted(data.model_dump(exclude_none=True)))
        return quotation

    async def edit_quotation_line(
        self,
        request_id: str,
        index: int,
        edit: QuotationLineEdit,
        actor: str | None = None,
    ) -> Quotation:
        quotation = await self._run(
            "edit_quotation_line", "Quotation", request_id, actor,
            self.engine.edit_quotation_line, request_id, index, edit,
        )
        await self._quotation_updated(quotation, actor, ["lines"])
        return quotation

    async def add_quotation_line(
        self,
        request_id: str,
        line: QuotationLine,
        actor: str | None = None,
    ) -> Quotation:
        quotation = await self._run(
            "add_quotation_line", "Quotation", request_id, actor,
            self.engine.add_quotation_line, request_id, line,
        )
        await self._quotation_updated(quotation, actor, ["lines"])
        return quotation

    async def remove_quotation_line(self, request_id: str, index: int, actor: str | None = None) -> Quotation:
        quotation = await self._run(
            "remove_quotation_line", "Quotation", request_id, actor,
            self.engine.remove_quotation_line, request_id, index,
        )
        await self._quotation_updated(quotation, actor, ["lines"])
        return quotation

    async def _quotation_updated(self, quotation: Quotation, actor: str | None, fields: list[str]) -> None:
        await self._emit(
            EventType.QUOTATION_UPDATED,
            quotation.request_id,
            actor,
            {
                "quotation_no": quotation.quotation_no,
                "fields": fields,
                "grand_total": str(quotation.grand_total),
                "approved": quotation.approved,
            },
        )

    # ── CRFs ─────────────────────────────────────────────────────────

    async def prefill_crf_from_quotation(self, request_id: str, actor: str | None = None) -> CRFCreate:
        return await self._run(
            "prefill_crf", "CRF", request_id, actor,
            self.engine.prefill_crf_from_quotation, request_id,
        )

    async def add_crf(self, data: CRFCreate, actor: str | None = None) -> CRF:
        actor = actor or data.received_by or None
        crf = await self._run("add_crf", "CRF", data.quotation_ref, actor, self.engine.add_crf, data)
        await self._emit(
            EventType.CRF_CREATED,
            crf.id,
            actor,
            {
                "crf_type": crf.crf_type.value,
                "customer": crf.customer.name,
                "samples": crf.sample_ids,
                "quotation_ref": crf.quotation_ref,
            },
            crf_id=crf.id,
        )
        return crf

    async def update_crf(self, crf_id: str, data: CRFUpdate, actor: str | None = None) -> CRF:
        crf = await self._run("update_crf", "CRF", crf_id, actor, self.engine.update_crf, crf_id, data)
        await self._emit(
            EventType.CRF_UPDATED,
            crf_id,
            actor,
            {"fields": sorted(data.model_dump(exclude_none=True))},
            crf_id=crf_id,
        )
        return crf

    async def update_crf_status(
        self,
        crf_id: str,
        status: CRFStatus,
        force: bool = False,
        actor: str | None = None,
    ) -> CRF:
        previous = self.store.crfs.find(crf_id)
        crf = await self._run(
            "update_crf_status", "CRF", crf_id, actor,
            self.engine.update_crf_status, crf_id, status, force,
        )
        await self._crf_status_changed(crf, previous, actor, forced=force)
        return crf

    async def complete_crf(self, crf_id: str, actor: str | None = None) -> CRF:
        previous = self.store.crfs.find(crf_id)
        crf = await self._run("complete_crf", "CRF", crf_id, actor, self.engine.complete_crf, crf_id)
        await self._crf_status_changed(crf, previous, actor)
        return crf

    async def _crf_status_changed(
        self,
        crf: CRF,
        previous: CRF | None,
        actor: str | None,
        forced: bool = False,
    ) -> None:
        await self._emit(
            EventType.CRF_STATUS_CHANGED,
            crf.id,
            actor,
            {
                "from_status": previous.status.value if previous else None,
                "to_status": crf.status.value,
                "forced": forced,
            },
            crf_id=crf.id,
        )

    # ── Assignments ──────────────────────────────────────────────────

    async def set_assignments(
        self,
        crf_id: str,
        assignments: list[AssignmentIn],
        actor: str | None = None,
    ) -> list[ParameterAssignment]:
        built = await self._run(
            "set_assignments", "Parameter Assignment", crf_id, actor,
            self.engine.set_assignments, crf_id, assignments,
        )
        await self._emit(
            EventType.ASSIGNMENTS_SET,
            crf_id,
            actor,
            {"count": len(built), "chemists": sorted({a.chemist for a in built if a.chemist})},
            crf_id=crf_id,
        )
        return built

    async def lock_assignments(self, crf_id: str, actor: str | None = None) -> bool:
        newly_locked = await self._run(
            "lock_assignments", "Parameter Assignment", crf_id, actor,
            self.engine.lock_assignments, crf_id,
        )
        if newly_locked:
            await self._emit(EventType.ASSIGNMENTS_LOCKED, crf_id, actor, crf_id=crf_id)
        return newly_locked

    # ── Data entry ───────────────────────────────────────────────────

    async def add_test_result(self, crf_id: str, data: TestResultIn, actor: str | None = None) -> TestResult:
        actor = actor or data.tested_by or None
        result = await self._run(
            "add_test_result", "Data Entry", crf_id, actor,
            self.engine.add_test_result, crf_id, data,
        )
        await self._emit(
            EventType.RESULT_RECORDED,
            crf_id,
            actor,
            {"sample_id": result.sample_id, "parameter": result.parameter},
            crf_id=crf_id,
        )
        return result

    async def update_test_result(
        self,
        crf_id: str,
        sample_id: str,
        parameter: str,
        data: TestResultUpdate,
        actor: str | None = None,
    ) -> TestResult:
        result = await self._run(
            "update_test_result", "Data Entry", crf_id, actor,
            self.engine.update_test_result, crf_id, sample_id, parameter, data,
        )
        await self._emit(
            EventType.RESULT_UPDATED,
            crf_id,
            actor,
            {"sample_id": sample_id, "parameter": parameter},
            crf_id=crf_id,
        )
        return result

    async def record_sample_result(
        self,
        crf_id: str,
        sample_id: str,
        data: SampleResultIn,
        actor: str | None = None,
    ) -> CRF:
        crf = await self._run(
            "record_sample_result", "Data Entry", crf_id, actor,
            self.engine.record_sample_result, crf_id, sample_id, data,
        )
        await self._emit(EventType.SAMPLE_RESULT_RECORDED, crf_id, actor, {"sample_id": sample_id}, crf_id=crf_id)
        return crf

    async def submit_results(self, crf_id: str, actor: str | None = None) -> CRF:
        crf = await self._run("submit_results", "Data Entry", crf_id, actor, self.engine.submit_results, crf_id)
        await self._emit(
            EventType.RESULTS_SUBMITTED,
            crf_id,
            actor,
            {"results": len(self.store.results_for(crf_id))},
            crf_id=crf_id,
        )
        return crf

    # ── Review ───────────────────────────────────────────────────────

    async def add_review(self, crf_id: str, data: ReviewIn, actor: str | None = None) -> tuple[Review, CRF]:
        actor = actor or data.reviewed_by
        review, crf = await self._run("add_review", "Review", crf_id, actor, self.engine.add_review, crf_id, data)
        await self._emit(
            EventType.REVIEW_RECORDED,
            crf_id,
            actor,
            {"review_id": review.id, "status": review.status.value, "crf_status": crf.status.value},
            crf_id=crf_id,
        )
        return review, crf


# Module-level singleton
workflow_service = WorkflowService()
