"""Workflow HTTP API: FastAPI router over WorkflowService.

JSON routes for the whole mutation and read surface. Rejected operations
come back as ``{"detail": ..., "error": ...}`` with the status code from
ERROR_STATUS. The acting operator is taken from the ``X-Operator`` header.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from labflow import catalog
from labflow.admin.audit import AuditEntry, audit_trail
from labflow.errors import (
    InvalidReference,
    InvalidTransition,
    InvalidValue,
    Locked,
    NotFound,
    OutOfSequence,
    WorkflowError,
)
from labflow.models.crf import CRF
from labflow.models.enums import AuditStatus, CRFStatus, RequestStatus, SampleStatus
from labflow.models.quotation import Quotation, QuotationLine
from labflow.models.request import Request as LabRequest
from labflow.models.review import Review
from labflow.models.testing import ParameterAssignment, TestResult
from labflow.schemas.workflow import (
    AssignmentIn,
    CRFCreate,
    CRFStatusUpdate,
    CRFUpdate,
    QuotationCreate,
    QuotationLineEdit,
    QuotationUpdate,
    RequestCreate,
    RequestStatusUpdate,
    ReviewIn,
    SampleResultIn,
    TestResultIn,
    TestResultUpdate,
)
from labflow.workflow.progress import SampleProgress
from labflow.workflow.service import WorkflowService, workflow_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["workflow"])

ERROR_STATUS: dict[type[WorkflowError], int] = {
    NotFound: 404,
    InvalidTransition: 409,
    Locked: 409,
    OutOfSequence: 409,
    InvalidReference: 422,
    InvalidValue: 422,
}


def get_service() -> WorkflowService:
    """Dependency returning the process-wide service; overridden in tests."""
    return workflow_service


def get_actor(x_operator: str | None = Header(default=None)) -> str | None:
    return x_operator or None


# ── Error mapping ────────────────────────────────────────────────────


def status_for(exc: WorkflowError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


async def workflow_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a rejected operation as JSON."""
    assert isinstance(exc, WorkflowError)
    status_code = status_for(exc)
    logger.info("%s %s -> %d %s", request.method, request.url.path, status_code, exc.code)
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": exc.code})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)


# ── Requests ─────────────────────────────────────────────────────────


@router.get("/requests")
async def list_requests(
    status: RequestStatus | None = Query(default=None),
    customer: str | None = Query(default=None),
    service: WorkflowService = Depends(get_service),
) -> list[LabRequest]:
    if customer:
        items = service.store.requests.list_by_customer(customer)
    else:
        items = service.store.requests.values()
    if status is not None:
        items = [r for r in items if r.status == status]
    return items


@router.get("/requests/confirmed")
async def confirmed_requests(service: WorkflowService = Depends(get_service)) -> list[LabRequest]:
    """Requests ready for a quotation."""
    return service.engine.get_confirmed()


@router.post("/requests", status_code=201)
async def create_request(
    data: RequestCreate,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> LabRequest:
    return await service.add_request(data, actor=actor)


@router.get("/requests/{request_id}")
async def get_request(request_id: str, service: WorkflowService = Depends(get_service)) -> LabRequest:
    return service.store.requests.get_by_id(request_id)


@router.post("/requests/{request_id}/status")
async def change_request_status(
    request_id: str,
    body: RequestStatusUpdate,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> LabRequest:
    return await service.update_request_status(request_id, body.status, force=body.force, actor=actor)


# ── Quotations ───────────────────────────────────────────────────────


@router.get("/requests/{request_id}/quotation")
async def get_quotation(request_id: str, service: WorkflowService = Depends(get_service)) -> Quotation:
    return service.store.quotations.get_by_id(request_id)


@router.get("/requests/{request_id}/quotation/draft")
async def draft_quotation(request_id: str, service: WorkflowService = Depends(get_service)) -> list[QuotationLine]:
    """Catalogue-priced lines for the request's parameters."""
    return service.engine.draft_quotation_lines(request_id)


@router.get("/requests/{request_id}/quotation/history")
async def quotation_history(request_id: str, service: WorkflowService = Depends(get_service)) -> list[Quotation]:
    service.store.requests.get_by_id(request_id)
    return service.engine.quotation_history(request_id)


@router.post("/requests/{request_id}/quotation", status_code=201)
async def create_quotation(
    request_id: str,
    data: QuotationCreate | None = None,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> Quotation:
    return await service.create_quotation(request_id, data, actor=actor)


@router.patch("/requests/{request_id}/quotation")
async def update_quotation(
    request_id: str,
    data: QuotationUpdate,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> Quotation:
    return await service.update_quotation(request_id, data, actor=actor)


@router.post("/requests/{request_id}/quotation/lines", status_code=201)
async def add_quotation_line(
    request_id: str,
    line: QuotationLine,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> Quotation:
    return await service.add_quotation_line(request_id, line, actor=actor)


@router.patch("/requests/{request_id}/quotation/lines/{index}")
async def edit_quotation_line(
    request_id: str,
    index: int,
    edit: QuotationLineEdit,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> Quotation:
    return await service.edit_quotation_line(request_id, index, edit, actor=actor)


@router.delete("/requests/{request_id}/quotation/lines/{index}")
async def remove_quotation_line(
    request_id: str,
    index: int,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> Quotation:
    return await service.remove_quotation_line(request_id, index, actor=actor)


@router.get("/requests/{request_id}/crf-prefill")
async def crf_prefill(
    request_id: str,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRFCreate:
    """Intake form pre-filled from the request's approved quotation."""
    return await service.prefill_crf_from_quotation(request_id, actor=actor)


# ── Catalogue ────────────────────────────────────────────────────────


@router.get("/catalog/sample-types")
async def sample_types() -> list[str]:
    return list(catalog.SAMPLE_TYPES)


@router.get("/catalog/sample-types/{sample_type}/parameters")
async def sample_type_parameters(sample_type: str) -> list[dict[str, Any]]:
    """Legal parameters for a sample type with unit, method and default price."""
    if not catalog.is_known_sample_type(sample_type):
        raise HTTPException(status_code=404, detail=f"Unknown sample type: {sample_type}")
    rows = []
    for name in catalog.parameters_for(sample_type):
        spec = catalog.parameter_spec(name)
        rows.append({
            "name": name,
            "unit": spec.unit if spec else "",
            "method": spec.method if spec else "",
            "default_price": str(spec.default_price) if spec else "0",
        })
    return rows


# ── CRFs ─────────────────────────────────────────────────────────────


@router.get("/crfs")
async def list_crfs(
    status: CRFStatus | None = Query(default=None),
    sample_type: str | None = Query(default=None),
    customer: str | None = Query(default=None),
    service: WorkflowService = Depends(get_service),
) -> list[CRF]:
    store = service.store
    items = store.get_crfs_by_status(status) if status is not None else store.crfs.values()
    if sample_type:
        items = [c for c in items if c.sample_type == sample_type]
    if customer:
        needle = customer.lower()
        items = [c for c in items if needle in c.customer.name.lower()]
    return items


@router.post("/crfs", status_code=201)
async def create_crf(
    data: CRFCreate,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRF:
    try:
        return await service.add_crf(data, actor=actor)
    except WorkflowError:
        raise
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.get("/crfs/{crf_id:path}/progress")
async def crf_progress(crf_id: str, service: WorkflowService = Depends(get_service)) -> dict[str, Any]:
    return _progress_body(service, crf_id)


@router.get("/progress")
async def overall_progress(service: WorkflowService = Depends(get_service)) -> dict[str, Any]:
    return _progress_body(service, None)


def _progress_body(service: WorkflowService, crf_id: str | None) -> dict[str, Any]:
    progress = service.engine.progress(crf_id)
    current = progress.current_stage
    return {
        "crf_id": progress.crf_id,
        "stages": {stage.value: done for stage, done in progress.stages.items()},
        "completed_count": progress.completed_count,
        "current_stage": current.value if current else None,
    }


@router.get("/crfs/{crf_id:path}/samples")
async def crf_samples(crf_id: str, service: WorkflowService = Depends(get_service)) -> list[SampleProgress]:
    return service.engine.sample_progress(crf_id)


@router.get("/samples")
async def list_samples(
    status: SampleStatus = Query(...),
    crf_id: str | None = Query(default=None),
    service: WorkflowService = Depends(get_service),
) -> list[SampleProgress]:
    """Samples in one testing state, across all CRFs unless ``crf_id`` is given."""
    return service.engine.samples_by_status(status, crf_id)


@router.get("/crfs/{crf_id:path}/assignments")
async def list_assignments(crf_id: str, service: WorkflowService = Depends(get_service)) -> dict[str, Any]:
    service.store.crfs.get_by_id(crf_id)
    return {
        "crf_id": crf_id,
        "locked": service.store.is_locked(crf_id),
        "assignments": service.store.assignments_for(crf_id),
    }


@router.put("/crfs/{crf_id:path}/assignments")
async def set_assignments(
    crf_id: str,
    assignments: list[AssignmentIn],
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> list[ParameterAssignment]:
    return await service.set_assignments(crf_id, assignments, actor=actor)


@router.post("/crfs/{crf_id:path}/assignments/lock")
async def lock_assignments(
    crf_id: str,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> dict[str, Any]:
    newly_locked = await service.lock_assignments(crf_id, actor=actor)
    return {"crf_id": crf_id, "locked": True, "newly_locked": newly_locked}


@router.get("/crfs/{crf_id:path}/results")
async def list_results(crf_id: str, service: WorkflowService = Depends(get_service)) -> list[TestResult]:
    service.store.crfs.get_by_id(crf_id)
    return service.store.results_for(crf_id)


@router.post("/crfs/{crf_id:path}/results", status_code=201)
async def add_result(
    crf_id: str,
    data: TestResultIn,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> TestResult:
    return await service.add_test_result(crf_id, data, actor=actor)


@router.patch("/crfs/{crf_id:path}/results")
async def update_result(
    crf_id: str,
    data: TestResultUpdate,
    sample_id: str = Query(...),
    parameter: str = Query(...),
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> TestResult:
    return await service.update_test_result(crf_id, sample_id, parameter, data, actor=actor)


@router.post("/crfs/{crf_id:path}/sample-result")
async def record_sample_result(
    crf_id: str,
    data: SampleResultIn,
    sample_id: str = Query(...),
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRF:
    return await service.record_sample_result(crf_id, sample_id, data, actor=actor)


@router.post("/crfs/{crf_id:path}/submit")
async def submit_results(
    crf_id: str,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRF:
    return await service.submit_results(crf_id, actor=actor)


@router.get("/crfs/{crf_id:path}/reviews")
async def list_reviews(crf_id: str, service: WorkflowService = Depends(get_service)) -> list[Review]:
    service.store.crfs.get_by_id(crf_id)
    return service.store.reviews_for(crf_id)


@router.post("/crfs/{crf_id:path}/reviews", status_code=201)
async def add_review(
    crf_id: str,
    data: ReviewIn,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> dict[str, Any]:
    review, crf = await service.add_review(crf_id, data, actor=actor)
    return {"review": review, "crf": crf}


@router.post("/crfs/{crf_id:path}/status")
async def change_crf_status(
    crf_id: str,
    body: CRFStatusUpdate,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRF:
    return await service.update_crf_status(crf_id, body.status, force=body.force, actor=actor)


@router.post("/crfs/{crf_id:path}/complete")
async def complete_crf(
    crf_id: str,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRF:
    return await service.complete_crf(crf_id, actor=actor)


@router.get("/crfs/{crf_id:path}")
async def get_crf(crf_id: str, service: WorkflowService = Depends(get_service)) -> CRF:
    return service.store.crfs.get_by_id(crf_id)


@router.patch("/crfs/{crf_id:path}")
async def update_crf(
    crf_id: str,
    data: CRFUpdate,
    service: WorkflowService = Depends(get_service),
    actor: str | None = Depends(get_actor),
) -> CRF:
    return await service.update_crf(crf_id, data, actor=actor)


# ── Assignments by chemist, audit ────────────────────────────────────


@router.get("/assignments")
async def chemist_assignments(
    chemist: str = Query(...),
    service: WorkflowService = Depends(get_service),
) -> list[ParameterAssignment]:
    """A chemist's worklist across all CRFs."""
    return service.store.assignments_for_chemist(chemist)


@router.get("/audit")
async def audit_log(
    module: str | None = Query(default=None),
    username: str | None = Query(default=None),
    status: AuditStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[AuditEntry]:
    """Audit entries, newest first."""
    return audit_trail.entries(module=module, username=username, status=status, limit=limit)
