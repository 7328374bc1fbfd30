"""Stage and per-sample progress evaluation for dashboards and timelines.

Pure read of the store, recomputed on every call. Nothing here is cached
or stored.
"""

from __future__ import annotations

from pydantic import BaseModel

from labflow.models.crf import CRF
from labflow.models.enums import CRFStatus, RequestStatus, ReviewStatus, SampleStatus, WorkflowStage
from labflow.store import EntityStore
from labflow.workflow.states import RESULTS_SUBMITTED_STATES


class StageProgress(BaseModel):
    """Completion flag per pipeline stage."""

    crf_id: str | None = None
    stages: dict[WorkflowStage, bool]

    @property
    def completed_count(self) -> int:
        return sum(1 for done in self.stages.values() if done)

    @property
    def current_stage(self) -> WorkflowStage | None:
        """First stage not yet complete, or None when everything is done."""
        for stage in WorkflowStage:
            if not self.stages.get(stage, False):
                return stage
        return None


def _review_approved(store: EntityStore, crf: CRF) -> bool:
    review = store.active_review(crf.id)
    return review is not None and review.status == ReviewStatus.APPROVED


def _crf_flags(store: EntityStore, crf: CRF) -> dict[WorkflowStage, bool]:
    return {
        WorkflowStage.CRF: crf.status != CRFStatus.DRAFT,
        WorkflowStage.ASSIGNMENT: store.is_locked(crf.id),
        WorkflowStage.TESTING: crf.status in RESULTS_SUBMITTED_STATES,
        WorkflowStage.REVIEW: _review_approved(store, crf),
        WorkflowStage.REPORT: crf.status == CRFStatus.COMPLETED,
    }


def evaluate_progress(store: EntityStore, crf_id: str | None = None) -> StageProgress:
    """Derive per-stage completion.

    Without ``crf_id`` a stage counts as complete when any record in the store
    has reached it. With ``crf_id`` the view follows that CRF and, for a
    quotation-backed form, its quotation and originating request.

    Raises:
        NotFound: If ``crf_id`` names no CRF.
    """
    if crf_id is None:
        crfs = store.crfs.values()
        stages = {
            WorkflowStage.REQUEST: any(r.status == RequestStatus.CONFIRMED for r in store.requests),
            WorkflowStage.QUOTATION: len(store.quotations) > 0,
        }
        per_crf = [_crf_flags(store, crf) for crf in crfs]
        for stage in (
            WorkflowStage.CRF,
            WorkflowStage.ASSIGNMENT,
            WorkflowStage.TESTING,
            WorkflowStage.REVIEW,
            WorkflowStage.REPORT,
        ):
            stages[stage] = any(flags[stage] for flags in per_crf)
        return StageProgress(stages=stages)

    crf = store.crfs.get_by_id(crf_id)
    request = store.requests.find(crf.quotation_ref) if crf.quotation_ref else None
    quotation = store.quotations.find(crf.quotation_ref) if crf.quotation_ref else None
    stages = {
        WorkflowStage.REQUEST: request is not None and request.status == RequestStatus.CONFIRMED,
        WorkflowStage.QUOTATION: quotation is not None,
    }
    stages.update(_crf_flags(store, crf))
    return StageProgress(crf_id=crf_id, stages=stages)


# ── Per-sample status ────────────────────────────────────────────────


class SampleProgress(BaseModel):
    """Testing state of one sample: which parameters are assigned and which have results."""

    crf_id: str
    sample_id: str
    status: SampleStatus
    assigned: list[str]
    completed: list[str]


def _sample_status(assigned: set[str], tested: set[str]) -> SampleStatus:
    if not assigned and not tested:
        return SampleStatus.PENDING
    if not tested:
        return SampleStatus.ASSIGNED
    if assigned <= tested:
        return SampleStatus.COMPLETED
    return SampleStatus.TESTING


def sample_progress(store: EntityStore, crf_id: str) -> list[SampleProgress]:
    """Status of every sample on a CRF, in sample order.

    A sample is pending until a parameter is assigned, assigned until the
    first result arrives, testing while assigned parameters lack results,
    and completed once every assigned parameter has one.

    Raises:
        NotFound: If ``crf_id`` names no CRF.
    """
    crf = store.crfs.get_by_id(crf_id)
    assigned: dict[str, set[str]] = {}
    tested: dict[str, set[str]] = {}
    for assignment in store.assignments_for(crf_id):
        assigned.setdefault(assignment.sample_id, set()).add(assignment.parameter)
    for result in store.results_for(crf_id):
        tested.setdefault(result.sample_id, set()).add(result.parameter)

    rows = []
    for sample_id in crf.sample_ids:
        sample_assigned = assigned.get(sample_id, set())
        sample_tested = tested.get(sample_id, set())
        rows.append(
            SampleProgress(
                crf_id=crf_id,
                sample_id=sample_id,
                status=_sample_status(sample_assigned, sample_tested),
                assigned=sorted(sample_assigned),
                completed=sorted(sample_tested),
            )
        )
    return rows


def samples_by_status(store: EntityStore, status: SampleStatus, crf_id: str | None = None) -> list[SampleProgress]:
    """Samples in ``status``, across every CRF or within one."""
    crf_ids = [crf_id] if crf_id is not None else [crf.id for crf in store.crfs]
    return [row for cid in crf_ids for row in sample_progress(store, cid) if row.status == status]
