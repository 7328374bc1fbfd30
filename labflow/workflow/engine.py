"""Workflow engine: the full mutation surface of the laboratory workflow.

Every operation validates against the transition tables and the
cross-entity rules before touching the store, so a rejected operation
leaves no partial state behind. Operations that mint identifiers or touch
several records run under the store's write lock.

The engine is synchronous and emits nothing; WorkflowService wraps it with
events and the audit trail.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel

from labflow import catalog
from labflow.config import WorkflowSettings, settings
from labflow.errors import InvalidReference, InvalidTransition, Locked, NotFound
from labflow.identifiers import SequenceCounter
from labflow.models.crf import CRF, Sample
from labflow.models.enums import CRFStatus, CRFType, RequestStatus, ReviewStatus, SampleStatus
from labflow.models.quotation import Quotation, QuotationLine
from labflow.models.request import Request
from labflow.models.review import Review
from labflow.models.testing import ParameterAssignment, TestResult
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
from labflow.workflow import linker
from labflow.workflow.fsm import StateMachine, crf_machine, request_machine
from labflow.workflow.progress import (
    SampleProgress,
    StageProgress,
    evaluate_progress,
    sample_progress,
    samples_by_status,
)

logger = logging.getLogger(__name__)

DraftT = TypeVar("DraftT", bound=BaseModel)


class WorkflowEngine:
    """Applies workflow operations to an EntityStore."""

    def __init__(
        self,
        store: EntityStore | None = None,
        workflow_settings: WorkflowSettings | None = None,
    ) -> None:
        self.settings = workflow_settings or settings.workflow
        self.store = store or EntityStore(
            counter=SequenceCounter(limit=self.settings.sequence_limit),
            fixed_year=self.settings.id_year,
        )

    def _now(self) -> datetime:
        return self.store.clock()

    # ── Requests ─────────────────────────────────────────────────────

    def add_request(self, data: RequestCreate) -> Request:
        with self.store.write_lock:
            request_id = self.store.minter.request_id(taken=lambda candidate: candidate in self.store.requests)
            request = Request(
                id=request_id,
                status=RequestStatus.PENDING,
                created_at=self._now(),
                **data.model_dump(),
            )
            self.store.requests.add(request)
        logger.info("Request created: id=%s customer=%s", request.id, request.customer.name)
        return request

    def update_request_status(self, request_id: str, status: RequestStatus, force: bool = False) -> Request:
        """Move a request along pending -> confirmed.

        Raises:
            NotFound: Unknown request.
            InvalidTransition: Reversal or repeat without an enabled override.
        """
        with self.store.write_lock:
            request = self.store.requests.get_by_id(request_id)
            target = RequestStatus(status)
            trigger = self._resolve(request_machine, "Request", request.status, target, force)
            updated = self.store.requests.update(request_id, {"status": target})
        logger.info(
            "Request transition: %s --%s--> %s (request=%s)",
            request.status.value,
            trigger,
            target.value,
            request_id,
        )
        return updated

    def get_confirmed(self) -> list[Request]:
        return self.store.get_confirmed()

    # ── Quotations ───────────────────────────────────────────────────

    def draft_quotation_lines(self, request_id: str) -> list[QuotationLine]:
        """One line per requested parameter at catalogue price, quantity = sample count."""
        request = self.store.requests.get_by_id(request_id)
        return [
            QuotationLine(
                parameter=name,
                unit_price=catalog.default_price(name),
                quantity=request.number_of_samples,
            )
            for name in request.test_parameters
        ]

    def create_quotation(self, request_id: str, data: QuotationCreate | None = None) -> Quotation:
        """Raise the active quotation for a confirmed request.

        A request holds one active quotation; creating another archives the
        previous one into the request's quotation history.
        """
        data = data or QuotationCreate()
        with self.store.write_lock:
            request = linker.require_confirmed_request(self.store, request_id)
            lines = data.lines if data.lines is not None else self.draft_quotation_lines(request_id)
            linker.check_quotation_lines(request.sample_type, lines)
            now = self._now()
            quotation = Quotation(
                request_id=request_id,
                quotation_no=self.store.minter.quotation_no(),
                customer=request.customer,
                sample_type=request.sample_type,
                number_of_samples=request.number_of_samples,
                priority=request.priority,
                lines=lines,
                signature=data.signature,
                approved=data.approved,
                created_at=now,
                updated_at=now,
            )
            previous = self.store.quotations.find(request_id)
            if previous is not None:
                self._archive_quotation(previous)
                logger.info("Quotation %s superseded by %s", previous.quotation_no, quotation.quotation_no)
            self.store.quotations.put(quotation)
        logger.info(
            "Quotation created: no=%s request=%s total=%s",
            quotation.quotation_no,
            request_id,
            quotation.grand_total,
        )
        return quotation

    def update_quotation(self, request_id: str, data: QuotationUpdate) -> Quotation:
        """Replace quotation fields; the previous version goes to history."""
        changes = data.model_dump(exclude_none=True)
        with self.store.write_lock:
            current = self.store.quotations.get_by_id(request_id)
            if not changes:
                logger.debug("Quotation %s update carried no fields", current.quotation_no)
                return current
            if "lines" in changes:
                linker.check_quotation_lines(current.sample_type, data.lines or [])
            changes["updated_at"] = self._now()
            updated = self.store.quotations.update(request_id, changes)
            self._archive_quotation(current)
        logger.info("Quotation updated: no=%s fields=%s", updated.quotation_no, sorted(changes))
        return updated

    def edit_quotation_line(self, request_id: str, index: int, edit: QuotationLineEdit) -> Quotation:
        changes = edit.model_dump(exclude_none=True)
        with self.store.write_lock:
            quotation = self.store.quotations.get_by_id(request_id)
            lines = list(quotation.lines)
            line = self._line_at(quotation, index)
            if "parameter" in changes and "unit_price" not in changes:
                spec = catalog.parameter_spec(changes["parameter"])
                changes["unit_price"] = spec.default_price if spec else line.unit_price
            lines[index] = QuotationLine.model_validate({**line.model_dump(), **changes})
            return self._save_lines(quotation, lines)

    def add_quotation_line(self, request_id: str, line: QuotationLine) -> Quotation:
        with self.store.write_lock:
            quotation = self.store.quotations.get_by_id(request_id)
            return self._save_lines(quotation, [*quotation.lines, line])

    def remove_quotation_line(self, request_id: str, index: int) -> Quotation:
        with self.store.write_lock:
            quotation = self.store.quotations.get_by_id(request_id)
            self._line_at(quotation, index)
            lines = [line for i, line in enumerate(quotation.lines) if i != index]
            return self._save_lines(quotation, lines)

    def quotation_history(self, request_id: str) -> list[Quotation]:
        """Superseded versions for a request, oldest first."""
        return list(self.store.quotation_history.get(request_id, []))

    def _archive_quotation(self, quotation: Quotation) -> None:
        self.store.quotation_history.setdefault(quotation.request_id, []).append(quotation)

    @staticmethod
    def _line_at(quotation: Quotation, index: int) -> QuotationLine:
        if not 0 <= index < len(quotation.lines):
            raise NotFound("QuotationLine", f"{quotation.request_id}[{index}]")
        return quotation.lines[index]

    def _save_lines(self, quotation: Quotation, lines: list[QuotationLine]) -> Quotation:
        linker.check_quotation_lines(quotation.sample_type, lines)
        updated = self.store.quotations.update(
            quotation.request_id,
            {"lines": lines, "updated_at": self._now()},
        )
        logger.debug("Quotation %s lines=%d total=%s", updated.quotation_no, len(updated.lines), updated.grand_total)
        return updated

    # ── CRFs ─────────────────────────────────────────────────────────

    @staticmethod
    def select_sample_type(draft: DraftT, sample_type: str) -> tuple[DraftT, list[str]]:
        """Switch a draft's sample type.

        Parameters are scoped by sample type, so the chosen parameters are
        cleared. Returns the new draft and the legal parameter names.
        """
        updated = draft.model_copy(update={"sample_type": sample_type, "test_parameters": []})
        return updated, catalog.parameters_for(sample_type)

    def prefill_crf_from_quotation(self, request_id: str) -> CRFCreate:
        """Copy an approved quotation's values into a new CS intake form.

        The copy is a snapshot: later quotation edits do not reach the form.
        """
        quotation = linker.require_approved_quotation(self.store, request_id)
        request = self.store.requests.find(request_id)
        prefill = CRFCreate(
            crf_type=CRFType.CS,
            customer=quotation.customer,
            sample_type=quotation.sample_type,
            test_parameters=list(quotation.parameter_names),
            number_of_samples=quotation.number_of_samples,
            priority=quotation.priority,
            quotation_ref=request_id,
        )
        if request is not None:
            prefill = prefill.model_copy(update={"sampling_type": request.sampling_type})
        return prefill.model_copy(deep=True)

    def add_crf(self, data: CRFCreate) -> CRF:
        """Create a CRF with its samples.

        The CRF id comes from the CRF counter; the samples take one contiguous
        block from the counter of the form's type.

        Raises:
            InvalidReference: Bad quotation reference or out-of-scope parameters.
            OutOfSequence: A counter cannot cover the new ids.
        """
        if data.number_of_samples <= 0:
            msg = f"number_of_samples must be positive, got {data.number_of_samples}"
            raise ValueError(msg)
        if len(data.sample_details) > data.number_of_samples:
            msg = f"{len(data.sample_details)} sample details for {data.number_of_samples} samples"
            raise ValueError(msg)

        with self.store.write_lock:
            linker.check_quotation_ref(self.store, data.crf_type, data.quotation_ref)
            linker.check_sample_type_parameters(data.sample_type, data.test_parameters)
            self.store.minter.check_capacity(data.crf_type.value, data.number_of_samples)

            crf_id = self.store.minter.crf_id()
            sample_ids = self.store.minter.sample_ids(data.crf_type, data.number_of_samples)
            samples = []
            for i, sample_id in enumerate(sample_ids):
                detail = data.sample_details[i] if i < len(data.sample_details) else None
                samples.append(
                    Sample(
                        id=sample_id,
                        description=(detail.description if detail and detail.description
                                     else f"Sample {i + 1} for {data.customer.name}"),
                        submission_detail=detail.submission_detail if detail else "",
                    )
                )

            now = self._now()
            fields = data.model_dump(exclude={"sample_details", "reception_date"})
            crf = CRF(
                id=crf_id,
                samples=samples,
                reception_date=data.reception_date or now,
                status=CRFStatus.DRAFT,
                created_at=now,
                **fields,
            )
            linker.check_new_sample_ids(self.store, crf)
            self.store.crfs.add(crf)

        logger.info(
            "CRF created: id=%s type=%s samples=%s..%s customer=%s",
            crf.id,
            crf.crf_type.value,
            sample_ids[0],
            sample_ids[-1],
            crf.customer.name,
        )
        return crf

    def update_crf(self, crf_id: str, data: CRFUpdate) -> CRF:
        """Edit intake fields.

        Changing the sample type without new parameters clears the parameter
        list. Parameters still used by assignments or results cannot be dropped.
        """
        changes = data.model_dump(exclude_none=True)
        with self.store.write_lock:
            crf = self.store.crfs.get_by_id(crf_id)
            sample_type = changes.get("sample_type", crf.sample_type)
            if sample_type != crf.sample_type and "test_parameters" not in changes:
                changes["test_parameters"] = []
            if "test_parameters" in changes:
                linker.check_sample_type_parameters(sample_type, changes["test_parameters"])
                linker.check_parameters_still_referenced(self.store, crf_id, changes["test_parameters"])
            updated = self.store.crfs.update(crf_id, changes)
        logger.info("CRF updated: id=%s fields=%s", crf_id, sorted(changes))
        return updated

    def update_crf_status(self, crf_id: str, status: CRFStatus, force: bool = False) -> CRF:
        """Direct status change by an operator or downstream module.

        Only unrestricted edges of the transition table are allowed; approval
        and rejection go through ``add_review``.
        """
        with self.store.write_lock:
            crf = self.store.crfs.get_by_id(crf_id)
            target = CRFStatus(status)
            trigger = self._resolve(crf_machine, "CRF", crf.status, target, force)
            if trigger == "submit_results":
                self._check_results_complete(crf)
            return self._set_crf_status(crf, target, trigger)

    def complete_crf(self, crf_id: str) -> CRF:
        """Mark an approved CRF as reported."""
        return self.update_crf_status(crf_id, CRFStatus.COMPLETED)

    def _set_crf_status(self, crf: CRF, target: CRFStatus, trigger: str) -> CRF:
        updated = self.store.crfs.update(crf.id, {"status": target})
        logger.info(
            "CRF transition: %s --%s--> %s (crf=%s)",
            crf.status.value,
            trigger,
            target.value,
            crf.id,
        )
        return updated

    def _resolve(self, machine: StateMachine[Any], entity: str, current: Any, target: Any, force: bool) -> str:
        """Pick the trigger for a direct status change under the configured policy."""
        if force:
            if not self.settings.allow_status_override:
                raise InvalidTransition(entity, current.value, target.value, "status override is disabled")
            logger.warning("Forced %s status change: %s -> %s", entity, current.value, target.value)
            return "force"
        if not self.settings.strict_transitions:
            if current == target:
                raise InvalidTransition(entity, current.value, target.value, "already in this state")
            trigger = machine.trigger_for(current, target)
            if trigger is None:
                logger.warning("Legacy %s status jump: %s -> %s", entity, current.value, target.value)
                return "legacy"
            return trigger
        return machine.resolve(current, target)

    # ── Assignments ──────────────────────────────────────────────────

    def set_assignments(self, crf_id: str, assignments: list[AssignmentIn]) -> list[ParameterAssignment]:
        """Replace the CRF's assignment set.

        Raises:
            Locked: The CRF's assignments are latched.
            InvalidReference: A triple points outside the CRF, or repeats.
        """
        with self.store.write_lock:
            self.store.crfs.get_by_id(crf_id)
            if self.store.is_locked(crf_id):
                raise Locked(f"Assignments for CRF {crf_id} are locked")

            default_due = self._now().date() + timedelta(days=self.settings.default_due_days)
            built: list[ParameterAssignment] = []
            seen: set[tuple[str, str, str]] = set()
            for item in assignments:
                linker.check_triple(self.store, crf_id, item.sample_id, item.parameter)
                key = (crf_id, item.sample_id, item.parameter)
                if key in seen:
                    raise InvalidReference(f"Duplicate assignment for {item.sample_id} / {item.parameter}")
                seen.add(key)
                spec = catalog.parameter_spec(item.parameter)
                built.append(
                    ParameterAssignment(
                        crf_id=crf_id,
                        sample_id=item.sample_id,
                        parameter=item.parameter,
                        unit=item.unit or (spec.unit if spec else ""),
                        method=item.method or (spec.method if spec else ""),
                        chemist=item.chemist,
                        due_date=item.due_date or default_due,
                    )
                )

            for old in self.store.assignments_for(crf_id):
                self.store.assignments.discard(old.key)
            for assignment in built:
                self.store.assignments.add(assignment)

        logger.info("Assignments set: crf=%s count=%d", crf_id, len(built))
        return built

    def lock_assignments(self, crf_id: str) -> bool:
        """Latch the CRF's assignments. Idempotent; returns True on the first call."""
        with self.store.write_lock:
            self.store.crfs.get_by_id(crf_id)
            newly_locked = self.store.set_locked(crf_id)
        if newly_locked:
            logger.info("Assignments locked: crf=%s", crf_id)
        else:
            logger.debug("Assignments already locked: crf=%s", crf_id)
        return newly_locked

    # ── Data entry ───────────────────────────────────────────────────

    def add_test_result(self, crf_id: str, data: TestResultIn) -> TestResult:
        """Record a result; an existing result for the same triple is replaced."""
        with self.store.write_lock:
            linker.check_triple(self.store, crf_id, data.sample_id, data.parameter)
            result = TestResult(
                crf_id=crf_id,
                sample_id=data.sample_id,
                parameter=data.parameter,
                test_value=data.test_value,
                remarks=data.remarks,
                tested_by=data.tested_by,
                tested_date=data.tested_date or self._now(),
            )
            self.store.results.put(result)
        logger.info("Result recorded: crf=%s sample=%s parameter=%s", crf_id, data.sample_id, data.parameter)
        return result

    def update_test_result(self, crf_id: str, sample_id: str, parameter: str, data: TestResultUpdate) -> TestResult:
        with self.store.write_lock:
            linker.check_triple(self.store, crf_id, sample_id, parameter)
            updated = self.store.results.update((crf_id, sample_id, parameter), data.model_dump(exclude_none=True))
        logger.info("Result updated: crf=%s sample=%s parameter=%s", crf_id, sample_id, parameter)
        return updated

    def record_sample_result(self, crf_id: str, sample_id: str, data: SampleResultIn) -> CRF:
        """Write the summary test value, remarks and image onto an embedded sample."""
        with self.store.write_lock:
            crf = self.store.crfs.get_by_id(crf_id)
            if crf.sample(sample_id) is None:
                raise InvalidReference(f"Sample {sample_id} does not belong to CRF {crf_id}")
            samples = [
                s.model_copy(update=data.model_dump(exclude_none=True)) if s.id == sample_id else s
                for s in crf.samples
            ]
            return self.store.crfs.update(crf_id, {"samples": samples})

    def submit_results(self, crf_id: str) -> CRF:
        """Hand a tested CRF to review once every assigned test has a result."""
        with self.store.write_lock:
            crf = self.store.crfs.get_by_id(crf_id)
            target = crf_machine.fire(crf.status, "submit_results")
            self._check_results_complete(crf)
            return self._set_crf_status(crf, target, "submit_results")

    def _check_results_complete(self, crf: CRF) -> None:
        missing = [a.key for a in self.store.assignments_for(crf.id) if a.key not in self.store.results]
        if missing:
            raise InvalidTransition(
                "CRF",
                crf.status.value,
                CRFStatus.REVIEW.value,
                f"{len(missing)} assigned test(s) have no result",
            )

    # ── Review ───────────────────────────────────────────────────────

    def add_review(self, crf_id: str, data: ReviewIn) -> tuple[Review, CRF]:
        """Record a supervisor review; it decides the CRF's next status.

        Approved moves review -> approved, rejected sends it back to testing.
        Earlier reviews stay on record.
        """
        with self.store.write_lock:
            crf = self.store.crfs.get_by_id(crf_id)
            trigger = "approve" if data.status == ReviewStatus.APPROVED else "reject"
            target = crf_machine.fire(crf.status, trigger)
            review = Review(
                crf_id=crf_id,
                reviewed_by=data.reviewed_by,
                signature=data.signature,
                status=data.status,
                comments=data.comments,
                review_date=data.review_date or self._now(),
            )
            self.store.reviews.add(review)
            updated = self._set_crf_status(crf, target, trigger)
        logger.info("Review recorded: crf=%s status=%s by=%s", crf_id, data.status.value, data.reviewed_by)
        return review, updated

    # ── Progress ─────────────────────────────────────────────────────

    def progress(self, crf_id: str | None = None) -> StageProgress:
        return evaluate_progress(self.store, crf_id)

    def sample_progress(self, crf_id: str) -> list[SampleProgress]:
        return sample_progress(self.store, crf_id)

    def samples_by_status(self, status: SampleStatus, crf_id: str | None = None) -> list[SampleProgress]:
        return samples_by_status(self.store, SampleStatus(status), crf_id)
