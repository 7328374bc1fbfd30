"""Tests for the workflow engine.

Covers:
- Request intake and confirmation
- Quotation drafting, editing, history and the grand-total invariant
- CRF creation from a quotation (Edinburgh Products scenario), id minting,
  reference checks, overflow and concurrent creation
- CRF edits and status transitions under strict, legacy and override policy
- Parameter assignments and the one-way lock
- Result entry, submission and review outcomes
"""

from __future__ import annotations

import threading
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from labflow.config import WorkflowSettings
from labflow.errors import InvalidReference, InvalidTransition, Locked, NotFound, OutOfSequence
from labflow.identifiers import SequenceCounter
from labflow.models.base import CustomerSnapshot
from labflow.models.crf import CRF
from labflow.models.enums import CRFStatus, CRFType, RequestStatus, ReviewStatus
from labflow.models.quotation import QuotationLine
from labflow.models.request import Request
from labflow.schemas.workflow import (
    AssignmentIn,
    CRFCreate,
    CRFUpdate,
    QuotationCreate,
    QuotationLineEdit,
    QuotationUpdate,
    RequestCreate,
    ReviewIn,
    SampleDetail,
    SampleResultIn,
    TestResultIn,
    TestResultUpdate,
)
from labflow.store import EntityStore
from labflow.workflow.engine import WorkflowEngine
from labflow.workflow.states import CRF_MAIN_PATH

NOW = datetime(2025, 3, 14, 10, 0, tzinfo=UTC)


# ── Helpers ──────────────────────────────────────────────────────────


def _make_engine(limit: int = 999, **settings_overrides) -> WorkflowEngine:
    store = EntityStore(counter=SequenceCounter(limit=limit), clock=lambda: NOW)
    return WorkflowEngine(store=store, workflow_settings=WorkflowSettings(**settings_overrides))


def _request_data(**overrides) -> RequestCreate:
    fields = {
        "customer": CustomerSnapshot(name="Edinburgh Products", address="12 Marina Rd", email="qa@edinburgh.example"),
        "sample_type": "Wastewater",
        "test_parameters": ["COD", "BOD"],
        "number_of_samples": 3,
        "requested_date": date(2025, 3, 14),
    }
    fields.update(overrides)
    return RequestCreate(**fields)


def _confirmed_request(engine: WorkflowEngine, **overrides) -> Request:
    request = engine.add_request(_request_data(**overrides))
    return engine.update_request_status(request.id, RequestStatus.CONFIRMED)


def _approved_quotation(engine: WorkflowEngine, **overrides):
    request = _confirmed_request(engine, **overrides)
    return engine.create_quotation(request.id, QuotationCreate(approved=True, signature="K. Obi"))


def _crf_data(**overrides) -> CRFCreate:
    fields = {
        "crf_type": CRFType.LS,
        "customer": CustomerSnapshot(name="Walk-in Client"),
        "sample_type": "Wastewater",
        "test_parameters": ["COD", "pH"],
        "number_of_samples": 2,
        "received_by": "J. Adeyemi",
    }
    fields.update(overrides)
    return CRFCreate(**fields)


def _review(status: ReviewStatus) -> ReviewIn:
    return ReviewIn(reviewed_by="Dr. Mensah", status=status, signature="sig")


def _crf_at(engine: WorkflowEngine, status: CRFStatus, **overrides) -> CRF:
    """Create an LS CRF and walk it forward to ``status``."""
    crf = engine.add_crf(_crf_data(**overrides))
    for target in CRF_MAIN_PATH[1 : CRF_MAIN_PATH.index(status) + 1]:
        if target == CRFStatus.APPROVED:
            _, crf = engine.add_review(crf.id, _review(ReviewStatus.APPROVED))
        else:
            crf = engine.update_crf_status(crf.id, target)
    return crf


# ── Requests ─────────────────────────────────────────────────────────


class TestRequests:
    def test_add_request(self):
        engine = _make_engine()
        request = engine.add_request(_request_data())
        assert request.status == RequestStatus.PENDING
        assert request.id.startswith("REQ-")
        assert request.created_at == NOW
        assert engine.store.requests.get_by_id(request.id) == request

    def test_request_ids_unique_at_same_instant(self):
        engine = _make_engine()
        ids = {engine.add_request(_request_data()).id for _ in range(5)}
        assert len(ids) == 5

    def test_confirm(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        assert request.status == RequestStatus.CONFIRMED
        assert engine.get_confirmed() == [request]

    def test_confirm_twice_rejected(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        with pytest.raises(InvalidTransition):
            engine.update_request_status(request.id, RequestStatus.CONFIRMED)

    def test_reversal_rejected(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        with pytest.raises(InvalidTransition):
            engine.update_request_status(request.id, RequestStatus.PENDING)
        assert engine.store.requests.get_by_id(request.id).status == RequestStatus.CONFIRMED

    def test_force_disabled_by_default(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        with pytest.raises(InvalidTransition, match="override is disabled"):
            engine.update_request_status(request.id, RequestStatus.PENDING, force=True)

    def test_force_when_override_allowed(self):
        engine = _make_engine(allow_status_override=True)
        request = _confirmed_request(engine)
        reopened = engine.update_request_status(request.id, RequestStatus.PENDING, force=True)
        assert reopened.status == RequestStatus.PENDING

    def test_unknown_request(self):
        engine = _make_engine()
        with pytest.raises(NotFound):
            engine.update_request_status("REQ-0", RequestStatus.CONFIRMED)


# ── Quotations ───────────────────────────────────────────────────────


class TestQuotations:
    def test_requires_confirmed_request(self):
        engine = _make_engine()
        request = engine.add_request(_request_data())
        with pytest.raises(InvalidReference, match="confirmed"):
            engine.create_quotation(request.id)
        assert len(engine.store.quotations) == 0

    def test_requires_existing_request(self):
        engine = _make_engine()
        with pytest.raises(NotFound):
            engine.create_quotation("REQ-0")

    def test_default_lines_from_catalogue(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        quotation = engine.create_quotation(request.id)
        assert quotation.quotation_no == "QT/25/001"
        assert [(l.parameter, l.unit_price, l.quantity) for l in quotation.lines] == [
            ("COD", Decimal("2500"), 3),
            ("BOD", Decimal("3000"), 3),
        ]
        assert quotation.grand_total == Decimal("16500")
        assert quotation.customer.name == "Edinburgh Products"
        assert quotation.approved is False

    def test_explicit_lines(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        lines = [QuotationLine(parameter="COD", unit_price=Decimal("2000"), quantity=2)]
        quotation = engine.create_quotation(request.id, QuotationCreate(lines=lines))
        assert quotation.grand_total == Decimal("4000")

    def test_second_quotation_archives_first(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        first = engine.create_quotation(request.id)
        second = engine.create_quotation(request.id)
        assert second.quotation_no == "QT/25/002"
        assert engine.store.quotations.get_by_id(request.id) == second
        assert engine.quotation_history(request.id) == [first]

    def test_update_keeps_history(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        draft = engine.create_quotation(request.id)
        approved = engine.update_quotation(request.id, QuotationUpdate(approved=True, signature="K. Obi"))
        assert approved.approved is True
        assert approved.quotation_no == draft.quotation_no
        assert engine.quotation_history(request.id) == [draft]

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            QuotationUpdate(quotation_no="QT/25/999")

    def test_edit_line_new_parameter_takes_catalogue_price(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        quotation = engine.edit_quotation_line(request.id, 0, QuotationLineEdit(parameter="pH"))
        assert quotation.lines[0].parameter == "pH"
        assert quotation.lines[0].unit_price == Decimal("500")
        assert quotation.grand_total == Decimal("1500") + Decimal("9000")

    def test_edit_line_explicit_price(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        quotation = engine.edit_quotation_line(
            request.id, 1, QuotationLineEdit(unit_price=Decimal("100.50"), quantity=2)
        )
        assert quotation.lines[1].line_total == Decimal("201.00")

    def test_edit_line_out_of_range(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        with pytest.raises(NotFound):
            engine.edit_quotation_line(request.id, 5, QuotationLineEdit(quantity=1))

    def test_grand_total_tracks_every_edit(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        steps = [
            lambda: engine.add_quotation_line(request.id, QuotationLine(parameter="pH", unit_price=Decimal("500"))),
            lambda: engine.edit_quotation_line(request.id, 0, QuotationLineEdit(quantity=7)),
            lambda: engine.edit_quotation_line(request.id, 1, QuotationLineEdit(parameter="Turbidity")),
            lambda: engine.remove_quotation_line(request.id, 0),
            lambda: engine.update_quotation(request.id, QuotationUpdate(lines=[])),
        ]
        for step in steps:
            quotation = step()
            assert quotation.grand_total == sum((l.line_total for l in quotation.lines), Decimal("0"))
        assert quotation.grand_total == Decimal("0")

    def test_empty_update_keeps_history_unchanged(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        draft = engine.create_quotation(request.id)
        assert engine.update_quotation(request.id, QuotationUpdate()) == draft
        assert engine.quotation_history(request.id) == []

    def test_line_parameter_must_suit_sample_type(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        with pytest.raises(InvalidReference, match="Salmonella"):
            engine.add_quotation_line(request.id, QuotationLine(parameter="Salmonella", unit_price=Decimal("1")))
        with pytest.raises(InvalidReference, match="Salmonella"):
            engine.edit_quotation_line(request.id, 0, QuotationLineEdit(parameter="Salmonella"))
        assert engine.store.quotations.get_by_id(request.id).parameter_names == ["COD", "BOD"]

    def test_line_parameter_quoted_once(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        with pytest.raises(InvalidReference, match="more than once"):
            engine.add_quotation_line(request.id, QuotationLine(parameter="COD", unit_price=Decimal("2500")))
        with pytest.raises(InvalidReference, match="more than once"):
            engine.edit_quotation_line(request.id, 1, QuotationLineEdit(parameter="COD"))
        with pytest.raises(InvalidReference):
            engine.update_quotation(
                request.id,
                QuotationUpdate(lines=[QuotationLine(parameter="BOD"), QuotationLine(parameter="BOD")]),
            )
        assert engine.quotation_history(request.id) == []

    def test_explicit_lines_checked_before_minting(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        with pytest.raises(InvalidReference):
            engine.create_quotation(request.id, QuotationCreate(lines=[QuotationLine(parameter="Fat Content")]))
        assert engine.create_quotation(request.id).quotation_no == "QT/25/001"

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            QuotationLine(parameter="COD", unit_price=Decimal("-1"))


# ── CRF creation ─────────────────────────────────────────────────────


class TestCRFCreation:
    def test_edinburgh_products_scenario(self):
        engine = _make_engine()
        quotation = _approved_quotation(engine)

        prefill = engine.prefill_crf_from_quotation(quotation.request_id)
        crf = engine.add_crf(prefill)

        assert crf.id == "CRF/25/001"
        assert crf.crf_type == CRFType.CS
        assert crf.sample_ids == ["CS/25/001", "CS/25/002", "CS/25/003"]
        assert crf.customer.name == "Edinburgh Products"
        assert crf.quotation_ref == quotation.request_id
        assert crf.test_parameters == ["COD", "BOD"]
        assert crf.status == CRFStatus.DRAFT

    def test_prefill_is_not_a_live_binding(self):
        engine = _make_engine()
        quotation = _approved_quotation(engine)
        prefill = engine.prefill_crf_from_quotation(quotation.request_id)
        crf = engine.add_crf(prefill)

        engine.remove_quotation_line(quotation.request_id, 1)
        engine.edit_quotation_line(quotation.request_id, 0, QuotationLineEdit(parameter="pH"))

        assert engine.store.crfs.get_by_id(crf.id).test_parameters == ["COD", "BOD"]
        assert prefill.test_parameters == ["COD", "BOD"]

    def test_prefill_needs_approved_quotation(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        with pytest.raises(InvalidReference, match="not approved"):
            engine.prefill_crf_from_quotation(request.id)

    def test_default_sample_descriptions(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data(sample_details=[SampleDetail(description="Outfall A")]))
        assert [s.description for s in crf.samples] == ["Outfall A", "Sample 2 for Walk-in Client"]

    def test_too_many_sample_details(self):
        engine = _make_engine()
        with pytest.raises(ValueError, match="sample details"):
            engine.add_crf(_crf_data(number_of_samples=1, sample_details=[SampleDetail(), SampleDetail()]))

    def test_zero_samples_rejected_by_schema(self):
        with pytest.raises(ValidationError):
            _crf_data(number_of_samples=0)

    def test_sequences_increase_per_type(self):
        engine = _make_engine()
        first = engine.add_crf(_crf_data(number_of_samples=2))
        second = engine.add_crf(_crf_data(number_of_samples=3))
        other = engine.add_crf(_crf_data(crf_type=CRFType.CS, number_of_samples=1))
        assert first.sample_ids == ["LS/25/001", "LS/25/002"]
        assert second.sample_ids == ["LS/25/003", "LS/25/004", "LS/25/005"]
        assert other.sample_ids == ["CS/25/001"]
        assert [first.id, second.id, other.id] == ["CRF/25/001", "CRF/25/002", "CRF/25/003"]

    def test_ls_cannot_reference_quotation(self):
        engine = _make_engine()
        quotation = _approved_quotation(engine)
        with pytest.raises(InvalidReference):
            engine.add_crf(_crf_data(quotation_ref=quotation.request_id))

    def test_cs_needs_approved_quotation(self):
        engine = _make_engine()
        request = _confirmed_request(engine)
        engine.create_quotation(request.id)
        with pytest.raises(InvalidReference):
            engine.add_crf(_crf_data(crf_type=CRFType.CS, quotation_ref=request.id))

    def test_cs_dangling_quotation_ref(self):
        engine = _make_engine()
        with pytest.raises(NotFound):
            engine.add_crf(_crf_data(crf_type=CRFType.CS, quotation_ref="REQ-0"))

    def test_parameter_outside_sample_type(self):
        engine = _make_engine()
        with pytest.raises(InvalidReference, match="Noise Level"):
            engine.add_crf(_crf_data(test_parameters=["COD", "Noise Level"]))
        assert engine.store.counter.state() == {}

    def test_uncatalogued_sample_type_accepts_any_parameters(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data(sample_type="Air", test_parameters=["PM2.5"]))
        assert crf.test_parameters == ["PM2.5"]

    def test_overflow_consumes_nothing(self):
        engine = _make_engine(limit=3)
        engine.add_crf(_crf_data(number_of_samples=2))
        with pytest.raises(OutOfSequence):
            engine.add_crf(_crf_data(number_of_samples=2))
        assert len(engine.store.crfs) == 1
        crf = engine.add_crf(_crf_data(number_of_samples=1))
        assert crf.id == "CRF/25/002"
        assert crf.sample_ids == ["LS/25/003"]

    def test_concurrent_creation_has_no_duplicates_or_gaps(self):
        engine = _make_engine()
        barrier = threading.Barrier(2)
        created: list[CRF] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            crf = engine.add_crf(_crf_data(number_of_samples=2))
            with lock:
                created.append(crf)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        sample_ids = sorted(s for crf in created for s in crf.sample_ids)
        assert sample_ids == ["LS/25/001", "LS/25/002", "LS/25/003", "LS/25/004"]
        for crf in created:
            seqs = [int(s.rsplit("/", 1)[1]) for s in crf.sample_ids]
            assert seqs[1] == seqs[0] + 1

    def test_many_concurrent_creations(self):
        engine = _make_engine()

        def worker():
            for _ in range(5):
                engine.add_crf(_crf_data(number_of_samples=3))

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        sample_ids = [s for crf in engine.store.crfs for s in crf.sample_ids]
        assert len(sample_ids) == len(set(sample_ids)) == 90
        assert sorted(int(s.rsplit("/", 1)[1]) for s in sample_ids) == list(range(1, 91))


# ── CRF edits and status ─────────────────────────────────────────────


class TestCRFUpdate:
    def test_select_sample_type_clears_parameters(self):
        draft = _crf_data()
        updated, legal = WorkflowEngine.select_sample_type(draft, "Noise")
        assert updated.sample_type == "Noise"
        assert updated.test_parameters == []
        assert legal == ["Noise Level", "Peak Noise", "Background Noise"]
        assert draft.test_parameters == ["COD", "pH"]

    def test_sample_type_change_clears_parameters(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        updated = engine.update_crf(crf.id, CRFUpdate(sample_type="Soil"))
        assert updated.sample_type == "Soil"
        assert updated.test_parameters == []

    def test_sample_type_change_with_new_parameters(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        updated = engine.update_crf(crf.id, CRFUpdate(sample_type="Soil", test_parameters=["pH", "Organic Matter"]))
        assert updated.test_parameters == ["pH", "Organic Matter"]

    def test_illegal_parameters_rejected(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidReference):
            engine.update_crf(crf.id, CRFUpdate(test_parameters=["Salmonella"]))

    def test_cannot_drop_assigned_parameter(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        engine.set_assignments(crf.id, [AssignmentIn(sample_id=crf.sample_ids[0], parameter="pH")])
        with pytest.raises(InvalidReference, match="pH"):
            engine.update_crf(crf.id, CRFUpdate(test_parameters=["COD"]))

    def test_immutable_fields_not_accepted(self):
        with pytest.raises(ValidationError):
            CRFUpdate(id="CRF/25/999")
        with pytest.raises(ValidationError):
            CRFUpdate(number_of_samples=5)

    def test_plain_field_update(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        updated = engine.update_crf(crf.id, CRFUpdate(received_by="T. Bello"))
        assert updated.received_by == "T. Bello"
        assert updated.sample_ids == crf.sample_ids


class TestCRFStatus:
    def test_walk_to_testing(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.TESTING)
        assert crf.status == CRFStatus.TESTING

    def test_skip_rejected(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidTransition):
            engine.update_crf_status(crf.id, CRFStatus.TESTING)
        assert engine.store.crfs.get_by_id(crf.id).status == CRFStatus.DRAFT

    def test_direct_approval_rejected(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.REVIEW)
        with pytest.raises(InvalidTransition, match="review outcome"):
            engine.update_crf_status(crf.id, CRFStatus.APPROVED)

    def test_direct_return_to_testing_rejected(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.REVIEW)
        with pytest.raises(InvalidTransition):
            engine.update_crf_status(crf.id, CRFStatus.TESTING)

    def test_complete_crf(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.APPROVED)
        assert engine.complete_crf(crf.id).status == CRFStatus.COMPLETED

    def test_complete_needs_approval(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.TESTING)
        with pytest.raises(InvalidTransition):
            engine.complete_crf(crf.id)

    def test_legacy_mode_allows_jumps(self):
        engine = _make_engine(strict_transitions=False)
        crf = engine.add_crf(_crf_data())
        assert engine.update_crf_status(crf.id, CRFStatus.COMPLETED).status == CRFStatus.COMPLETED
        assert engine.update_crf_status(crf.id, CRFStatus.DRAFT).status == CRFStatus.DRAFT

    def test_legacy_mode_rejects_same_state(self):
        engine = _make_engine(strict_transitions=False)
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidTransition):
            engine.update_crf_status(crf.id, CRFStatus.DRAFT)

    def test_force_with_override(self):
        engine = _make_engine(allow_status_override=True)
        crf = _crf_at(engine, CRFStatus.TESTING)
        assert engine.update_crf_status(crf.id, CRFStatus.SUBMITTED, force=True).status == CRFStatus.SUBMITTED

    def test_force_without_override(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidTransition):
            engine.update_crf_status(crf.id, CRFStatus.COMPLETED, force=True)


# ── Assignments ──────────────────────────────────────────────────────


class TestAssignments:
    def test_catalogue_defaults(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        [assignment] = engine.set_assignments(
            crf.id, [AssignmentIn(sample_id=crf.sample_ids[0], parameter="COD", chemist="Ada")]
        )
        assert assignment.unit == "mg/L"
        assert assignment.method == "APHA 5220 D"
        assert assignment.due_date == NOW.date() + timedelta(days=7)

    def test_explicit_values_win(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        due = date(2025, 4, 1)
        [assignment] = engine.set_assignments(
            crf.id,
            [AssignmentIn(sample_id=crf.sample_ids[0], parameter="COD", unit="g/L", method="in-house", due_date=due)],
        )
        assert (assignment.unit, assignment.method, assignment.due_date) == ("g/L", "in-house", due)

    def test_set_replaces_previous(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        s1, s2 = crf.sample_ids
        engine.set_assignments(crf.id, [AssignmentIn(sample_id=s1, parameter="COD")])
        engine.set_assignments(crf.id, [AssignmentIn(sample_id=s2, parameter="pH")])
        assert [a.key for a in engine.store.assignments_for(crf.id)] == [(crf.id, s2, "pH")]

    def test_sample_outside_crf(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        other = engine.add_crf(_crf_data())
        with pytest.raises(InvalidReference):
            engine.set_assignments(crf.id, [AssignmentIn(sample_id=other.sample_ids[0], parameter="COD")])

    def test_parameter_outside_crf(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidReference):
            engine.set_assignments(crf.id, [AssignmentIn(sample_id=crf.sample_ids[0], parameter="BOD")])

    def test_duplicate_triple(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        item = AssignmentIn(sample_id=crf.sample_ids[0], parameter="COD")
        with pytest.raises(InvalidReference, match="Duplicate"):
            engine.set_assignments(crf.id, [item, item])
        assert engine.store.assignments_for(crf.id) == []

    def test_unknown_crf(self):
        engine = _make_engine()
        with pytest.raises(NotFound):
            engine.set_assignments("CRF/25/404", [])

    def test_lock_is_idempotent_and_final(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        before = engine.set_assignments(crf.id, [AssignmentIn(sample_id=crf.sample_ids[0], parameter="COD")])

        assert engine.lock_assignments(crf.id) is True
        assert engine.lock_assignments(crf.id) is False

        with pytest.raises(Locked):
            engine.set_assignments(crf.id, [])
        assert engine.store.assignments_for(crf.id) == before
        assert engine.store.is_locked(crf.id)


# ── Results and review ───────────────────────────────────────────────


class TestResults:
    def test_add_and_upsert(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        sample_id = crf.sample_ids[0]
        engine.add_test_result(crf.id, TestResultIn(sample_id=sample_id, parameter="COD", test_value="120"))
        engine.add_test_result(crf.id, TestResultIn(sample_id=sample_id, parameter="COD", test_value="118"))
        [result] = engine.store.results_for(crf.id)
        assert result.test_value == "118"
        assert result.tested_date == NOW

    def test_result_outside_crf(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidReference):
            engine.add_test_result(crf.id, TestResultIn(sample_id="LS/25/999", parameter="COD", test_value="1"))

    def test_update_result(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        sample_id = crf.sample_ids[1]
        engine.add_test_result(crf.id, TestResultIn(sample_id=sample_id, parameter="pH", test_value="7.1"))
        updated = engine.update_test_result(crf.id, sample_id, "pH", TestResultUpdate(remarks="re-run"))
        assert (updated.test_value, updated.remarks) == ("7.1", "re-run")

    def test_update_missing_result(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(NotFound):
            engine.update_test_result(crf.id, crf.sample_ids[0], "pH", TestResultUpdate(test_value="7"))

    def test_record_sample_result(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        updated = engine.record_sample_result(crf.id, crf.sample_ids[0], SampleResultIn(test_value="within limits"))
        assert updated.samples[0].test_value == "within limits"
        assert updated.samples[1].test_value is None

    def test_record_sample_result_unknown_sample(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidReference):
            engine.record_sample_result(crf.id, "LS/25/999", SampleResultIn(test_value="x"))

    def test_submit_needs_every_result(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.ASSIGNED)
        s1, s2 = crf.sample_ids
        engine.set_assignments(
            crf.id, [AssignmentIn(sample_id=s1, parameter="COD"), AssignmentIn(sample_id=s2, parameter="COD")]
        )
        engine.update_crf_status(crf.id, CRFStatus.TESTING)
        engine.add_test_result(crf.id, TestResultIn(sample_id=s1, parameter="COD", test_value="90"))

        with pytest.raises(InvalidTransition, match="no result"):
            engine.submit_results(crf.id)
        with pytest.raises(InvalidTransition):
            engine.update_crf_status(crf.id, CRFStatus.REVIEW)

        engine.add_test_result(crf.id, TestResultIn(sample_id=s2, parameter="COD", test_value="95"))
        assert engine.submit_results(crf.id).status == CRFStatus.REVIEW

    def test_submit_outside_testing(self):
        engine = _make_engine()
        crf = engine.add_crf(_crf_data())
        with pytest.raises(InvalidTransition):
            engine.submit_results(crf.id)


class TestReview:
    def test_approve(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.REVIEW)
        review, updated = engine.add_review(crf.id, _review(ReviewStatus.APPROVED))
        assert updated.status == CRFStatus.APPROVED
        assert review.review_date == NOW
        assert engine.store.active_review(crf.id) == review

    def test_reject_returns_to_testing(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.REVIEW)
        _, updated = engine.add_review(crf.id, _review(ReviewStatus.REJECTED))
        assert updated.status == CRFStatus.TESTING

    def test_second_round_keeps_history(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.REVIEW)
        first, _ = engine.add_review(crf.id, _review(ReviewStatus.REJECTED))
        engine.submit_results(crf.id)
        second, updated = engine.add_review(crf.id, _review(ReviewStatus.APPROVED))
        assert engine.store.reviews_for(crf.id) == [first, second]
        assert engine.store.active_review(crf.id) == second
        assert updated.status == CRFStatus.APPROVED

    def test_review_outside_review_status(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.TESTING)
        with pytest.raises(InvalidTransition):
            engine.add_review(crf.id, _review(ReviewStatus.APPROVED))
        assert engine.store.reviews_for(crf.id) == []

    def test_full_lifecycle(self):
        engine = _make_engine()
        crf = _crf_at(engine, CRFStatus.COMPLETED)
        assert crf.status == CRFStatus.COMPLETED
