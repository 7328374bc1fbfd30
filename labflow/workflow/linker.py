"""Cross-entity reference rules.

Each check reads the store and raises InvalidReference (or NotFound for a
missing parent) instead of letting a dangling or out-of-scope reference in.
"""

from __future__ import annotations

import logging

from labflow import catalog
from labflow.errors import InvalidReference, InvariantViolation
from labflow.models.crf import CRF
from labflow.models.enums import CRFType, RequestStatus
from labflow.models.quotation import Quotation, QuotationLine
from labflow.models.request import Request
from labflow.store import EntityStore

logger = logging.getLogger(__name__)


def require_confirmed_request(store: EntityStore, request_id: str) -> Request:
    """Quotations are only raised against confirmed requests."""
    request = store.requests.get_by_id(request_id)
    if request.status != RequestStatus.CONFIRMED:
        raise InvalidReference(f"Request {request_id} is {request.status.value}, quotation needs a confirmed request")
    return request


def require_approved_quotation(store: EntityStore, request_id: str) -> Quotation:
    quotation = store.quotations.get_by_id(request_id)
    if not quotation.approved:
        raise InvalidReference(f"Quotation {quotation.quotation_no} for request {request_id} is not approved")
    return quotation


def check_quotation_ref(store: EntityStore, crf_type: CRFType, quotation_ref: str | None) -> Quotation | None:
    """A CS form may cite one approved quotation; an LS form cites none."""
    if quotation_ref is None:
        return None
    if crf_type != CRFType.CS:
        raise InvalidReference(f"{crf_type.value} forms cannot reference a quotation")
    return require_approved_quotation(store, quotation_ref)


def check_sample_type_parameters(sample_type: str, parameters: list[str]) -> None:
    illegal = catalog.illegal_parameters(sample_type, parameters)
    if illegal:
        raise InvalidReference(f"Parameters not offered for {sample_type}: {illegal}")


def check_quotation_lines(sample_type: str, lines: list[QuotationLine]) -> None:
    """Quoted parameters must be offered for the sample type and quoted once.

    A quotation that breaks either rule would pre-fill an intake form that
    the CRF checks then refuse.
    """
    names = [line.parameter for line in lines if line.parameter]
    check_sample_type_parameters(sample_type, names)
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise InvalidReference(f"Parameters quoted more than once: {duplicates}")


def check_new_sample_ids(store: EntityStore, crf: CRF) -> None:
    """Freshly minted sample ids must be new laboratory-wide.

    A clash means the counters were corrupted, which is a bug, not a user error.
    """
    clashes = store.all_sample_ids().intersection(crf.sample_ids)
    if clashes:
        logger.critical("Minted sample ids already in use: %s (crf=%s)", sorted(clashes), crf.id)
        raise InvariantViolation(f"Duplicate sample ids minted: {sorted(clashes)}")


def check_triple(store: EntityStore, crf_id: str, sample_id: str, parameter: str) -> CRF:
    """An assignment or result must point at a sample of the CRF and one of its parameters.

    Raises:
        NotFound: If the CRF does not exist.
        InvalidReference: If the sample or parameter is outside the CRF.
    """
    crf = store.crfs.get_by_id(crf_id)
    if crf.sample(sample_id) is None:
        raise InvalidReference(f"Sample {sample_id} does not belong to CRF {crf_id}")
    if parameter not in crf.test_parameters:
        raise InvalidReference(f"Parameter '{parameter}' is not requested on CRF {crf_id}")
    return crf


def check_parameters_still_referenced(store: EntityStore, crf_id: str, parameters: list[str]) -> None:
    """A CRF may not drop a parameter that assignments or results still use."""
    keep = set(parameters)
    in_use = {a.parameter for a in store.assignments_for(crf_id)} | {r.parameter for r in store.results_for(crf_id)}
    orphaned = sorted(in_use - keep)
    if orphaned:
        raise InvalidReference(f"Parameters still assigned or tested on CRF {crf_id}: {orphaned}")
