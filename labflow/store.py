"""In-memory entity store.

The store is the sole owner of every entity. Records are pydantic models and
are never mutated in place: ``update`` validates a merged copy and swaps it
in, so a reader holding an old record keeps a consistent value.

Counters and assignment latches live here too, because they are the only
state that cannot be rebuilt from the entities. ``snapshot`` captures all of
it for persistence.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterator
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError

from labflow.errors import InvalidValue, InvariantViolation, NotFound
from labflow.identifiers import DEFAULT_SEQUENCE_LIMIT, Clock, IdentifierMinter, SequenceCounter, utc_now
from labflow.models.crf import CRF
from labflow.models.quotation import Quotation
from labflow.models.request import Request
from labflow.models.review import Review
from labflow.models.testing import ParameterAssignment, TestResult

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
K = TypeVar("K", bound=Hashable)


class Collection(Generic[K, T]):
    """Keyed records of one entity type with point and filtered lookups."""

    def __init__(self, entity: str, key: Callable[[T], K]) -> None:
        self.entity = entity
        self._key = key
        self._items: dict[K, T] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def add(self, item: T) -> T:
        key = self._key(item)
        if key in self._items:
            logger.critical("Duplicate %s key on insert: %s", self.entity, key)
            raise InvariantViolation(f"Duplicate {self.entity} key: {key}")
        self._items[key] = item
        return item

    def discard(self, key: K) -> None:
        """Drop a record being replaced as part of a set operation."""
        self._items.pop(key, None)

    def put(self, item: T) -> T:
        """Insert or replace by key."""
        self._items[self._key(item)] = item
        return item

    def update(self, key: K, partial: dict[str, Any]) -> T:
        """Merge ``partial`` into the record and revalidate it.

        Raises:
            NotFound: If no record has this key.
            InvalidValue: If the merged record is invalid.
        """
        current = self.get_by_id(key)
        data = current.model_dump()
        data.update(partial)
        try:
            updated = type(current).model_validate(data)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or self.entity}: {err['msg']}" for err in exc.errors()
            )
            raise InvalidValue(f"Invalid {self.entity} update for {key}: {problems}") from exc
        if self._key(updated) != key:
            logger.critical("%s key changed on update: %s -> %s", self.entity, key, self._key(updated))
            raise InvariantViolation(f"{self.entity} key is immutable: {key}")
        self._items[key] = updated
        return updated

    def get_by_id(self, key: K) -> T:
        try:
            return self._items[key]
        except KeyError:
            raise NotFound(self.entity, key) from None

    def find(self, key: K) -> T | None:
        return self._items.get(key)

    def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        return [item for item in self._items.values() if predicate(item)]

    def list_by_status(self, status: Enum | str) -> list[T]:
        value = status.value if isinstance(status, Enum) else status
        return self.filter(lambda item: _value(getattr(item, "status", None)) == value)

    def list_by_customer(self, customer: str) -> list[T]:
        """Case-insensitive substring match on the customer name."""
        needle = customer.lower()
        return self.filter(lambda item: needle in item.customer.name.lower())  # type: ignore[attr-defined]

    def count_by_status(self, status: Enum | str) -> int:
        return len(self.list_by_status(status))

    def values(self) -> list[T]:
        return list(self._items.values())


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


class StoreSnapshot(BaseModel):
    """Everything needed to rebuild an EntityStore."""

    requests: list[Request] = Field(default_factory=list)
    quotations: list[Quotation] = Field(default_factory=list)
    quotation_history: dict[str, list[Quotation]] = Field(default_factory=dict)
    crfs: list[CRF] = Field(default_factory=list)
    assignments: list[ParameterAssignment] = Field(default_factory=list)
    results: list[TestResult] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)
    counters: dict[str, int] = Field(default_factory=dict)
    locked_crfs: list[str] = Field(default_factory=list)


class EntityStore:
    """Collections for every entity plus counters and assignment latches.

    ``write_lock`` is the single-writer guard for multi-record operations
    (e.g. CRF creation: mint ids, build samples, insert).
    """

    def __init__(
        self,
        counter: SequenceCounter | None = None,
        clock: Clock = utc_now,
        fixed_year: int | None = None,
    ) -> None:
        self.counter = counter or SequenceCounter()
        self.clock = clock
        self.minter = IdentifierMinter(self.counter, clock=clock, fixed_year=fixed_year)
        self.write_lock = threading.RLock()

        self.requests: Collection[str, Request] = Collection("Request", key=lambda r: r.id)
        self.quotations: Collection[str, Quotation] = Collection("Quotation", key=lambda q: q.request_id)
        self.quotation_history: dict[str, list[Quotation]] = {}
        self.crfs: Collection[str, CRF] = Collection("CRF", key=lambda c: c.id)
        self.assignments: Collection[tuple[str, str, str], ParameterAssignment] = Collection(
            "ParameterAssignment", key=lambda a: a.key
        )
        self.results: Collection[tuple[str, str, str], TestResult] = Collection("TestResult", key=lambda r: r.key)
        self.reviews: Collection[str, Review] = Collection("Review", key=lambda r: r.id)
        self._locked_crfs: set[str] = set()

    # ── Read accessors ───────────────────────────────────────────────

    def get_confirmed(self) -> list[Request]:
        return self.requests.list_by_status("confirmed")

    def get_crfs_by_status(self, status: Enum | str) -> list[CRF]:
        return self.crfs.list_by_status(status)

    def get_crfs_by_sample_type(self, sample_type: str) -> list[CRF]:
        return self.crfs.filter(lambda c: c.sample_type == sample_type)

    def assignments_for(self, crf_id: str) -> list[ParameterAssignment]:
        return self.assignments.filter(lambda a: a.crf_id == crf_id)

    def assignments_for_chemist(self, chemist: str) -> list[ParameterAssignment]:
        return self.assignments.filter(lambda a: a.chemist == chemist)

    def results_for(self, crf_id: str) -> list[TestResult]:
        return self.results.filter(lambda r: r.crf_id == crf_id)

    def reviews_for(self, crf_id: str) -> list[Review]:
        """Reviews of a CRF, oldest first."""
        return self.reviews.filter(lambda r: r.crf_id == crf_id)

    def active_review(self, crf_id: str) -> Review | None:
        reviews = self.reviews_for(crf_id)
        return reviews[-1] if reviews else None

    def all_sample_ids(self) -> set[str]:
        return {s.id for crf in self.crfs for s in crf.samples}

    # ── Assignment latch ─────────────────────────────────────────────

    def is_locked(self, crf_id: str) -> bool:
        return crf_id in self._locked_crfs

    def set_locked(self, crf_id: str) -> bool:
        """Set the latch; returns False if it was already set."""
        if crf_id in self._locked_crfs:
            return False
        self._locked_crfs.add(crf_id)
        return True

    @property
    def locked_crfs(self) -> frozenset[str]:
        return frozenset(self._locked_crfs)

    # ── Snapshots ────────────────────────────────────────────────────

    def snapshot(self) -> StoreSnapshot:
        with self.write_lock:
            return StoreSnapshot(
                requests=self.requests.values(),
                quotations=self.quotations.values(),
                quotation_history={k: list(v) for k, v in self.quotation_history.items()},
                crfs=self.crfs.values(),
                assignments=self.assignments.values(),
                results=self.results.values(),
                reviews=self.reviews.values(),
                counters=self.counter.state(),
                locked_crfs=sorted(self._locked_crfs),
            )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: StoreSnapshot,
        limit: int | None = None,
        clock: Clock = utc_now,
        fixed_year: int | None = None,
    ) -> EntityStore:
        counter = SequenceCounter(limit=limit or DEFAULT_SEQUENCE_LIMIT, initial=snapshot.counters)
        store = cls(counter=counter, clock=clock, fixed_year=fixed_year)
        for request in snapshot.requests:
            store.requests.add(request)
        for quotation in snapshot.quotations:
            store.quotations.add(quotation)
        store.quotation_history = {k: list(v) for k, v in snapshot.quotation_history.items()}
        for crf in snapshot.crfs:
            store.crfs.add(crf)
        for assignment in snapshot.assignments:
            store.assignments.add(assignment)
        for result in snapshot.results:
            store.results.add(result)
        for review in snapshot.reviews:
            store.reviews.add(review)
        store._locked_crfs = set(snapshot.locked_crfs)
        logger.info(
            "Store restored: %d requests, %d quotations, %d CRFs, %d counters",
            len(store.requests),
            len(store.quotations),
            len(store.crfs),
            len(snapshot.counters),
        )
        return store
