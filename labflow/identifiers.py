"""Human-readable identifier minting.

Identifiers look like ``CS/25/007``: a kind prefix, the two-digit year and a
zero-padded running sequence. Each (kind, year) scope owns an independent
counter; CRF ids, CS samples, LS samples and quotation numbers never share
a counter, so a CRF id can never collide with one of its sample ids.

Counters are the only non-reconstructible state besides the assignment
latches, so SequenceCounter exposes its values for snapshotting.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from labflow.errors import OutOfSequence
from labflow.models.enums import CRFType

logger = logging.getLogger(__name__)

DEFAULT_SEQUENCE_LIMIT = 999

CRF_KIND = "CRF"
QUOTATION_KIND = "QT"
REQUEST_PREFIX = "REQ"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def mint(kind: str, year_two_digit: int, sequence: int, limit: int = DEFAULT_SEQUENCE_LIMIT) -> str:
    """Format ``{kind}/{yy}/{seq:03d}``.

    Raises:
        OutOfSequence: If the sequence does not fit the 3-digit field.
        ValueError: If the year is not a two-digit value.
    """
    if not 0 <= year_two_digit <= 99:
        msg = f"Year must be two digits, got {year_two_digit}"
        raise ValueError(msg)
    if sequence < 1 or sequence > limit:
        raise OutOfSequence(f"Sequence {sequence} outside 1..{limit} for {kind}/{year_two_digit:02d}")
    return f"{kind}/{year_two_digit:02d}/{sequence:03d}"


def scope_key(kind: str, year_two_digit: int) -> str:
    return f"{kind}/{year_two_digit:02d}"


class SequenceCounter:
    """Monotonic counters keyed by scope, one lock per scope.

    ``reserve`` hands out a contiguous block atomically: concurrent callers
    on the same scope are serialized, callers on different scopes are not.
    """

    def __init__(self, limit: int = DEFAULT_SEQUENCE_LIMIT, initial: dict[str, int] | None = None) -> None:
        self.limit = limit
        self._values: dict[str, int] = dict(initial or {})
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, scope: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(scope)
            if lock is None:
                lock = threading.Lock()
                self._locks[scope] = lock
            return lock

    def reserve(self, scope: str, count: int = 1) -> range:
        """Reserve ``count`` consecutive sequence values from ``scope``.

        Nothing is consumed when the block would overflow the limit.

        Raises:
            OutOfSequence: If the block would pass the counter limit.
        """
        if count < 1:
            msg = f"Block size must be positive, got {count}"
            raise ValueError(msg)
        with self._lock_for(scope):
            start = self._values.get(scope, 0) + 1
            end = start + count - 1
            if end > self.limit:
                logger.error(
                    "Counter exhausted: scope=%s last=%d requested=%d limit=%d",
                    scope,
                    start - 1,
                    count,
                    self.limit,
                )
                raise OutOfSequence(
                    f"Counter {scope} cannot issue {count} more value(s): last issued {start - 1}, limit {self.limit}"
                )
            self._values[scope] = end
        return range(start, end + 1)

    def last_issued(self, scope: str) -> int:
        return self._values.get(scope, 0)

    def remaining(self, scope: str) -> int:
        return self.limit - self.last_issued(scope)

    def state(self) -> dict[str, int]:
        """Copy of all counter values, for snapshots."""
        with self._registry_lock:
            return dict(self._values)


class IdentifierMinter:
    """Mints every laboratory identifier from one SequenceCounter."""

    def __init__(
        self,
        counter: SequenceCounter,
        clock: Clock = utc_now,
        fixed_year: int | None = None,
    ) -> None:
        self.counter = counter
        self.clock = clock
        self.fixed_year = fixed_year

    @property
    def year(self) -> int:
        if self.fixed_year is not None:
            return self.fixed_year
        return self.clock().year % 100

    def _mint_block(self, kind: str, count: int) -> list[str]:
        yy = self.year
        block = self.counter.reserve(scope_key(kind, yy), count)
        return [mint(kind, yy, seq, self.counter.limit) for seq in block]

    def check_capacity(self, kind: str, count: int) -> None:
        """Fail before minting anything when ``kind`` cannot cover ``count`` more ids."""
        scope = scope_key(kind, self.year)
        if self.counter.remaining(scope) < count:
            raise OutOfSequence(f"Counter {scope} has {self.counter.remaining(scope)} value(s) left, {count} needed")

    def crf_id(self) -> str:
        return self._mint_block(CRF_KIND, 1)[0]

    def sample_ids(self, crf_type: CRFType, count: int) -> list[str]:
        """One contiguous block from the counter of the parent CRF's type."""
        return self._mint_block(crf_type.value, count)

    def quotation_no(self) -> str:
        return self._mint_block(QUOTATION_KIND, 1)[0]

    def request_id(self, taken: Callable[[str], bool]) -> str:
        """Time-derived request id; bumps the millisecond value while ``taken`` reports a clash."""
        millis = int(self.clock().timestamp() * 1000)
        candidate = f"{REQUEST_PREFIX}-{millis}"
        while taken(candidate):
            millis += 1
            candidate = f"{REQUEST_PREFIX}-{millis}"
        return candidate
