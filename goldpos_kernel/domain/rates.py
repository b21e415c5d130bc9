"""
Karat rate lookup.

Responsibility:
    Defines the ``KaratRateProvider`` contract (currency per gram for a karat
    type, as of a timestamp) that the gold balance ledger depends on, plus
    ``StaticKaratRateProvider``, a dated in-memory rate schedule used by tests
    and back-office tooling.

Architecture position:
    Kernel > Domain.  The production provider (market feed, rate table) lives
    outside this package and only has to satisfy the Protocol.

Failure modes:
    - KaratRateNotFoundError when no rate is effective at ``as_of`` or the
      effective rate is not positive.
"""

from __future__ import annotations

import bisect
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol, runtime_checkable

from goldpos_kernel.exceptions import KaratRateNotFoundError


@runtime_checkable
class KaratRateProvider(Protocol):
    """Currency-per-gram rate source for a karat type."""

    def get_current_rate(self, karat_type_id: str, as_of: datetime) -> Decimal:
        """
        Return the rate effective at ``as_of``.

        Raises:
            KaratRateNotFoundError: No positive rate is available.
        """
        ...


class StaticKaratRateProvider:
    """
    Rate schedule held in memory.

    Each karat keeps a list of (effective_from, rate) points sorted by time;
    the rate effective at ``as_of`` is the latest point not after it.
    ``set_rate`` without a timestamp registers a rate effective from the
    beginning of time.
    """

    _EPOCH = datetime.min

    def __init__(self, rates: dict[str, Decimal] | None = None):
        self._lock = threading.Lock()
        self._schedule: dict[str, list[tuple[datetime, Decimal]]] = {}
        for karat_type_id, rate in (rates or {}).items():
            self.set_rate(karat_type_id, rate)

    def set_rate(
        self,
        karat_type_id: str,
        rate: Decimal,
        effective_from: datetime | None = None,
    ) -> None:
        point = (self._naive(effective_from) if effective_from else self._EPOCH, Decimal(rate))
        with self._lock:
            points = self._schedule.setdefault(karat_type_id, [])
            keys = [p[0] for p in points]
            idx = bisect.bisect_left(keys, point[0])
            if idx < len(points) and points[idx][0] == point[0]:
                points[idx] = point
            else:
                points.insert(idx, point)

    def get_current_rate(self, karat_type_id: str, as_of: datetime) -> Decimal:
        with self._lock:
            points = list(self._schedule.get(karat_type_id, ()))
        keys = [p[0] for p in points]
        idx = bisect.bisect_right(keys, self._naive(as_of)) - 1
        if idx < 0 or points[idx][1] <= 0:
            raise KaratRateNotFoundError(karat_type_id, as_of.isoformat())
        return points[idx][1]

    @staticmethod
    def _naive(moment: datetime) -> datetime:
        # Schedule points live on a single UTC-naive axis.
        if moment.tzinfo is not None:
            return moment.astimezone(timezone.utc).replace(tzinfo=None)
        return moment
