"""
Concurrency primitives for balance-key serialization.

Responsibility:
    - KeyedLockRegistry: an in-process single-writer lock per key
      (product at a branch, supplier/branch/karat balance, merchant branch/karat
      balance).  Acquisition is bounded by a timeout.
    - retry_on_conflict: bounded retry of a whole unit of work on
      ConcurrencyConflictError, and only on that error.

Architecture position:
    Kernel > Services.  Used by GoldOperations around each transaction.
    Database-level protection (version_id_col + SELECT ... FOR UPDATE) is
    what guarantees correctness across processes; the keyed lock avoids
    wasted optimistic retries between threads of one process.

Invariants enforced:
    - Multi-key acquisition is always in sorted key order, so two callers
      locking overlapping key sets cannot deadlock.
    - No lock is held while a retry backs off.

Failure modes:
    - ConcurrencyConflictError when a key cannot be acquired within the
      timeout, or when the retry budget is exhausted.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from goldpos_kernel.exceptions import ConcurrencyConflictError
from goldpos_kernel.logging_config import get_logger

logger = get_logger("services.concurrency")

T = TypeVar("T")


def product_key(product_id: str, branch_id: str) -> str:
    return f"product:{branch_id}:{product_id}"


def supplier_balance_key(supplier_id: str, branch_id: str, karat_type_id: str) -> str:
    return f"supplier_gold:{branch_id}:{supplier_id}:{karat_type_id}"


def merchant_balance_key(branch_id: str, karat_type_id: str) -> str:
    return f"merchant_gold:{branch_id}:{karat_type_id}"


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class KeyedLockRegistry:
    """
    One mutex per key, created on demand and dropped when unused.

    Contract:
        ``hold(keys)`` acquires every key in sorted order, yields, then
        releases in reverse order.

    Guarantees:
        - Operations on disjoint key sets never block each other.
        - Waiting is bounded by ``timeout`` seconds per key.

    Non-goals:
        - Not reentrant.  A thread must not re-acquire a key it holds.
        - Not cross-process; the database version check covers that.
    """

    def __init__(self, timeout: float = 5.0):
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[str, _KeyLock] = {}

    def _checkout(self, key: str) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.holders += 1
            return entry

    def _checkin(self, key: str, entry: _KeyLock) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(key, None)

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired: list[tuple[str, _KeyLock]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                if not entry.lock.acquire(timeout=self._timeout):
                    self._checkin(key, entry)
                    logger.warning(
                        "key_lock_timeout",
                        extra={"key": key, "timeout_seconds": self._timeout},
                    )
                    raise ConcurrencyConflictError("lock", key)
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)

    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    backoff_seconds: float = 0.0,
    operation_name: str = "operation",
) -> T:
    """
    Run ``operation`` and re-run it on ConcurrencyConflictError.

    ``operation`` must be a complete unit of work (own session, own commit)
    so that a failed attempt leaves nothing behind.

    Args:
        operation: Zero-argument callable.
        max_attempts: Total attempts, including the first (>= 1).
        backoff_seconds: Linear backoff; attempt n sleeps n * backoff.
        operation_name: Used in log records.

    Raises:
        ConcurrencyConflictError: The last conflict, once attempts run out.
        Any other exception from ``operation``, unchanged and unretried.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return operation()
        except ConcurrencyConflictError as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "concurrency_retry_exhausted",
                    extra={
                        "operation": operation_name,
                        "attempts": attempt,
                        "entity_key": exc.entity_key,
                    },
                )
                raise
            logger.info(
                "concurrency_conflict_retry",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "entity_key": exc.entity_key,
                },
            )
            if backoff_seconds > 0:
                time.sleep(backoff_seconds * attempt)
            attempt += 1
