"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Strictly increasing sequence numbers for cost lot order, ownership row
    order and the daily raw gold transfer number.

Architecture position:
    Kernel > Services.  Called by CostSourceLedger, OwnershipTracker,
    ConsolidationService and GoldBalanceLedger.

Invariants enforced:
    - Monotonicity: the counter row is the sole source of truth.  The value
      is bumped with a single ``UPDATE ... SET current_value = current_value
      + 1``, which takes the row's write lock before the new value is read
      back, so two transactions can never observe the same value.
    - Transactional: the increment is only visible after the caller's
      transaction commits; a rollback returns the value.

Failure modes:
    - IntegrityError on concurrent counter creation is absorbed with a
      savepoint and the increment is retried.
"""

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from goldpos_kernel.logging_config import get_logger
from goldpos_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``.

    Usage:
        seq = SequenceService(session).next_value(SequenceService.COST_LOT)
    """

    COST_LOT = "cost_lot"
    OWNERSHIP = "product_ownership"
    RAW_GOLD_TRANSFER_PREFIX = "raw_gold_transfer"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this name.

        Args:
            sequence_name: Name of the sequence.

        Returns:
            The next sequence value (always > 0).
        """
        value = self._increment(sequence_name)
        if value is None:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                value = 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                value = self._increment(sequence_name)
                if value is None:
                    raise

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()

    def _increment(self, sequence_name: str) -> int | None:
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return self.current_value(sequence_name)
