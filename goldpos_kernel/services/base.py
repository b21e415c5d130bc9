"""
BaseService -- abstract base for all session-bound services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back.  The caller (GoldOperations,
    session_scope(), or a test) owns commit/rollback, which is what makes a
    balance update and its ledger row one atomic unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from goldpos_kernel.db.base import Base
from goldpos_kernel.exceptions import ConcurrencyConflictError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - ``_flush`` turns an optimistic version mismatch into the
          retryable ConcurrencyConflictError.
    """

    def __init__(self, session: Session):
        self.session = session

    def _flush(self, entity_type: str, entity_key: str) -> None:
        """Flush pending changes, mapping stale-version writes to a conflict."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(entity_type, entity_key) from exc
