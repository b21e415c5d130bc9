"""Kernel services - session-bound infrastructure shared by all domain services."""

from goldpos_kernel.services.base import BaseService
from goldpos_kernel.services.concurrency import KeyedLockRegistry, retry_on_conflict
from goldpos_kernel.services.sequence_service import SequenceService

__all__ = [
    "BaseService",
    "KeyedLockRegistry",
    "retry_on_conflict",
    "SequenceService",
]
