"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and flush contract for every write service in the
    kernel. Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves. The caller
      (OnboardingPipeline or a test harness) owns commit/rollback.
    - A versioned UPDATE that matches no row (another writer changed the
      record since it was read) surfaces as ConcurrencyConflictError.
"""

from abc import ABC

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from onboarding_kernel.domain.clock import Clock, SystemClock
from onboarding_kernel.exceptions import ConcurrencyConflictError


class BaseService(ABC):
    """
    Abstract base class for kernel write services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods -- those belong in
          ``onboarding_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _flush_versioned(self, entity_type: str, entity_id: object) -> None:
        """Flush pending changes, mapping a lost compare-and-swap to a conflict.

        Raises:
            ConcurrencyConflictError: The row's version changed underneath us.
        """
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(entity_type, str(entity_id)) from exc
