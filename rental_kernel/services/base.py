"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session contract for every write-side service.
    Services receive a SQLAlchemy ``Session`` and use ``session.flush()``,
    never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell.  Every service in
    ``rental_kernel/services/`` that mutates state extends this class.

Invariants enforced:
    - Transaction boundaries belong to the caller (RentalEngine or a test
      harness).  Services flush within the caller's transaction and never
      commit or roll back, so a multi-step transition is atomic.

Failure modes:
    - A subclass calling ``session.commit()`` would let half of a
      transition (e.g. reservations without the status change) become
      visible.
"""

from abc import ABC
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from rental_kernel.domain.clock import Clock, SystemClock

# Actor recorded on rows the engine creates on its own behalf (e.g. settings defaults)
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a caller-owned ``Session`` and an injected ``Clock``.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries; those live in
          ``rental_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _now(self) -> datetime:
        return self.clock.now()
