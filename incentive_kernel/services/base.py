"""
BaseService -- abstract base for all write-side services.

Responsibility:
    Common constructor and session-handling contract.  Services persist
    through ``session.flush()``, never ``session.commit()``; the caller
    (``session_scope()``, the CLI, or a test harness) owns commit/rollback.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Extended by the
    orchestration services in ``incentive_services``.

Failure modes:
    - A subclass that commits breaks the caller's ability to roll back a
      failed run as a unit.
"""

from abc import ABC

from sqlalchemy.orm import Session

from incentive_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the caller's transaction.  Nested
          savepoints (``session.begin_nested()``) are allowed to isolate
          partial failures.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Preconditions:
            - ``session`` is a valid, open SQLAlchemy session.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()
