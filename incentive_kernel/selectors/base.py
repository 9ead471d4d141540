"""
Module: incentive_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/base.py and
    models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Large scans are paginated by keyset (``id`` ascending) with a fixed
      page size so a single query never exceeds store limits.
"""

from abc import ABC

from sqlalchemy.orm import Session

DEFAULT_PAGE_SIZE = 1000


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs.  The caller owns the transaction.
    """

    def __init__(self, session: Session, page_size: int = DEFAULT_PAGE_SIZE):
        """
        Preconditions: session is a valid, open SQLAlchemy Session;
            page_size > 0.
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.session = session
        self.page_size = page_size
