"""
Module: receivables_kernel.selectors.base
Responsibility: Base class for read-side query objects.
Architecture position: Kernel > Selectors.  May import from db/ and models/.

Invariants enforced:
    - Selectors never add, delete, flush or commit; the caller owns the
      session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Holds the caller's session for subclass queries."""

    def __init__(self, session: Session):
        self.session = session
