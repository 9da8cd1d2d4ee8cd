"""
BaseService -- abstract base for kernel write services.

Responsibility:
    Common constructor for services that write inside a caller-owned
    transaction.  They call ``session.flush()``, never ``commit()`` or
    ``rollback()``; the orchestrator owns the transaction boundary.
"""

from abc import ABC

from sqlalchemy.orm import Session

from receivables_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """Holds the caller's session and an injected clock."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
