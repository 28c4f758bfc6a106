"""
BaseService -- common base for the lifecycle services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every workflow service.  A service receives a SQLAlchemy ``Session``
    and owns the transaction boundary of each public operation it
    exposes: one operation, one commit or one rollback.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Module
    services in ``market_modules/*/service.py`` extend this class.

Failure modes:
    - A service that returns without committing or rolling back leaves
      the caller's session mid-transaction; ``_commit`` and ``_rollback``
      exist so every exit path goes through one place.
"""

from abc import ABC

from sqlalchemy.orm import Session

from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.logging_config import get_logger

logger = get_logger("services.base")


class BaseService(ABC):
    """
    Abstract base class for lifecycle services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an optional ``Clock``.

    Non-goals:
        - Does NOT create sessions; the caller passes one in (see
          ``market_kernel.db.engine.session_scope``).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()

    def _commit(self, label: str) -> None:
        self.session.commit()
        logger.debug("transaction_committed", extra={"label": label})

    def _rollback(self, label: str, reason: str) -> None:
        self.session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"label": label, "reason": reason},
        )
