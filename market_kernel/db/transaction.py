"""
Module: market_kernel.db.transaction
Responsibility: Explicit transaction-scope API for multi-write workflow
    operations.  The unit of work reports commit or rollback as a value
    instead of relying on a control-flow exception to abort.
Architecture position: Kernel > DB.  Imports only SQLAlchemy and logging.

Invariants enforced:
    - All-or-nothing: a falsy return from the unit of work, or any
      SQLAlchemyError raised inside it, rolls back every write made since
      the transaction began.
    - Release on every exit path: the transaction is either committed or
      rolled back before atomic() returns or re-raises.
    - Post-commit callbacks (notification dispatch) run only after a
      successful commit and never inside the transaction boundary.

Failure modes:
    - Exceptions other than SQLAlchemyError (programming errors, domain
      errors raised fatally) are re-raised after rollback.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from market_kernel.logging_config import get_logger

logger = get_logger("db.transaction")


@dataclass(frozen=True)
class TransactionOutcome:
    """Result of an atomic() unit of work.

    ``value`` carries whatever the unit of work returned when it committed.
    """

    committed: bool
    reason: str = ""
    value: Any = None

    def __bool__(self) -> bool:
        return self.committed


def atomic(
    session: Session,
    work: Callable[[], Any],
    *,
    on_commit: Iterable[Callable[[], None]] = (),
    label: str = "transaction",
) -> TransactionOutcome:
    """
    Run ``work`` inside the session's transaction and commit or roll back.

    Args:
        session: Session whose transaction bounds the unit of work.
        work: Zero-argument callable.  A truthy return commits; a falsy
            return rolls back.
        on_commit: Callbacks run in order after a successful commit.
        label: Operation name for the transaction log records.

    Returns:
        TransactionOutcome with committed=True and the work's return value,
        or committed=False with the rollback reason.
    """
    try:
        value = work()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"label": label, "reason": "database_error", "error": str(exc)},
            exc_info=True,
        )
        return TransactionOutcome(committed=False, reason=str(exc))
    except Exception:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"label": label, "reason": "exception"},
            exc_info=True,
        )
        raise

    if not value:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"label": label, "reason": "unit_of_work_declined"},
        )
        return TransactionOutcome(committed=False, reason="unit of work declined")

    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"label": label, "reason": "commit_failed", "error": str(exc)},
            exc_info=True,
        )
        return TransactionOutcome(committed=False, reason=str(exc))

    logger.info("transaction_committed", extra={"label": label})

    for callback in on_commit:
        callback()

    return TransactionOutcome(committed=True, value=value)
