"""
ORM-Level Integrity Enforcement for marketplace records.

===============================================================================
RULES
===============================================================================

Entity            | Rule                                     | Error
------------------|------------------------------------------|---------------------------
Comment           | Append-only: no UPDATE, no DELETE        | ImmutabilityViolationError
Job               | No DELETE while disputes, comments,      | DependentRecordsError
                  | bids or payment requests reference it    |
Order             | No DELETE while jobs or payment requests | DependentRecordsError
                  | reference it                             |
PaymentRequest    | No DELETE while jobs/orders associated   | DependentRecordsError

Deletes are checked in SessionEvents.before_flush, before the flush plan is
finalized.  Comment updates are checked per-row in before_update.  Foreign
keys additionally declare ON DELETE RESTRICT so raw SQL hits the same wall.

===============================================================================
USAGE
===============================================================================

    from market_kernel.db.integrity import register_integrity_listeners
    register_integrity_listeners()  # once at startup

Tests that need to violate the rules on purpose:

    unregister_integrity_listeners()
    ...
    register_integrity_listeners()
"""

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from market_kernel.exceptions import DependentRecordsError, ImmutabilityViolationError
from market_kernel.logging_config import get_logger

logger = get_logger("db.integrity")


def _count(session, column, value) -> int:
    with session.no_autoflush:
        return session.execute(
            select(func.count()).where(column == value)
        ).scalar_one()


def _reject_if_dependents(entity_type: str, obj, counts: dict[str, int]) -> None:
    present = [name for name, n in counts.items() if n]
    if not present:
        return
    logger.error(
        "dependent_records_delete_blocked",
        extra={"entity_type": entity_type, "entity_id": str(obj.id), **counts},
    )
    raise DependentRecordsError(
        entity_type=entity_type,
        entity_id=str(obj.id),
        dependents="/".join(present),
    )


def _check_deletions_before_flush(session, flush_context, instances):
    """Reject deletes of jobs, orders and payment requests that still have dependents."""
    from market_modules.disputes.orm import CommentModel, DisputeModel
    from market_modules.jobs.orm import BidModel, JobModel, OrderModel
    from market_modules.payments.orm import (
        PaymentRequestJobModel,
        PaymentRequestModel,
        PaymentRequestOrderModel,
    )

    for obj in list(session.deleted):
        if isinstance(obj, JobModel):
            _reject_if_dependents("Job", obj, {
                "disputes": _count(session, DisputeModel.job_id, obj.id),
                "comments": _count(session, CommentModel.job_id, obj.id),
                "payment_requests": _count(session, PaymentRequestJobModel.job_id, obj.id),
                "bids": _count(session, BidModel.job_id, obj.id),
            })
        elif isinstance(obj, OrderModel):
            _reject_if_dependents("Order", obj, {
                "payment_requests": _count(session, PaymentRequestOrderModel.order_id, obj.id),
                "jobs": _count(session, JobModel.order_id, obj.id),
            })
        elif isinstance(obj, PaymentRequestModel):
            jobs = _count(session, PaymentRequestJobModel.payment_request_id, obj.id)
            orders = _count(session, PaymentRequestOrderModel.payment_request_id, obj.id)
            if jobs or orders:
                logger.error(
                    "dependent_records_delete_blocked",
                    extra={
                        "entity_type": "PaymentRequest",
                        "entity_id": str(obj.id),
                        "jobs": jobs,
                        "orders": orders,
                    },
                )
                raise DependentRecordsError(
                    entity_type="PaymentRequest",
                    entity_id=str(obj.id),
                    dependents="job/order associations",
                )
        elif isinstance(obj, CommentModel):
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Comment",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                },
            )
            raise ImmutabilityViolationError(
                entity_type="Comment",
                entity_id=str(obj.id),
                reason="Comments are append-only and cannot be deleted",
            )


def _check_comment_update(mapper, connection, target):
    """Comments are append-only."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Comment",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Comment",
        entity_id=str(target.id),
        reason="Comments are append-only and cannot be modified",
    )


def register_integrity_listeners():
    """
    Register all integrity enforcement event listeners.

    Call after the ORM models are importable and before any writes.
    Registering twice is harmless.
    """
    from market_modules.disputes.orm import CommentModel

    if not event.contains(Session, "before_flush", _check_deletions_before_flush):
        event.listen(Session, "before_flush", _check_deletions_before_flush)
    if not event.contains(CommentModel, "before_update", _check_comment_update):
        event.listen(CommentModel, "before_update", _check_comment_update)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_integrity_listeners():
    """
    Remove integrity enforcement event listeners.

    WARNING: Only use this in tests.
    """
    from market_modules.disputes.orm import CommentModel

    _safe_remove_listener(Session, "before_flush", _check_deletions_before_flush)
    _safe_remove_listener(CommentModel, "before_update", _check_comment_update)
