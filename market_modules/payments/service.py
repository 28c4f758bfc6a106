"""
Payment Request Service (``market_modules.payments.service``).

Responsibility
--------------
Sole public entry point for payment request operations: lifecycle events,
batch assignment, payout status polling, association maintenance and the
reporting queries.  Aggregating jobs into a new request lives in
``market_modules.payments.aggregator``.

Architecture position
---------------------
**Modules layer** -- thin glue over ``StateMachineEngine`` for
``PAYMENT_REQUEST_WORKFLOW``.

Invariants enforced
-------------------
* Each public write owns one transaction (commit on success, rollback on
  failure or exception).
* A request is batched only while ``approved`` and while it has no batch
  or its batch is not closed; the target batch must be open.
* ``sender_item_id`` is assigned once at construction and never reused;
  generation retries without bound until an unused identifier is found.
* Status polling is skipped in a terminal processor status and gated to
  once per ``status_poll_interval_seconds``.

Failure modes
-------------
* Transition outcomes  -> returned as ``TransitionResult``.
* Batching precondition violated  -> ``NotBatchableError``.
* Unexpected exception  -> session rolled back, exception re-raised.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from market_config.schema import PaymentsConfig
from market_kernel.db.types import ZERO, to_decimal
from market_kernel.domain.clock import Clock
from market_kernel.exceptions import EntityNotFoundError, NotBatchableError, PaymentError
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.services.base import BaseService
from market_modules.payments.models import (
    BatchStatus,
    PayableKind,
    PayableRef,
    PaymentRequest,
    PaymentRequestState,
)
from market_modules.payments.orm import (
    PaymentBatchModel,
    PaymentRequestJobModel,
    PaymentRequestModel,
    PaymentRequestOrderModel,
)
from market_modules.payments.workflows import PAYMENT_REQUEST_WORKFLOW
from market_services.notifications import NotificationOutbox, Notifier
from market_services.payment_processor import NullPaymentProcessor, PaymentProcessor
from market_services.state_machine import StateMachineEngine, TransitionResult

logger = get_logger("modules.payments.service")

_APPROVED = PaymentRequestState.APPROVED.value
_PAID = PaymentRequestState.PAID.value
_REMOVABLE_STATES = frozenset({
    PaymentRequestState.REQUESTED.value,
    PaymentRequestState.APPROVED.value,
    PaymentRequestState.PAYMENT_ERRED.value,
})


def total_amount(requests: Iterable[Any]) -> Decimal:
    """Sum of ``amount`` over any iterable of requests (ORM rows or snapshots)."""
    return sum((to_decimal(r.amount) for r in requests), ZERO)


class PaymentRequestService(BaseService):
    """
    Drives payment requests through ``PAYMENT_REQUEST_WORKFLOW``.

    ``token_hex`` produces the random part of the sender item identifier;
    tests inject a deterministic one to force collisions.
    """

    engine = StateMachineEngine(PAYMENT_REQUEST_WORKFLOW)

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PaymentsConfig | None = None,
        processor: PaymentProcessor | None = None,
        notifier: Notifier | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
        token_hex: Callable[[int], str] = secrets.token_hex,
    ):
        super().__init__(session, clock)
        self._config = config or PaymentsConfig()
        self._processor = processor or NullPaymentProcessor()
        self._notifier = notifier
        self._outcome_sink = outcome_sink
        self._token_hex = token_hex

    # =========================================================================
    # Construction
    # =========================================================================

    def new_request(self, contractor_id: UUID) -> PaymentRequestModel:
        """Build an unsaved request in the initial state with its item id assigned."""
        return PaymentRequestModel(
            contractor_id=contractor_id,
            state=PAYMENT_REQUEST_WORKFLOW.value_of(PAYMENT_REQUEST_WORKFLOW.initial_state),
            amount=ZERO,
            sender_item_id=self.generate_item_id(),
            created_at=self.clock.now(),
        )

    def candidate_item_id(self) -> str:
        return self._config.item_id_prefix + self._token_hex(self._config.item_id_hex_bytes)

    def item_id_taken(self, item_id: str) -> bool:
        with self.session.no_autoflush:
            found = self.session.execute(
                select(PaymentRequestModel.id).where(
                    PaymentRequestModel.sender_item_id == item_id
                )
            ).first()
        return found is not None

    def generate_item_id(self) -> str:
        """Random unused item id.  Retries until one is free."""
        attempts = 0
        while True:
            attempts += 1
            candidate = self.candidate_item_id()
            if not self.item_id_taken(candidate):
                if attempts > 1:
                    logger.info("item_id_collision_retried", extra={"attempts": attempts})
                return candidate

    def create_batch(self) -> PaymentBatchModel:
        batch = PaymentBatchModel(status=BatchStatus.OPEN.value)
        self.session.add(batch)
        self.session.flush()
        self._commit("payment_batch.create")
        return batch

    def mark_batch_paid(self, batch: PaymentBatchModel) -> None:
        """Record that the external payout for ``batch`` was submitted."""
        batch.status = BatchStatus.PAID.value
        batch.paid_at = self.clock.now()
        self._commit("payment_batch.paid")

    def close_batch(self, batch: PaymentBatchModel) -> None:
        batch.status = BatchStatus.CLOSED.value
        self._commit("payment_batch.close")

    def get(self, request_id: UUID) -> PaymentRequestModel:
        request = self.session.get(PaymentRequestModel, request_id)
        if request is None:
            raise EntityNotFoundError("PaymentRequest", request_id)
        return request

    # =========================================================================
    # Events
    # =========================================================================

    def approve(self, request: PaymentRequestModel) -> TransitionResult:
        return self.fire(request, "approve")

    def unapprove(self, request: PaymentRequestModel) -> TransitionResult:
        return self.fire(request, "unapprove")

    def initiate(self, request: PaymentRequestModel) -> TransitionResult:
        return self.fire(request, "initiate")

    def pay(self, request: PaymentRequestModel) -> TransitionResult:
        return self.fire(request, "pay")

    def payment_err(self, request: PaymentRequestModel) -> TransitionResult:
        return self.fire(request, "payment_err")

    def fire(self, request: PaymentRequestModel, event: str, **args: Any) -> TransitionResult:
        """Fire ``event`` on ``request`` as one transaction."""
        label = f"payment_request.{event}"
        outbox = NotificationOutbox(self._notifier)
        with LogContext.bind(entity_id=request.id, workflow=PAYMENT_REQUEST_WORKFLOW.name):
            try:
                result = self.engine.fire(
                    request,
                    event,
                    args,
                    session=self.session,
                    clock=self.clock,
                    resources={"outbox": outbox, "payment_processor": self._processor},
                    entity_type="PaymentRequest",
                    outcome_sink=self._outcome_sink,
                )
                if result.state_changed:
                    self._commit(label)
                else:
                    self._rollback(label, result.error.code)
            except Exception:
                self._rollback(label, "exception")
                outbox.discard()
                raise

            if result.state_changed:
                outbox.dispatch()
            else:
                outbox.discard()
        return result

    # =========================================================================
    # Batching
    # =========================================================================

    def assign_batch(self, request: PaymentRequestModel, batch: PaymentBatchModel) -> None:
        """Assign ``request`` to ``batch``.

        Raises:
            NotBatchableError: request not approved, its current batch is
                closed, or the target batch is not open.
        """
        if request.state != _APPROVED:
            raise NotBatchableError(
                str(request.id),
                f"state is '{PAYMENT_REQUEST_WORKFLOW.name_of(request.state)}', not 'approved'",
            )
        if request.batch is not None and request.batch.status == BatchStatus.CLOSED.value:
            raise NotBatchableError(str(request.id), "current batch is closed")
        if batch.status != BatchStatus.OPEN.value:
            raise NotBatchableError(str(request.id), f"batch {batch.id} is {batch.status}")

        request.batch = batch
        try:
            self.session.flush()
            self._commit("payment_request.assign_batch")
        except Exception:
            self._rollback("payment_request.assign_batch", "exception")
            raise
        logger.info(
            "payment_request_batched",
            extra={"payment_request_id": str(request.id), "batch_id": str(batch.id)},
        )

    def batchable(self) -> list[PaymentRequest]:
        """Approved requests with no batch or a batch that is not closed."""
        stmt = (
            select(PaymentRequestModel)
            .outerjoin(PaymentBatchModel, PaymentRequestModel.batch_id == PaymentBatchModel.id)
            .where(PaymentRequestModel.state == _APPROVED)
            .where(
                or_(
                    PaymentRequestModel.batch_id.is_(None),
                    PaymentBatchModel.status != BatchStatus.CLOSED.value,
                )
            )
        )
        return [r.to_dto() for r in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Payout status
    # =========================================================================

    def terminal_payment_state(self, request: PaymentRequestModel) -> bool:
        """A processor status after which no new status will be reported."""
        return bool(request.payment_status) and (
            request.payment_status.upper() in self._config.terminal_item_statuses
        )

    def update_payment_status(self, request: PaymentRequestModel) -> str | None:
        """Poll the processor for the request's payout item status.

        Invoked explicitly by the storage caller after loading a request.
        Returns the stored status, or None when the poll was skipped.
        """
        if self.terminal_payment_state(request):
            return None
        now = self.clock.now()
        interval = timedelta(seconds=self._config.status_poll_interval_seconds)
        last = request.payment_status_updated_at
        if last is not None and last > now - interval:
            return None

        try:
            request.payment_status_updated_at = now
            batch = request.batch
            if batch is not None and batch.status == BatchStatus.PAID.value:
                status = self._processor.item_status(request)
                if status:
                    request.payment_status = status
            self._commit("payment_request.update_payment_status")
        except Exception:
            self._rollback("payment_request.update_payment_status", "exception")
            raise

        logger.info(
            "payment_status_polled",
            extra={
                "payment_request_id": str(request.id),
                "payment_status": request.payment_status,
            },
        )
        return request.payment_status

    # =========================================================================
    # Associations
    # =========================================================================

    def recalculate_amount(self, request: PaymentRequestModel) -> Decimal:
        request.amount = sum(
            (to_decimal(p.contractor_payment_amount) for p in request.payables), ZERO,
        )
        return request.amount

    def remove_job(self, request: PaymentRequestModel, reference: str | PayableRef) -> Decimal:
        """Drop one job/order from an unpaid request and recompute the amount."""
        ref = PayableRef.parse(reference)
        if request.state not in _REMOVABLE_STATES:
            raise PaymentError(
                f"Cannot remove {ref} from payment request {request.id} in state "
                f"'{PAYMENT_REQUEST_WORKFLOW.name_of(request.state)}'"
            )
        if ref.kind is PayableKind.JOB:
            links = request.job_links
            match = [link for link in links if link.job_id == ref.id]
        else:
            links = request.order_links
            match = [link for link in links if link.order_id == ref.id]
        if not match:
            raise EntityNotFoundError(str(ref.kind.value), ref.id)

        try:
            links.remove(match[0])
            amount = self.recalculate_amount(request)
            self.session.flush()
            self._commit("payment_request.remove_job")
        except Exception:
            self._rollback("payment_request.remove_job", "exception")
            raise
        logger.info(
            "payment_request_job_removed",
            extra={"payment_request_id": str(request.id), "reference": str(ref)},
        )
        return amount

    def find_association(self, ref: PayableRef) -> UUID | None:
        """Id of the payment request already holding ``ref``, if any."""
        if ref.kind is PayableKind.JOB:
            stmt = select(PaymentRequestJobModel.payment_request_id).where(
                PaymentRequestJobModel.job_id == ref.id
            )
        else:
            stmt = select(PaymentRequestOrderModel.payment_request_id).where(
                PaymentRequestOrderModel.order_id == ref.id
            )
        with self.session.no_autoflush:
            return self.session.execute(stmt).scalar_one_or_none()

    # =========================================================================
    # Reporting
    # =========================================================================

    def in_state(self, state_name: str) -> list[PaymentRequest]:
        rows = self.session.execute(self.engine.scope(PaymentRequestModel, state_name)).scalars()
        return [r.to_dto() for r in rows]

    def funds_requested(self) -> list[PaymentRequest]:
        """Requests not yet paid."""
        return self._where(PaymentRequestModel.state != _PAID)

    def funds_withdrawn(self) -> list[PaymentRequest]:
        return self._where(PaymentRequestModel.state == _PAID)

    def funds_approved(self) -> list[PaymentRequest]:
        return self._where(PaymentRequestModel.state == _APPROVED)

    def rolling_earnings(self, now: datetime | None = None) -> dict[UUID, Decimal]:
        """Requested amount per contractor over the configured recency window."""
        cutoff = (now or self.clock.now()) - timedelta(days=self._config.rolling_earnings_days)
        rows = self.session.execute(
            select(PaymentRequestModel.contractor_id, func.sum(PaymentRequestModel.amount))
            .where(PaymentRequestModel.created_at > cutoff)
            .group_by(PaymentRequestModel.contractor_id)
        ).all()
        return {contractor_id: to_decimal(amount) for contractor_id, amount in rows}

    @staticmethod
    def state_collection() -> list[tuple[str, int]]:
        return PAYMENT_REQUEST_WORKFLOW.state_collection()

    def _where(self, condition) -> list[PaymentRequest]:
        rows = self.session.execute(select(PaymentRequestModel).where(condition)).scalars()
        return [r.to_dto() for r in rows]

