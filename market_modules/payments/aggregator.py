"""
Payment Aggregator (``market_modules.payments.aggregator``).

Responsibility
--------------
Builds a contractor payment request from a set of ``"Type:id"`` job and
order references: validates every reference first, then associates them
and totals their contractor payment amounts in one transaction.

Invariants enforced
-------------------
* Validation before any write: one unpayable reference fails the whole
  build and nothing is persisted.
* ``amount`` equals the sum of ``contractor_payment_amount`` over the
  associated jobs and orders.
* ``sender_item_id`` is unique.  A collision surfacing as a unique
  constraint violation is retried inside a SAVEPOINT with a fresh id,
  without an upper bound.

Failure modes
-------------
* Unpayable reference  -> ``AggregationResult`` with ``NotPayableError``.
* Persistence failure  -> ``AggregationResult`` with ``PaymentError``;
  every association rolled back.
* Malformed reference  -> ``InvalidJobReferenceError`` raised.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from market_kernel.db.transaction import atomic
from market_kernel.db.types import ZERO, to_decimal
from market_kernel.exceptions import NotPayableError, PaymentError
from market_kernel.logging_config import get_logger
from market_modules.jobs.orm import JobModel, OrderModel
from market_modules.payments.models import PayableKind, PayableRef
from market_modules.payments.orm import (
    PaymentRequestJobModel,
    PaymentRequestModel,
    PaymentRequestOrderModel,
)
from market_modules.payments.service import PaymentRequestService

logger = get_logger("modules.payments.aggregator")


@dataclass(frozen=True)
class AggregationResult:
    success: bool
    payment_request: PaymentRequestModel | None = None
    error: PaymentError | None = None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class PaymentAggregator:
    """Turns payable jobs and orders into a single payment request."""

    def __init__(self, service: PaymentRequestService):
        self._service = service
        self._session = service.session

    def build(
        self,
        contractor_id: UUID,
        references: Iterable[str | PayableRef],
    ) -> AggregationResult:
        refs = list(dict.fromkeys(PayableRef.parse(r) for r in references))
        if not refs:
            return AggregationResult(
                success=False, error=PaymentError("No jobs or orders to aggregate"),
            )

        payables: list[tuple[PayableRef, Any]] = []
        for ref in refs:
            entity = self._resolve(ref)
            reason = self._unpayable_reason(ref, entity, contractor_id)
            if reason is not None:
                logger.warning(
                    "payment_aggregation_rejected",
                    extra={
                        "contractor_id": str(contractor_id),
                        "reference": str(ref),
                        "reason": reason,
                    },
                )
                self._session.rollback()
                return AggregationResult(success=False, error=NotPayableError(str(ref), reason))
            payables.append((ref, entity))

        def work():
            request = self._service.new_request(contractor_id)
            self._persist_with_unique_item_id(request)
            request.amount = ZERO
            for ref, entity in payables:
                if ref.kind is PayableKind.JOB:
                    request.job_links.append(PaymentRequestJobModel(job=entity))
                else:
                    request.order_links.append(PaymentRequestOrderModel(order=entity))
                request.amount = request.amount + to_decimal(entity.contractor_payment_amount)
            self._session.flush()
            return request

        outcome = atomic(self._session, work, label="payment_request.build")
        if not outcome.committed:
            return AggregationResult(
                success=False,
                error=PaymentError(f"Payment request could not be saved: {outcome.reason}"),
            )

        request = outcome.value
        logger.info(
            "payment_request_built",
            extra={
                "payment_request_id": str(request.id),
                "contractor_id": str(contractor_id),
                "sender_item_id": request.sender_item_id,
                "amount": request.amount,
                "payable_count": len(payables),
            },
        )
        return AggregationResult(success=True, payment_request=request)

    def _resolve(self, ref: PayableRef):
        model = JobModel if ref.kind is PayableKind.JOB else OrderModel
        return self._session.get(model, ref.id)

    def _unpayable_reason(self, ref: PayableRef, entity, contractor_id: UUID) -> str | None:
        if entity is None:
            return "not found"
        if entity.contractor_id != contractor_id:
            return "belongs to a different contractor"
        if not entity.contractor_payable:
            return "not in a contractor-payable state"
        existing = self._service.find_association(ref)
        if existing is not None:
            return f"already on payment request {existing}"
        return None

    def _persist_with_unique_item_id(self, request: PaymentRequestModel) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                with self._session.begin_nested():
                    self._session.add(request)
                    self._session.flush()
                return
            except IntegrityError:
                if not self._service.item_id_taken(request.sender_item_id):
                    raise
                logger.info(
                    "item_id_collision_on_insert",
                    extra={"sender_item_id": request.sender_item_id, "attempts": attempts},
                )
                request.sender_item_id = self._service.generate_item_id()
