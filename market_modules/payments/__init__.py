"""
Payments Module (``market_modules.payments``).

Responsibility
--------------
Contractor payment requests: aggregation of payable jobs and orders,
the request lifecycle from ``requested`` to ``paid``, payout batches,
payout status polling and earnings reporting.

Invariants enforced
-------------------
* A job or order sits on at most one payment request.
* Transaction boundary owned by ``PaymentRequestService`` and
  ``PaymentAggregator.build``.
"""

from market_modules.payments.aggregator import AggregationResult, PaymentAggregator
from market_modules.payments.models import (
    BatchStatus,
    PayableKind,
    PayableRef,
    PaymentBatch,
    PaymentRequest,
    PaymentRequestState,
)
from market_modules.payments.service import PaymentRequestService, total_amount
from market_modules.payments.workflows import PAYMENT_REQUEST_WORKFLOW

__all__ = [
    "PAYMENT_REQUEST_WORKFLOW",
    "AggregationResult",
    "BatchStatus",
    "PayableKind",
    "PayableRef",
    "PaymentAggregator",
    "PaymentBatch",
    "PaymentRequest",
    "PaymentRequestService",
    "PaymentRequestState",
    "total_amount",
]
