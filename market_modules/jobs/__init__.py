"""
Jobs Module (``market_modules.jobs``).

Responsibility
--------------
The job (bid request) lifecycle: listing, bid acceptance with contractor
pricing, refund-guarded unaccept, work reporting, approval, cancellation
and arbitration outcomes.

Invariants enforced
-------------------
* Contractor and totals are set only by ``accept`` and cleared only by
  ``unaccept``.
* Transaction boundary owned by ``JobLifecycleService``.
"""

from market_modules.jobs.models import (
    JOB_PAYABLE_STATES,
    ORDER_PAYABLE_STATUSES,
    Bid,
    Job,
    JobState,
    Order,
    OrderStatus,
    RefundStatus,
)
from market_modules.jobs.service import JobLifecycleService
from market_modules.jobs.workflows import JOB_WORKFLOW, contractor_payment_amount

__all__ = [
    "JOB_WORKFLOW",
    "JOB_PAYABLE_STATES",
    "ORDER_PAYABLE_STATUSES",
    "Bid",
    "Job",
    "JobState",
    "JobLifecycleService",
    "Order",
    "OrderStatus",
    "RefundStatus",
    "contractor_payment_amount",
]
