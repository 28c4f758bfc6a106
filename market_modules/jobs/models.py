"""
Job Domain Models (``market_modules.jobs.models``).

Responsibility
--------------
Frozen value objects for the nouns of the job lifecycle: jobs (bid
requests), bids, and the orders a job may originate from.

Architecture position
---------------------
**Modules layer** -- pure data definitions.  No I/O, no database.  These
objects flow *out of* ``JobLifecycleService`` as immutable snapshots.

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (never ``float``).
* All dataclasses are ``frozen=True``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from uuid import UUID


class JobState(IntEnum):
    """Persisted job states.  ``workflows.JOB_WORKFLOW`` is built from this enum."""
    DRAFTED = 0
    CREATED = 1
    ACCEPTED = 2
    WORKED = 3
    APPROVED = 5
    PAYMENT_ERRORED = -1
    CANCELLED = -2
    ARBITRATED_COMPLETED = -4
    ARBITRATED_INCOMPLETED = -5


class RefundStatus(Enum):
    """Outcome of the customer refund attempted by ``unaccept``."""
    REFUNDED = "refunded"
    REFUND_ERRORED = "refund_errored"


class OrderStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    ARBITRATED_COMPLETED = "arbitrated_completed"
    ARBITRATED_INCOMPLETED = "arbitrated_incompleted"
    CANCELLED = "cancelled"


JOB_PAYABLE_STATES = frozenset({JobState.APPROVED, JobState.ARBITRATED_COMPLETED})
ORDER_PAYABLE_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.ARBITRATED_COMPLETED})


@dataclass(frozen=True)
class Bid:
    id: UUID
    job_id: UUID
    contractor_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class Order:
    id: UUID
    customer_id: UUID
    contractor_id: UUID | None
    status: OrderStatus
    total_cost: Decimal | None = None
    contractor_payment_amount: Decimal | None = None


@dataclass(frozen=True)
class Job:
    """Snapshot of a job (bid request)."""
    id: UUID
    title: str
    customer_id: UUID
    state: JobState
    contractor_id: UUID | None = None
    order_id: UUID | None = None
    total_cost: Decimal | None = None
    contractor_payment_amount: Decimal | None = None
    customer_payment_amount: Decimal | None = None
    refund_status: RefundStatus | None = None
    cancel_reason: str | None = None
    accepted_at: datetime | None = None
    reported_at: datetime | None = None
    approved_at: datetime | None = None

    @property
    def state_name(self) -> str:
        return self.state.name.lower()
