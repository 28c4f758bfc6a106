"""
Payment Domain Models (``market_modules.payments.models``).

Responsibility
--------------
Frozen value objects for contractor payment requests, payout batches and
the ``"Type:id"`` references that name the jobs and orders a request pays.

Architecture position
---------------------
**Modules layer** -- pure data definitions.  No I/O, no database.

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (never ``float``).
* All dataclasses are ``frozen=True``.
* ``PayableRef.parse`` accepts only ``Job:<uuid>`` and ``Order:<uuid>``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from uuid import UUID

from market_kernel.exceptions import InvalidJobReferenceError


class PaymentRequestState(IntEnum):
    """Persisted payment request states.  Must align with ``PAYMENT_REQUEST_WORKFLOW``."""
    REQUESTED = 1
    APPROVED = 2
    PENDING = 3
    PAID = 4
    PAYMENT_ERRED = -1


class BatchStatus(Enum):
    OPEN = "open"
    PAID = "paid"
    CLOSED = "closed"


class PayableKind(Enum):
    JOB = "Job"
    ORDER = "Order"


@dataclass(frozen=True)
class PayableRef:
    """Reference to a payable job or order, written ``"Job:<uuid>"``."""
    kind: PayableKind
    id: UUID

    @classmethod
    def parse(cls, reference: "str | PayableRef") -> "PayableRef":
        if isinstance(reference, PayableRef):
            return reference
        kind_name, sep, raw_id = str(reference).partition(":")
        if not sep:
            raise InvalidJobReferenceError(str(reference))
        try:
            kind = PayableKind(kind_name)
            return cls(kind=kind, id=UUID(raw_id))
        except ValueError:
            raise InvalidJobReferenceError(str(reference)) from None

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class PaymentBatch:
    id: UUID
    status: BatchStatus
    paid_at: datetime | None = None


@dataclass(frozen=True)
class PaymentRequest:
    """Snapshot of a contractor payment request."""
    id: UUID
    state: PaymentRequestState
    contractor_id: UUID
    amount: Decimal
    sender_item_id: str
    batch_id: UUID | None = None
    approved_at: datetime | None = None
    paid_at: datetime | None = None
    payment_status: str | None = None
    job_ids: tuple[UUID, ...] = ()
    order_ids: tuple[UUID, ...] = ()

    @property
    def references(self) -> tuple[str, ...]:
        return tuple(
            [f"Job:{i}" for i in self.job_ids] + [f"Order:{i}" for i in self.order_ids]
        )
