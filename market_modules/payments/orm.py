"""
Payment ORM Models (``market_modules.payments.orm``).

Responsibility
--------------
SQLAlchemy persistence models for payment requests, payout batches and
the request-to-job / request-to-order association tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``market_kernel.db.base``,
sibling ``models.py`` and the jobs ORM (association targets).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from market_kernel.db.base import TrackedBase
from market_modules.jobs.orm import JobModel, OrderModel
from market_modules.payments.models import BatchStatus, PaymentRequestState


class PaymentBatchModel(TrackedBase):
    """A group of approved payment requests paid out together."""

    __tablename__ = "payment_batches"

    status: Mapped[str] = mapped_column(String(20), default=BatchStatus.OPEN.value)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        from market_modules.payments.models import PaymentBatch

        return PaymentBatch(id=self.id, status=BatchStatus(self.status), paid_at=self.paid_at)


class PaymentRequestModel(TrackedBase):
    """
    ORM model for a contractor payment request.

    Guarantees:
        - sender_item_id is unique (uq_payment_requests_sender_item_id).
        - amount equals the sum of the associated jobs' and orders'
          contractor_payment_amount as of the last aggregation.
        - batch_id FK to payment_batches.id (RESTRICT).
    """

    __tablename__ = "payment_requests"

    __table_args__ = (
        UniqueConstraint("sender_item_id", name="uq_payment_requests_sender_item_id"),
        Index("idx_payment_requests_state", "state"),
        Index("idx_payment_requests_contractor_id", "contractor_id"),
    )

    state: Mapped[int] = mapped_column(
        Integer, nullable=False, default=PaymentRequestState.REQUESTED.value,
    )
    contractor_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sender_item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payment_batches.id", ondelete="RESTRICT"), nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_status_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    batch: Mapped[PaymentBatchModel | None] = relationship()
    job_links: Mapped[list["PaymentRequestJobModel"]] = relationship(
        back_populates="payment_request", cascade="all, delete-orphan",
    )
    order_links: Mapped[list["PaymentRequestOrderModel"]] = relationship(
        back_populates="payment_request", cascade="all, delete-orphan",
    )

    @property
    def payables(self) -> list:
        return [link.job for link in self.job_links] + [link.order for link in self.order_links]

    def to_dto(self):
        from market_modules.payments.models import PaymentRequest

        return PaymentRequest(
            id=self.id,
            state=PaymentRequestState(self.state),
            contractor_id=self.contractor_id,
            amount=self.amount,
            sender_item_id=self.sender_item_id,
            batch_id=self.batch_id,
            approved_at=self.approved_at,
            paid_at=self.paid_at,
            payment_status=self.payment_status,
            job_ids=tuple(link.job_id for link in self.job_links),
            order_ids=tuple(link.order_id for link in self.order_links),
        )


class PaymentRequestJobModel(TrackedBase):
    """A job paid by a payment request.  A job sits on at most one request."""

    __tablename__ = "payment_request_jobs"

    __table_args__ = (
        UniqueConstraint("job_id", name="uq_payment_request_jobs_job_id"),
        Index("idx_payment_request_jobs_request_id", "payment_request_id"),
    )

    payment_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_requests.id", ondelete="RESTRICT"), nullable=False,
    )
    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False,
    )

    payment_request: Mapped[PaymentRequestModel] = relationship(back_populates="job_links")
    job: Mapped[JobModel] = relationship()


class PaymentRequestOrderModel(TrackedBase):
    """An order paid by a payment request.  An order sits on at most one request."""

    __tablename__ = "payment_request_orders"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_payment_request_orders_order_id"),
        Index("idx_payment_request_orders_request_id", "payment_request_id"),
    )

    payment_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_requests.id", ondelete="RESTRICT"), nullable=False,
    )
    order_id: Mapped[UUID] = mapped_column(
        ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False,
    )

    payment_request: Mapped[PaymentRequestModel] = relationship(back_populates="order_links")
    order: Mapped[OrderModel] = relationship()
