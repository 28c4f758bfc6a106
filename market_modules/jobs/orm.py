"""
Job ORM Models (``market_modules.jobs.orm``).

Responsibility
--------------
SQLAlchemy persistence models for jobs, bids and orders.  Maps frozen
domain dataclasses from ``models.py`` to database tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``market_kernel.db.base``
and sibling ``models.py``.  MUST NOT be imported by ``market_kernel``
except through the lazy imports of the integrity listeners.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from market_kernel.db.base import TrackedBase
from market_modules.jobs.models import (
    JOB_PAYABLE_STATES,
    ORDER_PAYABLE_STATUSES,
    JobState,
    OrderStatus,
)


class OrderModel(TrackedBase):
    """
    ORM model for customer orders.

    A job created from an order takes its totals back from the order when
    its contractor is unaccepted.
    """

    __tablename__ = "orders"

    __table_args__ = (
        Index("idx_orders_contractor_id", "contractor_id"),
        Index("idx_orders_status", "status"),
    )

    payable_name = "Order"

    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    contractor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(30), default=OrderStatus.PENDING.value)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    contractor_payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    @property
    def contractor_payable(self) -> bool:
        return OrderStatus(self.status) in ORDER_PAYABLE_STATUSES

    def to_dto(self):
        from market_modules.jobs.models import Order

        return Order(
            id=self.id,
            customer_id=self.customer_id,
            contractor_id=self.contractor_id,
            status=OrderStatus(self.status),
            total_cost=self.total_cost,
            contractor_payment_amount=self.contractor_payment_amount,
        )


class JobModel(TrackedBase):
    """
    ORM model for jobs (bid requests).

    Guarantees:
        - state holds the persisted integer of a ``JOB_WORKFLOW`` state.
        - contractor_id / total_cost / contractor_payment_amount are written
          only by the ``accept`` and ``unaccept`` hooks.
        - order_id FK to orders.id (RESTRICT).
    """

    __tablename__ = "jobs"

    __table_args__ = (
        Index("idx_jobs_state", "state"),
        Index("idx_jobs_contractor_id", "contractor_id"),
        Index("idx_jobs_customer_id", "customer_id"),
    )

    payable_name = "Job"

    title: Mapped[str] = mapped_column(String(255), default="")
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    contractor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    state: Mapped[int] = mapped_column(Integer, nullable=False, default=JobState.DRAFTED.value)
    order_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("orders.id", ondelete="RESTRICT"), nullable=True,
    )
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    contractor_payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    customer_payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    refund_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reported_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    originating_order: Mapped[OrderModel | None] = relationship(lazy="joined")
    bids: Mapped[list["BidModel"]] = relationship(
        back_populates="job", order_by="BidModel.created_at",
    )

    @property
    def contractor_payable(self) -> bool:
        return self.state in {s.value for s in JOB_PAYABLE_STATES}

    def to_dto(self):
        from market_modules.jobs.models import Job, RefundStatus

        return Job(
            id=self.id,
            title=self.title,
            customer_id=self.customer_id,
            state=JobState(self.state),
            contractor_id=self.contractor_id,
            order_id=self.order_id,
            total_cost=self.total_cost,
            contractor_payment_amount=self.contractor_payment_amount,
            customer_payment_amount=self.customer_payment_amount,
            refund_status=RefundStatus(self.refund_status) if self.refund_status else None,
            cancel_reason=self.cancel_reason,
            accepted_at=self.accepted_at,
            reported_at=self.reported_at,
            approved_at=self.approved_at,
        )


class BidModel(TrackedBase):
    """ORM model for a contractor's bid on a job."""

    __tablename__ = "bids"

    __table_args__ = (
        Index("idx_bids_job_id", "job_id"),
    )

    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False,
    )
    contractor_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    job: Mapped[JobModel] = relationship(back_populates="bids")

    def to_dto(self):
        from market_modules.jobs.models import Bid

        return Bid(
            id=self.id,
            job_id=self.job_id,
            contractor_id=self.contractor_id,
            amount=self.amount,
        )
