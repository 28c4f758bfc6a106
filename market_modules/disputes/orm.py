"""
Dispute ORM Models (``market_modules.disputes.orm``).

Responsibility
--------------
SQLAlchemy persistence models for job comments and disputes.

Invariants enforced
-------------------
* Comments are append-only (``market_kernel.db.integrity`` listeners).
* At most one open dispute per job: partial unique index on ``job_id``
  where ``resolved_at IS NULL`` (uq_disputes_open_job).
* ``sequence`` numbers the disputes of a job 1, 2, 3 ... in opening order
  (uq_disputes_job_sequence); the current dispute is the highest one.
* Both tables reference ``jobs.id`` with ON DELETE RESTRICT.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from market_kernel.db.base import TrackedBase
from market_modules.disputes.models import CommentType


class CommentModel(TrackedBase):
    """An audit comment on a job, authored by a user or by the system user."""

    __tablename__ = "comments"

    __table_args__ = (
        Index("idx_comments_job_id", "job_id"),
    )

    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    comment_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=CommentType.GENERAL.value,
    )

    def to_dto(self):
        from market_modules.disputes.models import Comment

        return Comment(
            id=self.id,
            job_id=self.job_id,
            user_id=self.user_id,
            body=self.body,
            comment_type=CommentType(self.comment_type),
            created_at=self.created_at,
        )


_OPEN = text("resolved_at IS NULL")


class DisputeModel(TrackedBase):
    """A dispute opened against a job."""

    __tablename__ = "disputes"

    __table_args__ = (
        Index(
            "uq_disputes_open_job",
            "job_id",
            unique=True,
            postgresql_where=_OPEN,
            sqlite_where=_OPEN,
        ),
        UniqueConstraint("job_id", "sequence", name="uq_disputes_job_sequence"),
    )

    job_id: Mapped[UUID] = mapped_column(
        ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    initiating_comment_id: Mapped[UUID] = mapped_column(
        ForeignKey("comments.id", ondelete="RESTRICT"), nullable=False,
    )
    resolving_comment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("comments.id", ondelete="RESTRICT"), nullable=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    deadline_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    initiating_comment: Mapped[CommentModel] = relationship(
        foreign_keys=[initiating_comment_id],
    )
    resolving_comment: Mapped[CommentModel | None] = relationship(
        foreign_keys=[resolving_comment_id],
    )

    def to_dto(self):
        from market_modules.disputes.models import Dispute

        return Dispute(
            id=self.id,
            job_id=self.job_id,
            user_id=self.user_id,
            initiating_comment_id=self.initiating_comment_id,
            resolving_comment_id=self.resolving_comment_id,
            created_at=self.created_at,
            deadline_at=self.deadline_at,
            resolved_at=self.resolved_at,
            sequence=self.sequence,
        )
