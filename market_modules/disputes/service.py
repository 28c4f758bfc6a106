"""
Dispute Service (``market_modules.disputes.service``).

Responsibility
--------------
Opens and resolves disputes on jobs.  Each operation writes the user's
audit comment, a system comment and the dispute record (and, on
resolution, may fire an arbitration event on the job) as one
all-or-nothing unit of work.

Architecture position
---------------------
**Modules layer** -- composes ``market_kernel.db.transaction.atomic`` with
``JobLifecycleService.transition``.  Owns its transaction boundary.

Invariants enforced
-------------------
* Steps 1-3 of start and resolve commit together or not at all; the job
  state is unchanged after a rollback.
* At most one open dispute per job (checked here, backed by the partial
  unique index ``uq_disputes_open_job``).
* Only the user who opened the current dispute may resolve it.
* dispute-opened / dispute-resolved notifications are dispatched after
  commit; delivery failures never reach the transaction.

Failure modes
-------------
* Blank comment body, already-open dispute, no open dispute to resolve,
  database error, rejected arbitration transition
  -> ``TransactionOutcome(committed=False)``; nothing persisted.
* Resolver is not the disputer -> ``UnauthorizedResolverError`` raised.
* Unknown arbitration outcome -> ``ValueError`` raised.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from market_config.schema import DisputesConfig, JobsConfig
from market_kernel.db.transaction import TransactionOutcome, atomic
from market_kernel.domain.clock import Clock
from market_kernel.exceptions import UnauthorizedResolverError
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.services.base import BaseService
from market_modules.disputes.models import ArbitrationOutcome, Comment, CommentType, Dispute
from market_modules.disputes.orm import CommentModel, DisputeModel
from market_modules.jobs.orm import JobModel
from market_modules.jobs.service import JobLifecycleService
from market_services.notifications import (
    ROLE_ADMIN,
    ROLE_CONTRACTOR,
    ROLE_CUSTOMER,
    NotificationOutbox,
    Notifier,
)
from market_services.payment_processor import PaymentProcessor

logger = get_logger("modules.disputes.service")

_DISPUTE_ROLES = (ROLE_CUSTOMER, ROLE_CONTRACTOR, ROLE_ADMIN)


class DisputeService(BaseService):
    """
    Dispute operations for jobs.

    ``params`` for both operations is a mapping with the comment ``body``;
    ``resolve_dispute`` also accepts ``arbitration`` (``"complete"`` or
    ``"incomplete"``).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: DisputesConfig | None = None,
        jobs_config: JobsConfig | None = None,
        processor: PaymentProcessor | None = None,
        notifier: Notifier | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or DisputesConfig()
        self._notifier = notifier
        self._jobs = JobLifecycleService(
            session,
            clock=self.clock,
            config=jobs_config,
            processor=processor,
            notifier=notifier,
        )
        self._system_user_id = UUID(self._config.system_user_id)

    # =========================================================================
    # Operations
    # =========================================================================

    def start_dispute(
        self, job: JobModel, disputer_id: UUID, params: Mapping[str, Any],
    ) -> TransactionOutcome:
        """Open a dispute on ``job``.  Truthy outcome when committed."""
        outbox = NotificationOutbox(self._notifier)

        def work():
            if self._add_comment(job, disputer_id, params.get("body")) is None:
                return None
            opening = self._add_comment(
                job, self._system_user_id, self._config.open_comment_body,
                CommentType.DISPUTE_OPENED,
            )
            if opening is None:
                return None
            dispute = self._open_dispute(job, disputer_id, opening)
            if dispute is None:
                return None
            outbox.enqueue_many(
                "dispute-opened", _DISPUTE_ROLES, "Job", job.id, dispute_id=str(dispute.id),
            )
            return dispute

        with LogContext.bind(entity_id=job.id, workflow="dispute"):
            outcome = atomic(
                self.session, work, on_commit=(outbox.dispatch,), label="dispute.start",
            )
            if outcome:
                logger.info(
                    "dispute_opened",
                    extra={"job_id": str(job.id), "user_id": str(disputer_id)},
                )
            else:
                outbox.discard()
        return outcome

    def resolve_dispute(
        self, job: JobModel, disputer_id: UUID, params: Mapping[str, Any],
    ) -> TransactionOutcome:
        """Resolve the open dispute on ``job``, optionally arbitrating the job."""
        if not self.disputed_by(job, disputer_id):
            logger.error(
                "dispute_resolve_unauthorized",
                extra={"job_id": str(job.id), "user_id": str(disputer_id)},
            )
            raise UnauthorizedResolverError(str(job.id), str(disputer_id))

        arbitration = params.get("arbitration")
        if arbitration is not None:
            arbitration = ArbitrationOutcome(arbitration)

        outbox = NotificationOutbox(self._notifier)

        def work():
            if self._add_comment(job, disputer_id, params.get("body")) is None:
                return None
            closing = self._add_comment(
                job, self._system_user_id, self._config.resolve_comment_body,
                CommentType.DISPUTE_RESOLVED,
            )
            if closing is None:
                return None
            dispute = self._open_dispute_row(job.id)
            if dispute is None:
                logger.warning("dispute_not_open", extra={"job_id": str(job.id)})
                return None
            dispute.resolving_comment = closing
            dispute.resolved_at = self.clock.now()
            self.session.flush()

            if arbitration is not None:
                result = self._jobs.transition(job, arbitration.job_event, outbox)
                if not result.success:
                    return None

            outbox.enqueue_many(
                "dispute-resolved", _DISPUTE_ROLES, "Job", job.id, dispute_id=str(dispute.id),
            )
            return dispute

        with LogContext.bind(entity_id=job.id, workflow="dispute"):
            outcome = atomic(
                self.session, work, on_commit=(outbox.dispatch,), label="dispute.resolve",
            )
            if outcome:
                logger.info(
                    "dispute_resolved",
                    extra={
                        "job_id": str(job.id),
                        "user_id": str(disputer_id),
                        "arbitration": arbitration.value if arbitration else None,
                    },
                )
            else:
                outbox.discard()
        return outcome

    def add_comment(self, job: JobModel, user_id: UUID, body: str) -> Comment | None:
        """Append a general comment to the job's audit trail."""
        comment = self._add_comment(job, user_id, body)
        if comment is None:
            self._rollback("comment.add", "blank_body")
            return None
        self._commit("comment.add")
        return comment.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def comments(self, job: JobModel) -> list[Comment]:
        rows = self.session.execute(
            select(CommentModel)
            .where(CommentModel.job_id == job.id)
            .order_by(CommentModel.created_at)
        ).scalars()
        return [row.to_dto() for row in rows]

    def disputes(self, job: JobModel) -> list[Dispute]:
        rows = self.session.execute(
            select(DisputeModel)
            .where(DisputeModel.job_id == job.id)
            .order_by(DisputeModel.sequence)
        ).scalars()
        return [row.to_dto() for row in rows]

    def current_dispute(self, job: JobModel) -> Dispute | None:
        """Most recently opened dispute, open or resolved."""
        row = self.session.execute(
            select(DisputeModel)
            .where(DisputeModel.job_id == job.id)
            .order_by(DisputeModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def disputed(self, job: JobModel) -> bool:
        return self._open_dispute_row(job.id) is not None

    def disputed_at(self, job: JobModel) -> datetime | None:
        row = self._open_dispute_row(job.id)
        return row.created_at if row is not None else None

    def disputed_by(self, job: JobModel, user_id: UUID) -> bool:
        current = self.current_dispute(job)
        return current is not None and current.user_id == user_id

    def dispute_duration(self, job: JobModel, now: datetime | None = None) -> timedelta | None:
        current = self.current_dispute(job)
        if current is None:
            return None
        end = current.resolved_at or now or self.clock.now()
        return end - current.created_at

    def in_arbitration(self, job: JobModel, now: datetime | None = None) -> bool:
        row = self._open_dispute_row(job.id)
        if row is None:
            return False
        return row.deadline_at <= (now or self.clock.now())

    # =========================================================================
    # Internal
    # =========================================================================

    def _add_comment(
        self,
        job: JobModel,
        user_id: UUID,
        body: str | None,
        comment_type: CommentType = CommentType.GENERAL,
    ) -> CommentModel | None:
        if not body or not body.strip():
            logger.warning(
                "comment_rejected",
                extra={"job_id": str(job.id), "reason": "blank body"},
            )
            return None
        comment = CommentModel(
            job_id=job.id,
            user_id=user_id,
            body=body,
            comment_type=comment_type.value,
            created_at=self.clock.now(),
        )
        self.session.add(comment)
        self.session.flush()
        return comment

    def _open_dispute(
        self, job: JobModel, disputer_id: UUID, opening: CommentModel,
    ) -> DisputeModel | None:
        if self._open_dispute_row(job.id) is not None:
            logger.warning("dispute_already_open", extra={"job_id": str(job.id)})
            return None
        now = self.clock.now()
        dispute = DisputeModel(
            job_id=job.id,
            user_id=disputer_id,
            initiating_comment=opening,
            sequence=self._next_sequence(job.id),
            created_at=now,
            deadline_at=now + timedelta(hours=self._config.resolution_window_hours),
        )
        self.session.add(dispute)
        self.session.flush()
        return dispute

    def _open_dispute_row(self, job_id: UUID) -> DisputeModel | None:
        return self.session.execute(
            select(DisputeModel)
            .where(DisputeModel.job_id == job_id, DisputeModel.resolved_at.is_(None))
            .order_by(DisputeModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _next_sequence(self, job_id: UUID) -> int:
        with self.session.no_autoflush:
            highest = self.session.execute(
                select(func.max(DisputeModel.sequence)).where(DisputeModel.job_id == job_id)
            ).scalar_one()
        return (highest or 0) + 1
