"""
Job Lifecycle Service (``market_modules.jobs.service``).

Responsibility
--------------
Sole public entry point for job operations: creating jobs and bids, and
driving ``JOB_WORKFLOW`` through its events.  Each public operation owns
one transaction.

Architecture position
---------------------
**Modules layer** -- thin glue over ``StateMachineEngine``.  Injects the
hook resources (pricing config, payment processor, notification outbox)
and decides commit or rollback from the transition outcome.

Invariants enforced
-------------------
* One operation, one transaction: committed when the state changed
  (including a HookFailedError outcome), rolled back otherwise.
* A failed unaccept refund is recorded as ``refund_status =
  "refund_errored"`` and committed while the state stays ``accepted``.
* Notifications queued by hooks are dispatched only after commit.

Failure modes
-------------
* Transition outcomes  -> returned as ``TransitionResult``.
* Unexpected exception  -> session rolled back, exception re-raised.
* Unknown job id  -> ``EntityNotFoundError``.

Usage::

    service = JobLifecycleService(session, clock=clock)
    job = service.create_job(customer_id=customer_id, title="Mow lawn")
    service.list_job(job)
    bid = service.place_bid(job.id, contractor_id, Decimal("100.00"))
    result = service.accept(job, bid)
    result.raise_for_error()
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from market_config.schema import JobsConfig
from market_kernel.domain.clock import Clock
from market_kernel.exceptions import EntityNotFoundError, RefundFailedError
from market_kernel.logging_config import LogContext, get_logger
from market_kernel.services.base import BaseService
from market_modules.jobs.models import Job, RefundStatus
from market_modules.jobs.orm import BidModel, JobModel, OrderModel
from market_modules.jobs.workflows import JOB_WORKFLOW
from market_services.notifications import NotificationOutbox, Notifier
from market_services.payment_processor import NullPaymentProcessor, PaymentProcessor
from market_services.state_machine import StateMachineEngine, TransitionResult

logger = get_logger("modules.jobs.service")


class JobLifecycleService(BaseService):
    """
    Drives jobs through ``JOB_WORKFLOW``.

    Contract
    --------
    Receives the session, clock, pricing config, payment processor and
    notifier via constructor injection.  Jobs passed to the event methods
    must belong to this service's session.
    """

    engine = StateMachineEngine(JOB_WORKFLOW)

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: JobsConfig | None = None,
        processor: PaymentProcessor | None = None,
        notifier: Notifier | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or JobsConfig()
        self._processor = processor or NullPaymentProcessor()
        self._notifier = notifier
        self._outcome_sink = outcome_sink

    # =========================================================================
    # Creation
    # =========================================================================

    def create_job(
        self,
        customer_id: UUID,
        title: str = "",
        order: OrderModel | None = None,
        customer_payment_amount: Decimal | None = None,
    ) -> JobModel:
        """Create a job in the workflow's initial state."""
        job = JobModel(
            title=title,
            customer_id=customer_id,
            state=JOB_WORKFLOW.value_of(JOB_WORKFLOW.initial_state),
            customer_payment_amount=customer_payment_amount,
        )
        if order is not None:
            job.originating_order = order
            job.total_cost = order.total_cost
            job.contractor_payment_amount = order.contractor_payment_amount
        self.session.add(job)
        self.session.flush()
        self._commit("job.create")
        logger.info("job_created", extra={"job_id": str(job.id), "customer_id": str(customer_id)})
        return job

    def place_bid(self, job_id: UUID, contractor_id: UUID, amount: Decimal) -> BidModel:
        bid = BidModel(job_id=job_id, contractor_id=contractor_id, amount=amount)
        self.session.add(bid)
        self.session.flush()
        self._commit("job.place_bid")
        return bid

    def get(self, job_id: UUID) -> JobModel:
        job = self.session.get(JobModel, job_id)
        if job is None:
            raise EntityNotFoundError("Job", job_id)
        return job

    # =========================================================================
    # Events
    # =========================================================================

    def list_job(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "list")

    def accept(self, job: JobModel, bid: BidModel) -> TransitionResult:
        return self.fire(job, "accept", bid=bid)

    def unaccept(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "unaccept")

    def work(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "work")

    def approve(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "approve")

    def automated_approve(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "automated_approve")

    def cancel(self, job: JobModel, cancel_reason: str | None = None) -> TransitionResult:
        return self.fire(job, "cancel", cancel_reason=cancel_reason)

    def arbitrate_complete(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "arbitrate_complete")

    def arbitrate_incomplete(self, job: JobModel) -> TransitionResult:
        return self.fire(job, "arbitrate_incomplete")

    def fire(self, job: JobModel, event: str, **args: Any) -> TransitionResult:
        """Fire ``event`` on ``job`` as one transaction."""
        label = f"job.{event}"
        outbox = NotificationOutbox(self._notifier)
        with LogContext.bind(entity_id=job.id, workflow=JOB_WORKFLOW.name):
            try:
                result = self.transition(job, event, outbox, **args)
                if isinstance(result.error, RefundFailedError):
                    job.refund_status = RefundStatus.REFUND_ERRORED.value
                    self._commit(label)
                elif result.state_changed:
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

    def transition(
        self,
        job: JobModel,
        event: str,
        outbox: NotificationOutbox,
        **args: Any,
    ) -> TransitionResult:
        """Fire without owning the transaction; the caller commits or rolls back."""
        return self.engine.fire(
            job,
            event,
            args,
            session=self.session,
            clock=self.clock,
            resources={
                "jobs_config": self._config,
                "payment_processor": self._processor,
                "outbox": outbox,
            },
            entity_type="Job",
            outcome_sink=self._outcome_sink,
        )

    def fire_many(
        self, event: str, job_ids: Iterable[UUID], **args: Any,
    ) -> dict[UUID, TransitionResult]:
        """Fire ``event`` on each job in its own transaction.

        One job's failure does not affect the others; callers report each
        result against its record.
        """
        results: dict[UUID, TransitionResult] = {}
        for job_id in job_ids:
            results[job_id] = self.fire(self.get(job_id), event, **args)
        logger.info(
            "job_fire_many_completed",
            extra={
                "event": event,
                "total": len(results),
                "succeeded": sum(1 for r in results.values() if r.success),
            },
        )
        return results

    # =========================================================================
    # Queries
    # =========================================================================

    def jobs_in_state(self, state_name: str) -> list[Job]:
        rows = self.session.execute(self.engine.scope(JobModel, state_name)).scalars()
        return [row.to_dto() for row in rows]

    @staticmethod
    def states() -> tuple[str, ...]:
        return JOB_WORKFLOW.state_names

    @staticmethod
    def state_collection() -> list[tuple[str, int]]:
        return JOB_WORKFLOW.state_collection()

    @staticmethod
    def contractor_payable(job: JobModel) -> bool:
        return job.contractor_payable
