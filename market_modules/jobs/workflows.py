"""
Job Workflow (``market_modules.jobs.workflows``).

Responsibility
--------------
Declares the job (bid request) state machine: the persisted states, the
transition table, and the ordered before/after hooks carrying the side
effects of each event.

Architecture position
---------------------
**Modules layer** -- declarative workflow definition.  Imports canonical
State, Transition, Workflow from ``market_kernel.domain.workflow``.
Executed by ``market_services.state_machine.StateMachineEngine``.

Hook resources
--------------
Hooks read their collaborators from the transition context:

* ``jobs_config``        -- ``JobsConfig`` (platform fee)
* ``payment_processor``  -- ``PaymentProcessor`` (unaccept refund)
* ``outbox``             -- ``NotificationOutbox`` (optional)
"""

from decimal import Decimal

from market_kernel.db.types import round_money
from market_kernel.domain.workflow import (
    HookResult,
    State,
    Transition,
    Workflow,
    after_transition,
    before_transition,
)
from market_kernel.exceptions import BidMismatchError, RefundFailedError
from market_kernel.logging_config import get_logger
from market_modules.jobs.models import JobState, RefundStatus
from market_services.notifications import ROLE_ADMIN, ROLE_CONTRACTOR, ROLE_CUSTOMER

logger = get_logger("modules.jobs.workflows")

JOB_WORKFLOW_NAME = "job"

_HUNDRED = Decimal("100")


def contractor_payment_amount(amount: Decimal, platform_fee_percent: Decimal) -> Decimal:
    """Bid amount less the platform fee, rounded half-up to cents."""
    return round_money(amount * (_HUNDRED - platform_fee_percent) / _HUNDRED)


def _notify(ctx, event: str, *roles: str) -> None:
    outbox = ctx.resources.get("outbox")
    if outbox is None:
        return
    job = ctx.entity
    outbox.enqueue_many(
        event,
        roles,
        "Job",
        job.id,
        from_state=ctx.from_state,
        to_state=ctx.to_state,
    )


# -----------------------------------------------------------------------------
# Before hooks (guards)
# -----------------------------------------------------------------------------


def verify_and_assign_bid(ctx):
    """The accepted bid must belong to this job; it fixes contractor and totals."""
    job = ctx.entity
    bid = ctx.arg("bid")
    if bid.job_id != job.id:
        return HookResult.reject_with(
            BidMismatchError(
                JOB_WORKFLOW_NAME, ctx.event, ctx.from_state, str(bid.id), str(job.id),
            )
        )
    fee = ctx.resource("jobs_config").platform_fee_percent
    job.contractor_id = bid.contractor_id
    job.total_cost = bid.amount
    job.contractor_payment_amount = contractor_payment_amount(bid.amount, fee)
    return HookResult.ok()


def refund_customer_payment(ctx):
    """Refund the customer before the contractor is released.

    A refund that already succeeded is not repeated.  Any processor failure,
    including an exception, rejects the transition.
    """
    job = ctx.entity
    if job.refund_status != RefundStatus.REFUNDED.value:
        processor = ctx.resource("payment_processor")
        try:
            outcome = processor.refund(job)
        except Exception as exc:
            logger.warning(
                "job_refund_raised",
                extra={"job_id": str(job.id)},
                exc_info=True,
            )
            detail = str(exc)
            succeeded = False
        else:
            detail = outcome.message
            succeeded = outcome.success
        if not succeeded:
            return HookResult.reject_with(
                RefundFailedError(
                    JOB_WORKFLOW_NAME, ctx.event, ctx.from_state, str(job.id), detail,
                )
            )
        job.refund_status = RefundStatus.REFUNDED.value

    order = job.originating_order
    if order is not None:
        job.total_cost = order.total_cost
        job.contractor_payment_amount = order.contractor_payment_amount
    else:
        job.total_cost = None
        job.contractor_payment_amount = None
    job.contractor_id = None
    return HookResult.ok()


# -----------------------------------------------------------------------------
# After hooks
# -----------------------------------------------------------------------------


def notify_listed(ctx):
    _notify(ctx, "job-listed", ROLE_CUSTOMER)


def stamp_accepted(ctx):
    ctx.entity.accepted_at = ctx.clock.now()
    _notify(ctx, "job-accepted", ROLE_CUSTOMER, ROLE_CONTRACTOR)


def stamp_reported(ctx):
    ctx.entity.reported_at = ctx.clock.now()
    _notify(ctx, "job-worked", ROLE_CUSTOMER)


def stamp_approved(ctx):
    ctx.entity.approved_at = ctx.clock.now()
    _notify(ctx, "job-approved", ROLE_CONTRACTOR)


def stamp_automatically_approved(ctx):
    ctx.entity.approved_at = ctx.clock.now()
    _notify(ctx, "job-automatically-approved", ROLE_CUSTOMER, ROLE_CONTRACTOR)


def persist_cancel_reason(ctx):
    reason = ctx.arg("cancel_reason")
    if reason:
        ctx.entity.cancel_reason = reason
    _notify(ctx, "job-cancelled", ROLE_CONTRACTOR, ROLE_ADMIN)


def notify_arbitrated(ctx):
    _notify(ctx, "job-arbitrated", ROLE_CUSTOMER, ROLE_CONTRACTOR)


# -----------------------------------------------------------------------------
# Job Workflow
# -----------------------------------------------------------------------------

_WORK_IN_PROGRESS = ("accepted", "worked")

JOB_WORKFLOW = Workflow(
    name=JOB_WORKFLOW_NAME,
    description="Job (bid request) lifecycle from draft to approval",
    initial_state="drafted",
    states=tuple(State(s.name.lower(), s.value) for s in JobState),
    transitions=(
        Transition("list", ("drafted",), "created"),
        Transition("accept", ("created",), "accepted"),
        Transition("unaccept", ("accepted",), "created"),
        Transition("work", ("accepted",), "worked"),
        Transition("approve", ("worked",), "approved"),
        Transition("automated_approve", ("worked",), "approved"),
        Transition("cancel", ("created", "accepted", "worked"), "cancelled"),
        Transition("arbitrate_complete", _WORK_IN_PROGRESS, "arbitrated_completed"),
        Transition("arbitrate_incomplete", _WORK_IN_PROGRESS, "arbitrated_incompleted"),
    ),
    hooks=(
        after_transition(notify_listed, on="list"),
        before_transition(verify_and_assign_bid, on="accept", requires=("bid",)),
        after_transition(stamp_accepted, on="accept"),
        before_transition(refund_customer_payment, on="unaccept"),
        after_transition(stamp_reported, on="work"),
        after_transition(stamp_approved, on="approve"),
        after_transition(stamp_automatically_approved, on="automated_approve"),
        after_transition(persist_cancel_reason, on="cancel"),
        after_transition(notify_arbitrated, on="arbitrate_complete"),
        after_transition(notify_arbitrated, on="arbitrate_incomplete"),
    ),
    terminal_states=(
        "approved",
        "payment_errored",
        "cancelled",
        "arbitrated_completed",
        "arbitrated_incompleted",
    ),
)

logger.info(
    "job_workflow_defined",
    extra={
        "workflow": JOB_WORKFLOW.name,
        "state_count": len(JOB_WORKFLOW.states),
        "transition_count": len(JOB_WORKFLOW.transitions),
        "hook_count": len(JOB_WORKFLOW.hooks),
    },
)
