"""
Payment Request Workflow (``market_modules.payments.workflows``).

Responsibility
--------------
Declares the contractor payment request state machine.  After hooks keep
the approval/payment timestamps and the batch reference consistent with
the state the request enters.

Architecture position
---------------------
**Modules layer** -- declarative workflow definition, executed by
``market_services.state_machine.StateMachineEngine``.

Invariants enforced
-------------------
* Entering ``approved`` clears ``paid_at`` and the batch reference.
* Entering ``requested`` clears ``approved_at``.
* Entering ``paid`` stamps ``paid_at`` and queues the payout notification.
"""

from market_kernel.domain.workflow import State, Transition, Workflow, after_transition
from market_kernel.logging_config import get_logger
from market_modules.payments.models import PaymentRequestState
from market_services.notifications import ROLE_ADMIN, ROLE_CONTRACTOR

logger = get_logger("modules.payments.workflows")

PAYMENT_REQUEST_WORKFLOW_NAME = "payment_request"


def stamp_approved(ctx):
    request = ctx.entity
    request.approved_at = ctx.clock.now()
    request.paid_at = None
    request.batch = None


def clear_approved(ctx):
    ctx.entity.approved_at = None


def stamp_paid(ctx):
    request = ctx.entity
    request.paid_at = ctx.clock.now()
    outbox = ctx.resources.get("outbox")
    if outbox is not None:
        outbox.enqueue_many(
            "payment-request-paid",
            (ROLE_CONTRACTOR, ROLE_ADMIN),
            "PaymentRequest",
            request.id,
            amount=request.amount,
            sender_item_id=request.sender_item_id,
        )


PAYMENT_REQUEST_WORKFLOW = Workflow(
    name=PAYMENT_REQUEST_WORKFLOW_NAME,
    description="Contractor payment request from request to payout",
    initial_state="requested",
    states=tuple(State(s.name.lower(), s.value) for s in PaymentRequestState),
    transitions=(
        Transition("approve", ("requested", "payment_erred"), "approved"),
        Transition("unapprove", ("approved",), "requested"),
        Transition(
            "initiate", ("requested", "approved", "pending", "payment_erred"), "pending",
        ),
        Transition("pay", ("pending",), "paid"),
        Transition("payment_err", ("approved", "pending"), "payment_erred"),
    ),
    hooks=(
        after_transition(stamp_approved, to="approved"),
        after_transition(clear_approved, to="requested"),
        after_transition(stamp_paid, to="paid"),
    ),
    terminal_states=("paid",),
)

logger.info(
    "payment_request_workflow_defined",
    extra={
        "workflow": PAYMENT_REQUEST_WORKFLOW.name,
        "state_count": len(PAYMENT_REQUEST_WORKFLOW.states),
        "transition_count": len(PAYMENT_REQUEST_WORKFLOW.transitions),
    },
)
