"""
Typed Exception Hierarchy for the Market Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the lifecycle engine must tell apart "this event is never legal
from here" (a caller bug) from "a business rule said no" (show the user) from
"the after-hook broke but the state already moved" (alert, do not retry).
Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    result = engine.fire(job, "accept", {"bid": bid}, session=session)
    if isinstance(result.error, BidMismatchError):
        api_response(code=result.error.code, bid=result.error.bid_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    MarketplaceError (base)
    |
    +-- TransitionError
    |   +-- IllegalTransitionError
    |   +-- GuardRejectedError
    |   |   +-- BidMismatchError
    |   |   +-- RefundFailedError
    |   +-- MissingArgumentError
    |   +-- HookFailedError
    |
    +-- PaymentError
    |   +-- NotPayableError
    |   +-- NotBatchableError
    |   +-- InvalidJobReferenceError
    |
    +-- DisputeError
    |   +-- UnauthorizedResolverError
    |
    +-- RecordIntegrityError
    |   +-- ImmutabilityViolationError
    |   +-- DependentRecordsError
    |
    +-- EntityNotFoundError
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                     | When Raised
----------------|--------------------------|----------------------------------------
Transition      | ILLEGAL_TRANSITION       | Event not valid from current state
                | GUARD_REJECTED           | Before-hook refused the transition
                | BID_MISMATCH             | Accepted bid belongs to another job
                | REFUND_FAILED            | Unaccept refund could not be processed
                | MISSING_ARGUMENT         | Required event argument absent
                | HOOK_FAILED              | After-hook raised; state already moved
----------------|--------------------------|----------------------------------------
Payment         | NOT_PAYABLE              | Job/order cannot join a payment request
                | NOT_BATCHABLE            | Request cannot be assigned to a batch
                | INVALID_JOB_REFERENCE    | Malformed "Type:id" reference
----------------|--------------------------|----------------------------------------
Dispute         | UNAUTHORIZED_RESOLVER    | Resolver did not open the dispute
----------------|--------------------------|----------------------------------------
Integrity       | IMMUTABILITY_VIOLATION   | Append-only record modified/deleted
                | DEPENDENT_RECORDS        | Delete rejected, dependents exist
----------------|--------------------------|----------------------------------------
Lookup          | ENTITY_NOT_FOUND         | No row for the given identifier
Config          | CONFIGURATION_ERROR      | Invalid configuration set
===============================================================================
"""

from typing import Any


class MarketplaceError(Exception):
    """
    Base exception for all market kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "MARKETPLACE_ERROR"


# Transition-related exceptions


class TransitionError(MarketplaceError):
    """Base exception for state machine transition failures."""

    code: str = "TRANSITION_ERROR"

    def __init__(self, workflow: str, event: str, state: str, message: str):
        self.workflow = workflow
        self.event = event
        self.state = state
        super().__init__(message)


class IllegalTransitionError(TransitionError):
    """Event is not valid from the entity's current state. Never retried."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(self, workflow: str, event: str, state: str):
        super().__init__(
            workflow,
            event,
            state,
            f"Cannot fire '{event}' from state '{state}' in workflow '{workflow}'",
        )


class GuardRejectedError(TransitionError):
    """A before-transition hook refused the transition. State is unchanged."""

    code: str = "GUARD_REJECTED"

    def __init__(self, workflow: str, event: str, state: str, reason: str):
        self.reason = reason
        super().__init__(
            workflow, event, state, f"Transition '{event}' rejected: {reason}"
        )


class BidMismatchError(GuardRejectedError):
    """The bid supplied to `accept` belongs to a different job."""

    code: str = "BID_MISMATCH"

    def __init__(self, workflow: str, event: str, state: str, bid_id: str, job_id: str):
        self.bid_id = bid_id
        self.job_id = job_id
        super().__init__(
            workflow,
            event,
            state,
            f"Attempted to accept bid {bid_id} which does not belong to job {job_id}",
        )


class RefundFailedError(GuardRejectedError):
    """The customer refund required by `unaccept` did not succeed."""

    code: str = "REFUND_FAILED"

    def __init__(self, workflow: str, event: str, state: str, job_id: str, detail: str = ""):
        self.job_id = job_id
        self.detail = detail
        reason = f"Refund failed for job {job_id}"
        if detail:
            reason = f"{reason}: {detail}"
        super().__init__(workflow, event, state, reason)


class MissingArgumentError(TransitionError):
    """A hook declared a required event argument that was not supplied."""

    code: str = "MISSING_ARGUMENT"

    def __init__(self, workflow: str, event: str, state: str, key: str):
        self.key = key
        super().__init__(
            workflow,
            event,
            state,
            f"Event '{event}' requires argument '{key}'",
        )


class HookFailedError(TransitionError):
    """
    An after-transition hook raised.

    The state change has already been applied when this is reported; the
    caller decides whether to keep it.
    """

    code: str = "HOOK_FAILED"

    def __init__(self, workflow: str, event: str, state: str, hook: str, cause: BaseException):
        self.hook = hook
        self.cause = cause
        super().__init__(
            workflow,
            event,
            state,
            f"After-hook '{hook}' failed on '{event}': {cause}",
        )


# Payment-related exceptions


class PaymentError(MarketplaceError):
    """Base exception for payment request errors."""

    code: str = "PAYMENT_ERROR"


class NotPayableError(PaymentError):
    """A referenced job or order cannot be added to a payment request."""

    code: str = "NOT_PAYABLE"

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"{reference} is not payable: {reason}")


class NotBatchableError(PaymentError):
    """Payment request cannot be assigned to the batch."""

    code: str = "NOT_BATCHABLE"

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Payment request {request_id} cannot be batched: {reason}")


class InvalidJobReferenceError(PaymentError):
    """A job reference string is not of the form 'Type:id'."""

    code: str = "INVALID_JOB_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Invalid job reference: {reference!r}")


# Dispute-related exceptions


class DisputeError(MarketplaceError):
    """Base exception for dispute errors."""

    code: str = "DISPUTE_ERROR"


class UnauthorizedResolverError(DisputeError):
    """
    A dispute can only be resolved by the user that opened it.

    This is an authorization failure, not a recoverable rollback.
    """

    code: str = "UNAUTHORIZED_RESOLVER"

    def __init__(self, job_id: str, user_id: str):
        self.job_id = job_id
        self.user_id = user_id
        super().__init__(
            f"User {user_id} did not open the current dispute on job {job_id}"
        )


# Integrity exceptions


class RecordIntegrityError(MarketplaceError):
    """Base exception for ORM-level integrity enforcement."""

    code: str = "RECORD_INTEGRITY_ERROR"


class ImmutabilityViolationError(RecordIntegrityError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


class DependentRecordsError(RecordIntegrityError):
    """Delete rejected because dependent records still exist."""

    code: str = "DEPENDENT_RECORDS"

    def __init__(self, entity_type: str, entity_id: str, dependents: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.dependents = dependents
        super().__init__(
            f"Cannot delete {entity_type} {entity_id}: dependent {dependents} exist"
        )


# Lookup / configuration


class EntityNotFoundError(MarketplaceError):
    """No entity with the given identifier."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class ConfigurationError(MarketplaceError):
    """Configuration set failed validation."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid configuration for '{field}': {message}")
