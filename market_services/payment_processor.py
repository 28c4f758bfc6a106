"""
market_services.payment_processor -- Payment processor collaborator seam.

Responsibility:
    Protocol for the external payment processor used by job ``unaccept``
    (customer refund) and by payment request status polling.  Rate limiting
    of status polls lives with the caller (``PaymentRequestService``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class RefundResult:
    """Outcome of a refund attempt."""

    success: bool
    reference: str | None = None
    message: str = ""


class PaymentProcessor(Protocol):
    """Protocol for the external payment processor."""

    def refund(self, job: Any) -> RefundResult: ...

    def item_status(self, payment_request: Any) -> str | None: ...


class NullPaymentProcessor:
    """Default: nothing was charged, so refunds trivially succeed and no status exists."""

    def refund(self, job: Any) -> RefundResult:
        return RefundResult(success=True, message="no customer payment on record")

    def item_status(self, payment_request: Any) -> str | None:
        return None
