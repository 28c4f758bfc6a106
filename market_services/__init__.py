"""
market_services -- Cross-module services.

Responsibility:
    The guarded state machine engine and the external collaborator seams
    (notifications, payment processor) shared by every lifecycle module.

Architecture position:
    Services -- may import from market_kernel/.  market_kernel must never
    import from this package.
"""

from market_services.notifications import (
    LoggingNotifier,
    Notification,
    NotificationOutbox,
    Notifier,
)
from market_services.payment_processor import (
    NullPaymentProcessor,
    PaymentProcessor,
    RefundResult,
)
from market_services.state_machine import (
    StateMachineEngine,
    TransitionContext,
    TransitionResult,
)

__all__ = [
    "StateMachineEngine",
    "TransitionContext",
    "TransitionResult",
    "LoggingNotifier",
    "Notification",
    "NotificationOutbox",
    "Notifier",
    "NullPaymentProcessor",
    "PaymentProcessor",
    "RefundResult",
]
