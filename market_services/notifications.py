"""
market_services.notifications -- Notification collaborator seam.

Responsibility:
    Defines the notification collaborator (fire-and-forget delivery of
    named events to a recipient role) and the post-commit outbox that
    workflow operations use to queue notifications inside a transaction
    and dispatch them only after the transaction commits.

Architecture position:
    Services layer.  Delivery (email, push, chat) is external; this module
    only decides *when* a notification is handed over.

Invariants enforced:
    - Nothing is dispatched while a transaction is open: hooks enqueue,
      the owning service dispatches after commit or discards on rollback.
    - Delivery failures are logged and never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from market_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

ROLE_CUSTOMER = "customer"
ROLE_CONTRACTOR = "contractor"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Notification:
    """A named event addressed to one recipient role."""

    event: str
    role: str
    entity_type: str
    entity_id: str
    context: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    """Protocol for the external notification delivery collaborator."""

    def notify(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Default notifier: records the hand-off in the log and delivers nothing."""

    def notify(self, notification: Notification) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "notification_event": notification.event,
                "role": notification.role,
                "entity_type": notification.entity_type,
                "entity_id": notification.entity_id,
            },
        )


class NotificationOutbox:
    """Queue of notifications waiting for the surrounding transaction to commit."""

    def __init__(self, notifier: Notifier | None = None) -> None:
        self._notifier = notifier or LoggingNotifier()
        self._pending: list[Notification] = []

    @property
    def pending(self) -> tuple[Notification, ...]:
        return tuple(self._pending)

    def enqueue(self, notification: Notification) -> None:
        self._pending.append(notification)

    def enqueue_many(
        self,
        event: str,
        roles: tuple[str, ...],
        entity_type: str,
        entity_id: Any,
        **context: Any,
    ) -> None:
        for role in roles:
            self.enqueue(
                Notification(
                    event=event,
                    role=role,
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    context=dict(context),
                )
            )

    def discard(self) -> int:
        """Drop everything queued; called when the transaction rolls back."""
        dropped = len(self._pending)
        self._pending.clear()
        return dropped

    def dispatch(self) -> int:
        """Hand every queued notification to the notifier.  Returns the delivered count."""
        pending, self._pending = self._pending, []
        delivered = 0
        for notification in pending:
            try:
                self._notifier.notify(notification)
                delivered += 1
            except Exception:
                logger.warning(
                    "notification_failed",
                    extra={
                        "notification_event": notification.event,
                        "role": notification.role,
                        "entity_type": notification.entity_type,
                        "entity_id": notification.entity_id,
                    },
                    exc_info=True,
                )
        return delivered
