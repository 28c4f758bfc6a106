"""
Dispute Domain Models (``market_modules.disputes.models``).

Responsibility
--------------
Frozen value objects for disputes opened against jobs and for the
append-only comment trail that records them.

Architecture position
---------------------
**Modules layer** -- pure data definitions.  No I/O, no database.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class CommentType(Enum):
    GENERAL = "general"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"


class ArbitrationOutcome(Enum):
    """Arbitration decided while resolving a dispute, mapped to a job event."""
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"

    @property
    def job_event(self) -> str:
        return f"arbitrate_{self.value}"


@dataclass(frozen=True)
class Comment:
    id: UUID
    job_id: UUID
    user_id: UUID
    body: str
    comment_type: CommentType
    created_at: datetime


@dataclass(frozen=True)
class Dispute:
    """Snapshot of a dispute.  Open until ``resolved_at`` is set."""
    id: UUID
    job_id: UUID
    user_id: UUID
    initiating_comment_id: UUID
    created_at: datetime
    deadline_at: datetime
    resolving_comment_id: UUID | None = None
    resolved_at: datetime | None = None
    sequence: int = 1

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
