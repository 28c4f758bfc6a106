"""Disputes on jobs and the comment audit trail."""

from market_modules.disputes.models import ArbitrationOutcome, Comment, CommentType, Dispute
from market_modules.disputes.service import DisputeService

__all__ = [
    "ArbitrationOutcome",
    "Comment",
    "CommentType",
    "Dispute",
    "DisputeService",
]
