"""
Deal Timeline

Append-only, size-bounded audit ledger with filters and summaries.
"""

from .ledger import (
    TimelineLedger,
    TimelineFilter,
    TimelineSummary,
    TimelineView,
    ParticipantAction,
    DocumentAction,
    LogisticsComponent,
    is_committed_stage_change,
    last_activity,
)

__all__ = [
    "TimelineLedger",
    "TimelineFilter",
    "TimelineSummary",
    "TimelineView",
    "ParticipantAction",
    "DocumentAction",
    "LogisticsComponent",
    "is_committed_stage_change",
    "last_activity",
]
