"""
Lifecycle Event Taxonomy

Event naming convention: deal.{action}, action in past tense.
"""

from enum import Enum
from typing import Dict


class LifecycleEventType(str, Enum):
    """Deal lifecycle events handed to the delivery sink."""
    STAGE_CHANGED = "deal.stage_changed"
    STAGE_COMPLETED = "deal.stage_completed"
    STAGE_ROLLBACK = "deal.stage_rollback"
    STATUS_CHANGED = "deal.status_changed"
    VALIDATION_FAILED = "deal.validation_failed"
    TIMELINE_UPDATED = "deal.timeline_updated"
    PARTICIPANT_ADDED = "deal.participant_added"
    PARTICIPANT_UPDATED = "deal.participant_updated"
    PARTICIPANT_REMOVED = "deal.participant_removed"
    DOCUMENT_ADDED = "deal.document_added"
    DOCUMENT_APPROVED = "deal.document_approved"
    DOCUMENT_REJECTED = "deal.document_rejected"
    DOCUMENT_UPDATED = "deal.document_updated"
    TERMS_UPDATED = "deal.terms_updated"
    LOGISTICS_UPDATED = "deal.logistics_updated"


ALL_EVENT_TYPES: Dict[str, str] = {e.value: e.name for e in LifecycleEventType}


def validate_event_type(event_type: str) -> bool:
    """Check if event type is valid."""
    return event_type in ALL_EVENT_TYPES
