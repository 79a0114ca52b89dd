"""
Dealflow Lifecycle Events

Taxonomy, event model, notifier and aggregation for deal lifecycle events.

Usage:
    from dealflow.events import LifecycleEventNotifier, LifecycleEventType

    notifier = LifecycleEventNotifier(sink=deliver)
    await notifier.emit(
        LifecycleEventType.STATUS_CHANGED,
        deal.id,
        actor_id,
        {"previous_status": "Active", "new_status": "On Hold"},
        recipients_for(deal),
    )
"""

from .taxonomy import (
    LifecycleEventType,
    validate_event_type,
    ALL_EVENT_TYPES,
)
from .models import LifecycleEvent
from .notifier import (
    EventSink,
    InMemoryEventSink,
    LifecycleEventNotifier,
    recipients_for,
    BASE_RECIPIENT_ROLES,
    STAGE_RECIPIENT_ROLES,
)
from .aggregator import EventAggregator

__all__ = [
    # Taxonomy
    "LifecycleEventType",
    "validate_event_type",
    "ALL_EVENT_TYPES",
    # Models
    "LifecycleEvent",
    # Notifier
    "EventSink",
    "InMemoryEventSink",
    "LifecycleEventNotifier",
    "recipients_for",
    "BASE_RECIPIENT_ROLES",
    "STAGE_RECIPIENT_ROLES",
    # Aggregation
    "EventAggregator",
]
