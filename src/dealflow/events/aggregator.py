"""
Event Aggregator

Buffers lifecycle events per deal and collapses bursts of the same event
type by the same actor into one aggregated event. Flushing is explicit;
nothing runs in the background.
"""

from typing import Dict, List, Tuple

from .models import LifecycleEvent


class EventAggregator:
    """
    Usage:
        aggregator = EventAggregator()
        for event in events:
            aggregator.add(event)
        digest = aggregator.flush(deal_id)
    """

    def __init__(self):
        self._buffer: Dict[str, List[LifecycleEvent]] = {}

    def add(self, event: LifecycleEvent) -> List[LifecycleEvent]:
        """Buffer an event; returns the current merged view for its deal."""
        self._buffer.setdefault(event.deal_id, []).append(event)
        return self.merged(event.deal_id)

    def merged(self, deal_id: str) -> List[LifecycleEvent]:
        groups: Dict[Tuple[str, str], List[LifecycleEvent]] = {}
        for event in self._buffer.get(deal_id, []):
            groups.setdefault((event.event_type, event.actor_id), []).append(event)
        return [
            group[0] if len(group) == 1 else self._aggregate(group)
            for group in groups.values()
        ]

    def flush(self, deal_id: str) -> List[LifecycleEvent]:
        merged = self.merged(deal_id)
        self._buffer.pop(deal_id, None)
        return merged

    def pending(self, deal_id: str) -> int:
        return len(self._buffer.get(deal_id, []))

    @staticmethod
    def _aggregate(events: List[LifecycleEvent]) -> LifecycleEvent:
        base = events[0]
        recipients: Dict[str, None] = {}
        for event in events:
            recipients.update(dict.fromkeys(event.recipients))

        return base.model_copy(update={
            "recipients": list(recipients),
            "event_data": {
                **base.event_data,
                "aggregated": True,
                "count": len(events),
                "events": [
                    {
                        "id": str(e.id),
                        "created_at": e.created_at.isoformat(),
                        "event_data": e.event_data,
                    }
                    for e in events
                ],
            },
        })
