"""
Lifecycle Event Notifier

Fan-out boundary between the engines and external delivery.

Emission is fire-and-forget from the engines' point of view: the sink
(any sync or async callable taking a LifecycleEvent) owns transport and
retries, and a failing sink is logged, never raised.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..models import Deal, DealStage, ParticipantRole
from ..observability import record_counter
from ..utils import maybe_await
from .models import LifecycleEvent
from .taxonomy import LifecycleEventType, validate_event_type

logger = logging.getLogger(__name__)

EventSink = Callable[[LifecycleEvent], Union[None, Awaitable[None]]]

BASE_RECIPIENT_ROLES: Tuple[ParticipantRole, ...] = (
    ParticipantRole.SELLER,
    ParticipantRole.BUYER,
    ParticipantRole.AGENT,
)

# Extra roles notified when a deal enters the stage
STAGE_RECIPIENT_ROLES: Dict[DealStage, Tuple[ParticipantRole, ...]] = {
    DealStage.EVALUATION: (ParticipantRole.INSPECTOR, ParticipantRole.VETERINARIAN),
    DealStage.CLOSING: (ParticipantRole.TRANSPORTER,),
}


def recipients_for(deal: Deal, stage: Optional[DealStage] = None) -> List[str]:
    """
    User ids of the deal's active participants.

    With a stage, only base roles plus the roles relevant to that stage.
    """
    roles = None
    if stage is not None:
        roles = set(BASE_RECIPIENT_ROLES) | set(STAGE_RECIPIENT_ROLES.get(stage, ()))

    recipients: Dict[str, None] = {}
    for participant in deal.active_participants():
        if roles is None or participant.role in roles:
            recipients[participant.user_id] = None
    return list(recipients)


class InMemoryEventSink:
    """Sink that keeps delivered events in a list."""

    def __init__(self):
        self.events: List[LifecycleEvent] = []

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: LifecycleEventType) -> List[LifecycleEvent]:
        return [e for e in self.events if e.event_type == event_type.value]

    def clear(self):
        self.events.clear()


class LifecycleEventNotifier:
    """
    Builds lifecycle events and hands them to the sink.

    Usage:
        notifier = LifecycleEventNotifier(sink=websocket_gateway.send)
        await notifier.emit(
            LifecycleEventType.STAGE_CHANGED,
            deal.id,
            actor_id,
            {"previous_stage": "Initiation", "new_stage": "Discussion"},
            recipients_for(deal, DealStage.DISCUSSION),
        )
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self._sink = sink

    def build(
        self,
        event_type: LifecycleEventType,
        deal_id: str,
        actor: str,
        payload: Dict[str, Any],
        recipients: Optional[List[str]] = None
    ) -> LifecycleEvent:
        return LifecycleEvent.create(
            event_type=event_type.value,
            deal_id=deal_id,
            actor_id=actor,
            event_data=payload,
            recipients=recipients,
        )

    async def emit(
        self,
        event_type: LifecycleEventType,
        deal_id: str,
        actor: str,
        payload: Dict[str, Any],
        recipients: Optional[List[str]] = None
    ) -> LifecycleEvent:
        event = self.build(event_type, deal_id, actor, payload, recipients)
        await self.publish(event)
        return event

    async def publish(self, event: LifecycleEvent) -> None:
        if not validate_event_type(event.event_type):
            logger.warning(f"Unknown event type: {event.event_type} - publishing anyway")

        if self._sink is None:
            logger.debug(f"No event sink configured, dropping {event.event_type} for deal {event.deal_id}")
            return

        try:
            await maybe_await(self._sink(event))
        except Exception as e:
            logger.warning(f"Failed to deliver {event.event_type} for deal {event.deal_id}: {e}")
            return

        record_counter("lifecycle_events_emitted_total", attributes={"event_type": event.event_type})
        logger.debug(
            "Emitted lifecycle event: type=%s deal_id=%s actor=%s recipients=%d",
            event.event_type, event.deal_id, event.actor_id, len(event.recipients)
        )

    async def publish_batch(self, events: Iterable[LifecycleEvent]) -> None:
        for event in events:
            await self.publish(event)
