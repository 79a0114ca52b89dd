"""
Deal Transaction

Scopes one transition or mutation to a working copy of the deal.

Changes are made on the copy and staged events are collected alongside.
On a clean exit the copy's state replaces the caller's deal; on any
exception the copy and the staged events are discarded. Events are only
handed to the notifier by the caller after commit.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..events import LifecycleEvent, LifecycleEventNotifier, LifecycleEventType
from ..models import Deal
from ..utils import maybe_await

logger = logging.getLogger(__name__)

SaveCallback = Callable[[Deal], Union[Optional[Deal], Awaitable[Optional[Deal]]]]

# Fields replaced on the caller's deal at commit
MUTABLE_FIELDS = (
    "stage",
    "status",
    "basic_info",
    "terms",
    "participants",
    "documents",
    "logistics",
    "timeline",
    "metadata",
    "updated_at",
)


class DealTransaction:
    """
    Working copy of a deal plus the events its changes produce.

    Usage:
        async with DealTransaction(deal, notifier) as txn:
            txn.working.stage = DealStage.DISCUSSION
            txn.emit(LifecycleEventType.STAGE_CHANGED, actor_id, {...})
            await txn.persist(save)
        await notifier.publish_batch(txn.emitted_events)
    """

    def __init__(self, deal: Deal, notifier: LifecycleEventNotifier):
        self.deal = deal
        self.notifier = notifier
        self.working: Optional[Deal] = None
        self.committed = False
        self._events: List[LifecycleEvent] = []

    async def __aenter__(self) -> "DealTransaction":
        self.working = self.deal.model_copy(deep=True)
        self._events = []
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self._commit()
        else:
            # Failure - working copy and staged events are dropped
            logger.debug(f"Discarding working copy of deal {self.deal.id}: {exc_val!r}")
            self.working = None
            self._events = []
        return False

    def emit(
        self,
        event_type: LifecycleEventType,
        actor_id: str,
        payload: Dict[str, Any],
        recipients: Optional[List[str]] = None
    ) -> LifecycleEvent:
        """Stage an event for publication after commit."""
        event = self.notifier.build(event_type, self.deal.id, actor_id, payload, recipients)
        self._events.append(event)
        return event

    async def persist(self, save: Optional[Callable[[Deal], Any]]):
        """Hand the working copy to the persistence callback, if any."""
        if save is None:
            return
        saved = await maybe_await(save(self.working))
        if isinstance(saved, Deal):
            self.working = saved

    def _commit(self):
        for name in MUTABLE_FIELDS:
            setattr(self.deal, name, getattr(self.working, name))
        self.committed = True
        logger.debug(f"Committed working copy of deal {self.deal.id}")

    @property
    def emitted_events(self) -> List[LifecycleEvent]:
        """Events staged in this transaction."""
        return self._events.copy()
