"""
Deal Lifecycle Service

Entry point for callers: stage and status transitions, validation,
timeline access and deal mutations, wired to one set of engines.

Reads take the deal's read lock, everything that changes a deal takes
its write lock and runs on a transaction's working copy.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .deals import (
    DealChange,
    DealLockRegistry,
    DealMutator,
    DealTransaction,
    RequirementValidator,
    SaveCallback,
    StageTransitionEngine,
    StageTransitionResult,
    StatusTransitionEngine,
    StatusTransitionResult,
    ValidationResult,
    ValidationSummary,
    get_lock_registry,
)
from .errors import NotFoundError
from .events import EventSink, LifecycleEventNotifier, LifecycleEventType, recipients_for
from .models import (
    SYSTEM_ACTOR,
    Deal,
    DealStage,
    DealStatus,
    Document,
    Participant,
    ParticipantStatus,
    TimelineEntry,
    TimelineEventType,
)
from .observability import correlation_scope, traced
from .timeline import LogisticsComponent, TimelineFilter, TimelineLedger, TimelineView
from .utils import maybe_await, utcnow

logger = logging.getLogger(__name__)

SubjectLookup = Callable[[str], Union[bool, Awaitable[bool]]]


class DealLifecycleService:
    """
    Deal lifecycle operations.

    Usage:
        service = DealLifecycleService(save=repository.save, sink=gateway.send)
        result = await service.attempt_stage_transition(deal, DealStage.DISCUSSION, user_id)
        if not result.success:
            print(result.validation_errors)
    """

    def __init__(
        self,
        save: Optional[SaveCallback] = None,
        sink: Optional[EventSink] = None,
        subject_exists: Optional[SubjectLookup] = None,
        validator: Optional[RequirementValidator] = None,
        locks: Optional[DealLockRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_timeline_entries: Optional[int] = None,
        min_hold_hours: Optional[float] = None,
        timeout: Optional[float] = None
    ):
        clock = clock or utcnow
        self.notifier = LifecycleEventNotifier(sink)
        self.ledger = TimelineLedger(max_entries=max_timeline_entries, clock=clock)
        self.validator = validator or RequirementValidator(clock=clock)
        self.locks = locks or get_lock_registry()
        self.status_engine = StatusTransitionEngine(
            ledger=self.ledger,
            notifier=self.notifier,
            locks=self.locks,
            save=save,
            clock=clock,
            min_hold_hours=min_hold_hours,
        )
        self.stage_engine = StageTransitionEngine(
            validator=self.validator,
            ledger=self.ledger,
            notifier=self.notifier,
            status_engine=self.status_engine,
            locks=self.locks,
            save=save,
        )
        self.mutator = DealMutator(self.ledger)
        self.timeout = timeout
        self._save = save
        self._subject_exists = subject_exists

    async def _ensure_subject(self, deal: Deal):
        """Raise NotFoundError when the deal's subject is unknown to the lookup."""
        horse_id = deal.basic_info.horse_id
        if self._subject_exists is None or not horse_id:
            return
        if not await maybe_await(self._subject_exists(horse_id)):
            logger.warning(f"Deal {deal.id} references unknown subject {horse_id}")
            raise NotFoundError("Subject", horse_id)

    # -- transitions --------------------------------------------------------

    @traced("dealflow.attempt_stage_transition")
    async def attempt_stage_transition(
        self,
        deal: Deal,
        target_stage: DealStage,
        actor_id: str,
        timeout: Optional[float] = None
    ) -> StageTransitionResult:
        with correlation_scope(deal.id):
            await self._ensure_subject(deal)
            return await self.stage_engine.attempt_transition(
                deal, target_stage, actor_id, timeout=self.timeout if timeout is None else timeout
            )

    @traced("dealflow.attempt_status_transition")
    async def attempt_status_transition(
        self,
        deal: Deal,
        target_status: DealStatus,
        actor_id: str,
        reason: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> StatusTransitionResult:
        with correlation_scope(deal.id):
            await self._ensure_subject(deal)
            return await self.status_engine.attempt_transition(
                deal, target_status, actor_id, reason, timeout=self.timeout if timeout is None else timeout
            )

    def get_allowed_transitions(self, deal: Deal) -> List[DealStage]:
        return self.stage_engine.get_allowed_transitions(deal)

    def get_allowed_statuses(self, deal: Deal) -> List[DealStatus]:
        return self.status_engine.get_allowed_statuses(deal)

    # -- validation ---------------------------------------------------------

    async def validate_deal(self, deal: Deal) -> ValidationResult:
        """Full health check of the deal in its current stage."""
        async with self.locks.read(deal.id):
            return await self.validator.validate(deal)

    async def validate_stage_requirements(self, deal: Deal, stage: DealStage) -> ValidationResult:
        """Only the rules of the given stage."""
        async with self.locks.read(deal.id):
            return await self.validator.validate_stage(deal, stage)

    async def get_validation_summary(self, deal: Deal) -> ValidationSummary:
        async with self.locks.read(deal.id):
            return await self.validator.summarize(deal)

    async def get_remaining_requirements(self, deal: Deal) -> List[str]:
        """Unmet requirements of the deal's current stage."""
        result = await self.validate_stage_requirements(deal, deal.stage)
        return result.missing_requirements

    # -- timeline -----------------------------------------------------------

    async def _record(
        self,
        deal: Deal,
        actor_id: str,
        build: Callable[[Deal], TimelineEntry]
    ) -> TimelineEntry:
        with correlation_scope(deal.id):
            async with self.locks.write(deal.id):
                async with DealTransaction(deal, self.notifier) as txn:
                    entry = build(txn.working)
                    txn.emit(
                        LifecycleEventType.TIMELINE_UPDATED,
                        actor_id,
                        {"entry_id": entry.id, "type": entry.type.value, "description": entry.description},
                        recipients_for(txn.working),
                    )
                    await txn.persist(self._save)
            await self.notifier.publish_batch(txn.emitted_events)
        return entry

    async def append_timeline_entry(
        self,
        deal: Deal,
        type: TimelineEventType,
        description: str,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return await self._record(
            deal, actor_id,
            lambda d: self.ledger.append(d, type, description, actor_id, metadata)
        )

    async def add_comment_entry(
        self,
        deal: Deal,
        comment: str,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return await self.append_timeline_entry(
            deal, TimelineEventType.COMMENT, comment, actor_id, metadata
        )

    async def add_system_entry(
        self,
        deal: Deal,
        description: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return await self._record(
            deal, SYSTEM_ACTOR,
            lambda d: self.ledger.add_system_entry(d, description, metadata)
        )

    async def get_timeline(
        self,
        deal: Deal,
        filter: Optional[TimelineFilter] = None
    ) -> TimelineView:
        async with self.locks.read(deal.id):
            return TimelineView(
                entries=self.ledger.filter(deal, filter),
                summary=self.ledger.summarize(deal),
            )

    # -- mutations ----------------------------------------------------------

    async def _mutate(
        self,
        deal: Deal,
        actor_id: str,
        apply: Callable[[Deal], DealChange]
    ) -> DealChange:
        with correlation_scope(deal.id):
            async with self.locks.write(deal.id):
                async with DealTransaction(deal, self.notifier) as txn:
                    change = apply(txn.working)
                    if change.changed:
                        txn.emit(change.event_type, actor_id, change.payload, recipients_for(txn.working))
                        await txn.persist(self._save)
            await self.notifier.publish_batch(txn.emitted_events)
        return change

    async def add_participant(self, deal: Deal, participant: Participant, actor_id: str) -> DealChange:
        return await self._mutate(
            deal, actor_id, lambda d: self.mutator.add_participant(d, participant, actor_id)
        )

    async def remove_participant(
        self,
        deal: Deal,
        participant_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        force: bool = False
    ) -> DealChange:
        return await self._mutate(
            deal, actor_id,
            lambda d: self.mutator.remove_participant(d, participant_id, actor_id, reason, force)
        )

    async def update_participant_status(
        self,
        deal: Deal,
        participant_id: str,
        status: ParticipantStatus,
        actor_id: str,
        reason: Optional[str] = None,
        force: bool = False
    ) -> DealChange:
        return await self._mutate(
            deal, actor_id,
            lambda d: self.mutator.update_participant_status(
                d, participant_id, status, actor_id, reason, force
            )
        )

    async def add_document(self, deal: Deal, document: Document, actor_id: str) -> DealChange:
        return await self._mutate(
            deal, actor_id, lambda d: self.mutator.add_document(d, document, actor_id)
        )

    async def approve_document(self, deal: Deal, document_id: str, actor_id: str) -> DealChange:
        return await self._mutate(
            deal, actor_id, lambda d: self.mutator.approve_document(d, document_id, actor_id)
        )

    async def reject_document(
        self,
        deal: Deal,
        document_id: str,
        actor_id: str,
        reason: str
    ) -> DealChange:
        return await self._mutate(
            deal, actor_id, lambda d: self.mutator.reject_document(d, document_id, actor_id, reason)
        )

    async def resubmit_document(
        self,
        deal: Deal,
        document_id: str,
        actor_id: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> DealChange:
        return await self._mutate(
            deal, actor_id,
            lambda d: self.mutator.resubmit_document(d, document_id, actor_id, name, metadata)
        )

    async def update_terms(self, deal: Deal, changes: Dict[str, Any], actor_id: str) -> DealChange:
        return await self._mutate(
            deal, actor_id, lambda d: self.mutator.update_terms(d, changes, actor_id)
        )

    async def update_logistics(
        self,
        deal: Deal,
        component: LogisticsComponent,
        changes: Dict[str, Any],
        actor_id: str
    ) -> DealChange:
        return await self._mutate(
            deal, actor_id,
            lambda d: self.mutator.update_logistics(d, component, changes, actor_id)
        )


# Singleton instance
_lifecycle_service: Optional[DealLifecycleService] = None


async def get_lifecycle_service() -> DealLifecycleService:
    """Get lifecycle service instance."""
    global _lifecycle_service
    if _lifecycle_service is None:
        _lifecycle_service = DealLifecycleService()
    return _lifecycle_service
