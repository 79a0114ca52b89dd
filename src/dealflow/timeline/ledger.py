"""
Timeline Ledger

Append-only, size-bounded audit trail attached to each deal.

The ledger is the only place history is recorded. Entries are appended
in place on whatever deal object is handed in; the transition engines
hand in their transaction's working copy, so nothing reaches the
caller's deal until commit.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config import config
from ..models import (
    SYSTEM_ACTOR,
    Deal,
    DealStage,
    DealStatus,
    Document,
    Participant,
    TimelineEntry,
    TimelineEventType,
)
from ..observability import record_counter
from ..utils import as_utc, utcnow

logger = logging.getLogger(__name__)


class ParticipantAction(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    UPDATED = "UPDATED"


class DocumentAction(str, Enum):
    UPLOADED = "UPLOADED"
    UPDATED = "UPDATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESUBMITTED = "RESUBMITTED"


class LogisticsComponent(str, Enum):
    TRANSPORTATION = "transportation"
    INSPECTION = "inspection"
    INSURANCE = "insurance"


@dataclass
class TimelineFilter:
    """Optional criteria; all given criteria must match. Dates are inclusive."""
    type: Optional[TimelineEventType] = None
    stage: Optional[DealStage] = None
    actor: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def matches(self, entry: TimelineEntry) -> bool:
        if self.type is not None and entry.type != self.type:
            return False
        if self.stage is not None and entry.stage != self.stage:
            return False
        if self.actor is not None and entry.actor != self.actor:
            return False
        date = as_utc(entry.date)
        if self.start is not None and date < as_utc(self.start):
            return False
        if self.end is not None and date > as_utc(self.end):
            return False
        return True


@dataclass
class TimelineSummary:
    total_entries: int
    entries_by_type: Dict[TimelineEventType, int] = field(default_factory=dict)
    entries_by_stage: Dict[DealStage, int] = field(default_factory=dict)
    # Seconds, only for stages the deal has spent time in
    average_time_in_stage: Dict[DealStage, float] = field(default_factory=dict)
    last_modified: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "entries_by_type": {k.value: v for k, v in self.entries_by_type.items()},
            "entries_by_stage": {k.value: v for k, v in self.entries_by_stage.items()},
            "average_time_in_stage": {k.value: v for k, v in self.average_time_in_stage.items()},
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
        }


@dataclass
class TimelineView:
    entries: List[TimelineEntry]
    summary: TimelineSummary


def is_committed_stage_change(entry: TimelineEntry) -> bool:
    return (
        entry.type == TimelineEventType.STAGE_CHANGE
        and entry.metadata.get("new_stage") is not None
        and not entry.metadata.get("failed", False)
    )


def last_activity(deal: Deal) -> datetime:
    """Latest timeline date, or the creation date of a deal with no entries."""
    return max((as_utc(e.date) for e in deal.timeline), default=as_utc(deal.created_at))


class TimelineLedger:
    """
    Appends, prunes, filters and summarizes deal timelines.

    Usage:
        ledger = TimelineLedger(max_entries=100)
        ledger.add_stage_change_entry(deal, DealStage.INITIATION, DealStage.DISCUSSION, "user-1")
        summary = ledger.summarize(deal)
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        if max_entries is None:
            max_entries = config.MAX_TIMELINE_ENTRIES
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self.max_entries = max_entries
        self._clock = clock or utcnow

    def _build_entry(
        self,
        deal: Deal,
        type: TimelineEventType,
        description: str,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return TimelineEntry(
            type=type,
            stage=deal.stage,
            status=deal.status,
            date=self._clock(),
            description=description,
            actor=actor_id,
            metadata={
                **(metadata or {}),
                "deal_id": deal.id,
                "deal_type": deal.type.value,
            },
        )

    def append(
        self,
        deal: Deal,
        type: TimelineEventType,
        description: str,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        """Append an entry, stamped with the deal's current stage and status."""
        entry = self._build_entry(deal, type, description, actor_id, metadata)
        deal.timeline.append(entry)
        deal.updated_at = entry.date
        self._prune(deal)

        logger.debug(
            "Timeline entry appended: deal_id=%s type=%s actor=%s",
            deal.id, type.value, actor_id
        )
        return entry

    def _prune(self, deal: Deal):
        excess = len(deal.timeline) - self.max_entries
        if excess > 0:
            del deal.timeline[:excess]
            record_counter("timeline_entries_pruned_total", excess)
            logger.debug(f"Pruned {excess} timeline entries for deal {deal.id}")

    def build_failure_entry(
        self,
        deal: Deal,
        type: TimelineEventType,
        description: str,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        """Describe a rejected change without appending it."""
        return self._build_entry(
            deal, type, description, actor_id, {**(metadata or {}), "failed": True}
        )

    # -- specialised entries ------------------------------------------------

    def add_stage_change_entry(
        self,
        deal: Deal,
        previous_stage: DealStage,
        new_stage: DealStage,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        metadata = metadata or {}
        return self.append(
            deal,
            TimelineEventType.STAGE_CHANGE,
            f"Deal stage changed from {previous_stage.value} to {new_stage.value}",
            actor_id,
            {
                **metadata,
                "previous_stage": previous_stage,
                "new_stage": new_stage,
                "automatic": metadata.get("automatic", False),
            }
        )

    def add_status_change_entry(
        self,
        deal: Deal,
        previous_status: DealStatus,
        new_status: DealStatus,
        actor_id: str,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        metadata = metadata or {}
        description = f"Deal status changed from {previous_status.value} to {new_status.value}"
        if reason:
            description += f": {reason}"
        return self.append(
            deal,
            TimelineEventType.STATUS_CHANGE,
            description,
            actor_id,
            {
                **metadata,
                "previous_status": previous_status,
                "new_status": new_status,
                "reason": reason,
                "automatic": metadata.get("automatic", False),
            }
        )

    def add_participant_entry(
        self,
        deal: Deal,
        action: ParticipantAction,
        participant: Participant,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return self.append(
            deal,
            TimelineEventType.PARTICIPANT_CHANGE,
            f"Participant {participant.user_id} ({participant.role.value}) was {action.value.lower()}",
            actor_id,
            {
                **(metadata or {}),
                "action": action.value,
                "participant_id": participant.id,
                "participant_role": participant.role.value,
            }
        )

    def add_document_entry(
        self,
        deal: Deal,
        action: DocumentAction,
        document: Document,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        name = document.name or document.type
        return self.append(
            deal,
            TimelineEventType.DOCUMENT_CHANGE,
            f'Document "{name}" was {action.value.lower()}',
            actor_id,
            {
                **(metadata or {}),
                "action": action.value,
                "document_id": document.id,
                "document_type": document.type,
                "document_version": document.version,
            }
        )

    def add_terms_change_entry(
        self,
        deal: Deal,
        changed_fields: List[str],
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return self.append(
            deal,
            TimelineEventType.TERMS_CHANGE,
            f"Deal terms updated: {', '.join(changed_fields)}",
            actor_id,
            {**(metadata or {}), "changed_fields": list(changed_fields)}
        )

    def add_logistics_change_entry(
        self,
        deal: Deal,
        component: LogisticsComponent,
        changed_fields: List[str],
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return self.append(
            deal,
            TimelineEventType.LOGISTICS_CHANGE,
            f"{component.value.capitalize()} details updated: {', '.join(changed_fields)}",
            actor_id,
            {
                **(metadata or {}),
                "component": component.value,
                "changed_fields": list(changed_fields),
            }
        )

    def add_comment_entry(
        self,
        deal: Deal,
        comment: str,
        actor_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return self.append(deal, TimelineEventType.COMMENT, comment, actor_id, metadata)

    def add_system_entry(
        self,
        deal: Deal,
        description: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> TimelineEntry:
        return self.append(
            deal,
            TimelineEventType.SYSTEM,
            description,
            SYSTEM_ACTOR,
            {**(metadata or {}), "automatic": True}
        )

    # -- reads --------------------------------------------------------------

    def entries_by_type(self, deal: Deal, type: TimelineEventType) -> List[TimelineEntry]:
        return [e for e in deal.timeline if e.type == type]

    def entries_for_stage(self, deal: Deal, stage: DealStage) -> List[TimelineEntry]:
        return [e for e in deal.timeline if e.stage == stage]

    def entries_by_actor(self, deal: Deal, actor_id: str) -> List[TimelineEntry]:
        return [e for e in deal.timeline if e.actor == actor_id]

    def entries_in_range(self, deal: Deal, start: datetime, end: datetime) -> List[TimelineEntry]:
        return self.filter(deal, TimelineFilter(start=start, end=end))

    def filter(self, deal: Deal, criteria: Optional[TimelineFilter] = None) -> List[TimelineEntry]:
        if criteria is None:
            return list(deal.timeline)
        return [e for e in deal.timeline if criteria.matches(e)]

    def find_latest(
        self,
        deal: Deal,
        predicate: Callable[[TimelineEntry], bool]
    ) -> Optional[TimelineEntry]:
        """Most recent entry matching predicate (single reverse scan)."""
        for entry in reversed(deal.timeline):
            if predicate(entry):
                return entry
        return None

    def summarize(self, deal: Deal) -> TimelineSummary:
        entries_by_type = Counter(e.type for e in deal.timeline)
        entries_by_stage = Counter(e.stage for e in deal.timeline)
        last_modified = deal.timeline[-1].date if deal.timeline else deal.created_at

        return TimelineSummary(
            total_entries=len(deal.timeline),
            entries_by_type=dict(entries_by_type),
            entries_by_stage=dict(entries_by_stage),
            average_time_in_stage=self._average_time_in_stages(deal),
            last_modified=last_modified,
        )

    def _average_time_in_stages(self, deal: Deal) -> Dict[DealStage, float]:
        changes = sorted(
            (e for e in deal.timeline if is_committed_stage_change(e)),
            key=lambda e: as_utc(e.date)
        )

        durations: Dict[DealStage, List[float]] = {}
        boundary = as_utc(deal.created_at)
        current = DealStage.INITIATION
        if changes and changes[0].metadata.get("previous_stage") is not None:
            current = DealStage(changes[0].metadata["previous_stage"])

        for change in changes:
            date = as_utc(change.date)
            durations.setdefault(current, []).append((date - boundary).total_seconds())
            boundary = date
            current = DealStage(change.metadata["new_stage"])

        # Time since the last boundary belongs to the stage the deal is in now
        durations.setdefault(deal.stage, []).append(
            (as_utc(self._clock()) - boundary).total_seconds()
        )

        return {stage: sum(times) / len(times) for stage, times in durations.items()}
