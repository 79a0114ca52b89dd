"""
Deal Status Engine

Manages operational status transitions (Active, On Hold, Pending,
Cancelled, Completed) independently of the business stage.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..config import config
from ..errors import (
    DealflowError,
    ErrorCode,
    InvalidTransitionError,
    StatusRequirementError,
    TransitionTimeoutError,
)
from ..events import LifecycleEventNotifier, LifecycleEventType, recipients_for
from ..models import (
    Deal,
    DealStage,
    DealStatus,
    TimelineEntry,
    TimelineEventType,
)
from ..observability import create_span, record_counter, record_histogram
from ..timeline import TimelineLedger
from ..utils import as_utc, utcnow
from .locks import DealLockRegistry, get_lock_registry
from .requirements import FINAL_DOCUMENTS
from .transaction import DealTransaction, SaveCallback

logger = logging.getLogger(__name__)


# Valid status transitions
STATUS_TRANSITIONS: Dict[DealStatus, List[DealStatus]] = {
    DealStatus.ACTIVE: [DealStatus.ON_HOLD, DealStatus.CANCELLED, DealStatus.COMPLETED],
    DealStatus.ON_HOLD: [DealStatus.ACTIVE, DealStatus.CANCELLED],
    DealStatus.PENDING: [DealStatus.ACTIVE, DealStatus.CANCELLED],
    DealStatus.CANCELLED: [],  # Terminal state
    DealStatus.COMPLETED: [],  # Terminal state
}

TERMINAL_STATUSES: FrozenSet[DealStatus] = frozenset(
    s for s, targets in STATUS_TRANSITIONS.items() if not targets
)

_OPEN_STATUSES = [DealStatus.ACTIVE, DealStatus.ON_HOLD, DealStatus.PENDING, DealStatus.CANCELLED]

# Statuses a deal may hold while in each stage
STAGE_STATUS_COMPATIBILITY: Dict[DealStage, List[DealStatus]] = {
    DealStage.INITIATION: _OPEN_STATUSES,
    DealStage.DISCUSSION: _OPEN_STATUSES,
    DealStage.EVALUATION: _OPEN_STATUSES,
    DealStage.DOCUMENTATION: _OPEN_STATUSES,
    DealStage.CLOSING: _OPEN_STATUSES,
    DealStage.COMPLETE: [DealStatus.COMPLETED],
}

# Deal metadata key holding the start of the current hold (ISO-8601)
HOLD_STARTED_KEY = "on_hold_since"

REASON_REQUIRED: Dict[DealStatus, str] = {
    DealStatus.ON_HOLD: "Reason required for putting deal on hold",
    DealStatus.CANCELLED: "Reason required for cancellation",
}


def required_documents_for_status(status: DealStatus) -> List[str]:
    """Document types a deal needs (approved) to hold the status."""
    if status == DealStatus.COMPLETED:
        return list(FINAL_DOCUMENTS)
    if status == DealStatus.ACTIVE:
        return ["terms_agreement", "participant_confirmation"]
    return []


def is_hold_entry(entry: TimelineEntry) -> bool:
    return (
        entry.type == TimelineEventType.STATUS_CHANGE
        and entry.metadata.get("new_status") == DealStatus.ON_HOLD
        and not entry.metadata.get("failed", False)
    )


@dataclass
class StatusTransitionResult:
    """Outcome of a status transition attempt."""
    success: bool
    new_status: DealStatus
    timeline_entry: TimelineEntry
    validation_errors: List[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None


class StatusTransitionEngine:
    """
    Applies status transitions to deals.

    A rejected transition returns a result carrying an unappended,
    failed timeline entry; the deal is left untouched.
    """

    def __init__(
        self,
        ledger: Optional[TimelineLedger] = None,
        notifier: Optional[LifecycleEventNotifier] = None,
        locks: Optional[DealLockRegistry] = None,
        save: Optional[SaveCallback] = None,
        clock: Optional[Callable[[], datetime]] = None,
        min_hold_hours: Optional[float] = None
    ):
        self._clock = clock or utcnow
        self.ledger = ledger or TimelineLedger(clock=self._clock)
        self.notifier = notifier or LifecycleEventNotifier()
        self.locks = locks or get_lock_registry()
        self._save = save
        if min_hold_hours is None:
            min_hold_hours = config.MIN_HOLD_HOURS
        self.min_hold = timedelta(hours=min_hold_hours)

    def get_allowed_statuses(self, deal: Deal) -> List[DealStatus]:
        """Statuses reachable from the deal's current status within its stage."""
        compatible = STAGE_STATUS_COMPATIBILITY.get(deal.stage, [])
        return [s for s in STATUS_TRANSITIONS.get(deal.status, []) if s in compatible]

    def check(
        self,
        deal: Deal,
        target_status: DealStatus,
        reason: Optional[str] = None,
        stage: Optional[DealStage] = None
    ):
        """
        Raise if the deal may not move to target_status.

        Args:
            deal: Deal in its current state
            target_status: Requested status
            reason: Reason supplied with the request
            stage: Stage the status must be compatible with (defaults to
                the deal's current stage; the stage engine passes the stage
                being entered)

        Raises:
            InvalidTransitionError: Not an edge of the table, or not
                allowed in the stage
            StatusRequirementError: A status-specific check failed
        """
        allowed = STATUS_TRANSITIONS.get(deal.status, [])
        if target_status not in allowed:
            raise InvalidTransitionError(
                f"Invalid status transition from {deal.status.value} to {target_status.value}",
                code=ErrorCode.INVALID_STATUS_TRANSITION,
                allowed=[s.value for s in allowed],
            )

        stage = stage or deal.stage
        compatible = STAGE_STATUS_COMPATIBILITY.get(stage, [])
        if target_status not in compatible:
            raise InvalidTransitionError(
                f"Status {target_status.value} not allowed in {stage.value} stage",
                code=ErrorCode.STATUS_NOT_ALLOWED_FOR_STAGE,
                allowed=[s.value for s in compatible],
            )

        errors = self.requirement_errors(deal, target_status, reason)
        if errors:
            raise StatusRequirementError(errors[0], errors)

    def requirement_errors(
        self,
        deal: Deal,
        target_status: DealStatus,
        reason: Optional[str] = None
    ) -> List[str]:
        errors = []

        if target_status == DealStatus.COMPLETED:
            missing = [t for t in FINAL_DOCUMENTS if not deal.has_approved_document(t)]
            if missing:
                errors.append(
                    f"Missing required documents for completion: {', '.join(missing)}"
                )

        if target_status in REASON_REQUIRED and not (reason and reason.strip()):
            errors.append(REASON_REQUIRED[target_status])

        if target_status == DealStatus.ACTIVE and deal.status == DealStatus.ON_HOLD:
            held_since = self.hold_started_at(deal)
            if held_since is not None and as_utc(self._clock()) - held_since < self.min_hold:
                errors.append("Minimum hold period not met")

        return errors

    def hold_started_at(self, deal: Deal) -> Optional[datetime]:
        """
        When the current hold began.

        The latest hold entry wins; once pruning has dropped it from the
        timeline, the start recorded in the deal metadata is used.
        """
        last_hold = self.ledger.find_latest(deal, is_hold_entry)
        if last_hold is not None:
            return as_utc(last_hold.date)
        recorded = deal.metadata.get(HOLD_STARTED_KEY)
        if recorded:
            return as_utc(datetime.fromisoformat(recorded))
        return None

    def validate_current_status(self, deal: Deal) -> List[str]:
        """Problems with the status the deal holds now, if any."""
        errors = []
        if deal.status not in STAGE_STATUS_COMPATIBILITY.get(deal.stage, []):
            errors.append(f"Status {deal.status.value} not allowed in {deal.stage.value} stage")
        if deal.status == DealStatus.COMPLETED:
            errors.extend(self.requirement_errors(deal, DealStatus.COMPLETED))
        return errors

    async def attempt_transition(
        self,
        deal: Deal,
        target_status: DealStatus,
        actor_id: str,
        reason: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> StatusTransitionResult:
        """
        Attempt to move the deal to target_status.

        Args:
            deal: Deal to transition (updated in place on success)
            target_status: Requested status
            actor_id: User performing the change
            reason: Required for On Hold and Cancelled
            timeout: Seconds before the attempt is abandoned

        Returns:
            StatusTransitionResult; never raises for rejected transitions
        """
        if timeout is None:
            timeout = config.TRANSITION_TIMEOUT_SECONDS
        previous_status = deal.status
        start = time.perf_counter()

        with create_span("deal.status_transition", {
            "deal.id": deal.id,
            "deal.status.from": previous_status.value,
            "deal.status.to": target_status.value,
        }):
            try:
                entry, events = await asyncio.wait_for(
                    self._transition(deal, target_status, actor_id, reason),
                    timeout
                )
            except asyncio.TimeoutError:
                error = TransitionTimeoutError(timeout)
                return self._failure(deal, target_status, actor_id, reason, error)
            except DealflowError as e:
                return self._failure(deal, target_status, actor_id, reason, e)
            except Exception as e:
                logger.exception(f"Unexpected error changing status of deal {deal.id}")
                error = DealflowError(ErrorCode.INTERNAL_ERROR, f"Internal error: {e}")
                return self._failure(deal, target_status, actor_id, reason, error)

        await self.notifier.publish_batch(events)

        record_counter("status_transitions_total", attributes={
            "to_status": target_status.value, "outcome": "success",
        })
        record_histogram(
            "transition_duration_seconds",
            time.perf_counter() - start,
            {"kind": "status"},
        )
        logger.info(
            f"Deal {deal.id} status changed: {previous_status.value} -> {target_status.value}"
        )

        return StatusTransitionResult(
            success=True,
            new_status=target_status,
            timeline_entry=entry,
        )

    async def _transition(
        self,
        deal: Deal,
        target_status: DealStatus,
        actor_id: str,
        reason: Optional[str]
    ):
        async with self.locks.write(deal.id):
            async with DealTransaction(deal, self.notifier) as txn:
                working = txn.working
                self.check(working, target_status, reason)

                previous_status = working.status
                working.status = target_status
                entry = self.ledger.add_status_change_entry(
                    working, previous_status, target_status, actor_id, reason
                )
                if target_status == DealStatus.ON_HOLD:
                    working.metadata[HOLD_STARTED_KEY] = as_utc(entry.date).isoformat()
                else:
                    working.metadata.pop(HOLD_STARTED_KEY, None)
                txn.emit(
                    LifecycleEventType.STATUS_CHANGED,
                    actor_id,
                    {
                        "previous_status": previous_status.value,
                        "new_status": target_status.value,
                        "reason": reason,
                        "timeline_entry_id": entry.id,
                    },
                    recipients_for(working),
                )
                await txn.persist(self._save)
            return entry, txn.emitted_events

    def _failure(
        self,
        deal: Deal,
        target_status: DealStatus,
        actor_id: str,
        reason: Optional[str],
        error: DealflowError
    ) -> StatusTransitionResult:
        errors = getattr(error, "errors", None) or [error.message]
        metadata: Dict[str, Any] = {
            "previous_status": deal.status,
            "target_status": target_status,
            "reason": reason,
            "error": error.message,
            "error_code": error.code.value,
        }
        entry = self.ledger.build_failure_entry(
            deal,
            TimelineEventType.STATUS_CHANGE,
            f"Failed to change status to {target_status.value}: {error.message}",
            actor_id,
            metadata,
        )

        record_counter("status_transitions_total", attributes={
            "to_status": target_status.value, "outcome": "failure",
        })
        logger.info(
            f"Status transition rejected for deal {deal.id}: "
            f"{deal.status.value} -> {target_status.value} ({error.code.value}: {error.message})"
        )

        return StatusTransitionResult(
            success=False,
            new_status=deal.status,
            timeline_entry=entry,
            validation_errors=list(errors),
            error_code=error.code,
        )
