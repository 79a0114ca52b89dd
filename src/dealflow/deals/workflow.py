"""
Deal Workflow Engine

Manages deal stage transitions with requirement gates, rollback and
lifecycle events.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config import config
from ..errors import (
    DealflowError,
    ErrorCode,
    InvalidTransitionError,
    RequirementsNotMetError,
    TransitionTimeoutError,
)
from ..events import LifecycleEventNotifier, LifecycleEventType, recipients_for
from ..models import (
    STAGE_ORDER,
    SYSTEM_ACTOR,
    Deal,
    DealStage,
    DealStatus,
    TimelineEntry,
    TimelineEventType,
)
from ..observability import create_span, record_counter, record_histogram
from ..timeline import TimelineLedger
from .locks import DealLockRegistry, get_lock_registry
from .status import StatusTransitionEngine
from .transaction import DealTransaction, SaveCallback
from .validator import RequirementValidator, ValidationResult

logger = logging.getLogger(__name__)


# Valid stage transitions: the next stage forward or the previous one back
STAGE_TRANSITIONS: Dict[DealStage, List[DealStage]] = {
    DealStage.INITIATION: [DealStage.DISCUSSION],
    DealStage.DISCUSSION: [DealStage.EVALUATION, DealStage.INITIATION],
    DealStage.EVALUATION: [DealStage.DOCUMENTATION, DealStage.DISCUSSION],
    DealStage.DOCUMENTATION: [DealStage.CLOSING, DealStage.EVALUATION],
    DealStage.CLOSING: [DealStage.COMPLETE, DealStage.DOCUMENTATION],
    DealStage.COMPLETE: [],  # Terminal state
}


def get_allowed_transitions(stage: DealStage) -> List[DealStage]:
    """Stages reachable from stage in one transition."""
    return list(STAGE_TRANSITIONS.get(stage, []))


def next_stage(stage: DealStage) -> Optional[DealStage]:
    """The stage after this one in progression order, None at the end."""
    index = STAGE_ORDER.index(stage)
    if index + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[index + 1]
    return None


@dataclass
class StageTransitionResult:
    """Outcome of a stage transition attempt."""
    success: bool
    new_stage: DealStage
    timeline_entry: TimelineEntry
    validation_errors: List[str] = field(default_factory=list)
    missing_requirements: List[str] = field(default_factory=list)
    blocking_conditions: List[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    # Full validation issues found after a committed transition
    post_transition_errors: List[str] = field(default_factory=list)


class StageTransitionEngine:
    """
    Manages deal lifecycle and stage transitions.

    Every attempt runs on a working copy inside a per-deal write lock. A
    rejected or failed attempt leaves the caller's deal untouched, emits a
    rollback event and returns a failure result.
    """

    def __init__(
        self,
        validator: Optional[RequirementValidator] = None,
        ledger: Optional[TimelineLedger] = None,
        notifier: Optional[LifecycleEventNotifier] = None,
        status_engine: Optional[StatusTransitionEngine] = None,
        locks: Optional[DealLockRegistry] = None,
        save: Optional[SaveCallback] = None
    ):
        self.validator = validator or RequirementValidator()
        self.ledger = ledger or TimelineLedger()
        self.notifier = notifier or LifecycleEventNotifier()
        self.locks = locks or get_lock_registry()
        self.status_engine = status_engine or StatusTransitionEngine(
            ledger=self.ledger, notifier=self.notifier, locks=self.locks, save=save
        )
        self._save = save

    def get_allowed_transitions(self, deal: Deal) -> List[DealStage]:
        """Valid next stages for a deal."""
        if deal.status == DealStatus.CANCELLED:
            return []
        return get_allowed_transitions(deal.stage)

    async def attempt_transition(
        self,
        deal: Deal,
        target_stage: DealStage,
        actor_id: str,
        timeout: Optional[float] = None
    ) -> StageTransitionResult:
        """
        Attempt to move the deal to target_stage.

        Args:
            deal: Deal to transition (updated in place only on commit)
            target_stage: Requested stage
            actor_id: User performing the transition
            timeout: Seconds before the attempt is abandoned and rolled back

        Returns:
            StageTransitionResult; rejected and failed attempts are
            reported here rather than raised
        """
        if timeout is None:
            timeout = config.TRANSITION_TIMEOUT_SECONDS
        previous_stage = deal.stage
        start = time.perf_counter()

        with create_span("deal.stage_transition", {
            "deal.id": deal.id,
            "deal.stage.from": previous_stage.value,
            "deal.stage.to": target_stage.value,
        }) as span:
            try:
                entry, events, post = await asyncio.wait_for(
                    self._transition(deal, target_stage, actor_id),
                    timeout
                )
            except asyncio.TimeoutError:
                return await self._rollback(
                    deal, target_stage, actor_id, TransitionTimeoutError(timeout)
                )
            except DealflowError as e:
                return await self._rollback(deal, target_stage, actor_id, e)
            except Exception as e:
                logger.exception(f"Unexpected error transitioning deal {deal.id}")
                error = DealflowError(ErrorCode.INTERNAL_ERROR, f"Internal error: {e}")
                return await self._rollback(deal, target_stage, actor_id, error)
            span.set_attribute("deal.transition.outcome", "committed")

        await self.notifier.publish_batch(events)

        record_counter("stage_transitions_total", attributes={
            "from_stage": previous_stage.value,
            "to_stage": target_stage.value,
            "outcome": "success",
        })
        record_histogram(
            "transition_duration_seconds",
            time.perf_counter() - start,
            {"kind": "stage"},
        )
        logger.info(f"Deal {deal.id} transitioned: {previous_stage.value} -> {target_stage.value}")

        return StageTransitionResult(
            success=True,
            new_stage=target_stage,
            timeline_entry=entry,
            post_transition_errors=post.error_messages + (post.blocking_conditions or []),
        )

    async def _transition(self, deal: Deal, target_stage: DealStage, actor_id: str):
        async with self.locks.write(deal.id):
            async with DealTransaction(deal, self.notifier) as txn:
                working = txn.working
                current_stage = working.stage

                if working.status == DealStatus.CANCELLED:
                    raise DealflowError(
                        ErrorCode.DEAL_TERMINATED,
                        "Cannot change the stage of a cancelled deal"
                    )

                allowed = STAGE_TRANSITIONS.get(current_stage, [])
                if target_stage not in allowed:
                    raise InvalidTransitionError(
                        f"Invalid transition: {current_stage.value} -> {target_stage.value}. "
                        f"Valid transitions: {[s.value for s in allowed]}",
                        allowed=[s.value for s in allowed],
                    )

                # Readiness is judged on the deal as it is now
                gate = await self.validator.validate_transition_gate(working, target_stage)
                if not gate.is_valid:
                    raise RequirementsNotMetError(
                        f"Requirements for {target_stage.value} stage not met",
                        errors=gate.error_messages,
                        missing_requirements=gate.missing_requirements,
                        blocking_conditions=gate.blocking_conditions,
                    )

                completing = target_stage == DealStage.COMPLETE
                if completing:
                    self.status_engine.check(working, DealStatus.COMPLETED, stage=target_stage)

                working.stage = target_stage
                entry = self.ledger.add_stage_change_entry(
                    working, current_stage, target_stage, actor_id
                )
                txn.emit(
                    LifecycleEventType.STAGE_CHANGED,
                    actor_id,
                    {
                        "previous_stage": current_stage.value,
                        "new_stage": target_stage.value,
                        "timeline_entry_id": entry.id,
                    },
                    recipients_for(working, target_stage),
                )

                if completing:
                    self._complete(txn, actor_id)

                post = await self.validator.validate(working)
                if post.is_valid:
                    following = next_stage(target_stage)
                    txn.emit(
                        LifecycleEventType.STAGE_COMPLETED,
                        actor_id,
                        {
                            "stage": target_stage.value,
                            "next_stage": following.value if following else None,
                        },
                        recipients_for(working, target_stage),
                    )
                else:
                    logger.warning(
                        f"Deal {deal.id} entered {target_stage.value} but fails validation: "
                        f"{post.error_messages + (post.blocking_conditions or [])}"
                    )
                    txn.emit(
                        LifecycleEventType.VALIDATION_FAILED,
                        actor_id,
                        self._validation_payload(target_stage, post),
                        recipients_for(working, target_stage),
                    )

                await txn.persist(self._save)
            return entry, txn.emitted_events, post

    def _complete(self, txn: DealTransaction, actor_id: str):
        working = txn.working
        previous_status = working.status
        working.status = DealStatus.COMPLETED
        status_entry = self.ledger.add_status_change_entry(
            working,
            previous_status,
            DealStatus.COMPLETED,
            SYSTEM_ACTOR,
            reason="Deal reached the Complete stage",
            metadata={"automatic": True, "triggered_by": actor_id},
        )
        txn.emit(
            LifecycleEventType.STATUS_CHANGED,
            SYSTEM_ACTOR,
            {
                "previous_status": previous_status.value,
                "new_status": DealStatus.COMPLETED.value,
                "reason": status_entry.metadata["reason"],
                "timeline_entry_id": status_entry.id,
            },
            recipients_for(working),
        )

    @staticmethod
    def _validation_payload(stage: DealStage, result: ValidationResult) -> Dict:
        return {
            "stage": stage.value,
            "errors": result.error_messages,
            "missing_requirements": result.missing_requirements,
            "blocking_conditions": result.blocking_conditions or [],
            "suggestions": result.suggestions,
        }

    async def _rollback(
        self,
        deal: Deal,
        target_stage: DealStage,
        actor_id: str,
        error: DealflowError
    ) -> StageTransitionResult:
        errors = getattr(error, "errors", None) or [error.message]
        missing = getattr(error, "missing_requirements", [])
        blocking = getattr(error, "blocking_conditions", [])

        entry = self.ledger.build_failure_entry(
            deal,
            TimelineEventType.STAGE_CHANGE,
            f"Failed to change stage to {target_stage.value}: {error.message}",
            actor_id,
            {
                "previous_stage": deal.stage,
                "target_stage": target_stage,
                "error": error.message,
                "error_code": error.code.value,
            },
        )

        await self.notifier.emit(
            LifecycleEventType.STAGE_ROLLBACK,
            deal.id,
            actor_id,
            {
                "current_stage": deal.stage.value,
                "attempted_stage": target_stage.value,
                "reason": error.message,
                "error_code": error.code.value,
                "errors": list(errors),
                "missing_requirements": list(missing),
            },
            recipients_for(deal),
        )

        record_counter("stage_transitions_total", attributes={
            "from_stage": deal.stage.value,
            "to_stage": target_stage.value,
            "outcome": "failure",
        })
        record_counter("transition_rollbacks_total", attributes={"error_code": error.code.value})
        logger.info(
            f"Stage transition rolled back for deal {deal.id}: "
            f"{deal.stage.value} -> {target_stage.value} ({error.code.value}: {error.message})"
        )

        return StageTransitionResult(
            success=False,
            new_stage=deal.stage,
            timeline_entry=entry,
            validation_errors=list(errors),
            missing_requirements=list(missing),
            blocking_conditions=list(blocking),
            error_code=error.code,
        )


# Singleton instance
_workflow_engine: Optional[StageTransitionEngine] = None


async def get_workflow_engine() -> StageTransitionEngine:
    """Get workflow engine instance."""
    global _workflow_engine
    if _workflow_engine is None:
        _workflow_engine = StageTransitionEngine()
    return _workflow_engine
