"""
Tests for stage transitions.
"""

import asyncio

import pytest

from dealflow.deals import (
    DealLockRegistry,
    RequirementKind,
    RequirementValidator,
    StageRequirement,
    StageTransitionEngine,
    StatusTransitionEngine,
    STAGE_TRANSITIONS,
    get_allowed_transitions,
    next_stage,
)
from dealflow.errors import ErrorCode
from dealflow.events import LifecycleEventNotifier, LifecycleEventType
from dealflow.models import (
    SYSTEM_ACTOR,
    DealStage,
    DealStatus,
    DocumentStatus,
    ParticipantStatus,
    TimelineEventType,
)
from dealflow.timeline import TimelineLedger

from factories import agent, buyer, document, make_deal, make_ready_deal, seller


def build_engine(sink, clock, save=None, validator=None) -> StageTransitionEngine:
    ledger = TimelineLedger(clock=clock)
    notifier = LifecycleEventNotifier(sink)
    locks = DealLockRegistry()
    status_engine = StatusTransitionEngine(
        ledger=ledger, notifier=notifier, locks=locks, save=save, clock=clock
    )
    return StageTransitionEngine(
        validator=validator or RequirementValidator(clock=clock),
        ledger=ledger,
        notifier=notifier,
        status_engine=status_engine,
        locks=locks,
        save=save,
    )


@pytest.fixture
def engine(sink, saved, clock) -> StageTransitionEngine:
    return build_engine(sink, clock, save=saved.append)


def event_types(sink):
    return [e.event_type for e in sink.events]


class TestStageTable:
    """Adjacency table shape."""

    def test_transitions_defined_for_all_stages(self):
        for stage in DealStage:
            assert stage in STAGE_TRANSITIONS, f"Missing transitions for {stage}"

    def test_complete_is_terminal(self):
        assert STAGE_TRANSITIONS[DealStage.COMPLETE] == []

    def test_only_neighbours_are_reachable(self):
        """Forward one stage or back one stage, nothing else."""
        order = list(DealStage)
        for index, stage in enumerate(order[:-1]):
            allowed = set(get_allowed_transitions(stage))
            expected = {order[index + 1]}
            if index > 0:
                expected.add(order[index - 1])
            assert allowed == expected, stage

    def test_cannot_skip_stages(self):
        assert DealStage.EVALUATION not in STAGE_TRANSITIONS[DealStage.INITIATION]
        assert DealStage.COMPLETE not in STAGE_TRANSITIONS[DealStage.DOCUMENTATION]

    def test_next_stage(self):
        assert next_stage(DealStage.INITIATION) == DealStage.DISCUSSION
        assert next_stage(DealStage.CLOSING) == DealStage.COMPLETE
        assert next_stage(DealStage.COMPLETE) is None


class TestSuccessfulTransition:
    """Committed transitions."""

    @pytest.mark.asyncio
    async def test_forward_transition_commits(self, engine, sink, saved):
        deal = make_ready_deal()

        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert result.success is True
        assert result.new_stage == DealStage.DISCUSSION
        assert deal.stage == DealStage.DISCUSSION
        assert len(deal.timeline) == 1

        entry = deal.timeline[0]
        assert entry.id == result.timeline_entry.id
        assert entry.type == TimelineEventType.STAGE_CHANGE
        assert entry.metadata["previous_stage"] == DealStage.INITIATION
        assert entry.metadata["new_stage"] == DealStage.DISCUSSION
        assert entry.actor == "user-seller"

        assert event_types(sink) == [
            LifecycleEventType.STAGE_CHANGED.value,
            LifecycleEventType.STAGE_COMPLETED.value,
        ]
        assert sink.events[1].event_data["next_stage"] == DealStage.EVALUATION.value

        assert len(saved) == 1
        assert saved[0] is not deal
        assert saved[0].stage == DealStage.DISCUSSION

    @pytest.mark.asyncio
    async def test_backward_transition(self, engine):
        deal = make_ready_deal(stage=DealStage.DISCUSSION)

        result = await engine.attempt_transition(deal, DealStage.INITIATION, "user-seller")

        assert result.success
        assert deal.stage == DealStage.INITIATION

    @pytest.mark.asyncio
    async def test_recipients_include_stage_roles(self, engine, sink):
        deal = make_ready_deal(stage=DealStage.DISCUSSION)

        await engine.attempt_transition(deal, DealStage.EVALUATION, "user-seller")

        changed = sink.of_type(LifecycleEventType.STAGE_CHANGED)[0]
        assert set(changed.recipients) == {"user-seller", "user-buyer", "user-inspector"}

    @pytest.mark.asyncio
    async def test_entering_complete_completes_status(self, engine, sink):
        deal = make_ready_deal(stage=DealStage.CLOSING)

        result = await engine.attempt_transition(deal, DealStage.COMPLETE, "user-seller")

        assert result.success
        assert deal.stage == DealStage.COMPLETE
        assert deal.status == DealStatus.COMPLETED
        assert deal.is_completion_consistent()

        stage_entry, status_entry = deal.timeline
        assert stage_entry.type == TimelineEventType.STAGE_CHANGE
        assert status_entry.type == TimelineEventType.STATUS_CHANGE
        assert status_entry.actor == SYSTEM_ACTOR
        assert status_entry.metadata["new_status"] == DealStatus.COMPLETED

        assert event_types(sink) == [
            LifecycleEventType.STAGE_CHANGED.value,
            LifecycleEventType.STATUS_CHANGED.value,
            LifecycleEventType.STAGE_COMPLETED.value,
        ]
        assert sink.events[-1].event_data["next_stage"] is None

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_undo_transition(self, clock):
        def broken_sink(event):
            raise ConnectionError("gateway down")

        engine = build_engine(broken_sink, clock)
        deal = make_ready_deal()

        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert result.success
        assert deal.stage == DealStage.DISCUSSION


class TestRejectedTransition:
    """Rejected attempts leave the deal untouched."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("start,target", [
        (DealStage.INITIATION, DealStage.CLOSING),
        (DealStage.INITIATION, DealStage.EVALUATION),
        (DealStage.DISCUSSION, DealStage.COMPLETE),
        (DealStage.EVALUATION, DealStage.INITIATION),
        (DealStage.CLOSING, DealStage.CLOSING),
    ])
    async def test_non_adjacent_move_is_rejected(self, engine, sink, saved, start, target):
        deal = make_ready_deal(stage=start)
        before = deal.model_dump()

        result = await engine.attempt_transition(deal, target, "user-seller")

        assert result.success is False
        assert result.error_code == ErrorCode.INVALID_STAGE_TRANSITION
        assert result.new_stage == start
        assert deal.model_dump() == before
        assert saved == []
        assert event_types(sink) == [LifecycleEventType.STAGE_ROLLBACK.value]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", list(DealStage))
    async def test_complete_has_no_way_out(self, engine, target):
        deal = make_ready_deal(stage=DealStage.COMPLETE, status=DealStatus.COMPLETED)

        result = await engine.attempt_transition(deal, target, "user-seller")

        assert result.success is False
        assert deal.stage == DealStage.COMPLETE

    @pytest.mark.asyncio
    async def test_failure_entry_is_not_appended(self, engine):
        deal = make_ready_deal()

        result = await engine.attempt_transition(deal, DealStage.CLOSING, "user-seller")

        assert deal.timeline == []
        assert result.timeline_entry.metadata["failed"] is True
        assert result.timeline_entry.metadata["target_stage"] == DealStage.CLOSING
        assert "Failed to change stage to Closing" in result.timeline_entry.description

    @pytest.mark.asyncio
    async def test_seller_only_deal_cannot_enter_discussion(self, engine, sink):
        """Scenario: a lone Seller fails citing the Buyer/Agent requirement."""
        deal = make_deal(participants=[seller()])

        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "actor-a")

        assert result.success is False
        assert result.error_code == ErrorCode.REQUIREMENTS_NOT_MET
        assert any("Buyer or Agent" in e for e in result.validation_errors)
        assert "Buyer or Agent participant" in result.missing_requirements
        assert deal.stage == DealStage.INITIATION

        rollback = sink.of_type(LifecycleEventType.STAGE_ROLLBACK)[0]
        assert rollback.event_data["attempted_stage"] == DealStage.DISCUSSION.value
        assert rollback.event_data["reason"]

    @pytest.mark.asyncio
    async def test_target_stage_rules_gate_entry(self, engine):
        deal = make_deal(stage=DealStage.DISCUSSION)

        result = await engine.attempt_transition(deal, DealStage.EVALUATION, "user-seller")

        assert result.success is False
        assert result.missing_requirements == [
            "Inspection must be scheduled",
            "Inspector must be assigned",
        ]

    @pytest.mark.asyncio
    async def test_blocking_condition_fails_gate(self, engine):
        deal = make_ready_deal(
            participants=[seller(), buyer(status=ParticipantStatus.INACTIVE), agent()],
        )

        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert result.success is False
        assert result.blocking_conditions == ["Required participants are inactive"]

    @pytest.mark.asyncio
    async def test_rejected_contract_blocks(self, engine):
        docs = [document("contract", DocumentStatus.REJECTED)]
        deal = make_ready_deal(stage=DealStage.DISCUSSION, documents=docs)

        result = await engine.attempt_transition(deal, DealStage.EVALUATION, "user-seller")

        assert result.success is False
        assert "Critical documents have been rejected" in result.blocking_conditions

    @pytest.mark.asyncio
    async def test_cancelled_deal_cannot_move(self, engine):
        deal = make_ready_deal(status=DealStatus.CANCELLED)

        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert result.success is False
        assert result.error_code == ErrorCode.DEAL_TERMINATED
        assert engine.get_allowed_transitions(deal) == []

    @pytest.mark.asyncio
    async def test_on_hold_deal_cannot_complete(self, engine):
        """Entering Complete needs a status that may become Completed."""
        deal = make_ready_deal(stage=DealStage.CLOSING, status=DealStatus.ON_HOLD)
        before = deal.model_dump()

        result = await engine.attempt_transition(deal, DealStage.COMPLETE, "user-seller")

        assert result.success is False
        assert result.error_code == ErrorCode.INVALID_STATUS_TRANSITION
        assert deal.model_dump() == before


class TestRollback:
    """Failures after internal changes leave no trace on the deal."""

    @pytest.mark.asyncio
    async def test_save_failure_rolls_back(self, sink, clock):
        def failing_save(deal):
            raise RuntimeError("database unavailable")

        engine = build_engine(sink, clock, save=failing_save)
        deal = make_ready_deal(stage=DealStage.CLOSING)
        before = deal.model_dump()

        result = await engine.attempt_transition(deal, DealStage.COMPLETE, "user-seller")

        assert result.success is False
        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert deal.model_dump() == before
        assert len(deal.timeline) == 0
        assert event_types(sink) == [LifecycleEventType.STAGE_ROLLBACK.value]

    @pytest.mark.asyncio
    async def test_timeout_rolls_back(self, sink, clock):
        async def slow_save(deal):
            await asyncio.sleep(5)

        engine = build_engine(sink, clock, save=slow_save)
        deal = make_ready_deal()

        result = await engine.attempt_transition(
            deal, DealStage.DISCUSSION, "user-seller", timeout=0.05
        )

        assert result.success is False
        assert result.error_code == ErrorCode.TRANSITION_TIMEOUT
        assert deal.stage == DealStage.INITIATION
        assert deal.timeline == []
        assert len(engine.locks) == 0

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, engine):
        deal = make_ready_deal()

        await engine.attempt_transition(deal, DealStage.CLOSING, "user-seller")
        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert result.success
        assert len(engine.locks) == 0


class TestPostTransitionValidation:
    """A committed transition that leaves the deal invalid is kept."""

    @pytest.mark.asyncio
    async def test_validation_failure_is_soft(self, sink, clock):
        def not_yet_in_discussion(deal):
            return deal.stage != DealStage.DISCUSSION

        validator = RequirementValidator(
            requirements={
                DealStage.DISCUSSION: (
                    StageRequirement(
                        id="fresh",
                        kind=RequirementKind.CONDITION,
                        description="Deal must not have entered Discussion",
                        predicate=not_yet_in_discussion,
                        error_message="Deal already in Discussion",
                    ),
                ),
            },
            clock=clock,
        )
        engine = build_engine(sink, clock, validator=validator)
        deal = make_ready_deal()

        result = await engine.attempt_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert result.success is True
        assert deal.stage == DealStage.DISCUSSION
        assert result.post_transition_errors == ["Deal already in Discussion"]
        assert event_types(sink) == [
            LifecycleEventType.STAGE_CHANGED.value,
            LifecycleEventType.VALIDATION_FAILED.value,
        ]
        failed = sink.of_type(LifecycleEventType.VALIDATION_FAILED)[0]
        assert failed.event_data["errors"] == ["Deal already in Discussion"]
