"""
Tests for the lifecycle service facade.
"""

import asyncio

import pytest

from dealflow import DealLifecycleService
from dealflow.deals import DealLockRegistry
from dealflow.errors import DealflowError, ErrorCode, NotFoundError, ParticipantConstraintError
from dealflow.events import LifecycleEventType
from dealflow.models import (
    Document,
    DealStage,
    DealStatus,
    DocumentStatus,
    Participant,
    ParticipantRole,
    ParticipantStatus,
    TimelineEventType,
)
from dealflow.timeline import LogisticsComponent, TimelineFilter

from factories import make_deal, make_ready_deal


class TestConcurrentTransitions:
    """Per-deal serialisation of transitions."""

    @pytest.mark.asyncio
    async def test_only_one_of_two_identical_transitions_commits(self, service, sink, saved):
        deal = make_ready_deal()

        first, second = await asyncio.gather(
            service.attempt_stage_transition(deal, DealStage.DISCUSSION, "user-seller"),
            service.attempt_stage_transition(deal, DealStage.DISCUSSION, "user-buyer"),
        )

        outcomes = sorted([first.success, second.success])
        assert outcomes == [False, True]
        loser = first if not first.success else second
        assert loser.error_code == ErrorCode.INVALID_STAGE_TRANSITION

        assert deal.stage == DealStage.DISCUSSION
        assert len(saved) == 1
        assert len(sink.of_type(LifecycleEventType.STAGE_CHANGED)) == 1
        assert len(sink.of_type(LifecycleEventType.STAGE_ROLLBACK)) == 1
        stage_entries = [e for e in deal.timeline if e.type == TimelineEventType.STAGE_CHANGE]
        assert len(stage_entries) == 1

    @pytest.mark.asyncio
    async def test_stage_and_status_changes_serialise(self, service):
        deal = make_ready_deal()

        stage_result, status_result = await asyncio.gather(
            service.attempt_stage_transition(deal, DealStage.DISCUSSION, "user-seller"),
            service.attempt_status_transition(deal, DealStatus.ON_HOLD, "user-buyer", "Vet delay"),
        )

        assert stage_result.success and status_result.success
        assert deal.stage == DealStage.DISCUSSION
        assert deal.status == DealStatus.ON_HOLD
        assert len(deal.timeline) == 2

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self, service):
        deal = make_ready_deal()

        await service.attempt_stage_transition(deal, DealStage.DISCUSSION, "user-seller")
        await service.validate_deal(deal)

        assert len(service.locks) == 0


class TestSubjectLookup:

    @pytest.mark.asyncio
    async def test_unknown_subject_raises(self, sink, clock):
        service = DealLifecycleService(
            sink=sink,
            subject_exists=lambda horse_id: False,
            locks=DealLockRegistry(),
            clock=clock,
        )
        deal = make_ready_deal()

        with pytest.raises(NotFoundError) as exc:
            await service.attempt_stage_transition(deal, DealStage.DISCUSSION, "user-seller")

        assert exc.value.code == ErrorCode.SUBJECT_NOT_FOUND
        assert deal.stage == DealStage.INITIATION
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_async_lookup(self, clock):
        async def exists(horse_id):
            return horse_id == "horse-1"

        service = DealLifecycleService(subject_exists=exists, locks=DealLockRegistry(), clock=clock)

        result = await service.attempt_status_transition(make_deal(), DealStatus.ON_HOLD, "user-seller", "Paused")

        assert result.success


class TestValidationQueries:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stage", list(DealStage))
    async def test_remaining_requirements_empty_iff_stage_valid(self, service, stage):
        deal = make_deal(stage=stage)

        remaining = await service.get_remaining_requirements(deal)
        result = await service.validate_stage_requirements(deal, stage)

        assert (remaining == []) == result.is_valid

    @pytest.mark.asyncio
    async def test_remaining_requirements_for_documentation(self, service):
        deal = make_deal(stage=DealStage.DOCUMENTATION)

        remaining = await service.get_remaining_requirements(deal)

        assert remaining == [
            "Contract must be uploaded and approved",
            "Insurance details must be provided",
        ]

    @pytest.mark.asyncio
    async def test_summary_and_allowed_moves(self, service):
        deal = make_ready_deal(stage=DealStage.EVALUATION)

        summary = await service.get_validation_summary(deal)

        assert summary.can_progress
        assert service.get_allowed_transitions(deal) == [DealStage.DOCUMENTATION, DealStage.DISCUSSION]
        assert DealStatus.ON_HOLD in service.get_allowed_statuses(deal)

    @pytest.mark.asyncio
    async def test_cancelled_deal_has_no_moves(self, service):
        deal = make_ready_deal(status=DealStatus.CANCELLED)

        assert service.get_allowed_transitions(deal) == []
        assert service.get_allowed_statuses(deal) == []


class TestTimeline:

    @pytest.mark.asyncio
    async def test_comment_is_persisted_and_announced(self, service, sink, saved):
        deal = make_deal()

        entry = await service.add_comment_entry(deal, "Vet booked", "user-buyer")

        assert deal.timeline == [entry]
        assert len(saved) == 1
        event = sink.of_type(LifecycleEventType.TIMELINE_UPDATED)[0]
        assert event.event_data == {"entry_id": entry.id, "type": "COMMENT", "description": "Vet booked"}
        assert event.recipients == ["user-seller", "user-buyer"]

    @pytest.mark.asyncio
    async def test_system_entry_uses_system_actor(self, service, sink):
        deal = make_deal()

        entry = await service.add_system_entry(deal, "Reminder sent")

        assert entry.actor == "system"
        assert sink.events[0].actor_id == "system"

    @pytest.mark.asyncio
    async def test_failed_save_leaves_timeline_untouched(self, sink, clock):
        def save(deal):
            raise IOError("disk full")

        service = DealLifecycleService(save=save, sink=sink, locks=DealLockRegistry(), clock=clock)
        deal = make_deal()

        with pytest.raises(IOError):
            await service.add_comment_entry(deal, "Hello", "user-buyer")

        assert deal.timeline == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_get_timeline_with_filter(self, service):
        deal = make_deal()
        await service.add_comment_entry(deal, "From seller", "user-seller")
        await service.add_comment_entry(deal, "From buyer", "user-buyer")
        await service.add_system_entry(deal, "Sync")

        view = await service.get_timeline(deal, TimelineFilter(actor="user-buyer"))

        assert [e.description for e in view.entries] == ["From buyer"]
        assert view.summary.total_entries == 3

    @pytest.mark.asyncio
    async def test_get_timeline_without_filter(self, service):
        deal = make_deal()
        await service.append_timeline_entry(deal, TimelineEventType.COMMENT, "Note", "user-seller", {"pinned": True})

        view = await service.get_timeline(deal)

        assert len(view.entries) == 1
        assert view.entries[0].metadata["pinned"] is True


class TestMutationsThroughService:

    @pytest.mark.asyncio
    async def test_constraint_violation_rolls_back(self, service, sink, saved):
        deal = make_deal()
        before = deal.model_dump()

        with pytest.raises(ParticipantConstraintError):
            await service.remove_participant(deal, "p-seller", "user-buyer")

        assert deal.model_dump() == before
        assert saved == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_add_participant_publishes_event(self, service, sink, saved):
        deal = make_deal()

        change = await service.add_participant(
            deal, Participant(id="p-vet", user_id="user-vet", role=ParticipantRole.VETERINARIAN), "user-seller"
        )

        assert change.changed
        assert deal.find_participant("p-vet") is not None
        event = sink.of_type(LifecycleEventType.PARTICIPANT_ADDED)[0]
        assert "user-vet" in event.recipients
        assert len(saved) == 1

    @pytest.mark.asyncio
    async def test_document_review_cycle(self, service, sink):
        deal = make_deal()
        await service.add_document(deal, Document(id="doc-1", type="contract"), "user-seller")

        await service.reject_document(deal, "doc-1", "user-agent", "Missing signature")
        await service.resubmit_document(deal, "doc-1", "user-seller")
        await service.approve_document(deal, "doc-1", "user-agent")

        doc = deal.find_document("doc-1")
        assert doc.status == DocumentStatus.APPROVED
        assert doc.version == 2
        assert [e.event_type for e in sink.events] == [
            "deal.document_added",
            "deal.document_rejected",
            "deal.document_updated",
            "deal.document_approved",
        ]

    @pytest.mark.asyncio
    async def test_invalid_document_state_is_raised(self, service):
        deal = make_deal()
        await service.add_document(deal, Document(id="doc-1", type="contract"), "user-seller")
        await service.approve_document(deal, "doc-1", "user-agent")

        with pytest.raises(DealflowError) as exc:
            await service.reject_document(deal, "doc-1", "user-agent", "Changed my mind")

        assert exc.value.code == ErrorCode.INVALID_DOCUMENT_STATE
        assert deal.find_document("doc-1").is_approved

    @pytest.mark.asyncio
    async def test_noop_update_is_not_saved(self, service, sink, saved):
        deal = make_deal()

        change = await service.update_terms(deal, {"price": 25000}, "user-seller")

        assert not change.changed
        assert saved == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_terms_and_logistics_updates(self, service, sink):
        deal = make_deal()

        await service.update_terms(deal, {"price": 27500}, "user-seller")
        await service.update_logistics(
            deal, LogisticsComponent.TRANSPORTATION, {"provider": "Horse Haulers", "date": "2025-04-01"}, "user-seller"
        )

        assert deal.terms.price == 27500
        assert deal.logistics.transportation.provider == "Horse Haulers"
        assert [e.event_type for e in sink.events] == ["deal.terms_updated", "deal.logistics_updated"]

    @pytest.mark.asyncio
    async def test_participant_status_through_service(self, service):
        deal = make_deal()

        with pytest.raises(ParticipantConstraintError):
            await service.update_participant_status(deal, "p-seller", ParticipantStatus.INACTIVE, "user-buyer")

        await service.update_participant_status(
            deal, "p-seller", ParticipantStatus.INACTIVE, "admin", reason="Estate", force=True
        )
        assert not deal.find_participant("p-seller").is_active


class TestTimeoutDefaults:

    @pytest.mark.asyncio
    async def test_explicit_zero_timeout_overrides_default(self, clock):
        service = DealLifecycleService(locks=DealLockRegistry(), clock=clock, timeout=30)
        seen = []

        async def stage_attempt(deal, target, actor_id, timeout=None):
            seen.append(("stage", timeout))

        async def status_attempt(deal, target, actor_id, reason=None, timeout=None):
            seen.append(("status", timeout))

        service.stage_engine.attempt_transition = stage_attempt
        service.status_engine.attempt_transition = status_attempt

        await service.attempt_stage_transition(make_deal(), DealStage.DISCUSSION, "user-seller", timeout=0)
        await service.attempt_stage_transition(make_deal(), DealStage.DISCUSSION, "user-seller")
        await service.attempt_status_transition(make_deal(), DealStatus.ON_HOLD, "user-seller", "Paused", timeout=0)

        assert seen == [("stage", 0), ("stage", 30), ("status", 0)]
