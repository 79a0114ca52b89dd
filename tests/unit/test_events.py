"""
Tests for lifecycle event delivery and aggregation.
"""

from datetime import timedelta

import pytest

from dealflow.events import (
    EventAggregator,
    InMemoryEventSink,
    LifecycleEvent,
    LifecycleEventNotifier,
    LifecycleEventType,
    recipients_for,
    validate_event_type,
)
from dealflow.models import DealStage, ParticipantStatus

from factories import agent, buyer, inspector, make_deal, seller


def _event(event_type=LifecycleEventType.DOCUMENT_ADDED, actor="user-seller", deal_id="deal-1", **data):
    return LifecycleEvent.create(
        event_type=event_type.value,
        deal_id=deal_id,
        actor_id=actor,
        event_data=data,
        recipients=[actor],
    )


class TestTaxonomy:

    def test_known_types_validate(self):
        assert validate_event_type("deal.stage_changed")
        assert not validate_event_type("deal.exploded")


class TestNotifier:
    """Fan-out to the sink."""

    @pytest.mark.asyncio
    async def test_emit_delivers_to_sink(self):
        sink = InMemoryEventSink()
        notifier = LifecycleEventNotifier(sink)

        event = await notifier.emit(
            LifecycleEventType.STAGE_CHANGED,
            "deal-1",
            "user-seller",
            {"previous_stage": "Initiation", "new_stage": "Discussion"},
            ["user-seller", "user-buyer"],
        )

        assert sink.events == [event]
        assert event.event_type == "deal.stage_changed"
        assert event.recipients == ["user-seller", "user-buyer"]
        assert event.schema_version == 1

    @pytest.mark.asyncio
    async def test_async_sink_is_awaited(self):
        delivered = []

        async def sink(event):
            delivered.append(event.event_type)

        await LifecycleEventNotifier(sink).emit(
            LifecycleEventType.TERMS_UPDATED, "deal-1", "user-seller", {}
        )

        assert delivered == ["deal.terms_updated"]

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_raise(self, caplog):
        def sink(event):
            raise ConnectionError("gateway down")

        notifier = LifecycleEventNotifier(sink)

        await notifier.emit(LifecycleEventType.STATUS_CHANGED, "deal-1", "user-seller", {})

        assert "gateway down" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_sink_drops_events(self):
        event = await LifecycleEventNotifier().emit(
            LifecycleEventType.STATUS_CHANGED, "deal-1", "user-seller", {}
        )

        assert event.deal_id == "deal-1"

    @pytest.mark.asyncio
    async def test_publish_batch_keeps_order(self):
        sink = InMemoryEventSink()
        notifier = LifecycleEventNotifier(sink)
        events = [_event(LifecycleEventType.STAGE_CHANGED), _event(LifecycleEventType.STAGE_COMPLETED)]

        await notifier.publish_batch(events)

        assert [e.event_type for e in sink.events] == ["deal.stage_changed", "deal.stage_completed"]


class TestRecipients:
    """Who hears about a deal."""

    def test_all_active_participants_without_stage(self):
        deal = make_deal(participants=[seller(), buyer(), inspector()])

        assert recipients_for(deal) == ["user-seller", "user-buyer", "user-inspector"]

    def test_inactive_participants_are_skipped(self):
        deal = make_deal(participants=[seller(), buyer(status=ParticipantStatus.INACTIVE)])

        assert recipients_for(deal) == ["user-seller"]

    def test_stage_narrows_roles(self):
        deal = make_deal(participants=[seller(), buyer(), agent(), inspector()])

        assert recipients_for(deal, DealStage.DISCUSSION) == ["user-seller", "user-buyer", "user-agent"]
        assert "user-inspector" in recipients_for(deal, DealStage.EVALUATION)

    def test_duplicate_users_listed_once(self):
        deal = make_deal(participants=[seller(), buyer(), agent(user_id="user-seller")])

        assert recipients_for(deal) == ["user-seller", "user-buyer"]


class TestAggregator:
    """Collapsing bursts of events."""

    def test_single_event_passes_through(self):
        aggregator = EventAggregator()
        event = _event()

        assert aggregator.add(event) == [event]

    def test_same_type_and_actor_are_merged(self):
        aggregator = EventAggregator()
        first = _event(document_id="doc-1")
        second = _event(document_id="doc-2")
        second = second.model_copy(update={
            "created_at": first.created_at + timedelta(seconds=5),
            "recipients": ["user-seller", "user-buyer"],
        })

        aggregator.add(first)
        merged = aggregator.add(second)

        assert len(merged) == 1
        data = merged[0].event_data
        assert data["aggregated"] is True
        assert data["count"] == 2
        assert data["document_id"] == "doc-1"
        assert [e["event_data"]["document_id"] for e in data["events"]] == ["doc-1", "doc-2"]
        assert merged[0].recipients == ["user-seller", "user-buyer"]

    def test_different_actors_stay_separate(self):
        aggregator = EventAggregator()
        aggregator.add(_event(actor="user-seller"))
        merged = aggregator.add(_event(actor="user-buyer"))

        assert len(merged) == 2

    def test_deals_are_buffered_separately(self):
        aggregator = EventAggregator()
        aggregator.add(_event(deal_id="deal-1"))
        aggregator.add(_event(deal_id="deal-2"))

        assert aggregator.pending("deal-1") == 1
        assert aggregator.pending("deal-2") == 1

    def test_flush_empties_buffer(self):
        aggregator = EventAggregator()
        aggregator.add(_event())
        aggregator.add(_event())

        flushed = aggregator.flush("deal-1")

        assert len(flushed) == 1
        assert aggregator.pending("deal-1") == 0
        assert aggregator.flush("deal-1") == []
