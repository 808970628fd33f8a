import pytest

from personaflow.core.errors import InvalidRatingValue, UnknownSignalType
from personaflow.services.event_store import Event
from personaflow.services.exclusion_service import ExclusionService
from personaflow.services.negative_signals import NegativeSignalProcessor
from personaflow.services.signal_tracker import SignalTracker


@pytest.mark.asyncio
async def test_record_resolves_weight_and_stores(event_store, now):
    tracker = SignalTracker(event_store)

    event = await tracker.record("v1", "s1", "star_rating", target_id=101, event_value=4, now=now)

    assert event.id == 1
    assert event.weight == 3.5
    assert event.created_at == now
    assert event_store.events == [event]


@pytest.mark.asyncio
async def test_unknown_type_is_rejected_before_storage(event_store):
    tracker = SignalTracker(event_store)
    with pytest.raises(UnknownSignalType):
        await tracker.record("v1", "s1", "teleport")
    with pytest.raises(UnknownSignalType):
        await tracker.record("v1", "s1", "teleport", weight=1.0)
    assert event_store.events == []


@pytest.mark.asyncio
async def test_invalid_rating_is_rejected(event_store):
    with pytest.raises(InvalidRatingValue):
        await SignalTracker(event_store).record("v1", "s1", "star_rating", event_value=6)
    assert event_store.events == []


@pytest.mark.asyncio
async def test_explicit_weight_overrides_catalog(event_store):
    event = await SignalTracker(event_store).record("v1", "s1", "quantity_change", target_id=5, weight=-1.0)
    assert event.weight == -1.0


@pytest.mark.asyncio
async def test_hooks_receive_stored_event(event_store):
    seen = []

    async def hook(event):
        seen.append(event)

    tracker = SignalTracker(event_store, hooks=[hook])
    event = await tracker.record("v1", "s1", "like", target_id=101)
    assert seen == [event]
    assert seen[0].id is not None


@pytest.mark.asyncio
async def test_hook_failure_does_not_fail_record(event_store):
    seen = []

    async def broken(event):
        raise RuntimeError("boom")

    async def after(event):
        seen.append(event.event_type)

    tracker = SignalTracker(event_store, hooks=[broken, after])
    await tracker.record("v1", "s1", "like", target_id=101)

    assert len(event_store.events) == 1
    assert seen == ["like"]


@pytest.mark.asyncio
async def test_negative_signal_creates_exclusion(event_store, exclusion_repo, post_metadata):
    processor = NegativeSignalProcessor(ExclusionService(exclusion_repo), post_metadata)
    tracker = SignalTracker(event_store, hooks=[processor])

    await tracker.record("v1", "s1", "block_author", target_id=101)

    rules = await exclusion_repo.list_for_visitor("v1")
    assert [(r.exclusion_type, r.target_id) for r in rules] == [("block_author", 7)]


@pytest.mark.asyncio
async def test_record_batch_skips_rejected_items(event_store):
    tracker = SignalTracker(event_store)
    stored = await tracker.record_batch([
        {"visitor_hash": "v1", "session_id": "s1", "event_type": "page_view", "target_id": 101},
        {"visitor_hash": "v1", "session_id": "s1", "event_type": "teleport"},
        {"visitor_hash": "v1", "session_id": "s1", "event_type": "star_rating", "event_value": 0},
        {"visitor_hash": "v1", "event_type": "like"},
        {"visitor_hash": "v1", "session_id": "s1", "event_type": "star_rating", "event_value": 5},
    ])

    assert stored == 2
    assert [e.event_type for e in event_store.events] == ["page_view", "star_rating"]


@pytest.mark.asyncio
async def test_append_validates_type_and_runs_hooks(event_store):
    seen = []

    async def hook(event):
        seen.append(event.id)

    tracker = SignalTracker(event_store, hooks=[hook])
    event_id = await tracker.append(Event(visitor_hash="v1", session_id="s1", event_type="checkout_abandon", weight=-5.0))
    assert seen == [event_id]

    with pytest.raises(UnknownSignalType):
        await tracker.append(Event(visitor_hash="v1", session_id="s1", event_type="teleport"))
