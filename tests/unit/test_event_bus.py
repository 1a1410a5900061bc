"""
Unit tests for the fan-out event bus.
"""
import asyncio

from backend.app.events.bus import EventBus
from backend.app.events.schemas import ChangeOperation, change_event


def _incident_event(family_group_id="fam-1", incident_id="inc-1", user_id="alice"):
    return change_event(
        "incidents", ChangeOperation.INSERT, {"id": incident_id, "status": "active"},
        family_group_id=family_group_id, incident_id=incident_id, user_id=user_id,
    )


async def test_subscribers_filtered_by_table_and_routing_keys():
    bus = EventBus(maxsize=10)
    family = bus.subscribe("incidents", family_group_id="fam-1")
    other_family = bus.subscribe("incidents", family_group_id="fam-2")
    locations = bus.subscribe("live_locations")
    everything = bus.subscribe()

    delivered = bus.publish(_incident_event())

    assert delivered == 2
    assert (await family.get(timeout=0.1)).event_type == "incidents.insert"
    assert await other_family.get(timeout=0.01) is None
    assert await locations.get(timeout=0.01) is None
    assert (await everything.get(timeout=0.1)).table == "incidents"


async def test_none_filters_are_ignored():
    bus = EventBus()
    sub = bus.subscribe("incidents", family_group_id=None, user_id="alice")
    assert sub.filters == {"user_id": "alice"}
    assert bus.publish(_incident_event()) == 1


async def test_full_queue_drops_without_blocking():
    bus = EventBus(maxsize=1)
    slow = bus.subscribe("incidents")
    fast = bus.subscribe("incidents")

    assert bus.publish(_incident_event(incident_id="a")) == 2
    await fast.get(timeout=0.1)
    assert bus.publish(_incident_event(incident_id="b")) == 1

    assert slow.dropped == 1
    assert (await slow.get(timeout=0.1)).record["id"] == "a"
    assert (await fast.get(timeout=0.1)).record["id"] == "b"


async def test_closed_subscription_stops_receiving():
    bus = EventBus()
    async with bus.subscribe("incidents") as sub:
        assert bus.subscriber_count == 1
    assert sub.closed
    assert bus.subscriber_count == 0
    assert bus.publish(_incident_event()) == 0


async def test_async_iteration_yields_events():
    bus = EventBus()
    sub = bus.subscribe("incidents")
    bus.publish(_incident_event(incident_id="x"))
    bus.publish(_incident_event(incident_id="y"))

    seen = []
    async for event in sub:
        seen.append(event.record["id"])
        if len(seen) == 2:
            sub.close()
    assert seen == ["x", "y"]


async def test_sse_frame_format():
    event = _incident_event()
    frame = event.to_sse()
    assert frame.startswith("event: incidents.insert\ndata: {")
    assert frame.endswith("\n\n")
    assert '"family_group_id":"fam-1"' in frame
