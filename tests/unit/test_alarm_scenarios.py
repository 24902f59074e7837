"""End-to-end passes through the poll loop with the real rule set and in-memory stores."""
import pytest

from alarm_evaluator.orchestrator import Orchestrator
from alarm_evaluator.scheduler import PollLoop
from conftest import BASE_TS, area_entity, bed_entity

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def standing_posture(x=120.0, y=80.0):
    return [{"tracking_id": "t1", "posture_code": "stand", "posture_display": "Standing", "x": x, "y": y, "z": 160}]


@pytest.fixture
def poll(ctx, fake_redis, write_reading):
    loop = PollLoop(ctx, Orchestrator(ctx))

    async def _poll(at, entity_id, **fields):
        fake_redis.now = at
        await write_reading(entity_id, timestamp=BASE_TS + at, **fields)
        return await loop.run_pass()

    return _poll


async def test_scenario_a_bed_exit_without_vitals(ctx, catalog, alarm_store, poll):
    catalog.entities = [bed_entity("card-1")]

    for at in (0, 30, 61):
        await poll(at, "card-1", bed_status="off_bed", bed_status_source="Sleepace")

    assert len(alarm_store.created) == 1
    alarm = alarm_store.created[0]
    assert alarm.event_type == "Fall"
    assert alarm.category == "safety"
    assert alarm.alarm_status == "active"
    assert alarm.device_id == "card-1"


async def test_scenario_b_vitals_resume(ctx, catalog, alarm_store, poll):
    catalog.entities = [bed_entity("card-1")]
    key = ctx.state.state_key("card-1", "entity", "bed_fall")

    await poll(0, "card-1", bed_status="off_bed")
    await poll(30, "card-1", bed_status="off_bed", heart=72, heart_source="Sleepace")
    assert not await ctx.state.exists(key)
    await poll(61, "card-1", bed_status="off_bed")
    assert not await ctx.state.exists(key)
    await poll(125, "card-1", bed_status="off_bed")
    await poll(190, "card-1", bed_status="off_bed")

    assert alarm_store.created == []
    assert not await ctx.state.exists(key)


async def test_scenario_c_bathroom_single_person(ctx, catalog, alarm_store, poll):
    catalog.entities = [area_entity("card-2")]

    for at in (0, 120, 240, 301):
        await poll(at, "card-2", person_count=1, postures=standing_posture())

    assert [a.event_type for a in alarm_store.created] == ["BathroomSuspectedFall"]


async def test_scenario_c_bathroom_two_people(ctx, catalog, alarm_store, poll):
    catalog.entities = [area_entity("card-2")]

    for at in (0, 120, 240, 301):
        await poll(at, "card-2", person_count=2, postures=standing_posture())

    assert alarm_store.created == []


async def test_repeated_condition_within_window_persists_once(ctx, catalog, alarm_store, poll):
    ctx.thresholds.bathroom_standing_seconds = 0
    catalog.entities = [area_entity("card-2")]

    await poll(0, "card-2", person_count=1, postures=standing_posture())
    await poll(5, "card-2", person_count=1, postures=standing_posture())

    assert len(alarm_store.created) == 1
    assert ctx.counters["alarms_suppressed"] == 1


async def test_entities_are_isolated(ctx, catalog, alarm_store, poll, write_reading):
    catalog.entities = [bed_entity("card-1"), bed_entity("card-3", bed_id="bed-3")]
    await write_reading("card-3", timestamp=BASE_TS, bed_status="on_bed", heart=60)

    for at in (0, 30, 61):
        await poll(at, "card-1", bed_status="off_bed")

    assert [a.device_id for a in alarm_store.created] == ["card-1"]
