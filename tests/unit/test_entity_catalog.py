import json

import pytest

from alarm_evaluator.catalog import EntityCatalog, looks_like_bathroom, parse_devices
from conftest import FakeConn, FakePool

pytestmark = [pytest.mark.unit]


def card_row(card_id, card_type="ActiveBed", devices=None, **overrides):
    row = {
        "card_id": card_id,
        "tenant_id": "tenant-a",
        "card_type": card_type,
        "bed_id": "bed-1" if card_type == "ActiveBed" else None,
        "unit_id": "unit-1",
        "card_name": f"Card {card_id}",
        "devices": devices,
        "room_id": "room-1",
    }
    row.update(overrides)
    return row


async def test_list_entities_maps_rows():
    devices = json.dumps(
        [
            {"device_id": "sp-1", "device_type": "Sleepace", "bed_id": "bed-1"},
            {"device_id": "rd-1", "device_type": "Radar", "bed_id": "bed-1", "room_name": "Room 1"},
        ]
    )
    conn = FakeConn(fetch_rows=[card_row("card-1", devices=devices), card_row("card-2", card_type="Location")])
    catalog = EntityCatalog(FakePool(conn))

    entities = await catalog.list_entities("tenant-a")

    assert [e.entity_id for e in entities] == ["card-1", "card-2"]
    bed, area = entities
    assert bed.is_bed
    assert [d.device_id for d in bed.devices_of_type("radar")] == ["rd-1"]
    assert area.is_area
    assert area.devices == []
    query, args = conn.fetch_calls[0]
    assert "ORDER BY c.card_id" in query
    assert args == ("tenant-a",)


async def test_list_entities_requires_tenant():
    with pytest.raises(ValueError):
        await EntityCatalog(FakePool()).list_entities("")


async def test_is_bathroom_checks_room_and_unit_names():
    conn = FakeConn(fetchrow_result={"room_name": "Room A", "unit_name": "Guest Restroom"})
    assert await EntityCatalog(FakePool(conn)).is_bathroom("tenant-a", "room-1")

    conn = FakeConn(fetchrow_result={"room_name": "Living room", "unit_name": "Unit 3"})
    assert not await EntityCatalog(FakePool(conn)).is_bathroom("tenant-a", "room-1")


async def test_is_bathroom_unknown_room():
    assert not await EntityCatalog(FakePool(FakeConn())).is_bathroom("tenant-a", "room-x")


def test_looks_like_bathroom_keywords():
    assert looks_like_bathroom("Master BATHROOM")
    assert looks_like_bathroom(None, "toilet 2")
    assert not looks_like_bathroom("Bedroom", None)


def test_parse_devices_tolerates_bad_input():
    assert parse_devices(None) == []
    assert parse_devices("not json") == []
    assert parse_devices({"device_id": "x"}) == []
    assert [d.device_id for d in parse_devices([{"device_id": "a"}, "junk"])] == ["a"]
