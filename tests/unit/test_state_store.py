import json

import pytest

from alarm_evaluator.errors import NotFound, StateMismatch
from alarm_evaluator.state import (
    BedFallState,
    DisappearWatchState,
    SleepadReliabilityState,
    StateStore,
    decode_state,
    encode_state,
    load_state,
    save_state,
)

pytestmark = [pytest.mark.unit]


def test_state_key_layout():
    store = StateStore(None, "alarm:state:")
    assert store.state_key("card-1", "entity", "bed_fall") == "alarm:state:card-1:track_entity:bed_fall"
    assert store.state_key("card-2", "7", "sudden_disappear") == "alarm:state:card-2:track_7:sudden_disappear"


async def test_set_and_get_round_trip_bytes(fake_redis):
    store = StateStore(fake_redis)
    await store.set_state("k", b"\x00\x01opaque", ttl=10)
    assert await store.get_state("k") == b"\x00\x01opaque"
    assert await store.exists("k")


async def test_get_missing_raises_not_found(fake_redis):
    store = StateStore(fake_redis)
    with pytest.raises(NotFound):
        await store.get_state("missing")


async def test_ttl_expiry_makes_key_absent(fake_redis):
    store = StateStore(fake_redis)
    await store.set_state("k", "v", ttl=5)
    fake_redis.advance(5)
    assert not await store.exists("k")
    with pytest.raises(NotFound):
        await store.get_state("k")


async def test_extend_ttl_keeps_key_alive(fake_redis):
    store = StateStore(fake_redis)
    await store.set_state("k", "v", ttl=5)
    fake_redis.advance(4)
    assert await store.extend_ttl("k", 5)
    fake_redis.advance(4)
    assert await store.exists("k")
    assert not await store.extend_ttl("other", 5)


async def test_delete_is_idempotent(fake_redis):
    store = StateStore(fake_redis)
    await store.set_state("k", "v", ttl=5)
    await store.delete("k")
    await store.delete("k")
    assert not await store.exists("k")


def test_decode_rejects_other_variant():
    raw = encode_state(BedFallState(track_id="t1", left_bed_time=10.0))
    with pytest.raises(StateMismatch):
        decode_state(raw, SleepadReliabilityState)


def test_decode_rejects_garbage():
    with pytest.raises(StateMismatch):
        decode_state(b"not-json", BedFallState)


def test_decode_ignores_unknown_fields():
    raw = json.dumps({"kind": "bed_fall", "data": {"track_id": "t1", "legacy_field": 1}})
    state = decode_state(raw, BedFallState)
    assert state.track_id == "t1"
    assert not state.armed


async def test_load_state_round_trip(fake_redis):
    store = StateStore(fake_redis)
    watch = DisappearWatchState(known_tracks=["1", "2"], track_id="2", disappear_time=5.0, no_activity_since=5.0)
    await save_state(store, "w", watch, ttl=60)

    loaded = await load_state(store, "w", DisappearWatchState)

    assert loaded == watch
    assert loaded.pending


async def test_load_state_discards_foreign_blob(fake_redis):
    store = StateStore(fake_redis)
    await save_state(store, "k", SleepadReliabilityState(conflict_since=1.0), ttl=60)

    assert await load_state(store, "k", BedFallState) is None
    assert not await store.exists("k")


async def test_load_state_absent_returns_none(fake_redis):
    assert await load_state(StateStore(fake_redis), "nothing", BedFallState) is None
