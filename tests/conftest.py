import asyncio
import fnmatch
import json
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
services_path = Path(repo_root) / "services"
if str(services_path) not in sys.path:
    sys.path.insert(0, str(services_path))

from alarm_evaluator.cache import CacheGateway  # noqa: E402
from alarm_evaluator.context import TenantContext  # noqa: E402
from alarm_evaluator.models import KIND_ACTIVE_BED, KIND_LOCATION, DeviceBinding, Entity  # noqa: E402
from alarm_evaluator.settings import RuleThresholds, Settings  # noqa: E402
from alarm_evaluator.state import StateStore  # noqa: E402

TENANT = "tenant-a"
BASE_TS = 1_700_000_000.0


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis with a manual clock for TTLs."""

    def __init__(self):
        self.now = 0.0
        self._data: dict[str, tuple[bytes, float | None]] = {}
        self.set_calls: list[tuple[str, int | None]] = []
        self.closed = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _live(self, key):
        if isinstance(key, bytes):
            key = key.decode()
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.now:
            del self._data[key]
            return None
        return value

    async def get(self, key):
        return self._live(key)

    async def set(self, key, value, ex=None):
        if isinstance(value, str):
            value = value.encode()
        self._data[key] = (value, self.now + ex if ex else None)
        self.set_calls.append((key, ex))
        return True

    async def exists(self, *keys):
        return sum(1 for key in keys if self._live(key) is not None)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                del self._data[key]
                removed += 1
        return removed

    async def expire(self, key, seconds):
        value = self._live(key)
        if value is None:
            return False
        self._data[key] = (value, self.now + seconds)
        return True

    async def ttl(self, key):
        if self._live(key) is None:
            return -2
        expires_at = self._data[key][1]
        return -1 if expires_at is None else int(expires_at - self.now)

    async def scan_iter(self, match=None):
        for key in list(self._data):
            if self._live(key) is None:
                continue
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key.encode()

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return sorted(k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None)


class FakeConn:
    def __init__(self, fetch_rows=None, fetchrow_result=None):
        self.fetch_rows = fetch_rows or []
        self.fetchrow_result = fetchrow_result
        self.executed: list[tuple[str, tuple]] = []
        self.fetch_calls: list[tuple[str, tuple]] = []
        self.fetchrow_calls: list[tuple[str, tuple]] = []

    async def execute(self, query, *args):
        self.executed.append((query, args))
        return "INSERT 0 1"

    async def fetch(self, query, *args):
        self.fetch_calls.append((query, args))
        return self.fetch_rows

    async def fetchrow(self, query, *args):
        self.fetchrow_calls.append((query, args))
        return self.fetchrow_result


class FakePool:
    def __init__(self, conn=None):
        self.conn = conn or FakeConn()

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


class InMemoryAlarmStore:
    """AlarmStore double: keeps created alarms in a list and answers recency lookups from it."""

    def __init__(self):
        self.created = []
        self.fail_create = False

    async def create(self, event):
        if self.fail_create:
            raise RuntimeError("db down")
        self.created.append(event)

    async def get_recent(self, tenant_id, device_id, event_type, window_minutes):
        matches = [
            a
            for a in self.created
            if a.tenant_id == tenant_id and a.device_id == device_id and a.event_type == event_type and a.is_active
        ]
        return matches[-1] if matches else None

    async def has_recent(self, tenant_id, device_id, event_type, window_minutes):
        return await self.get_recent(tenant_id, device_id, event_type, window_minutes) is not None


class FakeCatalog:
    def __init__(self, entities=None, bathrooms=()):
        self.entities = list(entities or [])
        self.bathrooms = set(bathrooms)
        self.fail = False

    async def list_entities(self, tenant_id):
        if self.fail:
            raise RuntimeError("catalog unavailable")
        return list(self.entities)

    async def is_bathroom(self, tenant_id, room_id):
        return room_id in self.bathrooms


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def thresholds():
    return RuleThresholds()


@pytest.fixture
def settings(thresholds):
    return Settings(tenant_ids=[TENANT], thresholds=thresholds)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def alarm_store():
    return InMemoryAlarmStore()


@pytest.fixture
def ctx(settings, fake_redis, catalog, alarm_store):
    return TenantContext(
        tenant_id=TENANT,
        settings=settings,
        cache=CacheGateway.from_settings(fake_redis, settings),
        state=StateStore(fake_redis, settings.state_prefix),
        catalog=catalog,
        alarms=alarm_store,
        stop_event=asyncio.Event(),
    )


@pytest.fixture
def write_reading(fake_redis, settings):
    """Store a realtime reading for an entity the way sensor fusion does."""
    gateway = CacheGateway.from_settings(fake_redis, settings)

    async def _write(entity_id: str, **fields):
        fields.setdefault("timestamp", BASE_TS)
        await fake_redis.set(gateway.realtime_key(entity_id), json.dumps(fields), ex=60)

    return _write


def bed_entity(entity_id="card-1", bed_id="bed-1", radar_bed_id=None, devices=None):
    if devices is None:
        devices = [DeviceBinding(device_id="sp-1", device_type="Sleepace", bed_id=bed_id)]
        if radar_bed_id is not None:
            devices.append(DeviceBinding(device_id="rd-1", device_type="Radar", bed_id=radar_bed_id))
    return Entity(entity_id=entity_id, tenant_id=TENANT, kind=KIND_ACTIVE_BED, bed_id=bed_id, devices=devices)


def area_entity(entity_id="card-2", room_name="Bathroom", room_id=None, name="Unit 101"):
    devices = [DeviceBinding(device_id="rd-2", device_type="Radar", room_id=room_id, room_name=room_name)]
    return Entity(
        entity_id=entity_id,
        tenant_id=TENANT,
        kind=KIND_LOCATION,
        name=name,
        room_id=room_id,
        devices=devices,
    )
