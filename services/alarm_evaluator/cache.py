"""
Typed access to the shared redis cache: realtime readings written by sensor
fusion, and the short-lived mirror of active alarms read by the UI.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable

from shared.logging import log_event

from alarm_evaluator.errors import NotFound
from alarm_evaluator.models import AlarmEvent, Reading

logger = logging.getLogger(__name__)


class CacheGateway:
    def __init__(
        self,
        redis,
        realtime_prefix: str,
        realtime_suffix: str,
        alarm_prefix: str,
        alarm_suffix: str,
        alarm_ttl_seconds: int = 30,
    ):
        self.redis = redis
        self.realtime_prefix = realtime_prefix
        self.realtime_suffix = realtime_suffix
        self.alarm_prefix = alarm_prefix
        self.alarm_suffix = alarm_suffix
        self.alarm_ttl_seconds = alarm_ttl_seconds

    @classmethod
    def from_settings(cls, redis, settings) -> "CacheGateway":
        return cls(
            redis,
            realtime_prefix=settings.realtime_prefix,
            realtime_suffix=settings.realtime_suffix,
            alarm_prefix=settings.alarm_prefix,
            alarm_suffix=settings.alarm_suffix,
            alarm_ttl_seconds=settings.alarm_cache_ttl_seconds,
        )

    def realtime_key(self, entity_id: str) -> str:
        return f"{self.realtime_prefix}{entity_id}{self.realtime_suffix}"

    def alarm_key(self, entity_id: str) -> str:
        return f"{self.alarm_prefix}{entity_id}{self.alarm_suffix}"

    def entity_id_from_key(self, key: str | bytes) -> str | None:
        """Invert realtime_key(); None when the key does not have the realtime shape."""
        if isinstance(key, bytes):
            key = key.decode()
        if not key.startswith(self.realtime_prefix) or not key.endswith(self.realtime_suffix):
            return None
        end = len(key) - len(self.realtime_suffix) if self.realtime_suffix else len(key)
        entity_id = key[len(self.realtime_prefix):end]
        return entity_id or None

    async def get_reading(self, entity_id: str) -> Reading:
        """
        Read the fused realtime reading for an entity.
        Raises NotFound when the key is absent or expired, ValueError on malformed data.
        """
        key = self.realtime_key(entity_id)
        raw = await self.redis.get(key)
        if raw is None:
            raise NotFound(key)
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"malformed realtime reading at {key}: {exc}") from exc
        return Reading.from_dict(payload)

    async def put_active_alarms(self, entity_id: str, alarms: Iterable[AlarmEvent]) -> None:
        """Overwrite the mirror. Callers pass alarms already held by the durable store."""
        key = self.alarm_key(entity_id)
        payload = [alarm.to_dict() for alarm in alarms]
        await self.redis.set(key, json.dumps(payload), ex=self.alarm_ttl_seconds)
        log_event(
            logger,
            "active alarm cache updated",
            level="DEBUG",
            entity_id=entity_id,
            key=key,
            alarm_count=len(payload),
        )

    async def list_entity_ids(self) -> list[str]:
        """Recover entity ids by scanning realtime keys. Degraded-mode enumeration only."""
        pattern = f"{self.realtime_prefix}*{self.realtime_suffix}"
        found = set()
        async for key in self.redis.scan_iter(match=pattern):
            entity_id = self.entity_id_from_key(key)
            if entity_id:
                found.add(entity_id)
        return sorted(found)
