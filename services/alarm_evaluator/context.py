from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from alarm_evaluator.alarm_store import AlarmStore
from alarm_evaluator.builder import AlarmEventBuilder
from alarm_evaluator.cache import CacheGateway
from alarm_evaluator.catalog import EntityCatalog
from alarm_evaluator.settings import Settings
from alarm_evaluator.state import StateStore


@dataclass
class TenantContext:
    """Everything one tenant's evaluation loop touches. Never shared across tenants."""
    tenant_id: str
    settings: Settings
    cache: CacheGateway
    state: StateStore
    catalog: EntityCatalog
    alarms: AlarmStore
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    counters: dict = field(
        default_factory=lambda: {
            "passes": 0,
            "entities_evaluated": 0,
            "alarms_created": 0,
            "alarms_suppressed": 0,
            "evaluation_errors": 0,
            "last_pass_at": None,
        }
    )

    @property
    def thresholds(self):
        return self.settings.thresholds

    def builder_for(self, entity_id: str) -> AlarmEventBuilder:
        return AlarmEventBuilder(self.tenant_id, entity_id)

    @classmethod
    def create(cls, tenant_id: str, settings: Settings, pool, redis, stop_event=None) -> "TenantContext":
        return cls(
            tenant_id=tenant_id,
            settings=settings,
            cache=CacheGateway.from_settings(redis, settings),
            state=StateStore(redis, settings.state_prefix),
            catalog=EntityCatalog(pool),
            alarms=AlarmStore(pool),
            stop_event=stop_event or asyncio.Event(),
        )
