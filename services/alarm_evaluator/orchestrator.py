"""
Per-entity evaluation: read the cached reading, run every rule, dedup and
persist the active alarms, then mirror what the durable store holds to the cache.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from shared.logging import log_event, log_exception
from shared.metrics import (
    alarm_events_created_total,
    alarm_events_suppressed_total,
    alarm_persist_errors_total,
    alarm_rule_errors_total,
    alarm_rules_evaluated_total,
)

from alarm_evaluator.context import TenantContext
from alarm_evaluator.errors import NotFound
from alarm_evaluator.models import AlarmEvent, Entity
from alarm_evaluator.rules.base import Rule
from alarm_evaluator.rules.registry import default_rules

logger = logging.getLogger(__name__)


class Orchestrator:
    def __init__(self, ctx: TenantContext, rules: Optional[Sequence[Rule]] = None):
        self.ctx = ctx
        self.rules = list(rules) if rules is not None else default_rules(ctx.thresholds)

    async def evaluate(self, entity: Entity) -> list[AlarmEvent]:
        """
        Evaluate one entity and return the alarms that were persisted.
        A missing reading is not an error: nothing runs and no state is touched.
        """
        ctx = self.ctx
        try:
            reading = await ctx.cache.get_reading(entity.entity_id)
        except NotFound:
            log_event(logger, "no realtime reading", level="DEBUG", entity_id=entity.entity_id)
            return []

        raised: list[AlarmEvent] = []
        for rule in self.rules:
            if not rule.applies_to(entity):
                continue
            try:
                raised.extend(await rule.evaluate(ctx, entity, reading))
            except Exception as exc:
                ctx.counters["evaluation_errors"] += 1
                alarm_rule_errors_total.labels(tenant_id=ctx.tenant_id, rule=rule.name).inc()
                log_exception(
                    logger,
                    "rule evaluation failed",
                    exc,
                    context={"entity_id": entity.entity_id, "rule": rule.name},
                    exc_info=True,
                )
                continue
            alarm_rules_evaluated_total.labels(tenant_id=ctx.tenant_id, rule=rule.name).inc()

        active = [alarm for alarm in raised if alarm.is_active]
        if not active:
            return []

        persisted, mirrored = await self._persist(entity, active)
        if mirrored:
            try:
                await ctx.cache.put_active_alarms(entity.entity_id, mirrored)
            except Exception as exc:
                alarm_persist_errors_total.labels(tenant_id=ctx.tenant_id, target="cache").inc()
                log_exception(logger, "active alarm cache write failed", exc, context={"entity_id": entity.entity_id})
        return persisted

    async def _persist(self, entity: Entity, alarms: list[AlarmEvent]) -> tuple[list[AlarmEvent], list[AlarmEvent]]:
        """
        Dedup and insert each alarm. Returns (persisted, mirrored): the mirror
        carries only rows the durable store holds, so a suppressed candidate is
        replaced by the recent alarm that suppressed it.
        """
        ctx = self.ctx
        persisted = []
        mirrored = []
        for alarm in alarms:
            context = {"entity_id": entity.entity_id, "event_type": alarm.event_type, "event_id": alarm.event_id}
            try:
                existing = await ctx.alarms.get_recent(
                    alarm.tenant_id, alarm.device_id, alarm.event_type, ctx.settings.dedup_minutes
                )
                if existing is not None:
                    ctx.counters["alarms_suppressed"] += 1
                    alarm_events_suppressed_total.labels(tenant_id=ctx.tenant_id, event_type=alarm.event_type).inc()
                    log_event(
                        logger,
                        "alarm suppressed by recent duplicate",
                        level="DEBUG",
                        existing_event_id=existing.event_id,
                        **context,
                    )
                    mirrored.append(existing)
                    continue
                await ctx.alarms.create(alarm)
            except Exception as exc:
                alarm_persist_errors_total.labels(tenant_id=ctx.tenant_id, target="store").inc()
                log_exception(logger, "alarm persist failed", exc, context=context)
                continue
            ctx.counters["alarms_created"] += 1
            alarm_events_created_total.labels(tenant_id=ctx.tenant_id, event_type=alarm.event_type).inc()
            log_event(
                logger,
                "alarm created",
                alarm_level=alarm.alarm_level,
                category=alarm.category,
                **context,
            )
            persisted.append(alarm)
            mirrored.append(alarm)
        return persisted, mirrored
