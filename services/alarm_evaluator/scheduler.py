"""
Per-tenant poll loop.

One pass runs immediately, then one per interval until the stop event is set.
A pass that overruns the interval skips the missed ticks instead of queueing them.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Iterator, Sequence, TypeVar

from shared.logging import log_event, log_exception, trace_id_var
from shared.metrics import alarm_entities_evaluated, alarm_pass_duration_seconds, alarm_pass_errors_total

from alarm_evaluator.context import TenantContext
from alarm_evaluator.models import Entity
from alarm_evaluator.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class PollLoop:
    def __init__(self, ctx: TenantContext, orchestrator: Orchestrator):
        self.ctx = ctx
        self.orchestrator = orchestrator

    @property
    def stopped(self) -> bool:
        return self.ctx.stop_event.is_set()

    async def run(self) -> None:
        interval = self.ctx.settings.poll_interval_seconds
        log_event(logger, "poll loop started", tenant_id=self.ctx.tenant_id, interval=interval)
        next_tick = time.monotonic()
        while not self.stopped:
            await self.run_pass()
            next_tick += interval
            now = time.monotonic()
            if next_tick <= now:
                skipped = int((now - next_tick) // interval) + 1
                next_tick += skipped * interval
                log_event(logger, "pass overran interval", level="WARNING", tenant_id=self.ctx.tenant_id, skipped=skipped)
            try:
                await asyncio.wait_for(self.ctx.stop_event.wait(), timeout=max(0.0, next_tick - time.monotonic()))
            except asyncio.TimeoutError:
                pass
        log_event(logger, "poll loop stopped", tenant_id=self.ctx.tenant_id)

    async def list_entities(self) -> list[Entity]:
        ctx = self.ctx
        if ctx.settings.entity_source == "cache_scan":
            entity_ids = await ctx.cache.list_entity_ids()
            return [Entity(entity_id=entity_id, tenant_id=ctx.tenant_id) for entity_id in entity_ids]
        return await ctx.catalog.list_entities(ctx.tenant_id)

    async def run_pass(self) -> int:
        """Evaluate every entity once. Returns the number of alarms persisted."""
        ctx = self.ctx
        trace_token = trace_id_var.set(str(uuid.uuid4()))
        pass_start = time.monotonic()
        persisted = 0
        evaluated = 0
        try:
            logger.info("tick_start", extra={"tick": "alarm_pass", "tenant_id": ctx.tenant_id})
            try:
                entities = await self.list_entities()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                alarm_pass_errors_total.labels(tenant_id=ctx.tenant_id, stage="listing").inc()
                log_exception(logger, "entity listing failed, pass aborted", exc, context={"tenant_id": ctx.tenant_id})
                return 0

            for batch in batched(entities, ctx.settings.batch_size):
                if self.stopped:
                    break
                try:
                    for entity in batch:
                        if self.stopped:
                            break
                        evaluated += 1
                        persisted += await self._evaluate_entity(entity)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    alarm_pass_errors_total.labels(tenant_id=ctx.tenant_id, stage="batch").inc()
                    log_exception(logger, "batch evaluation failed", exc, context={"tenant_id": ctx.tenant_id})

            ctx.counters["passes"] += 1
            ctx.counters["entities_evaluated"] += evaluated
            ctx.counters["last_pass_at"] = time.time()
            logger.info(
                "tick_done",
                extra={
                    "tick": "alarm_pass",
                    "tenant_id": ctx.tenant_id,
                    "entities": evaluated,
                    "alarms_created": persisted,
                },
            )
            return persisted
        finally:
            alarm_entities_evaluated.labels(tenant_id=ctx.tenant_id).set(evaluated)
            alarm_pass_duration_seconds.labels(tenant_id=ctx.tenant_id).observe(time.monotonic() - pass_start)
            trace_id_var.reset(trace_token)

    async def _evaluate_entity(self, entity: Entity) -> int:
        try:
            return len(await self.orchestrator.evaluate(entity))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.ctx.counters["evaluation_errors"] += 1
            alarm_pass_errors_total.labels(tenant_id=self.ctx.tenant_id, stage="entity").inc()
            log_exception(logger, "entity evaluation failed", exc, context={"entity_id": entity.entity_id})
            return 0
