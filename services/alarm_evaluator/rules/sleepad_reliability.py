"""
Sleepad reliability: the bed sensor reports vitals while the radar bound to
the same bed sees nobody. Usually electromagnetic or vibration interference.
"""
from __future__ import annotations

import logging

from shared.logging import log_event

from alarm_evaluator.builder import build_trigger_data
from alarm_evaluator.models import CATEGORY_DEVICE, LEVEL_WARNING, SOURCE_RADAR
from alarm_evaluator.rules.base import Rule, reading_time
from alarm_evaluator.state import SleepadReliabilityState, load_state, save_state

logger = logging.getLogger(__name__)


def radar_on_bed(entity) -> bool:
    for device in entity.devices_of_type(SOURCE_RADAR):
        if not device.bed_id:
            continue
        if entity.bed_id is None or device.bed_id == entity.bed_id:
            return True
    return False


class SleepadReliabilityRule(Rule):
    name = "sleepad_reliability"
    event_type = "SleepadUnreliable"
    category = CATEGORY_DEVICE
    alarm_level = LEVEL_WARNING

    def applies_to(self, entity):
        return entity.is_bed

    @property
    def state_ttl(self) -> int:
        return int(self.thresholds.reliability_conflict_seconds) + 120

    def exit_conditions(self, entity, reading, state=None):
        return not reading.has_vitals or reading.presence_detected

    async def evaluate(self, ctx, entity, reading):
        if not self.applies_to(entity):
            return []
        key = self.state_key(ctx, entity)
        if self.exit_conditions(entity, reading):
            await ctx.state.delete(key)
            return []
        if not radar_on_bed(entity):
            return []

        now = reading_time(reading)
        state = await load_state(ctx.state, key, SleepadReliabilityState) or SleepadReliabilityState()
        if state.conflict_since is None:
            state.conflict_since = now
        if reading.heart is not None:
            state.last_hr_time = reading.heart_timestamp or now
        if reading.breath is not None:
            state.last_rr_time = reading.breath_timestamp or now
        state.radar_detected = False

        elapsed = now - state.conflict_since
        if elapsed < self.thresholds.reliability_conflict_seconds:
            await save_state(ctx.state, key, state, self.state_ttl)
            return []

        await ctx.state.delete(key)
        log_event(
            logger,
            "sleepad vitals not corroborated by radar",
            level="WARNING",
            entity_id=entity.entity_id,
            duration_sec=int(elapsed),
        )
        trigger = build_trigger_data(
            self.event_type,
            reading.vitals_source,
            heart_rate=reading.heart,
            respiratory_rate=reading.breath,
            duration_sec=int(elapsed),
            threshold_duration_sec=int(self.thresholds.reliability_conflict_seconds),
        )
        return [
            self.build_alarm(
                ctx,
                entity,
                trigger,
                conflict_since=state.conflict_since,
                last_hr_time=state.last_hr_time,
                last_rr_time=state.last_rr_time,
                person_count=reading.person_count,
            )
        ]
