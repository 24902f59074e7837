"""
Bathroom suspected fall: a single person standing in a bathroom without
moving for too long (e.g. collapsed against a wall, unable to move).
"""
from __future__ import annotations

import logging

from shared.logging import log_event

from alarm_evaluator.builder import build_trigger_data
from alarm_evaluator.catalog import looks_like_bathroom
from alarm_evaluator.models import CATEGORY_SAFETY, LEVEL_ALERT, POSTURE_STANDING, SOURCE_RADAR, distance_cm
from alarm_evaluator.rules.base import Rule, as_position, reading_time
from alarm_evaluator.state import BathroomStandingState, load_state, save_state

logger = logging.getLogger(__name__)


async def is_bathroom(ctx, entity) -> bool:
    names = [d.room_name for d in entity.devices]
    if looks_like_bathroom(*names, entity.name):
        return True
    if entity.room_id:
        return await ctx.catalog.is_bathroom(entity.tenant_id or ctx.tenant_id, entity.room_id)
    return False


class BathroomFallRule(Rule):
    name = "bathroom_fall"
    event_type = "BathroomSuspectedFall"
    category = CATEGORY_SAFETY
    alarm_level = LEVEL_ALERT

    def applies_to(self, entity):
        return entity.is_area

    @property
    def state_ttl(self) -> int:
        return int(self.thresholds.bathroom_standing_seconds) + 120

    def exit_conditions(self, entity, reading, state=None):
        if reading.person_count != 1 or len(reading.postures) != 1:
            return True
        return reading.postures[0].kind != POSTURE_STANDING

    async def evaluate(self, ctx, entity, reading):
        if not self.applies_to(entity):
            return []
        if not await is_bathroom(ctx, entity):
            return []
        key = self.state_key(ctx, entity)
        if self.exit_conditions(entity, reading):
            await ctx.state.delete(key)
            return []

        now = reading_time(reading)
        subject = reading.postures[0]
        position = subject.position
        state = await load_state(ctx.state, key, BathroomStandingState)
        if state is None or state.track_id != subject.tracking_id or state.standing_time is None:
            state = BathroomStandingState(
                track_id=subject.tracking_id,
                standing_time=now,
                last_position=list(position) if position else None,
            )
        else:
            moved = distance_cm(position, as_position(state.last_position))
            if moved is not None:
                state.position_change = moved
                if moved > self.thresholds.bathroom_position_tolerance_cm:
                    state.standing_time = now
                    state.last_position = list(position)
                    state.position_change = 0.0
            elif position is not None:
                state.last_position = list(position)

        elapsed = now - state.standing_time
        if elapsed < self.thresholds.bathroom_standing_seconds:
            await save_state(ctx.state, key, state, self.state_ttl)
            return []

        await ctx.state.delete(key)
        log_event(
            logger,
            "stationary standing in bathroom",
            level="WARNING",
            entity_id=entity.entity_id,
            track_id=subject.tracking_id,
            duration_sec=int(elapsed),
        )
        trigger = build_trigger_data(
            self.event_type,
            SOURCE_RADAR,
            posture=subject.posture_code,
            posture_display=subject.posture_display,
            duration_sec=int(elapsed),
            threshold_duration_sec=int(self.thresholds.bathroom_standing_seconds),
        )
        return [
            self.build_alarm(
                ctx,
                entity,
                trigger,
                track_id=subject.tracking_id,
                standing_since=state.standing_time,
                position_change_cm=round(state.position_change, 1),
            )
        ]
