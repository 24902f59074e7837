"""
Fall after leaving the bed.

NoTrack -> BaselineObserved (lying on the occupied bed) -> LeftBed (bed
unoccupied, no vitals) -> Confirmed after the dwell, or closed early by an
exit condition: vitals resume, the bed is occupied again, or the tracked
subject walks away normally.

An episode only arms on an occupied -> unoccupied edge (or the first reading
ever seen for the bed). Every exit is terminal for that absence: the bed has
to be occupied again before another episode can start.
"""
from __future__ import annotations

import logging

from shared.logging import log_event

from alarm_evaluator.builder import build_trigger_data
from alarm_evaluator.models import (
    CATEGORY_SAFETY,
    LEVEL_EMERGENCY,
    POSTURE_LYING,
    POSTURE_WALKING,
    SOURCE_SLEEPACE,
    distance_cm,
)
from alarm_evaluator.rules.base import SNOMED_FALLS, Rule, as_position, reading_time
from alarm_evaluator.state import OCCUPANCY_TRACK, BedFallState, BedOccupancyState, load_state, save_state

logger = logging.getLogger(__name__)


class BedFallRule(Rule):
    name = "bed_fall"
    event_type = "Fall"
    category = CATEGORY_SAFETY
    alarm_level = LEVEL_EMERGENCY

    def applies_to(self, entity):
        return entity.is_bed

    @property
    def state_ttl(self) -> int:
        return max(self.thresholds.bed_fall_state_ttl_seconds, int(self.thresholds.bed_fall_dwell_seconds) + 60)

    def exit_conditions(self, entity, reading, state=None):
        if reading.has_vitals:
            return True
        if reading.bed_occupied:
            return True
        track_id = state.track_id if state is not None else ""
        if not track_id:
            return any(p.kind == POSTURE_WALKING for p in reading.postures)
        subject = reading.posture_for(track_id)
        if subject is None:
            return False
        if subject.kind == POSTURE_WALKING:
            return True
        moved = distance_cm(subject.position, as_position(state.left_bed_position))
        return moved is not None and moved > self.thresholds.bed_fall_motion_cm

    async def _track_occupancy(self, ctx, entity, reading, now):
        """Record the occupancy of this reading and return the one seen before it (None if unknown)."""
        key = self.state_key(ctx, entity, OCCUPANCY_TRACK)
        previous = await load_state(ctx.state, key, BedOccupancyState)
        if reading.bed_occupied or reading.bed_unoccupied:
            await save_state(ctx.state, key, BedOccupancyState(reading.bed_occupied, now), self.state_ttl)
        elif previous is not None:
            await ctx.state.extend_ttl(key, self.state_ttl)
        return previous

    async def evaluate(self, ctx, entity, reading):
        if not self.applies_to(entity):
            return []
        key = self.state_key(ctx, entity)
        state = await load_state(ctx.state, key, BedFallState)
        now = reading_time(reading)
        previous = await self._track_occupancy(ctx, entity, reading, now)

        if state is not None and state.armed:
            if self.exit_conditions(entity, reading, state):
                await ctx.state.delete(key)
                log_event(logger, "bed fall episode closed", level="DEBUG", entity_id=entity.entity_id)
                return []
            elapsed = now - state.left_bed_time
            if elapsed >= self.thresholds.bed_fall_dwell_seconds:
                await ctx.state.delete(key)
                return [self._alarm(ctx, entity, reading, state, elapsed)]
            await ctx.state.extend_ttl(key, self.state_ttl)
            return []

        if reading.bed_occupied:
            lying = next((p for p in reading.postures if p.kind == POSTURE_LYING), None)
            if lying is not None:
                baseline = BedFallState(
                    track_id=lying.tracking_id,
                    lying_height=lying.z,
                    lying_position=list(lying.position) if lying.position else None,
                    lying_time=now,
                )
                await save_state(ctx.state, key, baseline, self.state_ttl)
            return []

        if reading.bed_unoccupied and not reading.has_vitals:
            # Same absence as an episode already closed or confirmed.
            if previous is not None and not previous.occupied:
                return []
            if self.exit_conditions(entity, reading, state):
                await ctx.state.delete(key)
                return []
            state = state or BedFallState()
            subject = reading.posture_for(state.track_id) or (reading.postures[0] if reading.postures else None)
            if subject is not None:
                state.track_id = subject.tracking_id
                state.left_bed_position = list(subject.position) if subject.position else None
            state.left_bed_time = now
            await save_state(ctx.state, key, state, self.state_ttl)
            log_event(
                logger,
                "bed exit without vitals, watching for fall",
                level="DEBUG",
                entity_id=entity.entity_id,
                track_id=state.track_id,
            )
        return []

    def _alarm(self, ctx, entity, reading, state, elapsed):
        subject = reading.posture_for(state.track_id)
        trigger = build_trigger_data(
            self.event_type,
            reading.bed_status_source or SOURCE_SLEEPACE,
            posture=subject.posture_code if subject else None,
            posture_display=subject.posture_display if subject else None,
            snomed_code=SNOMED_FALLS[0],
            snomed_display=SNOMED_FALLS[1],
            duration_sec=int(elapsed),
            threshold_duration_sec=int(self.thresholds.bed_fall_dwell_seconds),
        )
        log_event(
            logger,
            "bed fall confirmed",
            entity_id=entity.entity_id,
            track_id=state.track_id,
            duration_sec=int(elapsed),
        )
        return self.build_alarm(
            ctx,
            entity,
            trigger,
            left_bed_time=state.left_bed_time,
            track_id=state.track_id or None,
            lying_height=state.lying_height,
            bed_status=reading.bed_status,
        )
