"""
Sudden disappearance: a radar track drops sharply in height and then
vanishes, after which the area stays empty. The person is likely on the
floor below the radar's field of view.
"""
from __future__ import annotations

import logging

from shared.logging import log_event

from alarm_evaluator.builder import build_trigger_data
from alarm_evaluator.models import CATEGORY_SAFETY, LEVEL_ALERT, SOURCE_RADAR
from alarm_evaluator.rules.base import Rule, reading_time
from alarm_evaluator.state import DisappearWatchState, TrackHeightState, load_state, save_state

logger = logging.getLogger(__name__)


class SuddenDisappearRule(Rule):
    name = "sudden_disappear"
    event_type = "SuddenDisappearance"
    category = CATEGORY_SAFETY
    alarm_level = LEVEL_ALERT

    @property
    def track_ttl(self) -> int:
        return int(self.thresholds.disappear_track_ttl_seconds)

    @property
    def watch_ttl(self) -> int:
        return max(self.track_ttl, int(self.thresholds.disappear_confirm_seconds) + 120)

    def exit_conditions(self, entity, reading, state=None):
        return reading.presence_detected

    async def _observe_track(self, ctx, entity, posture, now) -> None:
        key = self.state_key(ctx, entity, posture.tracking_id)
        history = await load_state(ctx.state, key, TrackHeightState) or TrackHeightState(track_id=posture.tracking_id)
        z = posture.z
        if z is not None:
            history.peak_height = z if history.peak_height is None else max(history.peak_height, z)
            history.last_height = z
            if history.peak_height - z >= self.thresholds.disappear_drop_cm:
                if history.drop_time is None:
                    history.drop_time = now
            else:
                history.drop_time = None
        if posture.position is not None:
            history.last_position = list(posture.position)
        history.last_posture = posture.posture_code or history.last_posture
        history.last_seen = now
        await save_state(ctx.state, key, history, self.track_ttl)

    async def _track_vanished(self, ctx, entity, watch, track_id, reading, now) -> None:
        key = self.state_key(ctx, entity, track_id)
        history = await load_state(ctx.state, key, TrackHeightState)
        await ctx.state.delete(key)
        if history is None or history.drop_time is None:
            return
        if watch.pending or reading.presence_detected:
            return
        watch.track_id = track_id
        watch.last_height = history.last_height
        if history.peak_height is not None and history.last_height is not None:
            watch.drop_cm = history.peak_height - history.last_height
        watch.last_position = history.last_position
        watch.disappear_time = now
        watch.no_activity_since = now
        log_event(
            logger,
            "track vanished after height drop",
            level="DEBUG",
            entity_id=entity.entity_id,
            track_id=track_id,
            drop_cm=watch.drop_cm,
        )

    async def evaluate(self, ctx, entity, reading):
        if not self.applies_to(entity):
            return []
        now = reading_time(reading)
        watch_key = self.state_key(ctx, entity)
        watch = await load_state(ctx.state, watch_key, DisappearWatchState) or DisappearWatchState()

        current = {p.tracking_id: p for p in reading.postures if p.tracking_id}
        for posture in current.values():
            await self._observe_track(ctx, entity, posture, now)

        if watch.pending and self.exit_conditions(entity, reading, watch):
            watch.clear_pending()

        for track_id in watch.known_tracks:
            if track_id not in current:
                await self._track_vanished(ctx, entity, watch, track_id, reading, now)

        alarms = []
        if watch.pending and now - watch.no_activity_since >= self.thresholds.disappear_confirm_seconds:
            alarms.append(self._alarm(ctx, entity, watch, now))
            watch.clear_pending()

        watch.known_tracks = sorted(current)
        if watch.known_tracks or watch.pending:
            await save_state(ctx.state, watch_key, watch, self.watch_ttl)
        else:
            await ctx.state.delete(watch_key)
        return alarms

    def _alarm(self, ctx, entity, watch, now):
        elapsed = now - watch.disappear_time
        log_event(
            logger,
            "sudden disappearance confirmed",
            level="WARNING",
            entity_id=entity.entity_id,
            track_id=watch.track_id,
            duration_sec=int(elapsed),
        )
        trigger = build_trigger_data(
            self.event_type,
            SOURCE_RADAR,
            duration_sec=int(elapsed),
            threshold_duration_sec=int(self.thresholds.disappear_confirm_seconds),
        )
        return self.build_alarm(
            ctx,
            entity,
            trigger,
            track_id=watch.track_id,
            last_height=watch.last_height,
            drop_cm=watch.drop_cm,
            last_position=watch.last_position,
            disappear_time=watch.disappear_time,
        )
