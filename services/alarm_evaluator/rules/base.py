from __future__ import annotations

import time
from typing import Optional

from alarm_evaluator.models import AlarmEvent, Entity, Reading, TriggerData
from alarm_evaluator.settings import RuleThresholds
from alarm_evaluator.state import ENTITY_TRACK

# SNOMED CT "Falls"
SNOMED_FALLS = ("161898004", "Falls")


def reading_time(reading: Reading) -> float:
    """Rules measure durations on the fusion clock; wall clock only when the reading has none."""
    return reading.timestamp if reading.timestamp else time.time()


def as_position(value) -> Optional[tuple[float, float]]:
    if not value or len(value) < 2:
        return None
    return (float(value[0]), float(value[1]))


class Rule:
    """
    One detection rule.

    evaluate() reads/writes only state keys carrying the rule's own name and
    returns the alarms it raised on this reading (possibly none).
    exit_conditions() reports whether the reading ends an in-progress episode.
    """

    name = ""
    event_type = ""
    category = ""
    alarm_level = ""

    def __init__(self, thresholds: Optional[RuleThresholds] = None):
        self.thresholds = thresholds or RuleThresholds()

    def applies_to(self, entity: Entity) -> bool:
        return True

    async def evaluate(self, ctx, entity: Entity, reading: Reading) -> list[AlarmEvent]:
        raise NotImplementedError

    def exit_conditions(self, entity: Entity, reading: Reading, state=None) -> bool:
        return False

    def state_key(self, ctx, entity: Entity, track_id: str = ENTITY_TRACK) -> str:
        return ctx.state.state_key(entity.entity_id, track_id, self.name)

    def build_alarm(self, ctx, entity: Entity, trigger: TriggerData, **metadata) -> AlarmEvent:
        metadata.setdefault("rule", self.name)
        metadata.setdefault("entity_kind", entity.kind)
        return ctx.builder_for(entity.entity_id).build(
            self.event_type,
            self.category,
            self.alarm_level,
            trigger,
            metadata,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
