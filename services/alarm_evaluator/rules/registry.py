from __future__ import annotations

from typing import Optional

from alarm_evaluator.rules.base import Rule
from alarm_evaluator.rules.bathroom_fall import BathroomFallRule
from alarm_evaluator.rules.bed_fall import BedFallRule
from alarm_evaluator.rules.sleepad_reliability import SleepadReliabilityRule
from alarm_evaluator.rules.sudden_disappear import SuddenDisappearRule
from alarm_evaluator.settings import RuleThresholds

RULE_CLASSES = (BedFallRule, SleepadReliabilityRule, BathroomFallRule, SuddenDisappearRule)


def default_rules(thresholds: Optional[RuleThresholds] = None) -> list[Rule]:
    """The fixed rule set, in evaluation order."""
    return [cls(thresholds) for cls in RULE_CLASSES]
