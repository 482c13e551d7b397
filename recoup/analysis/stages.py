"""
Contact stages.

One table drives both the analyzer's action mix and the plan builder's
message tone, so an invoice is never nudged with an urgent action while
being addressed in a friendly voice.
"""

from enum import Enum

from recoup.engines.config import AREngineConfig
from recoup.models.action import OutreachTone


class ContactStage(str, Enum):
    NOT_DUE = "not_due"          # Due later than the approaching window
    APPROACHING = "approaching"  # Due within a few days
    EARLY = "early"              # 1..bounds[0] days overdue
    MODERATE = "moderate"        # ..bounds[1]
    SERIOUS = "serious"          # ..bounds[2]
    SEVERE = "severe"            # beyond bounds[2]


STAGE_TONES = {
    ContactStage.NOT_DUE: OutreachTone.FRIENDLY,
    ContactStage.APPROACHING: OutreachTone.FRIENDLY,
    ContactStage.EARLY: OutreachTone.FRIENDLY,
    ContactStage.MODERATE: OutreachTone.REMINDER,
    ContactStage.SERIOUS: OutreachTone.URGENT,
    ContactStage.SEVERE: OutreachTone.FINAL,
}


def classify_stage(days_overdue: int, days_to_due: int, config: AREngineConfig) -> ContactStage:
    if days_overdue <= 0:
        if days_to_due <= config.approaching_due_days:
            return ContactStage.APPROACHING
        return ContactStage.NOT_DUE

    early, moderate, serious = config.stage_bounds
    if days_overdue <= early:
        return ContactStage.EARLY
    if days_overdue <= moderate:
        return ContactStage.MODERATE
    if days_overdue <= serious:
        return ContactStage.SERIOUS
    return ContactStage.SEVERE


def tone_for_stage(stage: ContactStage) -> OutreachTone:
    return STAGE_TONES[ContactStage(stage)]
