"""
Payment attribution and success-fee calculation.

Pure functions. The monitor loads the completed actions and hands them in;
nothing here touches the database.

Attribution rules:
- No completed action in the attribution window -> organic, high confidence
- Otherwise the most recent completed action wins; confidence decays with
  the time between that action and the payment:
    <= 7 days   full     1.0
    <= 14 days  reduced  0.7
    beyond      low      0.4
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from recoup.engines.config import AREngineConfig
from recoup.models import ActionType, AttributionType

ORGANIC_CONFIDENCE = 0.9
FULL_CONFIDENCE_DAYS = 7
REDUCED_CONFIDENCE_DAYS = 14

ACTION_ATTRIBUTION = {
    ActionType.EMAIL.value: AttributionType.EMAIL,
    ActionType.SMS.value: AttributionType.SMS,
    ActionType.CALL.value: AttributionType.CALL,
    ActionType.PAYMENT_LINK.value: AttributionType.PAYMENT_LINK,
    ActionType.DISCOUNT_OFFER.value: AttributionType.DISCOUNT,
    ActionType.PAYMENT_PLAN.value: AttributionType.PAYMENT_PLAN,
}


@dataclass(frozen=True)
class CompletedContact:
    action_id: str
    action_type: str
    completed_at: datetime


@dataclass(frozen=True)
class Attribution:
    type: AttributionType
    action_id: Optional[str]
    confidence: float
    confidence_label: str

    @property
    def is_organic(self) -> bool:
        return self.type == AttributionType.ORGANIC


def determine_attribution(contacts: Iterable[CompletedContact], paid_at: datetime) -> Attribution:
    """Attribute a payment to the most recent completed contact before it."""
    prior = [c for c in contacts if c.completed_at <= paid_at]
    if not prior:
        return Attribution(AttributionType.ORGANIC, None, ORGANIC_CONFIDENCE, "high")

    latest = max(prior, key=lambda c: c.completed_at)
    elapsed_days = (paid_at - latest.completed_at).total_seconds() / 86400

    if elapsed_days <= FULL_CONFIDENCE_DAYS:
        confidence, label = 1.0, "full"
    elif elapsed_days <= REDUCED_CONFIDENCE_DAYS:
        confidence, label = 0.7, "reduced"
    else:
        confidence, label = 0.4, "low"

    attribution_type = ACTION_ATTRIBUTION.get(latest.action_type, AttributionType.EMAIL)
    return Attribution(attribution_type, latest.action_id, confidence, label)


def days_overdue_at(due_date: date, paid_at: datetime) -> int:
    return max(0, (paid_at.date() - due_date).days)


def calculate_success_fee(
    recovered_amount_cents: int,
    days_overdue: int,
    attribution: Attribution,
    config: AREngineConfig,
) -> tuple:
    """
    Returns (fee_percent, fee_amount_cents).

    Zero unless the payment is attributed to outreach and the invoice was
    overdue when it was recovered.
    """
    if attribution.is_organic or days_overdue <= 0:
        return 0.0, 0
    percent = config.fee_percent_for(days_overdue)
    return percent, int(round(recovered_amount_cents * percent))
