"""
Payment Risk Scoring

Pure, deterministic primitives shared by the analyzer and the payment
monitor:
- risk_level: payment score (+ age) -> low | medium | high | critical
- recovery_likelihood: probability-like estimate in [0.05, 0.99]
- predict_payment_date: expected payment date from client behavior
- calculate_payment_score: 0-100 score from payment history

None of these touch the database.
"""

import math
import statistics
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Sequence


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

NEUTRAL_PAYMENT_SCORE = 50
DEFAULT_AVG_DAYS_TO_PAYMENT = 30.0

# Invoices this old are treated one tier riskier regardless of score
ESCALATION_DAYS_OVERDUE = 90

MIN_RECOVERY_LIKELIHOOD = 0.05
MAX_RECOVERY_LIKELIHOOD = 0.99


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def risk_level(payment_score: float, days_overdue: int = 0) -> RiskLevel:
    """
    Map a client payment score to a risk tier.

    ≥80 low, ≥60 medium, ≥40 high, otherwise critical. Invoices more than
    90 days overdue escalate one tier. Non-increasing in score.
    """
    if payment_score >= 80:
        level = RiskLevel.LOW
    elif payment_score >= 60:
        level = RiskLevel.MEDIUM
    elif payment_score >= 40:
        level = RiskLevel.HIGH
    else:
        level = RiskLevel.CRITICAL

    if days_overdue > ESCALATION_DAYS_OVERDUE:
        index = min(RISK_ORDER.index(level) + 1, len(RISK_ORDER) - 1)
        level = RISK_ORDER[index]

    return level


def behavior_tier(payment_score: float) -> str:
    """A/B/C/D tier used for client segmentation."""
    if payment_score >= 80:
        return "A"
    if payment_score >= 60:
        return "B"
    if payment_score >= 40:
        return "C"
    return "D"


def recovery_likelihood(payment_score: float, days_overdue: int, amount_due_cents: int) -> float:
    """
    Estimate how likely the outstanding amount is to be recovered.

    Formula: score/100 × e^(-0.02 × days_overdue), reduced ×0.9 above $10k
    and a further ×0.85 above $50k, clamped to [0.05, 0.99].

    Non-decreasing in score, non-increasing in days overdue.
    """
    likelihood = (_clamp(payment_score, 0, 100) / 100) * math.exp(-0.02 * max(0, days_overdue))

    if amount_due_cents > 1_000_000:
        likelihood *= 0.9
    if amount_due_cents > 5_000_000:
        likelihood *= 0.85

    return round(_clamp(likelihood, MIN_RECOVERY_LIKELIHOOD, MAX_RECOVERY_LIKELIHOOD), 4)


def predict_payment_date(
    due_date: date,
    avg_days_to_payment: Optional[float],
    payment_score: float,
) -> date:
    """
    Predict when an invoice will be paid.

    avg_days_to_payment is measured after the due date; unknown clients
    default to 30 days.
    """
    avg = DEFAULT_AVG_DAYS_TO_PAYMENT if avg_days_to_payment is None else max(0.0, avg_days_to_payment)

    if payment_score >= 80:
        expected_days = min(avg, 5)
    elif payment_score >= 60:
        expected_days = avg
    elif payment_score >= 40:
        expected_days = avg * 1.3
    else:
        expected_days = avg * 1.5 + 14

    return due_date + timedelta(days=round(expected_days))


@dataclass
class PaymentRecord:
    """One settled (or still open) invoice in a client's history."""
    due_date: date
    paid_at: Optional[datetime]
    amount_cents: int = 0

    @property
    def days_late(self) -> Optional[int]:
        if self.paid_at is None:
            return None
        return (self.paid_at.date() - self.due_date).days


def calculate_payment_score(history: Sequence[PaymentRecord]) -> int:
    """
    Score a client's payment behavior 0-100.

    Weighted: on-time rate 40%, average lateness 30%, the three most recent
    payments 20%, consistency (std-dev of lateness) 10%. Clients with no
    settled invoices get the neutral score of 50.
    """
    paid = [record for record in history if record.paid_at is not None]
    if not paid:
        return NEUTRAL_PAYMENT_SCORE

    days_late = [max(0, record.days_late) for record in paid]

    on_time_rate = sum(1 for d in days_late if d <= 0) / len(days_late)
    on_time_score = on_time_rate * 100

    avg_days_late = sum(days_late) / len(days_late)
    days_late_score = _clamp(100 - avg_days_late * 2, 0, 100)

    recent = sorted(paid, key=lambda r: r.paid_at, reverse=True)[:3]
    recent_late = [max(0, r.days_late) for r in recent]
    recent_on_time = sum(1 for d in recent_late if d <= 0) / len(recent_late)
    recent_score = recent_on_time * 100

    std_dev = statistics.pstdev(days_late) if len(days_late) > 1 else 0.0
    consistency_score = _clamp(100 - std_dev * 5, 0, 100)

    score = (
        on_time_score * 0.4 +
        days_late_score * 0.3 +
        recent_score * 0.2 +
        consistency_score * 0.1
    )
    return int(round(_clamp(score, 0, 100)))


def average_days_to_payment(history: Sequence[PaymentRecord]) -> Optional[float]:
    """Mean days paid after due (negative = early). None without settled invoices."""
    paid = [record.days_late for record in history if record.paid_at is not None]
    if not paid:
        return None
    return round(sum(paid) / len(paid), 1)
