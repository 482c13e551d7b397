"""Payment risk scoring primitives."""

from .risk import (
    RiskLevel,
    RISK_ORDER,
    NEUTRAL_PAYMENT_SCORE,
    PaymentRecord,
    risk_level,
    behavior_tier,
    recovery_likelihood,
    predict_payment_date,
    calculate_payment_score,
    average_days_to_payment,
)

__all__ = [
    "RiskLevel",
    "RISK_ORDER",
    "NEUTRAL_PAYMENT_SCORE",
    "PaymentRecord",
    "risk_level",
    "behavior_tier",
    "recovery_likelihood",
    "predict_payment_date",
    "calculate_payment_score",
    "average_days_to_payment",
]
