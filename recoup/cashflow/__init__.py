"""Cash-squeeze forecasting and spending pattern analysis."""

from .service import CashSqueezeDetector
from .spending import SpendTransaction, analyze_spending_patterns
from .squeeze import (
    CashPosition,
    UpcomingInvoice,
    build_cash_position,
    detect_cash_squeezes,
    sort_alerts,
)

__all__ = [
    "CashSqueezeDetector",
    "SpendTransaction",
    "analyze_spending_patterns",
    "CashPosition",
    "UpcomingInvoice",
    "build_cash_position",
    "detect_cash_squeezes",
    "sort_alerts",
]
