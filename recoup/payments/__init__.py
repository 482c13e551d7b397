"""
Payment Monitor / Attribution

Records payments from every source through a single entry point,
attributes them to outreach, and accrues success fees into monthly
billing cycles.
"""

from .attribution import (
    Attribution,
    CompletedContact,
    calculate_success_fee,
    days_overdue_at,
    determine_attribution,
)
from .billing import add_to_cycle, get_or_create_open_cycle, get_success_fee_summary, month_bounds
from .locks import KeyedLocks, invoice_locks
from .monitor import PaymentEvent, PaymentMonitor, PaymentResult

__all__ = [
    "Attribution",
    "CompletedContact",
    "calculate_success_fee",
    "days_overdue_at",
    "determine_attribution",
    "add_to_cycle",
    "get_or_create_open_cycle",
    "get_success_fee_summary",
    "month_bounds",
    "KeyedLocks",
    "invoice_locks",
    "PaymentEvent",
    "PaymentMonitor",
    "PaymentResult",
]
