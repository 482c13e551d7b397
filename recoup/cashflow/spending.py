"""Spending pattern analysis over bank outflows."""

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from recoup.schemas.cashflow import SpendingPattern, SpendPriority

SPENDING_HISTORY_MONTHS = 6

ESSENTIAL_CATEGORIES = ["rent", "utilities", "payroll", "loan", "insurance"]
IMPORTANT_CATEGORIES = ["software", "services", "marketing", "supplies"]

# A day of month seen this many times counts as a recurring charge
RECURRING_MIN_OCCURRENCES = 3


@dataclass
class SpendTransaction:
    date: date
    amount_cents: int  # positive = outflow
    category: Optional[str] = None


def classify_priority(category: str) -> SpendPriority:
    lowered = category.lower()
    if any(c in lowered for c in ESSENTIAL_CATEGORIES):
        return SpendPriority.ESSENTIAL
    if any(c in lowered for c in IMPORTANT_CATEGORIES):
        return SpendPriority.IMPORTANT
    return SpendPriority.DISCRETIONARY


def analyze_spending_patterns(
    transactions: Iterable[SpendTransaction],
    months: int = SPENDING_HISTORY_MONTHS,
) -> List[SpendingPattern]:
    """Group outflows by category; largest monthly spend first."""
    amounts: Dict[str, List[int]] = defaultdict(list)
    days: Dict[str, Counter] = defaultdict(Counter)

    for tx in transactions:
        if tx.amount_cents <= 0:
            continue
        category = tx.category or "Other"
        amounts[category].append(tx.amount_cents)
        days[category][tx.date.day] += 1

    patterns = []
    for category, values in amounts.items():
        recurring = sorted(
            day for day, count in days[category].items()
            if count >= RECURRING_MIN_OCCURRENCES
        )
        patterns.append(SpendingPattern(
            category=category,
            average_monthly_cents=int(round(sum(values) / months)),
            recurring_days=recurring,
            is_recurring=bool(recurring),
            transaction_count=len(values),
            priority=classify_priority(category),
        ))

    patterns.sort(key=lambda p: (-p.average_monthly_cents, p.category))
    return patterns
