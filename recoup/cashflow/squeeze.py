"""
Cash-Squeeze Detection

Forward-looking checks over the next `cash_squeeze_window_days` of
expected invoice inflows against the organization's trailing spend:

1. Invoice clustering - 3+ invoices due the same day while the projected
   balance on that day sits below the runway buffer
2. Revenue gap - more than `revenue_gap_days` without an expected inflow
3. Low runway - balance covers fewer than `minimum_runway_days` of spend
4. Expense spike - the last 30 days of spend well above the trailing norm

All functions are pure; CashSqueezeDetector (service.py) gathers the data.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from recoup.engines.config import AREngineConfig
from recoup.schemas.cashflow import (
    CashSqueezeAlert,
    CashSqueezeRecommendation,
    SqueezeSeverity,
    SqueezeType,
)

RECENT_SPEND_DAYS = 30


@dataclass
class UpcomingInvoice:
    invoice_id: str
    amount_due_cents: int
    due_date: date


@dataclass
class CashPosition:
    current_balance_cents: int
    avg_daily_spend_cents: float
    recent_spend_cents: int = 0  # last 30 days
    baseline_monthly_spend_cents: float = 0.0  # monthly average before the last 30 days

    @property
    def runway_days(self) -> Optional[float]:
        if self.avg_daily_spend_cents <= 0:
            return None
        return self.current_balance_cents / self.avg_daily_spend_cents


def build_cash_position(
    current_balance_cents: int,
    outflows: Iterable[Tuple[date, int]],
    today: date,
    config: AREngineConfig,
) -> CashPosition:
    """Derive spend rates from (date, amount) outflows over the trailing history."""
    history_start = today - timedelta(days=config.spend_history_days)
    recent_start = today - timedelta(days=RECENT_SPEND_DAYS)

    total = 0
    recent = 0
    for tx_date, amount in outflows:
        if amount <= 0 or tx_date < history_start or tx_date > today:
            continue
        total += amount
        if tx_date >= recent_start:
            recent += amount

    baseline_days = config.spend_history_days - RECENT_SPEND_DAYS
    baseline_monthly = (total - recent) / baseline_days * 30 if baseline_days > 0 else 0.0

    return CashPosition(
        current_balance_cents=current_balance_cents,
        avg_daily_spend_cents=total / config.spend_history_days if config.spend_history_days else 0.0,
        recent_spend_cents=recent,
        baseline_monthly_spend_cents=baseline_monthly,
    )


def _dollars(cents: float) -> str:
    return f"${cents / 100:,.2f}"


def _largest(invoices: Sequence[UpcomingInvoice], limit: int) -> List[UpcomingInvoice]:
    return sorted(invoices, key=lambda i: (-i.amount_due_cents, i.due_date, i.invoice_id))[:limit]


# =============================================================================
# Checks
# =============================================================================

def detect_invoice_clustering(
    upcoming: Sequence[UpcomingInvoice],
    position: CashPosition,
    today: date,
    config: AREngineConfig,
) -> List[CashSqueezeAlert]:
    by_date: Dict[date, List[UpcomingInvoice]] = defaultdict(list)
    for invoice in upcoming:
        by_date[invoice.due_date].append(invoice)

    buffer = position.avg_daily_spend_cents * config.minimum_runway_days
    alerts = []
    for due_date in sorted(by_date):
        invoices = by_date[due_date]
        if len(invoices) < 3:
            continue

        days_until = (due_date - today).days
        projected_balance = position.current_balance_cents - position.avg_daily_spend_cents * days_until
        if projected_balance >= buffer:
            continue

        total_due = sum(i.amount_due_cents for i in invoices)
        targets = _largest(invoices, 3)
        alerts.append(CashSqueezeAlert(
            type=SqueezeType.INVOICE_CLUSTERING,
            severity=SqueezeSeverity.CRITICAL if projected_balance < 0 else SqueezeSeverity.WARNING,
            date=due_date,
            description=(
                f"{len(invoices)} invoices totaling {_dollars(total_due)} are all due on "
                f"{due_date.isoformat()}. If any are late, you could face a cash squeeze."
            ),
            projected_shortfall_cents=int(round(max(0.0, buffer - projected_balance))),
            recommendations=[CashSqueezeRecommendation(
                action="Incentivize early payment on largest invoices",
                potential_impact_cents=int(round(total_due * 0.7)),
                target_invoice_ids=[i.invoice_id for i in targets],
                incentive_type="early_pay_discount",
                discount_percent=3,
                reasoning=(
                    f"{len(invoices)} invoices totaling {_dollars(total_due)} all due on "
                    f"{due_date.isoformat()}. Spreading payments reduces risk."
                ),
            )],
        ))
    return alerts


def detect_revenue_gaps(
    upcoming: Sequence[UpcomingInvoice],
    position: CashPosition,
    today: date,
    config: AREngineConfig,
) -> List[CashSqueezeAlert]:
    alerts = []
    previous = today
    for due_date in sorted({i.due_date for i in upcoming}):
        gap_days = (due_date - previous).days
        if gap_days > config.revenue_gap_days:
            gap_spend = int(round(position.avg_daily_spend_cents * gap_days))
            alerts.append(CashSqueezeAlert(
                type=SqueezeType.REVENUE_GAP,
                severity=SqueezeSeverity.CRITICAL if gap_days > 21 else SqueezeSeverity.WARNING,
                date=previous,
                description=(
                    f"No invoice payments expected for {gap_days} days "
                    f"({previous.isoformat()} to {due_date.isoformat()}). "
                    f"Expected spending: {_dollars(gap_spend)}"
                ),
                projected_shortfall_cents=gap_spend,
                recommendations=[
                    CashSqueezeRecommendation(
                        action="Accelerate billing for completed work",
                        potential_impact_cents=gap_spend,
                        reasoning="Send invoices earlier to fill the revenue gap",
                    ),
                    CashSqueezeRecommendation(
                        action="Request deposits on upcoming projects",
                        potential_impact_cents=int(round(gap_spend * 0.5)),
                        incentive_type="deposit_request",
                        reasoning="Deposits provide cash before work is complete",
                    ),
                ],
            ))
        previous = due_date
    return alerts


def detect_low_runway(
    upcoming: Sequence[UpcomingInvoice],
    position: CashPosition,
    today: date,
    config: AREngineConfig,
) -> List[CashSqueezeAlert]:
    runway = position.runway_days
    if runway is None or runway >= config.minimum_runway_days:
        return []

    candidates = [
        i for i in upcoming
        if 3 < (i.due_date - today).days <= 21
    ]
    targets = _largest(candidates, 5)
    accelerable = sum(i.amount_due_cents for i in targets)

    return [CashSqueezeAlert(
        type=SqueezeType.LOW_RUNWAY,
        severity=SqueezeSeverity.CRITICAL if runway < 7 else SqueezeSeverity.WARNING,
        date=today,
        description=(
            f"Current runway is only {round(max(runway, 0))} days based on average "
            f"spending of {_dollars(position.avg_daily_spend_cents)}/day."
        ),
        projected_shortfall_cents=int(round(
            position.avg_daily_spend_cents * (config.minimum_runway_days - runway)
        )),
        recommendations=[CashSqueezeRecommendation(
            action="Offer early payment discounts on upcoming invoices",
            potential_impact_cents=int(round(accelerable * 0.5)),
            target_invoice_ids=[i.invoice_id for i in targets],
            incentive_type="early_pay_discount",
            discount_percent=5,
            reasoning=(
                f"{len(targets)} invoices totaling {_dollars(accelerable)} "
                f"could be accelerated with incentives"
            ),
        )],
    )]


def detect_expense_spike(
    upcoming: Sequence[UpcomingInvoice],
    position: CashPosition,
    today: date,
    config: AREngineConfig,
) -> List[CashSqueezeAlert]:
    baseline = position.baseline_monthly_spend_cents
    if baseline <= 0:
        return []

    ratio = position.recent_spend_cents / baseline
    if ratio <= config.expense_spike_ratio:
        return []

    excess = int(round(position.recent_spend_cents - baseline))
    targets = _largest(upcoming, 3)
    return [CashSqueezeAlert(
        type=SqueezeType.EXPENSE_SPIKE,
        severity=SqueezeSeverity.CRITICAL if ratio > 2 else SqueezeSeverity.WARNING,
        date=today,
        description=(
            f"Spending over the last {RECENT_SPEND_DAYS} days ({_dollars(position.recent_spend_cents)}) "
            f"is {ratio:.1f}x the usual monthly level ({_dollars(baseline)})."
        ),
        projected_shortfall_cents=excess,
        recommendations=[
            CashSqueezeRecommendation(
                action="Defer discretionary spending",
                potential_impact_cents=excess,
                reasoning="Bring spending back toward its usual monthly level",
            ),
            CashSqueezeRecommendation(
                action="Encourage early payment on largest upcoming invoices",
                potential_impact_cents=int(round(sum(i.amount_due_cents for i in targets) * 0.5)),
                target_invoice_ids=[i.invoice_id for i in targets],
                incentive_type="early_pay_discount",
                discount_percent=3,
                reasoning="Earlier inflows offset the spending spike",
            ),
        ],
    )]


CHECKS = (
    detect_invoice_clustering,
    detect_revenue_gaps,
    detect_low_runway,
    detect_expense_spike,
)


def sort_alerts(alerts: Iterable[CashSqueezeAlert]) -> List[CashSqueezeAlert]:
    """Critical before warning, then by date ascending."""
    return sorted(
        alerts,
        key=lambda a: (0 if a.severity == SqueezeSeverity.CRITICAL else 1, a.date),
    )


def detect_cash_squeezes(
    upcoming: Sequence[UpcomingInvoice],
    position: CashPosition,
    today: date,
    config: AREngineConfig,
) -> List[CashSqueezeAlert]:
    window_end = today + timedelta(days=config.cash_squeeze_window_days)
    in_window = [i for i in upcoming if today <= i.due_date <= window_end]

    alerts: List[CashSqueezeAlert] = []
    for check in CHECKS:
        alerts.extend(check(in_window, position, today, config))
    return sort_alerts(alerts)
