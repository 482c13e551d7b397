"""
Tests for cash-squeeze detection and spending pattern analysis.
"""

import pytest
from datetime import date, datetime, timedelta

from recoup.cashflow import (
    CashPosition,
    CashSqueezeDetector,
    SpendTransaction,
    UpcomingInvoice,
    analyze_spending_patterns,
    build_cash_position,
    detect_cash_squeezes,
)
from recoup.cashflow.squeeze import (
    detect_expense_spike,
    detect_invoice_clustering,
    detect_low_runway,
    detect_revenue_gaps,
)
from recoup.models import BankAccount, BankTransaction
from recoup.schemas.cashflow import SpendPriority, SqueezeSeverity, SqueezeType

NOW = datetime(2026, 3, 16, 10, 0, 0)
TODAY = NOW.date()


def upcoming(invoice_id: str, amount_cents: int, days_out: int) -> UpcomingInvoice:
    return UpcomingInvoice(invoice_id=invoice_id, amount_due_cents=amount_cents, due_date=TODAY + timedelta(days=days_out))


# =============================================================================
# Unit Tests - Invoice Clustering
# =============================================================================

class TestInvoiceClustering:
    """Three or more invoices due the same day while cash is tight."""

    def test_three_invoices_same_day_below_buffer(self, config):
        """$15,000 across three invoices with the projected balance under the buffer."""
        invoices = [upcoming(f"inv_{i}", 500_000, 10) for i in range(3)]
        position = CashPosition(current_balance_cents=200_000, avg_daily_spend_cents=10_000)

        alerts = detect_cash_squeezes(invoices, position, TODAY, config)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type == SqueezeType.INVOICE_CLUSTERING
        assert alert.severity == SqueezeSeverity.WARNING
        assert alert.date == TODAY + timedelta(days=10)
        assert alert.projected_shortfall_cents == 40_000
        recommendation = alert.recommendations[0]
        assert set(recommendation.target_invoice_ids) == {"inv_0", "inv_1", "inv_2"}
        assert recommendation.potential_impact_cents == 1_050_000
        assert recommendation.discount_percent == 3

    def test_negative_projection_is_critical(self, config):
        invoices = [upcoming(f"inv_{i}", 500_000, 10) for i in range(3)]
        position = CashPosition(current_balance_cents=50_000, avg_daily_spend_cents=10_000)

        alerts = detect_invoice_clustering(invoices, position, TODAY, config)

        assert alerts[0].severity == SqueezeSeverity.CRITICAL

    def test_targets_largest_invoices(self, config):
        invoices = [
            upcoming("small", 100_000, 5),
            upcoming("large", 900_000, 5),
            upcoming("medium", 400_000, 5),
            upcoming("big", 700_000, 5),
        ]
        position = CashPosition(current_balance_cents=100_000, avg_daily_spend_cents=10_000)

        alerts = detect_invoice_clustering(invoices, position, TODAY, config)

        assert alerts[0].recommendations[0].target_invoice_ids == ["large", "big", "medium"]

    def test_healthy_balance_no_alert(self, config):
        invoices = [upcoming(f"inv_{i}", 500_000, 10) for i in range(3)]
        position = CashPosition(current_balance_cents=5_000_000, avg_daily_spend_cents=10_000)
        assert detect_invoice_clustering(invoices, position, TODAY, config) == []

    def test_two_invoices_is_not_a_cluster(self, config):
        invoices = [upcoming(f"inv_{i}", 500_000, 10) for i in range(2)]
        position = CashPosition(current_balance_cents=0, avg_daily_spend_cents=10_000)
        assert detect_invoice_clustering(invoices, position, TODAY, config) == []


# =============================================================================
# Unit Tests - Other Checks
# =============================================================================

class TestRevenueGaps:

    def test_gap_longer_than_threshold(self, config):
        position = CashPosition(current_balance_cents=10_000_000, avg_daily_spend_cents=1_000)

        alerts = detect_revenue_gaps([upcoming("inv_1", 100_000, 20)], position, TODAY, config)

        assert len(alerts) == 1
        assert alerts[0].severity == SqueezeSeverity.WARNING
        assert alerts[0].date == TODAY
        assert alerts[0].projected_shortfall_cents == 20_000

    def test_long_gap_is_critical(self, config):
        position = CashPosition(current_balance_cents=10_000_000, avg_daily_spend_cents=1_000)
        alerts = detect_revenue_gaps([upcoming("inv_1", 100_000, 25)], position, TODAY, config)
        assert alerts[0].severity == SqueezeSeverity.CRITICAL

    def test_invoices_outside_window_are_ignored(self, config):
        position = CashPosition(current_balance_cents=10_000_000, avg_daily_spend_cents=1_000)
        invoices = [upcoming("inv_near", 100_000, 5), upcoming("inv_far", 100_000, 45)]

        alerts = detect_cash_squeezes(invoices, position, TODAY, config)

        assert alerts == []


class TestLowRunway:

    def test_warning_below_minimum(self, config):
        position = CashPosition(current_balance_cents=100_000, avg_daily_spend_cents=10_000)
        invoices = [upcoming("inv_soon", 50_000, 2), upcoming("inv_a", 200_000, 7), upcoming("inv_b", 300_000, 14)]

        alerts = detect_low_runway(invoices, position, TODAY, config)

        assert len(alerts) == 1
        assert alerts[0].severity == SqueezeSeverity.WARNING
        assert alerts[0].projected_shortfall_cents == 40_000
        # Invoices due within 3 days are too close to accelerate
        assert alerts[0].recommendations[0].target_invoice_ids == ["inv_b", "inv_a"]
        assert alerts[0].recommendations[0].potential_impact_cents == 250_000

    def test_critical_under_a_week(self, config):
        position = CashPosition(current_balance_cents=50_000, avg_daily_spend_cents=10_000)
        alerts = detect_low_runway([], position, TODAY, config)
        assert alerts[0].severity == SqueezeSeverity.CRITICAL

    def test_no_spend_no_alert(self, config):
        position = CashPosition(current_balance_cents=0, avg_daily_spend_cents=0)
        assert position.runway_days is None
        assert detect_low_runway([], position, TODAY, config) == []


class TestExpenseSpike:

    def test_spike_detected(self, config):
        outflows = [(TODAY - timedelta(days=45), 60_000), (TODAY - timedelta(days=5), 90_000)]
        position = build_cash_position(10_000_000, outflows, TODAY, config)

        alerts = detect_expense_spike([], position, TODAY, config)

        assert len(alerts) == 1
        assert alerts[0].severity == SqueezeSeverity.CRITICAL
        assert alerts[0].projected_shortfall_cents == 60_000

    def test_moderate_increase_is_warning(self, config):
        outflows = [(TODAY - timedelta(days=45), 60_000), (TODAY - timedelta(days=5), 50_000)]
        position = build_cash_position(10_000_000, outflows, TODAY, config)

        alerts = detect_expense_spike([], position, TODAY, config)

        assert alerts[0].severity == SqueezeSeverity.WARNING

    def test_normal_spend_no_alert(self, config):
        outflows = [(TODAY - timedelta(days=45), 60_000), (TODAY - timedelta(days=5), 30_000)]
        position = build_cash_position(10_000_000, outflows, TODAY, config)
        assert detect_expense_spike([], position, TODAY, config) == []


class TestCashPosition:

    def test_build_cash_position(self, config):
        outflows = [
            (TODAY - timedelta(days=45), 60_000),
            (TODAY - timedelta(days=5), 90_000),
            (TODAY - timedelta(days=120), 1_000_000),  # outside history
            (TODAY - timedelta(days=3), -50_000),       # inflow
        ]

        position = build_cash_position(300_000, outflows, TODAY, config)

        assert position.avg_daily_spend_cents == pytest.approx(150_000 / 90)
        assert position.recent_spend_cents == 90_000
        assert position.baseline_monthly_spend_cents == pytest.approx(30_000)
        assert position.runway_days == pytest.approx(180)

    def test_alerts_sorted_critical_first(self, config):
        invoices = [upcoming(f"inv_{i}", 500_000, 10) for i in range(3)]
        invoices.append(upcoming("inv_late", 100_000, 28))
        position = CashPosition(current_balance_cents=60_000, avg_daily_spend_cents=10_000)

        alerts = detect_cash_squeezes(invoices, position, TODAY, config)

        assert [(a.type, a.severity) for a in alerts] == [
            (SqueezeType.LOW_RUNWAY, SqueezeSeverity.CRITICAL),
            (SqueezeType.INVOICE_CLUSTERING, SqueezeSeverity.CRITICAL),
            (SqueezeType.REVENUE_GAP, SqueezeSeverity.WARNING),
        ]


# =============================================================================
# Unit Tests - Spending Patterns
# =============================================================================

class TestSpendingPatterns:

    def test_groups_by_category(self):
        transactions = [
            SpendTransaction(date(2026, m, 1), 300_000, "Rent") for m in (1, 2, 3)
        ] + [
            SpendTransaction(date(2026, 1, 12), 6_000, "Software subscriptions"),
            SpendTransaction(date(2026, 2, 20), 6_000, "Software subscriptions"),
            SpendTransaction(date(2026, 2, 3), 1_200, "Coffee"),
            SpendTransaction(date(2026, 2, 4), 600, None),
            SpendTransaction(date(2026, 2, 5), -50_000, "Refund"),
        ]

        patterns = analyze_spending_patterns(transactions, months=6)

        assert [p.category for p in patterns] == ["Rent", "Software subscriptions", "Coffee", "Other"]
        rent = patterns[0]
        assert rent.average_monthly_cents == 150_000
        assert rent.is_recurring
        assert rent.recurring_days == [1]
        assert rent.priority == SpendPriority.ESSENTIAL
        assert patterns[1].priority == SpendPriority.IMPORTANT
        assert not patterns[1].is_recurring
        assert patterns[2].priority == SpendPriority.DISCRETIONARY


# =============================================================================
# Integration Tests - CashSqueezeDetector
# =============================================================================

class TestCashSqueezeDetector:

    @pytest.mark.asyncio
    async def test_detects_clustering_from_database(self, db, org, config, make_client, make_invoice):
        client = await make_client()
        for _ in range(3):
            await make_invoice(client, amount_cents=500_000, due_date=TODAY + timedelta(days=10))

        db.add(BankAccount(organization_id=org.id, name="Operating", current_balance_cents=200_000))
        db.add(BankAccount(organization_id=org.id, name="Card", account_type="credit", current_balance_cents=9_000_000))
        db.add(BankTransaction(organization_id=org.id, amount_cents=900_000, date=TODAY - timedelta(days=40), category="Payroll"))
        db.add(BankTransaction(organization_id=org.id, amount_cents=-250_000, date=TODAY - timedelta(days=2), name="Deposit"))
        await db.commit()

        detector = CashSqueezeDetector(db, org.id, config)
        alerts = await detector.detect(NOW)

        assert [a.type for a in alerts] == [SqueezeType.INVOICE_CLUSTERING]
        assert alerts[0].severity == SqueezeSeverity.WARNING

        patterns = await detector.spending_patterns(NOW)
        assert [p.category for p in patterns] == ["Payroll"]
        assert patterns[0].priority == SpendPriority.ESSENTIAL
