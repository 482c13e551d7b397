"""
Tests for payment risk scoring.

Covers risk tiers, recovery likelihood, payment date prediction and the
history-based payment score.
"""

import pytest
from datetime import date, datetime, timedelta

from recoup.scoring import (
    NEUTRAL_PAYMENT_SCORE,
    PaymentRecord,
    RiskLevel,
    RISK_ORDER,
    average_days_to_payment,
    behavior_tier,
    calculate_payment_score,
    predict_payment_date,
    recovery_likelihood,
    risk_level,
)


class TestRiskLevel:
    """Tests for score -> risk tier mapping."""

    @pytest.mark.parametrize("score,expected", [
        (100, RiskLevel.LOW),
        (80, RiskLevel.LOW),
        (79, RiskLevel.MEDIUM),
        (60, RiskLevel.MEDIUM),
        (59, RiskLevel.HIGH),
        (40, RiskLevel.HIGH),
        (39, RiskLevel.CRITICAL),
        (0, RiskLevel.CRITICAL),
    ])
    def test_tiers(self, score, expected):
        assert risk_level(score) == expected

    def test_non_increasing_in_score(self):
        """A better score never produces a riskier tier."""
        previous = RISK_ORDER.index(risk_level(0))
        for score in range(1, 101):
            current = RISK_ORDER.index(risk_level(score))
            assert current <= previous
            previous = current

    def test_very_old_invoices_escalate_one_tier(self):
        assert risk_level(85, days_overdue=90) == RiskLevel.LOW
        assert risk_level(85, days_overdue=91) == RiskLevel.MEDIUM
        assert risk_level(10, days_overdue=120) == RiskLevel.CRITICAL


class TestRecoveryLikelihood:
    """Tests for the recovery likelihood estimate."""

    def test_fresh_invoice_tracks_score(self):
        assert recovery_likelihood(80, 0, 100_000) == pytest.approx(0.8)

    def test_decays_with_age(self):
        assert recovery_likelihood(80, 30, 100_000) < recovery_likelihood(80, 10, 100_000)

    def test_monotonic_in_score_and_days(self):
        for days in (0, 15, 45, 120):
            values = [recovery_likelihood(score, days, 100_000) for score in range(0, 101, 5)]
            assert values == sorted(values)
        for score in (20, 50, 90):
            values = [recovery_likelihood(score, days, 100_000) for days in range(0, 200, 10)]
            assert values == sorted(values, reverse=True)

    def test_large_amounts_reduce_likelihood(self):
        small = recovery_likelihood(90, 0, 500_000)
        large = recovery_likelihood(90, 0, 2_000_000)
        very_large = recovery_likelihood(90, 0, 6_000_000)
        assert large == pytest.approx(small * 0.9, abs=1e-4)
        assert very_large == pytest.approx(small * 0.9 * 0.85, abs=1e-4)

    def test_clamped(self):
        assert recovery_likelihood(0, 0, 100) == 0.05
        assert recovery_likelihood(100, 0, 100) == 0.99
        assert recovery_likelihood(10, 365, 100) == 0.05


class TestPredictPaymentDate:
    """Tests for the predicted payment date."""

    def test_good_payers_capped_at_five_days(self):
        due = date(2026, 3, 1)
        assert predict_payment_date(due, 20, 85) == due + timedelta(days=5)
        assert predict_payment_date(due, 2, 85) == due + timedelta(days=2)

    def test_unknown_average_defaults_to_thirty_days(self):
        due = date(2026, 3, 1)
        assert predict_payment_date(due, None, 70) == due + timedelta(days=30)

    def test_poor_payers_pushed_out(self):
        due = date(2026, 3, 1)
        assert predict_payment_date(due, 10, 50) == due + timedelta(days=13)
        assert predict_payment_date(due, 10, 20) == due + timedelta(days=29)


class TestPaymentScore:
    """Tests for the history-based payment score."""

    def test_no_history_is_neutral(self):
        assert calculate_payment_score([]) == NEUTRAL_PAYMENT_SCORE
        unpaid = [PaymentRecord(due_date=date(2026, 1, 1), paid_at=None)]
        assert calculate_payment_score(unpaid) == NEUTRAL_PAYMENT_SCORE

    def test_always_on_time_scores_100(self):
        history = [
            PaymentRecord(due_date=date(2026, m, 15), paid_at=datetime(2026, m, 14, 9))
            for m in range(1, 6)
        ]
        assert calculate_payment_score(history) == 100

    def test_late_payers_score_lower(self):
        on_time = [PaymentRecord(date(2026, 1, 15), datetime(2026, 1, 15, 9))]
        late = [PaymentRecord(date(2026, 1, 15), datetime(2026, 2, 14, 9))]
        assert calculate_payment_score(late) < calculate_payment_score(on_time)

    def test_average_days_to_payment(self):
        history = [
            PaymentRecord(date(2026, 1, 10), datetime(2026, 1, 20)),
            PaymentRecord(date(2026, 2, 10), datetime(2026, 2, 8)),
            PaymentRecord(date(2026, 3, 10), None),
        ]
        assert average_days_to_payment(history) == 4.0
        assert average_days_to_payment([]) is None


class TestBehaviorTier:

    @pytest.mark.parametrize("score,tier", [(95, "A"), (80, "A"), (65, "B"), (45, "C"), (10, "D")])
    def test_tiers(self, score, tier):
        assert behavior_tier(score) == tier
