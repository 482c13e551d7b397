"""
AR Engine Configuration

Single source for every tunable constant the engine uses: contact limits,
incentive caps, stage boundaries, forecasting windows, fee tiers, and
execution limits. Components receive an AREngineConfig; none of them read
settings directly.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from recoup.config import Settings, settings as app_settings


@dataclass(frozen=True)
class FeeTier:
    """Fee percent applied when a recovery is more than `min_days_overdue` late."""
    min_days_overdue: int
    percent: float


DEFAULT_FEE_TIERS: Tuple[FeeTier, ...] = (
    FeeTier(min_days_overdue=90, percent=0.10),
    FeeTier(min_days_overdue=30, percent=0.08),
    FeeTier(min_days_overdue=0, percent=0.05),
)


@dataclass
class AREngineConfig:
    """Configuration for analysis, planning, outreach and attribution."""

    # Contact limits
    max_emails_per_day: int = 50
    max_sms_per_day: int = 20
    min_days_between_contacts: int = 3

    # Incentive caps
    max_discount_percent: float = 10.0
    max_payment_plan_months: int = 6

    # Contact stages: upper bounds (days overdue) of early, moderate, serious.
    # Anything beyond the last bound is severe.
    approaching_due_days: int = 3
    stage_bounds: Tuple[int, int, int] = (10, 21, 45)

    # Urgency
    large_invoice_cents: int = 500_000
    very_large_invoice_cents: int = 1_000_000
    plan_urgency_threshold: int = 20

    # Cash-squeeze forecasting
    cash_squeeze_window_days: int = 30
    spend_history_days: int = 90
    minimum_runway_days: int = 14
    revenue_gap_days: int = 14
    expense_spike_ratio: float = 1.5

    # Success fees
    success_fee_percent: float = 0.08  # projection only
    fee_tiers: List[FeeTier] = field(default_factory=lambda: list(DEFAULT_FEE_TIERS))

    # Payment attribution / recording
    attribution_window_days: int = 14
    idempotency_window_hours: int = 24
    payment_match_tolerance: float = 0.05
    overpayment_tolerance_cents: int = 100
    payment_sync_lookback_days: int = 7

    # Outreach execution
    outreach_batch_size: int = 50
    provider_concurrency: int = 5
    provider_timeout_seconds: float = 30.0
    max_send_attempts: int = 3
    claim_timeout_minutes: int = 15

    def fee_percent_for(self, days_overdue: int) -> float:
        """Tiered success-fee percent for a recovery `days_overdue` late."""
        for tier in sorted(self.fee_tiers, key=lambda t: t.min_days_overdue, reverse=True):
            if days_overdue > tier.min_days_overdue:
                return tier.percent
        return 0.0

    def with_overrides(self, overrides: Optional[Dict[str, Any]] = None) -> "AREngineConfig":
        if not overrides:
            return self
        return replace(self, **overrides)

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "AREngineConfig":
        s = source or app_settings
        return cls(
            max_emails_per_day=s.AR_MAX_EMAILS_PER_DAY,
            max_sms_per_day=s.AR_MAX_SMS_PER_DAY,
            min_days_between_contacts=s.AR_MIN_DAYS_BETWEEN_CONTACTS,
            max_discount_percent=s.AR_MAX_DISCOUNT_PERCENT,
            max_payment_plan_months=s.AR_MAX_PAYMENT_PLAN_MONTHS,
            cash_squeeze_window_days=s.AR_CASH_SQUEEZE_WINDOW_DAYS,
            minimum_runway_days=s.AR_MINIMUM_RUNWAY_DAYS,
            success_fee_percent=s.AR_SUCCESS_FEE_PERCENT,
            outreach_batch_size=s.AR_OUTREACH_BATCH_SIZE,
            provider_concurrency=s.AR_PROVIDER_CONCURRENCY,
            provider_timeout_seconds=s.AR_PROVIDER_TIMEOUT_SECONDS,
        )
