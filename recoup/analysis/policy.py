"""
Invoice Analysis Policy

Pure functions that turn one InvoiceContext into an InvoiceAnalysis:

1. Age the invoice (days overdue / days to due) and classify its contact stage
2. Score risk, recovery likelihood and predicted payment date
3. Compute an urgency score (0-100) used to rank invoices
4. Recommend a staged mix of outreach actions, scheduled around the
   minimum contact interval and the client's learned best contact time

Nothing here touches the database; InvoiceAnalyzer (engine.py) loads the
contexts and calls analyze_invoices().
"""

import math
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence

from recoup.engines.config import AREngineConfig
from recoup.models.action import ActionType
from recoup.schemas.outreach import EarlyPayDiscount, PaymentPlanOffer
from recoup.scoring.risk import (
    NEUTRAL_PAYMENT_SCORE,
    RiskLevel,
    predict_payment_date,
    recovery_likelihood,
    risk_level,
)

from .models import InvoiceAnalysis, InvoiceContext, RecommendedAction
from .stages import ContactStage, classify_stage

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

# Follow-up actions within a stage are spaced this far after the lead action
FOLLOW_UP_OFFSET_DAYS = 2


# =============================================================================
# Urgency
# =============================================================================

def urgency_score(
    days_overdue: int,
    days_to_due: int,
    amount_due_cents: int,
    risk: RiskLevel,
    config: AREngineConfig,
) -> int:
    """
    Rank how soon an invoice needs attention.

    Overdue: 40 + 2 per day overdue (capped at 100). Not yet due: 30 - 4 per
    day until due (floored at 0). Large amounts add +20, very large a further
    +10; high risk adds +15, critical +25. Result clamped to [0, 100].
    """
    if days_overdue > 0:
        score = min(100, 40 + 2 * days_overdue)
    else:
        score = max(0, 30 - 4 * days_to_due)

    if amount_due_cents > config.large_invoice_cents:
        score += 20
    if amount_due_cents > config.very_large_invoice_cents:
        score += 10

    if risk == RiskLevel.HIGH:
        score += 15
    elif risk == RiskLevel.CRITICAL:
        score += 25

    return max(0, min(100, score))


# =============================================================================
# Scheduling
# =============================================================================

def next_contact_time(
    now: datetime,
    last_contact_at: Optional[datetime],
    min_days_between_contacts: int,
    best_contact_day: Optional[str] = None,
    best_contact_hour: Optional[int] = None,
) -> datetime:
    """
    Earliest acceptable contact time.

    Never sooner than `min_days_between_contacts` after the last completed
    contact. A learned weekday advances the date to that weekday; a learned
    hour pins the time of day. If pinning lands before the floor, the
    candidate moves forward a week (weekday pinned) or a day.
    """
    earliest = now
    if last_contact_at is not None:
        earliest = max(now, last_contact_at + timedelta(days=min_days_between_contacts))

    candidate = earliest
    weekday = WEEKDAYS.index(best_contact_day.lower()) if best_contact_day and best_contact_day.lower() in WEEKDAYS else None

    if weekday is not None:
        candidate += timedelta(days=(weekday - candidate.weekday()) % 7)

    if best_contact_hour is not None and 0 <= best_contact_hour <= 23:
        candidate = candidate.replace(hour=best_contact_hour, minute=0, second=0, microsecond=0)

    step = timedelta(days=7 if weekday is not None else 1)
    while candidate < earliest:
        candidate += step

    return candidate


# =============================================================================
# Staged action policy
# =============================================================================

def _discount_offer(amount_due_cents: int, percent: float, sent_at: datetime, valid_days: int, reason: str) -> EarlyPayDiscount:
    return EarlyPayDiscount(
        discount_percent=percent,
        discount_amount_cents=int(round(amount_due_cents * percent / 100)),
        expires_at=sent_at + timedelta(days=valid_days),
        reason=reason,
    )


def _payment_plan_offer(amount_due_cents: int, months: int, sent_at: datetime, valid_days: int, reason: str) -> PaymentPlanOffer:
    return PaymentPlanOffer(
        months=months,
        monthly_amount_cents=int(math.ceil(amount_due_cents / months)),
        expires_at=sent_at + timedelta(days=valid_days),
        reason=reason,
    )


def recommend_actions(
    stage: ContactStage,
    amount_due_cents: int,
    days_overdue: int,
    days_to_due: int,
    base_time: datetime,
    config: AREngineConfig,
    has_email: bool = True,
    has_phone: bool = False,
) -> List[RecommendedAction]:
    """
    Staged contact policy. Returns actions sorted by priority, highest first.

    Email-delivered actions need a client email and SMS needs a phone; a
    call becomes a manual task and needs neither.
    """
    follow_up_time = base_time + timedelta(days=FOLLOW_UP_OFFSET_DAYS)
    actions: List[RecommendedAction] = []

    if stage == ContactStage.APPROACHING:
        if has_email:
            actions.append(RecommendedAction(
                type=ActionType.EMAIL,
                priority=6,
                scheduled_for=base_time,
                reasoning=f"Friendly reminder, due in {days_to_due} day(s)",
                expected_response_rate=0.25,
            ))

    elif stage == ContactStage.EARLY:
        if has_email:
            actions.append(RecommendedAction(
                type=ActionType.EMAIL,
                priority=7,
                scheduled_for=base_time,
                reasoning=f"Polite follow-up, {days_overdue} day(s) overdue",
                expected_response_rate=0.35,
            ))
            actions.append(RecommendedAction(
                type=ActionType.PAYMENT_LINK,
                priority=8,
                scheduled_for=base_time,
                reasoning="One-click payment removes friction early",
                expected_response_rate=0.40,
            ))

    elif stage == ContactStage.MODERATE:
        percent = min(5.0, config.max_discount_percent)
        if has_email and percent > 0:
            actions.append(RecommendedAction(
                type=ActionType.DISCOUNT_OFFER,
                priority=8,
                scheduled_for=base_time,
                reasoning=f"{percent:g}% early-payment discount to prompt action",
                expected_response_rate=0.30,
                incentive=_discount_offer(
                    amount_due_cents, percent, base_time, 7,
                    "Pay within 7 days to receive the discount",
                ),
            ))
        if has_phone:
            actions.append(RecommendedAction(
                type=ActionType.SMS,
                priority=7,
                scheduled_for=follow_up_time,
                reasoning="SMS follow-up has higher open rates",
                expected_response_rate=0.45,
            ))

    elif stage == ContactStage.SERIOUS:
        months = min(3, config.max_payment_plan_months)
        if has_email and months >= 2:
            actions.append(RecommendedAction(
                type=ActionType.PAYMENT_PLAN,
                priority=9,
                scheduled_for=base_time,
                reasoning="Payment plans increase recovery on long-overdue invoices",
                expected_response_rate=0.25,
                incentive=_payment_plan_offer(
                    amount_due_cents, months, base_time, 14,
                    f"Split the balance into {months} monthly payments",
                ),
            ))
        actions.append(RecommendedAction(
            type=ActionType.CALL,
            priority=8,
            scheduled_for=follow_up_time,
            reasoning="Personal call to understand payment blockers",
            expected_response_rate=0.35,
        ))

    elif stage == ContactStage.SEVERE:
        actions.append(RecommendedAction(
            type=ActionType.CALL,
            priority=10,
            scheduled_for=base_time,
            reasoning=f"Escalation call, {days_overdue} days overdue",
            expected_response_rate=0.20,
        ))
        percent = min(10.0, config.max_discount_percent)
        if has_email and percent > 0:
            actions.append(RecommendedAction(
                type=ActionType.DISCOUNT_OFFER,
                priority=9,
                scheduled_for=follow_up_time,
                reasoning=f"Final {percent:g}% settlement offer before escalation",
                expected_response_rate=0.15,
                incentive=_discount_offer(
                    amount_due_cents, percent, follow_up_time, 5,
                    "Settle within 5 days to receive the discount",
                ),
            ))

    actions.sort(key=lambda a: a.priority, reverse=True)
    return actions


# =============================================================================
# Analysis
# =============================================================================

def analyze_invoice(ctx: InvoiceContext, now: datetime, config: AREngineConfig) -> InvoiceAnalysis:
    today: date = now.date()
    days_overdue = max(0, (today - ctx.due_date).days)
    days_to_due = (ctx.due_date - today).days

    client = ctx.client
    payment_score = client.payment_score if client else NEUTRAL_PAYMENT_SCORE
    amount_due = ctx.amount_due_cents

    risk = risk_level(payment_score, days_overdue)
    likelihood = recovery_likelihood(payment_score, days_overdue, amount_due)
    predicted = predict_payment_date(
        ctx.due_date,
        client.avg_days_to_payment if client else None,
        payment_score,
    )
    stage = classify_stage(days_overdue, days_to_due, config)

    base_time = next_contact_time(
        now,
        ctx.last_contact_at,
        config.min_days_between_contacts,
        client.best_contact_day if client else None,
        client.best_contact_hour if client else None,
    )

    actions = recommend_actions(
        stage,
        amount_due,
        days_overdue,
        days_to_due,
        base_time,
        config,
        has_email=bool(client and client.email),
        has_phone=bool(client and client.phone),
    )

    return InvoiceAnalysis(
        invoice_id=ctx.invoice_id,
        invoice_number=ctx.invoice_number,
        organization_id=ctx.organization_id,
        client_id=client.id if client else None,
        client_name=client.name if client else None,
        client_email=client.email if client else None,
        client_phone=client.phone if client else None,
        amount_cents=ctx.amount_cents,
        amount_due_cents=amount_due,
        due_date=ctx.due_date,
        days_overdue=days_overdue,
        days_to_due=days_to_due,
        stage=stage,
        risk_level=risk,
        payment_score=payment_score,
        recovery_likelihood=likelihood,
        predicted_payment_date=predicted,
        urgency_score=urgency_score(days_overdue, days_to_due, amount_due, risk, config),
        recommended_actions=actions,
    )


def analyze_invoices(
    contexts: Sequence[InvoiceContext],
    now: datetime,
    config: AREngineConfig,
) -> List[InvoiceAnalysis]:
    """Analyze every context and rank by urgency, most urgent first."""
    analyses = [
        analyze_invoice(ctx, now, config)
        for ctx in contexts
        if ctx.amount_due_cents > 0
    ]
    analyses.sort(key=lambda a: (-a.urgency_score, a.due_date, a.invoice_id))
    return analyses
