"""
Action Plan Builder

Turns analyzer and detector output into one reviewable ActionPlan:
- invoices qualify when urgency > plan_urgency_threshold or already overdue
- every recommendation becomes a ProposedAction with drafted content, the
  tone coming from the invoice's contact stage
- cash-squeeze recommendations that target invoices become proactive measures
- totals are cached at generation time
"""

from datetime import datetime
from typing import List, Optional, Sequence

from recoup.analysis.models import InvoiceAnalysis
from recoup.analysis.stages import tone_for_stage
from recoup.engines.config import AREngineConfig
from recoup.models.base import generate_id
from recoup.models.plan import PlanStatus
from recoup.schemas.cashflow import CashSqueezeAlert, SpendingPattern
from recoup.schemas.outreach import build_action_payload
from recoup.schemas.plan import ActionPlan, InvoiceActionPlan, ProactiveMeasure, ProposedAction

from .content import draft_outreach


def qualifies_for_plan(analysis: InvoiceAnalysis, config: AREngineConfig) -> bool:
    return analysis.urgency_score > config.plan_urgency_threshold or analysis.days_overdue > 0


def build_invoice_plan(analysis: InvoiceAnalysis) -> InvoiceActionPlan:
    tone = tone_for_stage(analysis.stage)
    actions = []
    for recommendation in analysis.recommended_actions:
        content, talking_points = draft_outreach(
            recommendation.type,
            client_name=analysis.client_name,
            invoice_number=analysis.invoice_number,
            amount_due_cents=analysis.amount_due_cents,
            due_date=analysis.due_date,
            days_overdue=analysis.days_overdue,
            tone=tone,
            incentive=recommendation.incentive,
        )
        actions.append(ProposedAction(
            id=generate_id("prop"),
            type=recommendation.type,
            priority=recommendation.priority,
            scheduled_for=recommendation.scheduled_for,
            expected_response_rate=recommendation.expected_response_rate,
            reasoning=recommendation.reasoning,
            payload=build_action_payload(
                recommendation.type, content, recommendation.incentive, talking_points
            ),
        ))
    return InvoiceActionPlan(
        invoice_id=analysis.invoice_id,
        analysis=analysis.to_snapshot(),
        actions=actions,
    )


def proactive_measures_from(alerts: Sequence[CashSqueezeAlert]) -> List[ProactiveMeasure]:
    measures = []
    for alert in alerts:
        for recommendation in alert.recommendations:
            if not recommendation.target_invoice_ids:
                continue
            measures.append(ProactiveMeasure(
                alert_type=alert.type.value,
                severity=alert.severity.value,
                action=recommendation.action,
                target_invoice_ids=list(recommendation.target_invoice_ids),
                potential_impact_cents=recommendation.potential_impact_cents,
                incentive_type=recommendation.incentive_type,
                discount_percent=recommendation.discount_percent,
                reasoning=recommendation.reasoning,
            ))
    return measures


def build_action_plan(
    organization_id: str,
    analyses: Sequence[InvoiceAnalysis],
    alerts: Sequence[CashSqueezeAlert],
    config: AREngineConfig,
    now: datetime,
    spending_patterns: Optional[Sequence[SpendingPattern]] = None,
) -> ActionPlan:
    qualifying = [a for a in analyses if qualifies_for_plan(a, config)]

    total_at_risk = sum(a.amount_due_cents for a in qualifying)
    projected_recovery = int(round(sum(a.amount_due_cents * a.recovery_likelihood for a in qualifying)))
    projected_fee = int(round(projected_recovery * config.success_fee_percent))

    return ActionPlan(
        organization_id=organization_id,
        status=PlanStatus.DRAFT,
        generated_at=now,
        invoice_plans=[build_invoice_plan(a) for a in qualifying],
        cash_squeeze_alerts=list(alerts),
        proactive_measures=proactive_measures_from(alerts),
        spending_patterns=list(spending_patterns or []),
        total_at_risk_cents=total_at_risk,
        projected_recovery_cents=projected_recovery,
        projected_fee_cents=projected_fee,
    )
