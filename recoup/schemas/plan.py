"""
Action plan schemas.

AnalysisSnapshot is the persisted form of an invoice analysis. It is
versioned and every field is required, so a stored snapshot either loads
completely or fails loudly.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from recoup.errors import MalformedPayloadError
from recoup.models.action import ActionStatus, ActionType
from recoup.models.plan import PlanEntryStatus, PlanStatus
from recoup.schemas.cashflow import CashSqueezeAlert, SpendingPattern
from recoup.schemas.outreach import ActionPayload
from recoup.scoring.risk import RiskLevel

ANALYSIS_SNAPSHOT_VERSION = 1


class AnalysisSnapshot(BaseModel):
    schema_version: Literal[1] = ANALYSIS_SNAPSHOT_VERSION
    invoice_id: str
    invoice_number: str
    client_id: Optional[str]
    client_name: Optional[str]
    amount_cents: int
    amount_due_cents: int
    due_date: date
    days_overdue: int
    days_to_due: int
    stage: str
    risk_level: RiskLevel
    payment_score: int
    recovery_likelihood: float
    predicted_payment_date: date
    urgency_score: int


def parse_analysis_snapshot(data) -> AnalysisSnapshot:
    try:
        return AnalysisSnapshot.model_validate(data)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid analysis snapshot: {e.error_count()} error(s)") from e


class ProposedAction(BaseModel):
    id: str
    type: ActionType
    priority: int
    scheduled_for: datetime
    status: ActionStatus = ActionStatus.SCHEDULED
    expected_response_rate: float
    reasoning: str
    payload: ActionPayload


class InvoiceActionPlan(BaseModel):
    invoice_id: str
    entry_id: Optional[str] = None
    status: PlanEntryStatus = PlanEntryStatus.PENDING
    analysis: AnalysisSnapshot
    actions: List[ProposedAction] = Field(default_factory=list)


class ProactiveMeasure(BaseModel):
    alert_type: str
    severity: str
    action: str
    target_invoice_ids: List[str]
    potential_impact_cents: int = 0
    incentive_type: Optional[str] = None
    discount_percent: Optional[float] = None
    reasoning: str = ""


class ActionPlan(BaseModel):
    id: Optional[str] = None
    organization_id: str
    status: PlanStatus = PlanStatus.DRAFT
    generated_at: datetime
    invoice_plans: List[InvoiceActionPlan] = Field(default_factory=list)
    cash_squeeze_alerts: List[CashSqueezeAlert] = Field(default_factory=list)
    proactive_measures: List[ProactiveMeasure] = Field(default_factory=list)
    spending_patterns: List[SpendingPattern] = Field(default_factory=list)
    total_at_risk_cents: int = 0
    projected_recovery_cents: int = 0
    projected_fee_cents: int = 0
