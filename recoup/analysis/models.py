"""Analyzer input/output structures. Plain dataclasses, no persistence."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Union

from recoup.models.action import ActionType
from recoup.schemas.outreach import DepositRequest, EarlyPayDiscount, PaymentPlanOffer
from recoup.schemas.plan import AnalysisSnapshot
from recoup.scoring.risk import RiskLevel

from .stages import ContactStage

Incentive = Union[EarlyPayDiscount, PaymentPlanOffer, DepositRequest]


@dataclass
class ClientProfile:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    payment_score: int = 50
    avg_days_to_payment: Optional[float] = None
    preferred_payment_method: Optional[str] = None
    best_contact_day: Optional[str] = None
    best_contact_hour: Optional[int] = None


@dataclass
class InvoiceContext:
    """Everything the analyzer needs to know about one open invoice."""
    invoice_id: str
    invoice_number: str
    organization_id: str
    amount_cents: int
    amount_paid_cents: int
    due_date: date
    status: str
    client: Optional[ClientProfile] = None
    last_contact_at: Optional[datetime] = None  # last completed follow-up

    @property
    def amount_due_cents(self) -> int:
        return max(0, self.amount_cents - self.amount_paid_cents)


@dataclass
class RecommendedAction:
    type: ActionType
    priority: int  # 1-10
    scheduled_for: datetime
    reasoning: str
    expected_response_rate: float
    incentive: Optional[Incentive] = None


@dataclass
class InvoiceAnalysis:
    invoice_id: str
    invoice_number: str
    organization_id: str
    client_id: Optional[str]
    client_name: Optional[str]
    client_email: Optional[str]
    client_phone: Optional[str]
    amount_cents: int
    amount_due_cents: int
    due_date: date
    days_overdue: int
    days_to_due: int
    stage: ContactStage
    risk_level: RiskLevel
    payment_score: int
    recovery_likelihood: float
    predicted_payment_date: date
    urgency_score: int
    recommended_actions: List[RecommendedAction] = field(default_factory=list)

    def to_snapshot(self) -> AnalysisSnapshot:
        return AnalysisSnapshot(
            invoice_id=self.invoice_id,
            invoice_number=self.invoice_number,
            client_id=self.client_id,
            client_name=self.client_name,
            amount_cents=self.amount_cents,
            amount_due_cents=self.amount_due_cents,
            due_date=self.due_date,
            days_overdue=self.days_overdue,
            days_to_due=self.days_to_due,
            stage=self.stage.value,
            risk_level=self.risk_level,
            payment_score=self.payment_score,
            recovery_likelihood=self.recovery_likelihood,
            predicted_payment_date=self.predicted_payment_date,
            urgency_score=self.urgency_score,
        )
