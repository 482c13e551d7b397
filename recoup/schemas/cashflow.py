"""Cash-squeeze alert and spending pattern schemas."""

import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SqueezeType(str, Enum):
    INVOICE_CLUSTERING = "invoice_clustering"
    REVENUE_GAP = "revenue_gap"
    EXPENSE_SPIKE = "expense_spike"
    LOW_RUNWAY = "low_runway"


class SqueezeSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class CashSqueezeRecommendation(BaseModel):
    action: str
    potential_impact_cents: int = 0
    target_invoice_ids: List[str] = Field(default_factory=list)
    incentive_type: Optional[str] = None  # IncentiveOffer kind
    discount_percent: Optional[float] = None
    reasoning: str = ""


class CashSqueezeAlert(BaseModel):
    type: SqueezeType
    severity: SqueezeSeverity
    date: datetime.date
    description: str
    projected_shortfall_cents: int = 0
    recommendations: List[CashSqueezeRecommendation] = Field(default_factory=list)


class SpendPriority(str, Enum):
    ESSENTIAL = "essential"
    IMPORTANT = "important"
    DISCRETIONARY = "discretionary"


class SpendingPattern(BaseModel):
    category: str
    average_monthly_cents: int
    recurring_days: List[int] = Field(default_factory=list)
    is_recurring: bool = False
    transaction_count: int = 0
    priority: SpendPriority
