"""Request/response schemas for the AR engine API."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from recoup.models.action import Engagement


class ApprovePlanRequest(BaseModel):
    """Approve a plan, or only some of its invoices."""
    invoice_ids: Optional[List[str]] = Field(
        default=None,
        description="Invoices to approve (all pending invoices if not provided)",
    )


class RejectPlanRequest(BaseModel):
    invoice_ids: Optional[List[str]] = Field(
        default=None,
        description="Invoices to reject (all pending invoices if not provided)",
    )
    reason: Optional[str] = None


class ApprovalResponse(BaseModel):
    plan_id: str
    plan_status: str
    approved_invoice_ids: List[str]
    actions_created: int
    duplicates_skipped: int
    skipped_paid_invoice_ids: List[str]


class EngagementRequest(BaseModel):
    """Provider delivery feedback for a sent action."""
    engagement: Engagement


class RecordPaymentRequest(BaseModel):
    invoice_id: str
    amount_cents: int = Field(gt=0)
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    reference: Optional[str] = None


class ScheduledActionResponse(BaseModel):
    id: str
    invoice_id: str
    action_type: str
    status: str
    scheduled_for: datetime
    attempts: int
    last_error: Optional[str] = None
    engagement: Optional[str] = None
