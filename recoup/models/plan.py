"""
Action plan models.

An ActionPlanRecord groups one PlanInvoiceEntry per qualifying invoice.
Entries carry the versioned analysis snapshot and the proposed actions;
ScheduledActions point back at their entry through an explicit foreign key.
"""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class PlanStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


class PlanEntryStatus(str, Enum):
    PENDING = "pending"            # Awaiting a decision
    IN_PROGRESS = "in_progress"    # Approved, actions materialized
    COMPLETED = "completed"        # All materialized actions reached a terminal state
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


# Plans still waiting on at least one decision
AWAITING_DECISION_STATUSES = (
    PlanStatus.DRAFT.value,
    PlanStatus.PENDING_APPROVAL.value,
)


class ActionPlanRecord(Base):
    __tablename__ = "action_plans"

    id = Column(String, primary_key=True, default=lambda: generate_id("plan"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(String, nullable=False, default=PlanStatus.DRAFT.value)

    # Cached totals (cents)
    total_at_risk_cents = Column(Integer, nullable=False, default=0)
    projected_recovery_cents = Column(Integer, nullable=False, default=0)
    projected_fee_cents = Column(Integer, nullable=False, default=0)

    # Serialized alerts / proactive measures / spending patterns at generation time
    cash_squeeze_alerts = Column(JSON, nullable=False, default=list)
    proactive_measures = Column(JSON, nullable=False, default=list)
    spending_patterns = Column(JSON, nullable=False, default=list)

    generated_at = Column(DateTime, nullable=False, default=utcnow)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    entries = relationship(
        "PlanInvoiceEntry",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanInvoiceEntry.position",
    )


class PlanInvoiceEntry(Base):
    __tablename__ = "action_plan_entries"

    id = Column(String, primary_key=True, default=lambda: generate_id("entry"))
    plan_id = Column(String, ForeignKey("action_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)

    position = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PlanEntryStatus.PENDING.value)

    # AnalysisSnapshot (versioned) and list of ProposedAction, both as JSON
    analysis_snapshot = Column(JSON, nullable=False)
    proposed_actions = Column(JSON, nullable=False, default=list)

    decided_at = Column(DateTime, nullable=True)

    plan = relationship("ActionPlanRecord", back_populates="entries")
