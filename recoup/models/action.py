"""
Outreach action models.

ScheduledAction is a concrete follow-up the executor will perform. Its
payload column holds a tagged-union document (see recoup.schemas.outreach).
"""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey, JSON, Text, Index
from sqlalchemy.orm import relationship

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class ActionType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    CALL = "call"
    PAYMENT_LINK = "payment_link"
    DISCOUNT_OFFER = "discount_offer"
    PAYMENT_PLAN = "payment_plan"


# Action types delivered by email
EMAIL_ACTION_TYPES = (
    ActionType.EMAIL.value,
    ActionType.PAYMENT_LINK.value,
    ActionType.DISCOUNT_OFFER.value,
    ActionType.PAYMENT_PLAN.value,
)


class ActionStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"      # Claimed by an executor run
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


PENDING_ACTION_STATUSES = (ActionStatus.SCHEDULED.value, ActionStatus.IN_FLIGHT.value)


class Engagement(str, Enum):
    """Provider feedback, ordered. Only ever moves forward."""
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    RESPONDED = "responded"


ENGAGEMENT_ORDER = [e.value for e in Engagement]


class OutreachTone(str, Enum):
    FRIENDLY = "friendly"
    REMINDER = "reminder"
    URGENT = "urgent"
    FINAL = "final"


class ScheduledAction(Base):
    __tablename__ = "scheduled_actions"

    id = Column(String, primary_key=True, default=lambda: generate_id("act"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    plan_id = Column(String, ForeignKey("action_plans.id", ondelete="SET NULL"), nullable=True, index=True)
    plan_entry_id = Column(String, ForeignKey("action_plan_entries.id", ondelete="SET NULL"), nullable=True, index=True)

    action_type = Column(String, nullable=False)  # ActionType value
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=ActionStatus.SCHEDULED.value)
    priority = Column(Integer, nullable=False, default=5)

    # ActionPayload document (tagged by action type)
    payload = Column(JSON, nullable=False)

    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    provider_message_id = Column(String, nullable=True)
    engagement = Column(String, nullable=True)  # Engagement value
    led_to_payment = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    invoice = relationship("Invoice")
    client = relationship("Client")

    __table_args__ = (
        Index("ix_scheduled_actions_status_due", "status", "scheduled_for"),
    )


class ManualTask(Base):
    """A follow-up a human has to perform (phone calls)."""

    __tablename__ = "manual_tasks"

    id = Column(String, primary_key=True, default=lambda: generate_id("task"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    action_id = Column(String, ForeignKey("scheduled_actions.id", ondelete="SET NULL"), nullable=True)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)

    task_type = Column(String, nullable=False, default="call")
    title = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    phone = Column(String, nullable=True)
    status = Column(String, nullable=False, default="open")  # "open" | "done"
    due_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)


class CommunicationLog(Base):
    """Record of every outbound message sent to a client."""

    __tablename__ = "communication_logs"

    id = Column(String, primary_key=True, default=lambda: generate_id("comm"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)
    action_id = Column(String, ForeignKey("scheduled_actions.id", ondelete="SET NULL"), nullable=True)

    channel = Column(String, nullable=False)  # "email" | "sms" | "call"
    direction = Column(String, nullable=False, default="outbound")
    recipient = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    body = Column(Text, nullable=True)
    provider_message_id = Column(String, nullable=True)

    sent_at = Column(DateTime, nullable=False, default=utcnow)
