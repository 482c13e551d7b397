"""Recovery accounting models: RecoveryEvent and BillingCycle."""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Date, Integer, Float, ForeignKey, Index, text

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class AttributionType(str, Enum):
    ORGANIC = "organic"
    EMAIL = "email"
    SMS = "sms"
    CALL = "call"
    PAYMENT_LINK = "payment_link"
    DISCOUNT = "discount"
    PAYMENT_PLAN = "payment_plan"


class PaymentSource(str, Enum):
    MANUAL = "manual"
    QUICKBOOKS = "quickbooks"
    BANK_FEED = "bank_feed"
    STRIPE = "stripe"


class RecoveryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    INVOICED = "invoiced"
    COLLECTED = "collected"


class BillingCycleStatus(str, Enum):
    OPEN = "open"
    INVOICED = "invoiced"
    PAID = "paid"


class RecoveryEvent(Base):
    """
    A recorded payment against an invoice, with its attribution and fee.

    Immutable once confirmed.
    """

    __tablename__ = "recovery_events"

    id = Column(String, primary_key=True, default=lambda: generate_id("rec"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    billing_cycle_id = Column(String, ForeignKey("billing_cycles.id", ondelete="SET NULL"), nullable=True)

    invoice_amount_cents = Column(Integer, nullable=False)
    recovered_amount_cents = Column(Integer, nullable=False)
    days_overdue_at_recovery = Column(Integer, nullable=False, default=0)

    attribution_type = Column(String, nullable=False)
    attributed_action_id = Column(String, ForeignKey("scheduled_actions.id", ondelete="SET NULL"), nullable=True)
    attribution_confidence = Column(Float, nullable=False)
    attribution_label = Column(String, nullable=False)

    fee_percent = Column(Float, nullable=False, default=0.0)
    fee_amount_cents = Column(Integer, nullable=False, default=0)

    payment_source = Column(String, nullable=False, default=PaymentSource.MANUAL.value)
    external_reference = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)

    event_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=RecoveryStatus.CONFIRMED.value)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_recovery_events_invoice_event", "invoice_id", "event_at"),
    )


class BillingCycle(Base):
    """Monthly success-fee accumulation for one organization."""

    __tablename__ = "billing_cycles"

    id = Column(String, primary_key=True, default=lambda: generate_id("cycle"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    total_recovered_cents = Column(Integer, nullable=False, default=0)
    total_fees_cents = Column(Integer, nullable=False, default=0)
    event_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=BillingCycleStatus.OPEN.value)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # At most one open cycle per organization per month
    __table_args__ = (
        Index(
            "uq_billing_cycles_open_period",
            "organization_id",
            "period_start",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )
