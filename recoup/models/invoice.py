"""Receivables models: Client and Invoice."""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Date, Integer, Float, ForeignKey, Index
from sqlalchemy.orm import relationship

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"


# Invoices the engine chases
OPEN_INVOICE_STATUSES = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.VIEWED.value,
    InvoiceStatus.PARTIAL.value,
    InvoiceStatus.OVERDUE.value,
)


class Client(Base):
    """
    A customer that owes the organization money.

    Behavioral fields (payment_score, behavior_tier, avg_days_to_payment,
    best_contact_day/hour) are written only by the payment monitor.
    """

    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=lambda: generate_id("client"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)

    # Behavior
    payment_score = Column(Integer, nullable=False, default=50)  # 0-100
    behavior_tier = Column(String, nullable=False, default="C")  # A | B | C | D
    avg_days_to_payment = Column(Float, nullable=True)  # days paid after due, None = unknown
    preferred_payment_method = Column(String, nullable=True)
    best_contact_day = Column(String, nullable=True)  # "monday" .. "sunday"
    best_contact_hour = Column(Integer, nullable=True)  # 0-23
    total_paid_cents = Column(Integer, nullable=False, default=0)

    quickbooks_customer_id = Column(String, nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    invoices = relationship("Invoice", back_populates="client")


class Invoice(Base):
    """
    An invoice issued to a client.

    `version` is bumped on every update; concurrent writers that loaded a
    stale row fail their flush instead of overwriting each other.
    """

    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=lambda: generate_id("inv"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    invoice_number = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    amount_paid_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String, nullable=False, default="USD")
    issue_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default=InvoiceStatus.SENT.value)
    paid_at = Column(DateTime, nullable=True)

    # Accounting system identifiers
    quickbooks_id = Column(String, nullable=True, index=True)
    external_id = Column(String, nullable=True, index=True)

    payment_link_url = Column(String, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    client = relationship("Client", back_populates="invoices")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_invoices_org_status", "organization_id", "status"),
    )

    @property
    def amount_due_cents(self) -> int:
        return max(0, self.amount_cents - (self.amount_paid_cents or 0))

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID.value
