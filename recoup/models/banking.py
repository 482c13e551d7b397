"""Bank feed models. Read-only inputs to forecasting and payment matching."""
from sqlalchemy import Column, String, DateTime, Date, Integer, ForeignKey, Index

from recoup.database import Base
from recoup.models.base import generate_id, utcnow


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id = Column(String, primary_key=True, default=lambda: generate_id("acct"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String, nullable=False)
    account_type = Column(String, nullable=False, default="depository")  # "depository" | "credit" | "loan"
    current_balance_cents = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class BankTransaction(Base):
    """
    A bank-feed transaction.

    Amounts use the feed's sign convention: positive is money out,
    negative is money in.
    """

    __tablename__ = "bank_transactions"

    id = Column(String, primary_key=True, default=lambda: generate_id("txn"))
    organization_id = Column(String, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    account_id = Column(String, ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=True)

    amount_cents = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    name = Column(String, nullable=True)
    category = Column(String, nullable=True)

    # Set when the transaction has been matched to an invoice payment
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_bank_transactions_org_date", "organization_id", "date"),
    )
