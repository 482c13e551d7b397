"""
Cash-Squeeze Detector

Gathers upcoming invoices, depository balances and trailing bank outflows
for one organization and runs the squeeze checks over them.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recoup.engines.config import AREngineConfig
from recoup.models import BankAccount, BankTransaction, Invoice, InvoiceStatus, utcnow
from recoup.schemas.cashflow import CashSqueezeAlert, SpendingPattern

from .spending import SPENDING_HISTORY_MONTHS, SpendTransaction, analyze_spending_patterns
from .squeeze import UpcomingInvoice, build_cash_position, detect_cash_squeezes

logger = logging.getLogger(__name__)

# Invoices that still count as expected inflows
UPCOMING_STATUSES = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.VIEWED.value,
    InvoiceStatus.PARTIAL.value,
)


class CashSqueezeDetector:
    def __init__(self, db: AsyncSession, organization_id: str, config: Optional[AREngineConfig] = None):
        self.db = db
        self.organization_id = organization_id
        self.config = config or AREngineConfig.from_settings()

    async def detect(self, now: Optional[datetime] = None) -> List[CashSqueezeAlert]:
        today = (now or utcnow()).date()
        window_end = today + timedelta(days=self.config.cash_squeeze_window_days)

        result = await self.db.execute(
            select(Invoice).where(
                Invoice.organization_id == self.organization_id,
                Invoice.status.in_(UPCOMING_STATUSES),
                Invoice.due_date >= today,
                Invoice.due_date <= window_end,
            )
        )
        upcoming = [
            UpcomingInvoice(invoice_id=inv.id, amount_due_cents=inv.amount_due_cents, due_date=inv.due_date)
            for inv in result.scalars().all()
            if inv.amount_due_cents > 0
        ]

        balance_result = await self.db.execute(
            select(func.coalesce(func.sum(BankAccount.current_balance_cents), 0)).where(
                BankAccount.organization_id == self.organization_id,
                BankAccount.account_type == "depository",
            )
        )
        balance = int(balance_result.scalar_one())

        history_start = today - timedelta(days=self.config.spend_history_days)
        outflow_result = await self.db.execute(
            select(BankTransaction.date, BankTransaction.amount_cents).where(
                BankTransaction.organization_id == self.organization_id,
                BankTransaction.amount_cents > 0,
                BankTransaction.date >= history_start,
            )
        )
        position = build_cash_position(balance, outflow_result.all(), today, self.config)

        alerts = detect_cash_squeezes(upcoming, position, today, self.config)
        if alerts:
            logger.info(
                f"Detected {len(alerts)} cash-squeeze alert(s) for organization {self.organization_id}"
            )
        return alerts

    async def spending_patterns(self, now: Optional[datetime] = None) -> List[SpendingPattern]:
        today = (now or utcnow()).date()
        since = today - timedelta(days=SPENDING_HISTORY_MONTHS * 30)
        result = await self.db.execute(
            select(BankTransaction).where(
                BankTransaction.organization_id == self.organization_id,
                BankTransaction.amount_cents > 0,
                BankTransaction.date >= since,
            )
        )
        transactions = [
            SpendTransaction(date=tx.date, amount_cents=tx.amount_cents, category=tx.category)
            for tx in result.scalars().all()
        ]
        return analyze_spending_patterns(transactions)
