"""
Invoice Analyzer

Loads an organization's open invoices, their clients and the last completed
follow-up for each invoice, then runs the pure analysis policy over them.

Usage:
    analyzer = InvoiceAnalyzer(db, organization_id)
    analyses = await analyzer.analyze()  # sorted by urgency, most urgent first
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from recoup.engines.config import AREngineConfig
from recoup.models import (
    ActionStatus,
    Invoice,
    OPEN_INVOICE_STATUSES,
    ScheduledAction,
    utcnow,
)

from .models import ClientProfile, InvoiceAnalysis, InvoiceContext
from .policy import analyze_invoices

logger = logging.getLogger(__name__)


class InvoiceAnalyzer:
    """Analyzes open invoices for one organization."""

    def __init__(self, db: AsyncSession, organization_id: str, config: Optional[AREngineConfig] = None):
        self.db = db
        self.organization_id = organization_id
        self.config = config or AREngineConfig.from_settings()

    async def load_contexts(self) -> List[InvoiceContext]:
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.client))
            .where(
                Invoice.organization_id == self.organization_id,
                Invoice.status.in_(OPEN_INVOICE_STATUSES),
            )
        )
        invoices = result.scalars().all()
        last_contacts = await self._last_completed_contacts()

        contexts = []
        for invoice in invoices:
            client = invoice.client
            profile = None
            if client is not None:
                profile = ClientProfile(
                    id=client.id,
                    name=client.name,
                    email=client.email,
                    phone=client.phone,
                    payment_score=client.payment_score,
                    avg_days_to_payment=client.avg_days_to_payment,
                    preferred_payment_method=client.preferred_payment_method,
                    best_contact_day=client.best_contact_day,
                    best_contact_hour=client.best_contact_hour,
                )
            contexts.append(InvoiceContext(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                organization_id=invoice.organization_id,
                amount_cents=invoice.amount_cents,
                amount_paid_cents=invoice.amount_paid_cents or 0,
                due_date=invoice.due_date,
                status=invoice.status,
                client=profile,
                last_contact_at=last_contacts.get(invoice.id),
            ))
        return contexts

    async def _last_completed_contacts(self) -> Dict[str, datetime]:
        result = await self.db.execute(
            select(ScheduledAction.invoice_id, func.max(ScheduledAction.completed_at))
            .where(
                ScheduledAction.organization_id == self.organization_id,
                ScheduledAction.status == ActionStatus.COMPLETED.value,
                ScheduledAction.completed_at.is_not(None),
            )
            .group_by(ScheduledAction.invoice_id)
        )
        return {invoice_id: completed_at for invoice_id, completed_at in result.all()}

    async def analyze(self, now: Optional[datetime] = None) -> List[InvoiceAnalysis]:
        now = now or utcnow()
        contexts = await self.load_contexts()
        analyses = analyze_invoices(contexts, now, self.config)
        logger.info(
            f"Analyzed {len(analyses)} open invoices for organization {self.organization_id}"
        )
        return analyses
