"""
AR Engine - facade over the collection pipeline for one organization.

Analyzer + detector -> draft plan -> human approval -> scheduled actions
-> outreach executor. Payments flow in separately through the monitor and
the sync adapters.

Services flush; the caller owns the transaction, except for the executor
and the payment monitor which commit per unit of work.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from recoup.analysis import InvoiceAnalysis, InvoiceAnalyzer
from recoup.cashflow import CashSqueezeDetector
from recoup.models import utcnow
from recoup.outreach import OutreachExecutor, OutreachRunSummary, ProviderRateLimiter
from recoup.payments import PaymentEvent, PaymentMonitor, PaymentResult, get_success_fee_summary
from recoup.payments.sync import BankFeedPaymentSync, QuickBooksPaymentSync, SyncResult
from recoup.plans import ActionPlanService, ApprovalResult
from recoup.schemas.cashflow import CashSqueezeAlert
from recoup.schemas.plan import ActionPlan

from .config import AREngineConfig

logger = logging.getLogger(__name__)


@dataclass
class PaymentSyncSummary:
    organization_id: str
    results: List[SyncResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "sources": [r.to_dict() for r in self.results],
            "records_recorded": sum(r.records_recorded for r in self.results),
        }


class AREngine:
    """Entry points used by the API and the scheduler."""

    def __init__(
        self,
        db: AsyncSession,
        organization_id: str,
        config: Optional[AREngineConfig] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.config = config or AREngineConfig.from_settings()
        self.rate_limiter = rate_limiter
        self.plans = ActionPlanService(db, organization_id, self.config)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    async def analyze_invoices(self, now: Optional[datetime] = None) -> List[InvoiceAnalysis]:
        return await InvoiceAnalyzer(self.db, self.organization_id, self.config).analyze(now)

    async def detect_cash_squeezes(self, now: Optional[datetime] = None) -> List[CashSqueezeAlert]:
        return await CashSqueezeDetector(self.db, self.organization_id, self.config).detect(now)

    # -------------------------------------------------------------------------
    # Plans
    # -------------------------------------------------------------------------

    async def generate_action_plan(self, now: Optional[datetime] = None, save: bool = True) -> ActionPlan:
        if save:
            return await self.plans.generate_and_save(now)
        return await self.plans.generate_plan(now)

    async def get_pending_action_plan(self) -> Optional[ActionPlan]:
        return await self.plans.get_pending_plan()

    async def approve_action_plan(
        self,
        plan_id: str,
        invoice_ids: Optional[Iterable[str]] = None,
        approved_by: Optional[str] = None,
    ) -> ApprovalResult:
        return await self.plans.approve_plan(plan_id, invoice_ids, approved_by)

    async def reject_action_plan(
        self,
        plan_id: str,
        invoice_ids: Optional[Iterable[str]] = None,
        reason: Optional[str] = None,
    ) -> ActionPlan:
        return await self.plans.reject_plan(plan_id, invoice_ids, reason)

    # -------------------------------------------------------------------------
    # Outreach
    # -------------------------------------------------------------------------

    def executor(self) -> OutreachExecutor:
        return OutreachExecutor(self.db, self.config, rate_limiter=self.rate_limiter)

    async def execute_due_actions(self, now: Optional[datetime] = None) -> OutreachRunSummary:
        summary = await self.executor().run_due_actions(self.organization_id, now)
        await self.plans.refresh_progress(now)
        return summary

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def record_payment(
        self,
        invoice_id: str,
        amount_cents: int,
        paid_at: Optional[datetime] = None,
        payment_method: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> PaymentResult:
        """Manual payment entry."""
        return await PaymentMonitor(self.db, self.config).record_payment(PaymentEvent(
            organization_id=self.organization_id,
            invoice_id=invoice_id,
            amount_cents=amount_cents,
            paid_at=paid_at or utcnow(),
            external_reference=reference,
            payment_method=payment_method,
        ))

    async def sync_payments(self, now: Optional[datetime] = None) -> PaymentSyncSummary:
        summary = PaymentSyncSummary(organization_id=self.organization_id)
        quickbooks = QuickBooksPaymentSync(
            self.db, self.organization_id, config=self.config, rate_limiter=self.rate_limiter
        )
        summary.results.append(await quickbooks.run(now))
        summary.results.append(await BankFeedPaymentSync(self.db, self.organization_id, config=self.config).run(now))
        return summary

    async def get_success_fee_summary(self) -> Dict[str, Any]:
        return await get_success_fee_summary(self.db, self.organization_id)
