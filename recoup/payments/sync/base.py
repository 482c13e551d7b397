"""
Shared plumbing for payment sync adapters.

An adapter only discovers candidate payments and matches them to open
invoices. Applying them is always `PaymentMonitor.record_payment`; each
candidate is its own unit of work.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recoup.engines.config import AREngineConfig
from recoup.errors import ARError, ProviderError
from recoup.models import (
    Invoice,
    InvoiceStatus,
    OPEN_INVOICE_STATUSES,
    PaymentSource,
    SyncLog,
    utcnow,
)

from ..monitor import PaymentEvent, PaymentMonitor, PaymentResult

logger = logging.getLogger(__name__)

# Invoices a payment can still be applied to
PAYABLE_STATUSES = OPEN_INVOICE_STATUSES + (InvoiceStatus.DRAFT.value,)


@dataclass
class PaymentCandidate:
    invoice_id: str
    amount_cents: int
    paid_at: datetime
    external_reference: Optional[str] = None
    payment_method: Optional[str] = None


@dataclass
class SyncResult:
    source: str
    status: str = "success"  # "success" | "partial" | "error" | "skipped"
    records_seen: int = 0
    records_recorded: int = 0
    duplicates: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "records_seen": self.records_seen,
            "records_recorded": self.records_recorded,
            "duplicates": self.duplicates,
            "errors": self.errors,
        }


def match_by_amount(
    amount_cents: int,
    invoices: Sequence[Invoice],
    tolerance: float,
) -> Optional[Invoice]:
    """Closest amount due within tolerance; ties go to the oldest due date."""
    candidates = [
        inv for inv in invoices
        if inv.amount_due_cents > 0 and abs(amount_cents - inv.amount_due_cents) <= inv.amount_due_cents * tolerance
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda inv: (abs(amount_cents - inv.amount_due_cents), inv.due_date, inv.id))


class PaymentSyncAdapter(ABC):
    source: PaymentSource

    def __init__(
        self,
        db: AsyncSession,
        organization_id: str,
        config: Optional[AREngineConfig] = None,
        monitor: Optional[PaymentMonitor] = None,
    ):
        self.db = db
        self.organization_id = organization_id
        self.config = config or AREngineConfig.from_settings()
        self.monitor = monitor or PaymentMonitor(db, self.config)

    @abstractmethod
    async def discover(self, now: datetime) -> List[PaymentCandidate]:
        """Find payments in the feed and match them to invoices."""

    async def after_recorded(self, candidate: PaymentCandidate, result: PaymentResult) -> None:
        """Hook for adapters that link feed records back to the invoice."""

    async def on_discover_failed(self, error: ProviderError) -> None:
        """Hook for adapters that track integration health."""

    @property
    def integration_id(self) -> Optional[str]:
        return None

    async def open_invoices(self) -> List[Invoice]:
        result = await self.db.execute(
            select(Invoice).where(
                Invoice.organization_id == self.organization_id,
                Invoice.status.in_(PAYABLE_STATUSES),
            )
        )
        return list(result.scalars().all())

    async def run(self, now: Optional[datetime] = None) -> SyncResult:
        now = now or utcnow()
        sync_result = SyncResult(source=self.source.value)
        log = SyncLog(
            organization_id=self.organization_id,
            integration_id=self.integration_id,
            source=self.source.value,
            status="running",
            started_at=now,
        )

        try:
            candidates = await self.discover(now)
        except ProviderError as e:
            logger.error(f"{self.source.value} sync failed for org {self.organization_id}: {e}")
            sync_result.status = "error"
            sync_result.errors.append({"error": str(e)})
            await self.on_discover_failed(e)
            await self._write_log(log, sync_result)
            return sync_result

        sync_result.records_seen = len(candidates)
        for candidate in candidates:
            try:
                result = await self.monitor.record_payment(PaymentEvent(
                    organization_id=self.organization_id,
                    invoice_id=candidate.invoice_id,
                    amount_cents=candidate.amount_cents,
                    paid_at=candidate.paid_at,
                    source=self.source,
                    external_reference=candidate.external_reference,
                    payment_method=candidate.payment_method,
                ))
                if result.duplicate:
                    sync_result.duplicates += 1
                else:
                    sync_result.records_recorded += 1
                await self.after_recorded(candidate, result)
            except (ARError, LookupError) as e:
                logger.error(
                    f"Could not record {self.source.value} payment {candidate.external_reference} "
                    f"on invoice {candidate.invoice_id}: {e}"
                )
                sync_result.errors.append({
                    "invoice_id": candidate.invoice_id,
                    "reference": candidate.external_reference or "",
                    "error": str(e),
                })

        if sync_result.errors:
            sync_result.status = "partial"
        await self._write_log(log, sync_result)

        logger.info(
            f"{self.source.value} sync for org {self.organization_id}: "
            f"{sync_result.records_recorded} recorded, {sync_result.duplicates} duplicates, "
            f"{len(sync_result.errors)} errors"
        )
        return sync_result

    async def _write_log(self, log: SyncLog, sync_result: SyncResult) -> None:
        log.status = sync_result.status
        log.records_seen = sync_result.records_seen
        log.records_recorded = sync_result.records_recorded
        log.errors = sync_result.errors
        log.completed_at = utcnow()
        self.db.add(log)
        await self.db.commit()
