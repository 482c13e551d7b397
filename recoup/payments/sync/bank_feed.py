"""
Bank-feed payment matching.

Credits (negative amounts in the feed's convention) from the lookback
window are matched to open invoices. A transaction already linked to an
invoice uses that link, anything else is matched on amount due within
the configured tolerance. Overpayments are capped at the amount due.
A matched transaction is linked to its invoice once the payment is
recorded.
"""

import logging
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import select, update

from recoup.models import BankTransaction, PaymentSource

from ..monitor import PaymentResult
from .base import PaymentCandidate, PaymentSyncAdapter, match_by_amount

logger = logging.getLogger(__name__)


class BankFeedPaymentSync(PaymentSyncAdapter):
    source = PaymentSource.BANK_FEED

    async def discover(self, now: datetime) -> List[PaymentCandidate]:
        since = now.date() - timedelta(days=self.config.payment_sync_lookback_days)
        result = await self.db.execute(
            select(BankTransaction)
            .where(
                BankTransaction.organization_id == self.organization_id,
                BankTransaction.amount_cents < 0,
                BankTransaction.date >= since,
            )
            .order_by(BankTransaction.date, BankTransaction.id)
        )
        transactions = list(result.scalars().all())
        if not transactions:
            return []

        invoices = await self.open_invoices()
        by_id = {inv.id: inv for inv in invoices}
        claimed = set()
        candidates = []

        # Linked transactions first so amount matching cannot steal their invoice
        ordered = sorted(transactions, key=lambda t: t.invoice_id is None)
        for txn in ordered:
            amount = -txn.amount_cents

            if txn.invoice_id:
                invoice = by_id.get(txn.invoice_id)
            else:
                available = [inv for inv in invoices if inv.id not in claimed]
                invoice = match_by_amount(amount, available, self.config.payment_match_tolerance)

            if invoice is None:
                continue

            claimed.add(invoice.id)
            candidates.append(PaymentCandidate(
                invoice_id=invoice.id,
                amount_cents=min(amount, invoice.amount_due_cents),
                paid_at=datetime.combine(txn.date, datetime.min.time()),
                external_reference=txn.id,
                payment_method="bank_transfer",
            ))

        unmatched = len(transactions) - len(candidates)
        if unmatched:
            logger.debug(f"{unmatched} bank credits for org {self.organization_id} did not match an invoice")
        return candidates

    async def after_recorded(self, candidate: PaymentCandidate, result: PaymentResult) -> None:
        await self.db.execute(
            update(BankTransaction)
            .where(BankTransaction.id == candidate.external_reference)
            .values(invoice_id=candidate.invoice_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
