"""
Payment Monitor

`PaymentMonitor.record_payment` is the only way a payment gets applied,
whatever its source (QuickBooks sync, bank-feed match, manual entry).

Per payment:
1. Load the invoice and its completed actions from the attribution window
2. Return the existing event if the payment was already recorded
   (same reference from the same feed, or the same amount from another
   feed, within +/- the idempotency window)
3. Reject payments that break invariants before touching anything
4. Attribute, compute the success fee, persist an immutable RecoveryEvent
5. Update the invoice (paid / partial), the client's behavior profile
   (recomputed from every paid invoice), and the month's billing cycle
   (one atomic UPDATE, since other invoices of the organization may be
   paid at the same moment)

Calls for the same invoice are serialized with an in-process lock; the
invoice version column turns a cross-process race into a
ConcurrentUpdateError instead of a double application.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from recoup.analysis.policy import WEEKDAYS
from recoup.engines.config import AREngineConfig
from recoup.errors import (
    ConcurrentUpdateError,
    InvariantViolation,
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    OverpaymentError,
)
from recoup.models import (
    ActionStatus,
    Client,
    Invoice,
    InvoiceStatus,
    PaymentSource,
    RecoveryEvent,
    RecoveryStatus,
    ScheduledAction,
)
from recoup.scoring import (
    PaymentRecord,
    average_days_to_payment,
    behavior_tier,
    calculate_payment_score,
)

from .attribution import (
    Attribution,
    CompletedContact,
    calculate_success_fee,
    days_overdue_at,
    determine_attribution,
)
from .billing import add_to_cycle, get_or_create_open_cycle
from .locks import KeyedLocks, invoice_locks

logger = logging.getLogger(__name__)


@dataclass
class PaymentEvent:
    organization_id: str
    invoice_id: str
    amount_cents: int
    paid_at: datetime
    source: PaymentSource = PaymentSource.MANUAL
    external_reference: Optional[str] = None
    payment_method: Optional[str] = None


@dataclass
class PaymentResult:
    recovery_event: RecoveryEvent
    duplicate: bool
    invoice_status: str
    attribution: Optional[Attribution] = None

    def to_dict(self) -> dict:
        event = self.recovery_event
        return {
            "recovery_event_id": event.id,
            "duplicate": self.duplicate,
            "invoice_id": event.invoice_id,
            "invoice_status": self.invoice_status,
            "recovered_amount_cents": event.recovered_amount_cents,
            "days_overdue_at_recovery": event.days_overdue_at_recovery,
            "attribution_type": event.attribution_type,
            "attributed_action_id": event.attributed_action_id,
            "attribution_confidence": event.attribution_confidence,
            "attribution_label": event.attribution_label,
            "fee_percent": event.fee_percent,
            "fee_amount_cents": event.fee_amount_cents,
        }


class PaymentMonitor:
    """Applies payments. Commits its own transaction per payment."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[AREngineConfig] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.db = db
        self.config = config or AREngineConfig.from_settings()
        self.locks = locks or invoice_locks

    async def record_payment(self, event: PaymentEvent) -> PaymentResult:
        async with self.locks.hold(event.invoice_id):
            try:
                result = await self._apply(event)
                await self.db.commit()
            except StaleDataError as e:
                await self.db.rollback()
                raise ConcurrentUpdateError(
                    f"Invoice {event.invoice_id} was updated concurrently; retry the payment"
                ) from e
            except Exception:
                await self.db.rollback()
                raise

        if result.duplicate:
            logger.info(
                f"Payment on invoice {event.invoice_id} already recorded as {result.recovery_event.id}"
            )
        else:
            logger.info(
                f"Recorded {event.amount_cents} cents on invoice {event.invoice_id} "
                f"({result.recovery_event.attribution_type}, fee {result.recovery_event.fee_amount_cents})"
            )
        return result

    # =========================================================================
    # Steps
    # =========================================================================

    async def _load_invoice(self, event: PaymentEvent) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.id == event.invoice_id,
                Invoice.organization_id == event.organization_id,
            )
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {event.invoice_id} not found")
        return invoice

    async def find_duplicate(self, event: PaymentEvent) -> Optional[RecoveryEvent]:
        """
        An already-recorded event for the same payment, if any.

        Same source: the external reference decides (two QuickBooks payments
        a day apart are two installments). Manual entries carry no reference,
        so they also need the same amount. Across sources, one payment seen
        by two feeds matches on amount inside the idempotency window.
        """
        window = timedelta(hours=self.config.idempotency_window_hours)
        result = await self.db.execute(
            select(RecoveryEvent)
            .where(
                RecoveryEvent.invoice_id == event.invoice_id,
                RecoveryEvent.event_at >= event.paid_at - window,
                RecoveryEvent.event_at <= event.paid_at + window,
            )
            .order_by(RecoveryEvent.event_at)
        )
        source = PaymentSource(event.source).value
        for existing in result.scalars().all():
            if existing.payment_source == source:
                if existing.external_reference != event.external_reference:
                    continue
                if source == PaymentSource.MANUAL.value and existing.recovered_amount_cents != event.amount_cents:
                    continue
                return existing
            if existing.recovered_amount_cents == event.amount_cents:
                return existing
        return None

    def _check_invariants(self, invoice: Invoice, event: PaymentEvent) -> None:
        if event.amount_cents <= 0:
            raise InvariantViolation("Payment amount must be positive")
        if invoice.is_paid:
            raise InvoiceAlreadyPaidError(f"Invoice {invoice.invoice_number} is already paid")
        limit = invoice.amount_due_cents + self.config.overpayment_tolerance_cents
        if event.amount_cents > limit:
            raise OverpaymentError(
                f"Payment of {event.amount_cents} cents exceeds the {invoice.amount_due_cents} cents "
                f"due on invoice {invoice.invoice_number}"
            )

    async def _recent_contacts(self, invoice_id: str, paid_at: datetime) -> List[CompletedContact]:
        since = paid_at - timedelta(days=self.config.attribution_window_days)
        result = await self.db.execute(
            select(ScheduledAction).where(
                ScheduledAction.invoice_id == invoice_id,
                ScheduledAction.status == ActionStatus.COMPLETED.value,
                ScheduledAction.completed_at >= since,
                ScheduledAction.completed_at <= paid_at,
            )
        )
        return [
            CompletedContact(action_id=a.id, action_type=a.action_type, completed_at=a.completed_at)
            for a in result.scalars().all()
        ]

    async def _apply(self, event: PaymentEvent) -> PaymentResult:
        invoice = await self._load_invoice(event)

        existing = await self.find_duplicate(event)
        if existing is not None:
            return PaymentResult(recovery_event=existing, duplicate=True, invoice_status=invoice.status)

        self._check_invariants(invoice, event)

        contacts = await self._recent_contacts(invoice.id, event.paid_at)
        attribution = determine_attribution(contacts, event.paid_at)
        days_overdue = days_overdue_at(invoice.due_date, event.paid_at)
        fee_percent, fee_amount = calculate_success_fee(event.amount_cents, days_overdue, attribution, self.config)

        cycle = await get_or_create_open_cycle(self.db, event.organization_id, event.paid_at.date())

        recovery = RecoveryEvent(
            organization_id=event.organization_id,
            invoice_id=invoice.id,
            client_id=invoice.client_id,
            billing_cycle_id=cycle.id,
            invoice_amount_cents=invoice.amount_cents,
            recovered_amount_cents=event.amount_cents,
            days_overdue_at_recovery=days_overdue,
            attribution_type=attribution.type.value,
            attributed_action_id=attribution.action_id,
            attribution_confidence=attribution.confidence,
            attribution_label=attribution.confidence_label,
            fee_percent=fee_percent,
            fee_amount_cents=fee_amount,
            payment_source=PaymentSource(event.source).value,
            external_reference=event.external_reference,
            payment_method=event.payment_method,
            event_at=event.paid_at,
            status=RecoveryStatus.CONFIRMED.value,
        )
        self.db.add(recovery)

        # Invoice: overpayment within tolerance is absorbed
        invoice.amount_paid_cents = min(invoice.amount_cents, (invoice.amount_paid_cents or 0) + event.amount_cents)
        if invoice.amount_paid_cents >= invoice.amount_cents:
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = event.paid_at
        else:
            invoice.status = InvoiceStatus.PARTIAL.value

        if attribution.action_id:
            action = await self.db.get(ScheduledAction, attribution.action_id)
            if action is not None:
                action.led_to_payment = True

        await self.db.flush()
        await add_to_cycle(self.db, cycle, event.amount_cents, fee_amount)

        if invoice.client_id:
            await self._update_client_profile(invoice.client_id, event)

        await self.db.flush()
        return PaymentResult(
            recovery_event=recovery,
            duplicate=False,
            invoice_status=invoice.status,
            attribution=attribution,
        )

    async def _update_client_profile(self, client_id: str, event: PaymentEvent) -> None:
        """Recompute behavior from every paid invoice instead of patching it."""
        client = await self.db.get(Client, client_id)
        if client is None:
            return

        result = await self.db.execute(
            select(Invoice.due_date, Invoice.paid_at, Invoice.amount_cents).where(
                Invoice.client_id == client_id,
                Invoice.status == InvoiceStatus.PAID.value,
                Invoice.paid_at.isnot(None),
            )
        )
        history = [
            PaymentRecord(due_date=row.due_date, paid_at=row.paid_at, amount_cents=row.amount_cents)
            for row in result.all()
        ]

        if history:
            client.payment_score = calculate_payment_score(history)
            client.behavior_tier = behavior_tier(client.payment_score)
            client.avg_days_to_payment = average_days_to_payment(history)

        client.total_paid_cents = (client.total_paid_cents or 0) + event.amount_cents
        client.best_contact_day = WEEKDAYS[event.paid_at.weekday()]
        # Date-only feeds arrive at midnight and say nothing about the hour
        if event.paid_at.time() != datetime.min.time():
            client.best_contact_hour = event.paid_at.hour
        if event.payment_method:
            client.preferred_payment_method = event.payment_method
