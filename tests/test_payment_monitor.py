"""
Tests for the Payment Monitor.

Attribution and fee rules are tested as pure functions; record_payment is
exercised end to end against an in-memory database.
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, patch

from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from recoup.engines.config import AREngineConfig, FeeTier
from recoup.errors import (
    ConcurrentUpdateError,
    InvariantViolation,
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    OverpaymentError,
)
from recoup.models import (
    ActionStatus,
    ActionType,
    AttributionType,
    BillingCycle,
    InvoiceStatus,
    PaymentSource,
    RecoveryEvent,
    ScheduledAction,
)
from recoup.payments import (
    CompletedContact,
    KeyedLocks,
    PaymentEvent,
    PaymentMonitor,
    calculate_success_fee,
    days_overdue_at,
    determine_attribution,
    get_or_create_open_cycle,
    get_success_fee_summary,
    month_bounds,
)

NOW = datetime(2026, 3, 16, 10, 0, 0)  # Monday
TODAY = NOW.date()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def monitor(db, config):
    return PaymentMonitor(db, config, locks=KeyedLocks())


@pytest.fixture
async def client(make_client):
    return await make_client()


async def completed_action(db, invoice, action_type=ActionType.EMAIL, completed_at=None):
    action = ScheduledAction(
        organization_id=invoice.organization_id,
        invoice_id=invoice.id,
        client_id=invoice.client_id,
        action_type=action_type.value,
        scheduled_for=completed_at,
        status=ActionStatus.COMPLETED.value,
        completed_at=completed_at,
        payload={},
    )
    db.add(action)
    await db.commit()
    return action


async def count_events(db, invoice_id=None):
    query = select(func.count(RecoveryEvent.id))
    if invoice_id:
        query = query.where(RecoveryEvent.invoice_id == invoice_id)
    return (await db.execute(query)).scalar_one()


# =============================================================================
# Unit Tests - Attribution
# =============================================================================

class TestAttribution:
    """Tests for the attribution rules."""

    def test_no_contacts_is_organic(self):
        attribution = determine_attribution([], NOW)
        assert attribution.type == AttributionType.ORGANIC
        assert attribution.action_id is None
        assert attribution.confidence == 0.9
        assert attribution.confidence_label == "high"

    def test_email_three_days_prior_is_full_confidence(self):
        contacts = [CompletedContact("act_1", "email", NOW - timedelta(days=3))]

        attribution = determine_attribution(contacts, NOW)

        assert attribution.type == AttributionType.EMAIL
        assert attribution.action_id == "act_1"
        assert attribution.confidence == 1.0
        assert attribution.confidence_label == "full"

    @pytest.mark.parametrize("days_before,confidence,label", [
        (7, 1.0, "full"),
        (8, 0.7, "reduced"),
        (14, 0.7, "reduced"),
        (20, 0.4, "low"),
    ])
    def test_confidence_decays(self, days_before, confidence, label):
        contacts = [CompletedContact("act_1", "sms", NOW - timedelta(days=days_before))]
        attribution = determine_attribution(contacts, NOW)
        assert (attribution.confidence, attribution.confidence_label) == (confidence, label)

    def test_most_recent_contact_wins(self):
        contacts = [
            CompletedContact("act_old", "email", NOW - timedelta(days=6)),
            CompletedContact("act_new", "discount_offer", NOW - timedelta(days=1)),
            CompletedContact("act_after", "call", NOW + timedelta(hours=1)),
        ]

        attribution = determine_attribution(contacts, NOW)

        assert attribution.action_id == "act_new"
        assert attribution.type == AttributionType.DISCOUNT

    def test_days_overdue_at(self):
        assert days_overdue_at(date(2026, 3, 6), NOW) == 10
        assert days_overdue_at(date(2026, 3, 20), NOW) == 0


class TestSuccessFee:
    """Tests for tiered success fees."""

    @pytest.fixture
    def attributed(self):
        return determine_attribution([CompletedContact("act_1", "email", NOW - timedelta(days=1))], NOW)

    @pytest.mark.parametrize("days_overdue,percent", [(10, 0.05), (30, 0.05), (31, 0.08), (90, 0.08), (91, 0.10)])
    def test_tiers(self, config, attributed, days_overdue, percent):
        fee_percent, fee = calculate_success_fee(50_000, days_overdue, attributed, config)
        assert fee_percent == percent
        assert fee == round(50_000 * percent)

    def test_organic_pays_no_fee(self, config):
        organic = determine_attribution([], NOW)
        assert calculate_success_fee(50_000, 40, organic, config) == (0.0, 0)

    def test_not_overdue_pays_no_fee(self, config, attributed):
        assert calculate_success_fee(50_000, 0, attributed, config) == (0.0, 0)

    def test_custom_tiers(self, attributed):
        config = AREngineConfig(fee_tiers=[FeeTier(min_days_overdue=0, percent=0.2)])
        assert calculate_success_fee(10_000, 5, attributed, config) == (0.2, 2_000)


class TestBillingPeriods:

    def test_month_bounds(self):
        assert month_bounds(date(2026, 2, 14)) == (date(2026, 2, 1), date(2026, 2, 28))
        assert month_bounds(date(2026, 12, 31)) == (date(2026, 12, 1), date(2026, 12, 31))


# =============================================================================
# Integration Tests - record_payment
# =============================================================================

class TestRecordPayment:

    @pytest.mark.asyncio
    async def test_payment_after_email_is_attributed(self, db, org, monitor, client, make_invoice):
        """A $500 payment three days after a completed email."""
        invoice = await make_invoice(client, amount_cents=50_000, due_date=TODAY - timedelta(days=10))
        action = await completed_action(db, invoice, completed_at=NOW - timedelta(days=3))

        result = await monitor.record_payment(PaymentEvent(
            organization_id=org.id,
            invoice_id=invoice.id,
            amount_cents=50_000,
            paid_at=NOW,
            payment_method="card",
        ))

        event = result.recovery_event
        assert not result.duplicate
        assert result.invoice_status == InvoiceStatus.PAID.value
        assert event.attribution_type == AttributionType.EMAIL.value
        assert event.attributed_action_id == action.id
        assert event.attribution_label == "full"
        assert event.days_overdue_at_recovery == 10
        assert event.fee_percent == 0.05
        assert event.fee_amount_cents == 2_500

        await db.refresh(invoice)
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.amount_paid_cents == 50_000
        assert invoice.paid_at == NOW
        await db.refresh(action)
        assert action.led_to_payment is True

    @pytest.mark.asyncio
    async def test_payment_before_due_date_has_no_fee(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, amount_cents=50_000, due_date=TODAY + timedelta(days=5))
        await completed_action(db, invoice, completed_at=NOW - timedelta(days=2))

        result = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 50_000, NOW))

        assert result.recovery_event.attribution_type == AttributionType.EMAIL.value
        assert result.recovery_event.fee_amount_cents == 0

    @pytest.mark.asyncio
    async def test_organic_payment(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=40))
        # Outside the attribution window
        await completed_action(db, invoice, completed_at=NOW - timedelta(days=20))

        result = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100_000, NOW))

        assert result.recovery_event.attribution_type == AttributionType.ORGANIC.value
        assert result.recovery_event.fee_amount_cents == 0

    @pytest.mark.asyncio
    async def test_same_payment_twice_records_one_event(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))
        event = PaymentEvent(
            org.id, invoice.id, 100_000, NOW,
            source=PaymentSource.QUICKBOOKS, external_reference="qb_payment_77",
        )

        first = await monitor.record_payment(event)
        again = await monitor.record_payment(PaymentEvent(
            org.id, invoice.id, 100_000, NOW + timedelta(hours=3),
            source=PaymentSource.QUICKBOOKS, external_reference="qb_payment_77",
        ))

        assert not first.duplicate
        assert again.duplicate
        assert again.recovery_event.id == first.recovery_event.id
        assert await count_events(db, invoice.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_serialized(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))
        event = PaymentEvent(org.id, invoice.id, 100_000, NOW, source=PaymentSource.BANK_FEED)

        results = await asyncio.gather(monitor.record_payment(event), monitor.record_payment(event))

        assert sorted(r.duplicate for r in results) == [False, True]
        assert await count_events(db, invoice.id) == 1
        assert invoice.id not in monitor.locks

    @pytest.mark.asyncio
    async def test_two_quickbooks_payments_a_day_apart(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        first = await monitor.record_payment(PaymentEvent(
            org.id, invoice.id, 50_000, NOW,
            source=PaymentSource.QUICKBOOKS, external_reference="qb_payment_1",
        ))
        second = await monitor.record_payment(PaymentEvent(
            org.id, invoice.id, 50_000, NOW + timedelta(days=1),
            source=PaymentSource.QUICKBOOKS, external_reference="qb_payment_2",
        ))

        assert first.invoice_status == InvoiceStatus.PARTIAL.value
        assert not second.duplicate
        assert second.invoice_status == InvoiceStatus.PAID.value
        assert await count_events(db, invoice.id) == 2

    @pytest.mark.asyncio
    async def test_same_payment_from_two_feeds(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        await monitor.record_payment(PaymentEvent(
            org.id, invoice.id, 40_000, NOW,
            source=PaymentSource.QUICKBOOKS, external_reference="qb_payment_9",
        ))
        echoed = await monitor.record_payment(PaymentEvent(
            org.id, invoice.id, 40_000, NOW + timedelta(hours=6),
            source=PaymentSource.BANK_FEED, external_reference="txn_9",
        ))
        other = await monitor.record_payment(PaymentEvent(
            org.id, invoice.id, 25_000, NOW + timedelta(hours=7),
            source=PaymentSource.BANK_FEED, external_reference="txn_10",
        ))

        assert echoed.duplicate
        assert not other.duplicate
        await db.refresh(invoice)
        assert invoice.amount_paid_cents == 65_000

    @pytest.mark.asyncio
    async def test_partial_then_paid(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        first = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 40_000, NOW - timedelta(days=2)))
        second = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 60_000, NOW))

        assert first.invoice_status == InvoiceStatus.PARTIAL.value
        assert second.invoice_status == InvoiceStatus.PAID.value
        await db.refresh(invoice)
        assert invoice.amount_paid_cents == 100_000
        assert await count_events(db, invoice.id) == 2

    @pytest.mark.asyncio
    async def test_two_manual_installments_same_day(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        await monitor.record_payment(PaymentEvent(org.id, invoice.id, 30_000, NOW))
        second = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 20_000, NOW + timedelta(hours=1)))
        repeat = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 20_000, NOW + timedelta(hours=2)))

        assert not second.duplicate
        assert repeat.duplicate
        await db.refresh(invoice)
        assert invoice.amount_paid_cents == 50_000

    @pytest.mark.asyncio
    async def test_small_overpayment_absorbed(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        result = await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100_050, NOW))

        assert result.invoice_status == InvoiceStatus.PAID.value
        assert result.recovery_event.recovered_amount_cents == 100_050
        await db.refresh(invoice)
        assert invoice.amount_paid_cents == 100_000

    @pytest.mark.asyncio
    async def test_overpayment_rejected(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        with pytest.raises(OverpaymentError):
            await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100_101, NOW))

        assert await count_events(db) == 0
        await db.refresh(invoice)
        assert invoice.status == InvoiceStatus.SENT.value

    @pytest.mark.asyncio
    async def test_already_paid_rejected(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(
            client, status=InvoiceStatus.PAID.value, amount_paid_cents=100_000, paid_at=NOW - timedelta(days=5),
        )
        with pytest.raises(InvoiceAlreadyPaidError):
            await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100_000, NOW))

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client)
        with pytest.raises(InvariantViolation):
            await monitor.record_payment(PaymentEvent(org.id, invoice.id, 0, NOW))

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, org, monitor):
        with pytest.raises(InvoiceNotFoundError):
            await monitor.record_payment(PaymentEvent(org.id, "inv_missing", 100, NOW))

    @pytest.mark.asyncio
    async def test_other_organization_invoice_not_found(self, monitor, client, make_invoice):
        invoice = await make_invoice(client)
        with pytest.raises(InvoiceNotFoundError):
            await monitor.record_payment(PaymentEvent("org_other", invoice.id, 100, NOW))

    @pytest.mark.asyncio
    async def test_lost_race_becomes_concurrent_update_error(self, org, monitor, client, make_invoice):
        invoice = await make_invoice(client)
        with patch.object(monitor, "_apply", AsyncMock(side_effect=StaleDataError("version mismatch"))):
            with pytest.raises(ConcurrentUpdateError):
                await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100, NOW))


# =============================================================================
# Integration Tests - Client Profile and Billing
# =============================================================================

class TestProfileAndBilling:

    @pytest.mark.asyncio
    async def test_client_profile_recomputed(self, db, org, monitor, client, make_invoice):
        invoice = await make_invoice(client, amount_cents=50_000, due_date=TODAY - timedelta(days=10))

        await monitor.record_payment(PaymentEvent(org.id, invoice.id, 50_000, NOW, payment_method="ach"))

        await db.refresh(client)
        assert client.payment_score == 34
        assert client.behavior_tier == "D"
        assert client.avg_days_to_payment == 10.0
        assert client.total_paid_cents == 50_000
        assert client.best_contact_day == "monday"
        assert client.best_contact_hour == 10
        assert client.preferred_payment_method == "ach"

    @pytest.mark.asyncio
    async def test_midnight_payment_keeps_contact_hour(self, db, org, monitor, make_client, make_invoice):
        client = await make_client(best_contact_hour=14)
        invoice = await make_invoice(client, due_date=TODAY - timedelta(days=10))

        await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100_000, datetime(2026, 3, 13)))

        await db.refresh(client)
        assert client.best_contact_hour == 14
        assert client.best_contact_day == "friday"

    @pytest.mark.asyncio
    async def test_billing_cycle_and_fee_summary(self, db, org, monitor, client, make_invoice):
        march = await make_invoice(client, amount_cents=50_000, due_date=TODAY - timedelta(days=10))
        february = await make_invoice(client, amount_cents=80_000, due_date=date(2026, 1, 1))
        await completed_action(db, march, completed_at=NOW - timedelta(days=3))

        await monitor.record_payment(PaymentEvent(org.id, march.id, 50_000, NOW))
        await monitor.record_payment(PaymentEvent(org.id, february.id, 80_000, datetime(2026, 2, 20, 15)))

        cycles = (await db.execute(select(BillingCycle).order_by(BillingCycle.period_start))).scalars().all()
        assert [(c.period_start, c.total_recovered_cents, c.total_fees_cents, c.event_count) for c in cycles] == [
            (date(2026, 2, 1), 80_000, 0, 1),
            (date(2026, 3, 1), 50_000, 2_500, 1),
        ]

        summary = await get_success_fee_summary(db, org.id, TODAY)

        assert summary["current_month"]["recovered_cents"] == 50_000
        assert summary["current_month"]["fees_cents"] == 2_500
        assert summary["current_month"]["period_end"] == "2026-03-31"
        assert summary["last_month"]["recovered_cents"] == 80_000
        assert summary["last_month"]["event_count"] == 1
        assert summary["all_time"] == {"recovered_cents": 130_000, "fees_cents": 2_500, "event_count": 2}
        assert summary["pending_fees_cents"] == 2_500


# =============================================================================
# Integration Tests - Concurrent Workers
# =============================================================================

class TestConcurrentWorkers:
    """Two sessions on one database file, as the API and the hourly sync would run."""

    @pytest.fixture
    def engine(self, file_engine):
        return file_engine

    @pytest.fixture
    async def attributed_invoices(self, db, client, make_invoice):
        invoices = []
        for _ in range(2):
            invoice = await make_invoice(client, due_date=TODAY - timedelta(days=40))
            await completed_action(db, invoice, completed_at=NOW - timedelta(days=2))
            invoices.append(invoice)
        return invoices

    async def _pay_from_own_sessions(self, session_factory, config, org, invoices):
        async def pay(invoice):
            async with session_factory() as session:
                monitor = PaymentMonitor(session, config, locks=KeyedLocks())
                return await monitor.record_payment(PaymentEvent(org.id, invoice.id, 100_000, NOW))

        return await asyncio.gather(*(pay(invoice) for invoice in invoices))

    async def _cycles(self, db):
        result = await db.execute(select(BillingCycle).execution_options(populate_existing=True))
        return [(c.status, c.total_recovered_cents, c.total_fees_cents, c.event_count) for c in result.scalars().all()]

    @pytest.mark.asyncio
    async def test_first_payments_of_month_share_one_cycle(
        self, db, org, config, session_factory, attributed_invoices,
    ):
        results = await self._pay_from_own_sessions(session_factory, config, org, attributed_invoices)

        assert [r.recovery_event.fee_amount_cents for r in results] == [8_000, 8_000]
        assert len({r.recovery_event.billing_cycle_id for r in results}) == 1
        assert await self._cycles(db) == [("open", 200_000, 16_000, 2)]

    @pytest.mark.asyncio
    async def test_existing_cycle_keeps_both_totals(
        self, db, org, config, session_factory, attributed_invoices,
    ):
        await get_or_create_open_cycle(db, org.id, TODAY)
        await db.commit()

        await self._pay_from_own_sessions(session_factory, config, org, attributed_invoices)

        assert await self._cycles(db) == [("open", 200_000, 16_000, 2)]
        assert await count_events(db) == 2
