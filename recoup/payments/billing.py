"""
Success-fee billing cycles.

Fees accumulate into one open BillingCycle per organization per calendar
month. Invoicing the organization for a cycle happens elsewhere; this
module only rolls events in and reports totals.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from recoup.errors import ConcurrentUpdateError
from recoup.models import BillingCycle, BillingCycleStatus, RecoveryEvent, generate_id, utcnow


def month_bounds(day: date) -> Tuple[date, date]:
    """First and last day of the month containing `day`."""
    start = day.replace(day=1)
    end = start + relativedelta(months=1) - timedelta(days=1)
    return start, end


def _insert_for(db: AsyncSession):
    """The dialect's INSERT, which carries ON CONFLICT DO NOTHING."""
    if db.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


async def _find_open_cycle(db: AsyncSession, organization_id: str, start: date) -> Optional[BillingCycle]:
    result = await db.execute(
        select(BillingCycle)
        .where(
            BillingCycle.organization_id == organization_id,
            BillingCycle.period_start == start,
            BillingCycle.status == BillingCycleStatus.OPEN.value,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_or_create_open_cycle(db: AsyncSession, organization_id: str, on: date) -> BillingCycle:
    """
    The organization's open cycle for the month containing `on`.

    Two payments in the same organization may arrive together (API plus
    the hourly sync), so creation is an INSERT ... ON CONFLICT DO NOTHING
    against the open-period unique index followed by a re-select. The
    loser of the race reads the winner's row.
    """
    start, end = month_bounds(on)
    cycle = await _find_open_cycle(db, organization_id, start)
    if cycle is not None:
        return cycle

    now = utcnow()
    insert = _insert_for(db)
    await db.execute(
        insert(BillingCycle)
        .values(
            id=generate_id("cycle"),
            organization_id=organization_id,
            period_start=start,
            period_end=end,
            total_recovered_cents=0,
            total_fees_cents=0,
            event_count=0,
            status=BillingCycleStatus.OPEN.value,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing()
    )
    cycle = await _find_open_cycle(db, organization_id, start)
    if cycle is None:
        raise ConcurrentUpdateError(f"Open billing cycle for {organization_id} starting {start} disappeared")
    return cycle


async def add_to_cycle(db: AsyncSession, cycle: BillingCycle, recovered_cents: int, fee_cents: int) -> BillingCycle:
    """
    Roll one recovery into a cycle with a single UPDATE.

    The increments run in the database, so payments on different invoices
    of the same organization never overwrite each other's totals.
    """
    await db.execute(
        update(BillingCycle)
        .where(BillingCycle.id == cycle.id)
        .values(
            total_recovered_cents=BillingCycle.total_recovered_cents + recovered_cents,
            total_fees_cents=BillingCycle.total_fees_cents + fee_cents,
            event_count=BillingCycle.event_count + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(cycle)
    return cycle


async def _event_totals(
    db: AsyncSession,
    organization_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, int]:
    conditions = [RecoveryEvent.organization_id == organization_id]
    if start is not None:
        conditions.append(RecoveryEvent.event_at >= datetime.combine(start, datetime.min.time()))
    if end is not None:
        conditions.append(RecoveryEvent.event_at < datetime.combine(end + timedelta(days=1), datetime.min.time()))

    result = await db.execute(
        select(
            func.coalesce(func.sum(RecoveryEvent.recovered_amount_cents), 0),
            func.coalesce(func.sum(RecoveryEvent.fee_amount_cents), 0),
            func.count(RecoveryEvent.id),
        ).where(and_(*conditions))
    )
    recovered, fees, count = result.one()
    return {
        "recovered_cents": int(recovered),
        "fees_cents": int(fees),
        "event_count": int(count),
    }


async def get_success_fee_summary(
    db: AsyncSession,
    organization_id: str,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Recovered amounts and fees for this month, last month and all time."""
    today = today or utcnow().date()
    current_start, current_end = month_bounds(today)
    last_start, last_end = month_bounds(current_start - timedelta(days=1))

    pending = await db.execute(
        select(func.coalesce(func.sum(BillingCycle.total_fees_cents), 0)).where(
            BillingCycle.organization_id == organization_id,
            BillingCycle.status.in_([BillingCycleStatus.OPEN.value, BillingCycleStatus.INVOICED.value]),
        )
    )

    return {
        "current_month": {
            "period_start": current_start.isoformat(),
            "period_end": current_end.isoformat(),
            **await _event_totals(db, organization_id, current_start, current_end),
        },
        "last_month": {
            "period_start": last_start.isoformat(),
            "period_end": last_end.isoformat(),
            **await _event_totals(db, organization_id, last_start, last_end),
        },
        "all_time": await _event_totals(db, organization_id),
        "pending_fees_cents": int(pending.scalar_one()),
    }
