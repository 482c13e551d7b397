"""
AR Scheduler

Background jobs for the AR engine:
- Outreach: every 15 minutes, execute due scheduled actions
- Payment sync: every hour, QuickBooks and bank-feed payments per organization
- Plan generation: daily at 7am, a fresh action plan per organization

Organizations are processed concurrently, each in its own session, with a
bounded number in flight. One organization failing never stops the others.

Uses APScheduler for job scheduling (see `setup_apscheduler`).
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recoup.database import async_session_maker
from recoup.engines.ar_engine import AREngine
from recoup.engines.config import AREngineConfig
from recoup.models import Organization, utcnow
from recoup.outreach import OutreachExecutor, ProviderRateLimiter, build_provider_rate_limiter
from recoup.plans import ActionPlanService

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_ORGANIZATIONS = 4


class ARScheduler:
    """
    Manages scheduled AR engine runs.

    Owns the provider rate limiter so quotas hold across runs within the
    process. Can be driven by APScheduler or any other job scheduler.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any] = async_session_maker,
        config: Optional[AREngineConfig] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
        max_concurrent_organizations: int = DEFAULT_MAX_CONCURRENT_ORGANIZATIONS,
    ):
        self.session_factory = session_factory
        self.config = config or AREngineConfig.from_settings()
        self.rate_limiter = rate_limiter or build_provider_rate_limiter(self.config)
        self.max_concurrent_organizations = max_concurrent_organizations
        self._running = False
        self._last_outreach_run: Optional[datetime] = None
        self._last_payment_sync: Optional[datetime] = None
        self._last_plan_generation: Optional[datetime] = None

    async def _organization_ids(self) -> List[str]:
        async with self.session_factory() as db:
            result = await db.execute(select(Organization.id))
            return [row[0] for row in result.fetchall()]

    async def _for_each_organization(
        self,
        job: Callable[[AsyncSession, str], Awaitable[Dict[str, Any]]],
        summary: Dict[str, Any],
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrent_organizations)

        async def run_one(organization_id: str) -> None:
            async with semaphore:
                async with self.session_factory() as db:
                    try:
                        result = await job(db, organization_id)
                        await db.commit()
                        summary["organizations"].append({"organization_id": organization_id, **result})
                    except Exception as e:
                        await db.rollback()
                        logger.error(f"{summary['run_type']} failed for organization {organization_id}: {e}")
                        summary["errors"].append({"organization_id": organization_id, "error": str(e)})

        await asyncio.gather(*(run_one(org_id) for org_id in await self._organization_ids()))

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def run_outreach(self, now: Optional[datetime] = None) -> dict:
        """
        Execute due outreach across all organizations.

        Should be scheduled every 15 minutes.
        """
        logger.info("Starting outreach run")
        self._last_outreach_run = utcnow()
        summary: Dict[str, Any] = {
            "run_type": "outreach",
            "started_at": self._last_outreach_run.isoformat(),
            "errors": [],
        }

        async with self.session_factory() as db:
            try:
                executor = OutreachExecutor(db, self.config, rate_limiter=self.rate_limiter)
                run = await executor.run_due_actions(now=now)
                summary.update(run.to_dict())

                plans_completed = 0
                for organization_id in await self._organization_ids():
                    plans_completed += await ActionPlanService(db, organization_id, self.config).refresh_progress(now)
                await db.commit()
                summary["plans_completed"] = plans_completed
            except Exception as e:
                await db.rollback()
                logger.error(f"Outreach run failed: {e}")
                summary["errors"].append({"error": str(e)})

        summary["completed_at"] = utcnow().isoformat()
        logger.info(
            f"Outreach run completed: {summary.get('successful', 0)} sent, "
            f"{summary.get('failed', 0)} failed, {summary.get('deferred', 0)} deferred"
        )
        return summary

    async def run_payment_sync(self, now: Optional[datetime] = None) -> dict:
        """
        Pull payments from QuickBooks and the bank feed for every organization.

        Should be scheduled every hour.
        """
        logger.info("Starting payment sync run")
        self._last_payment_sync = utcnow()
        summary: Dict[str, Any] = {
            "run_type": "payment_sync",
            "started_at": self._last_payment_sync.isoformat(),
            "organizations": [],
            "errors": [],
        }

        async def sync(db: AsyncSession, organization_id: str) -> Dict[str, Any]:
            engine = AREngine(db, organization_id, self.config, rate_limiter=self.rate_limiter)
            return (await engine.sync_payments(now)).to_dict()

        await self._for_each_organization(sync, summary)

        summary["completed_at"] = utcnow().isoformat()
        recorded = sum(org.get("records_recorded", 0) for org in summary["organizations"])
        logger.info(f"Payment sync run completed: {recorded} payments recorded")
        return summary

    async def run_plan_generation(self, now: Optional[datetime] = None) -> dict:
        """
        Generate a fresh action plan for every organization.

        Should be scheduled daily.
        """
        logger.info("Starting plan generation run")
        self._last_plan_generation = utcnow()
        summary: Dict[str, Any] = {
            "run_type": "plan_generation",
            "started_at": self._last_plan_generation.isoformat(),
            "organizations": [],
            "errors": [],
        }

        async def generate(db: AsyncSession, organization_id: str) -> Dict[str, Any]:
            plan = await ActionPlanService(db, organization_id, self.config).generate_and_save(now)
            return {
                "plan_id": plan.id,
                "invoices": len(plan.invoice_plans),
                "cash_squeeze_alerts": len(plan.cash_squeeze_alerts),
            }

        await self._for_each_organization(generate, summary)

        summary["completed_at"] = utcnow().isoformat()
        logger.info(f"Plan generation run completed: {len(summary['organizations'])} plans")
        return summary

    def get_status(self) -> dict:
        """Get scheduler status including last run times."""
        return {
            "running": self._running,
            "last_outreach_run": self._last_outreach_run.isoformat() if self._last_outreach_run else None,
            "last_payment_sync": self._last_payment_sync.isoformat() if self._last_payment_sync else None,
            "last_plan_generation": self._last_plan_generation.isoformat() if self._last_plan_generation else None,
        }


# Singleton instance for use across the application
ar_scheduler = ARScheduler()


def setup_apscheduler(scheduler):
    """
    Configure APScheduler with AR engine jobs.

    Usage:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        scheduler = AsyncIOScheduler()
        setup_apscheduler(scheduler)
        scheduler.start()

    Args:
        scheduler: APScheduler instance (AsyncIOScheduler)
    """
    # Outreach every 15 minutes
    scheduler.add_job(
        ar_scheduler.run_outreach,
        'interval',
        minutes=15,
        id='ar_outreach',
        name='AR Outreach Run',
        replace_existing=True,
    )

    # Payment sync every hour
    scheduler.add_job(
        ar_scheduler.run_payment_sync,
        'interval',
        hours=1,
        id='ar_payment_sync',
        name='AR Payment Sync',
        replace_existing=True,
    )

    # Plan generation daily at 7am
    scheduler.add_job(
        ar_scheduler.run_plan_generation,
        'cron',
        hour=7,
        minute=0,
        id='ar_plan_generation',
        name='AR Plan Generation',
        replace_existing=True,
    )

    ar_scheduler._running = True
    logger.info("AR scheduler jobs configured")
