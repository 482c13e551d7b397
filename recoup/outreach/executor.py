"""
Outreach Executor

Runs due ScheduledActions in batches:

1. Release claims stuck in_flight past the claim timeout
2. Select up to `outreach_batch_size` scheduled actions that are due
3. Claim each one with a conditional update (scheduled -> in_flight); a
   runner that loses the race simply skips it
4. Re-check the invoice (paid -> cancelled), validate the payload and the
   destination, and take a slot from the per-organization channel quota
   (quota exhausted -> released for a later run)
5. Dispatch concurrently under a semaphore with a per-call timeout:
   payment link, rendering, then email / SMS send (calls become manual tasks)
6. Record each outcome in its own transaction

Permanent failures (missing address, unconfigured SMS, bad payload or
action type) mark the action failed. Transient provider failures return it
to scheduled with the error recorded until `max_send_attempts` is reached.
A message that went out but could not be logged is closed as completed
with the error kept; it is never queued again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from recoup.config import settings
from recoup.engines.config import AREngineConfig
from recoup.errors import (
    ActionNotFoundError,
    DataError,
    InvariantViolation,
    MalformedPayloadError,
    ProviderError,
)
from recoup.models import (
    ActionStatus,
    ActionType,
    CommunicationLog,
    EMAIL_ACTION_TYPES,
    ENGAGEMENT_ORDER,
    Engagement,
    Invoice,
    ManualTask,
    Organization,
    ScheduledAction,
    utcnow,
)
from recoup.schemas.outreach import (
    CallPayload,
    DiscountOfferPayload,
    PaymentPlanPayload,
    parse_action_payload,
)

from .email_provider import EmailMessage, EmailProvider, SendResult, get_email_provider
from .payment_links import (
    PaymentLinkDiscount,
    PaymentLinkProvider,
    PaymentLinkResult,
    get_payment_link_provider,
)
from .rate_limit import ProviderRateLimiter, build_provider_rate_limiter
from .sms_provider import SMSProvider, get_sms_provider
from .templates import render_call_notes, render_email, render_sms

logger = logging.getLogger(__name__)


@dataclass
class OutreachRunSummary:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    cancelled: int = 0
    deferred: int = 0
    retry_scheduled: int = 0
    released_stale: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "deferred": self.deferred,
            "retry_scheduled": self.retry_scheduled,
            "released_stale": self.released_stale,
            "errors": self.errors,
        }


@dataclass
class DispatchJob:
    """Everything needed to send one action without touching the database."""
    action_id: str
    organization_id: str
    invoice_id: str
    client_id: Optional[str]
    action_type: ActionType
    payload: Any
    invoice_number: str
    amount_due_cents: int
    client_name: Optional[str]
    client_email: Optional[str]
    client_phone: Optional[str]
    reply_to: Optional[str] = None


@dataclass
class DispatchOutcome:
    success: bool
    retryable: bool = False
    error: Optional[str] = None
    message_id: Optional[str] = None
    channel: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    payment_link: Optional[PaymentLinkResult] = None


def _channel_for(action_type: ActionType) -> str:
    if action_type.value in EMAIL_ACTION_TYPES:
        return "email"
    return action_type.value


class OutreachExecutor:
    """Executes due outreach actions. One instance per session."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[AREngineConfig] = None,
        email_provider: Optional[EmailProvider] = None,
        sms_provider: Optional[SMSProvider] = None,
        payment_links: Optional[PaymentLinkProvider] = None,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ):
        self.db = db
        self.config = config or AREngineConfig.from_settings()
        self.email_provider = email_provider or get_email_provider(
            resend_api_key=settings.RESEND_API_KEY,
            smtp_config=settings.smtp_config or None,
            console_mode=settings.EMAIL_CONSOLE_MODE,
            from_email=settings.EMAIL_FROM,
            timeout=self.config.provider_timeout_seconds,
        )
        self.sms_provider = sms_provider or get_sms_provider(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_FROM_NUMBER,
        )
        self.payment_links = payment_links or get_payment_link_provider(
            settings.STRIPE_SECRET_KEY, settings.STRIPE_CURRENCY
        )
        self.rate_limiter = rate_limiter or build_provider_rate_limiter(self.config)

    # =========================================================================
    # Batch runner
    # =========================================================================

    async def run_due_actions(
        self,
        organization_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OutreachRunSummary:
        now = now or utcnow()
        summary = OutreachRunSummary()
        summary.released_stale = await self.release_stale_claims(now)

        jobs: List[DispatchJob] = []
        for action_id in await self._due_action_ids(now, organization_id):
            if not await self._claim(action_id, now):
                continue
            summary.processed += 1

            try:
                job = await self._prepare(action_id, now)
            except (DataError, InvariantViolation, LookupError, ValueError) as e:
                # Includes a deleted action or an unknown stored action_type
                logger.error(f"Action {action_id} cannot be executed: {e}")
                await self._finish_failed(action_id, str(e), retryable=False, now=now, summary=summary)
                continue

            if job is None:
                summary.cancelled += 1
                continue

            channel = _channel_for(job.action_type)
            if not self.rate_limiter.acquire(channel, job.organization_id).allowed:
                await self._release(action_id)
                summary.processed -= 1
                summary.deferred += 1
                continue

            jobs.append(job)

        if jobs:
            semaphore = asyncio.Semaphore(max(1, self.config.provider_concurrency))
            outcomes = await asyncio.gather(
                *(self._dispatch_bounded(job, semaphore) for job in jobs),
                return_exceptions=True,
            )
            for job, outcome in zip(jobs, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(f"Dispatch crashed for action {job.action_id}: {outcome!r}")
                    outcome = DispatchOutcome(success=False, retryable=True, error=f"Unexpected error: {outcome}")
                await self._record(job, outcome, now, summary)

        logger.info(
            f"Outreach run: {summary.processed} processed, {summary.successful} successful, "
            f"{summary.failed} failed, {summary.cancelled} cancelled, {summary.deferred} deferred"
        )
        return summary

    async def _due_action_ids(self, now: datetime, organization_id: Optional[str]) -> List[str]:
        query = (
            select(ScheduledAction.id)
            .where(
                ScheduledAction.status == ActionStatus.SCHEDULED.value,
                ScheduledAction.scheduled_for <= now,
            )
            .order_by(ScheduledAction.priority.desc(), ScheduledAction.scheduled_for)
            .limit(self.config.outreach_batch_size)
        )
        if organization_id:
            query = query.where(ScheduledAction.organization_id == organization_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def release_stale_claims(self, now: Optional[datetime] = None) -> int:
        """Return actions stuck in_flight (crashed runner) to scheduled."""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.config.claim_timeout_minutes)
        result = await self.db.execute(
            update(ScheduledAction)
            .where(
                ScheduledAction.status == ActionStatus.IN_FLIGHT.value,
                ScheduledAction.claimed_at < cutoff,
            )
            .values(status=ActionStatus.SCHEDULED.value, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount:
            logger.warning(f"Released {result.rowcount} stale outreach claim(s)")
        return result.rowcount or 0

    async def _claim(self, action_id: str, now: datetime) -> bool:
        result = await self.db.execute(
            update(ScheduledAction)
            .where(
                ScheduledAction.id == action_id,
                ScheduledAction.status == ActionStatus.SCHEDULED.value,
            )
            .values(
                status=ActionStatus.IN_FLIGHT.value,
                claimed_at=now,
                attempts=ScheduledAction.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _release(self, action_id: str) -> None:
        """Give a claimed action back without counting the attempt."""
        await self.db.execute(
            update(ScheduledAction)
            .where(
                ScheduledAction.id == action_id,
                ScheduledAction.status == ActionStatus.IN_FLIGHT.value,
            )
            .values(
                status=ActionStatus.SCHEDULED.value,
                claimed_at=None,
                attempts=ScheduledAction.attempts - 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _load_action(self, action_id: str) -> Optional[ScheduledAction]:
        result = await self.db.execute(
            select(ScheduledAction)
            .options(selectinload(ScheduledAction.invoice).selectinload(Invoice.client))
            .where(ScheduledAction.id == action_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Preparation
    # =========================================================================

    async def _prepare(self, action_id: str, now: datetime) -> Optional[DispatchJob]:
        """Build the dispatch job. Returns None when the action was cancelled."""
        action = await self._load_action(action_id)
        if action is None:
            raise ActionNotFoundError(f"Action {action_id} not found")

        invoice = action.invoice
        if invoice is None:
            raise DataError(f"Invoice {action.invoice_id} not found")

        if invoice.is_paid or invoice.amount_due_cents <= 0:
            action.status = ActionStatus.CANCELLED.value
            action.last_error = "Invoice already paid"
            action.claimed_at = None
            await self.db.commit()
            logger.info(f"Cancelled action {action.id}: invoice {invoice.id} already paid")
            return None

        payload = parse_action_payload(action.payload)
        action_type = ActionType(action.action_type)
        if payload.type != action_type.value:
            raise MalformedPayloadError(
                f"Payload type {payload.type} does not match action type {action_type.value}"
            )

        client = invoice.client
        client_email = client.email if client else None
        client_phone = client.phone if client else None
        if action_type.value in EMAIL_ACTION_TYPES and not client_email:
            raise DataError("No email address")
        if action_type == ActionType.SMS and not client_phone:
            raise DataError("No phone number")

        organization = await self.db.get(Organization, action.organization_id)

        return DispatchJob(
            action_id=action.id,
            organization_id=action.organization_id,
            invoice_id=invoice.id,
            client_id=client.id if client else action.client_id,
            action_type=action_type,
            payload=payload,
            invoice_number=invoice.invoice_number,
            amount_due_cents=invoice.amount_due_cents,
            client_name=client.name if client else None,
            client_email=client_email,
            client_phone=client_phone,
            reply_to=organization.reply_to_email if organization else None,
        )

    # =========================================================================
    # Dispatch (no database access)
    # =========================================================================

    async def _dispatch_bounded(self, job: DispatchJob, semaphore: asyncio.Semaphore) -> DispatchOutcome:
        async with semaphore:
            try:
                return await asyncio.wait_for(self.dispatch(job), timeout=self.config.provider_timeout_seconds)
            except asyncio.TimeoutError:
                logger.error(f"Dispatch timed out for action {job.action_id}")
                return DispatchOutcome(
                    success=False,
                    retryable=True,
                    error=f"Timed out after {self.config.provider_timeout_seconds:g}s",
                )

    async def _payment_link_for(self, job: DispatchJob) -> PaymentLinkResult:
        payload = job.payload
        amount = job.amount_due_cents
        discount = None
        description = f"Invoice {job.invoice_number}"

        if isinstance(payload, DiscountOfferPayload):
            discount = PaymentLinkDiscount(percent=payload.incentive.discount_percent)
        elif isinstance(payload, PaymentPlanPayload):
            amount = min(amount, payload.incentive.monthly_amount_cents)
            description = f"Invoice {job.invoice_number} - installment 1 of {payload.incentive.months}"

        return await self.payment_links.create_payment_link(job.invoice_id, amount, description, discount)

    async def dispatch(self, job: DispatchJob) -> DispatchOutcome:
        payload = job.payload

        if isinstance(payload, CallPayload):
            return DispatchOutcome(
                success=True,
                channel="call",
                recipient=job.client_phone,
                body=render_call_notes(payload.content, payload.talking_points),
            )

        try:
            link = await self._payment_link_for(job)
        except ProviderError as e:
            logger.error(f"Payment link failed for action {job.action_id}: {e}")
            return DispatchOutcome(success=False, retryable=e.retryable, error=str(e))

        incentive = getattr(payload, "incentive", None)

        if job.action_type == ActionType.SMS:
            body = render_sms(payload.content, link.url)
            result: SendResult = await self.sms_provider.send(job.client_phone, body)
            return DispatchOutcome(
                success=result.success,
                retryable=result.retryable,
                error=result.error,
                message_id=result.message_id,
                channel="sms",
                recipient=job.client_phone,
                body=body,
                payment_link=link,
            )

        rendered = render_email(payload.content, link.url, incentive)
        result = await self.email_provider.send(EmailMessage(
            to=job.client_email,
            subject=rendered.subject,
            html_body=rendered.html_body,
            plain_text_body=rendered.plain_text_body,
            reply_to=job.reply_to,
            reference=job.action_id,
        ))
        return DispatchOutcome(
            success=result.success,
            retryable=result.retryable,
            error=result.error,
            message_id=result.message_id,
            channel="email",
            recipient=job.client_email,
            subject=rendered.subject,
            body=rendered.plain_text_body,
            payment_link=link,
        )

    # =========================================================================
    # Recording
    # =========================================================================

    async def _record(
        self,
        job: DispatchJob,
        outcome: DispatchOutcome,
        now: datetime,
        summary: OutreachRunSummary,
    ) -> None:
        if not outcome.success:
            await self._finish_failed(job.action_id, outcome.error or "Unknown error", outcome.retryable, now, summary)
            return

        try:
            action = await self._load_action(job.action_id)
            action.status = ActionStatus.COMPLETED.value
            action.completed_at = now
            action.claimed_at = None
            action.last_error = None
            action.provider_message_id = outcome.message_id

            if outcome.channel == "call":
                self.db.add(ManualTask(
                    organization_id=job.organization_id,
                    action_id=job.action_id,
                    invoice_id=job.invoice_id,
                    client_id=job.client_id,
                    task_type="call",
                    title=f"Call {job.client_name or 'client'} about invoice {job.invoice_number}",
                    notes=outcome.body,
                    phone=job.client_phone,
                    due_at=action.scheduled_for,
                ))
            else:
                action.engagement = Engagement.SENT.value
                self.db.add(CommunicationLog(
                    organization_id=job.organization_id,
                    client_id=job.client_id,
                    invoice_id=job.invoice_id,
                    action_id=job.action_id,
                    channel=outcome.channel,
                    recipient=outcome.recipient,
                    subject=outcome.subject,
                    body=outcome.body,
                    provider_message_id=outcome.message_id,
                    sent_at=now,
                ))

            link = outcome.payment_link
            if job.action_type == ActionType.PAYMENT_LINK and link is not None and not link.is_placeholder:
                # Core update: the link is not payment state and must not bump the invoice version
                await self.db.execute(
                    update(Invoice)
                    .where(Invoice.id == job.invoice_id)
                    .values(payment_link_url=link.url)
                    .execution_options(synchronize_session=False)
                )

            await self.db.commit()
            summary.successful += 1

        except Exception as e:
            await self.db.rollback()
            logger.exception(f"Failed to record outcome for action {job.action_id}")
            await self._finish_sent_unrecorded(job, outcome, f"Sent, but recording failed: {e}", now, summary)

    async def _finish_sent_unrecorded(
        self,
        job: DispatchJob,
        outcome: DispatchOutcome,
        error: str,
        now: datetime,
        summary: OutreachRunSummary,
    ) -> None:
        """
        The message went out but its log could not be written.

        The action is closed as completed with the error kept, never put
        back in the queue: a later run would send the same message again.
        """
        await self.db.execute(
            update(ScheduledAction)
            .where(ScheduledAction.id == job.action_id)
            .values(
                status=ActionStatus.COMPLETED.value,
                completed_at=now,
                claimed_at=None,
                last_error=error,
                provider_message_id=outcome.message_id,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        summary.successful += 1
        summary.errors.append({"action_id": job.action_id, "error": error})

    async def _finish_failed(
        self,
        action_id: str,
        error: str,
        retryable: bool,
        now: datetime,
        summary: OutreachRunSummary,
    ) -> None:
        action = await self._load_action(action_id)
        summary.failed += 1
        summary.errors.append({"action_id": action_id, "error": error})
        if action is None:
            return

        action.last_error = error
        action.claimed_at = None
        if retryable and action.attempts < self.config.max_send_attempts:
            action.status = ActionStatus.SCHEDULED.value
            summary.retry_scheduled += 1
        else:
            action.status = ActionStatus.FAILED.value
        await self.db.commit()

    # =========================================================================
    # Manual operations
    # =========================================================================

    async def retry_action(self, action_id: str, organization_id: str, now: Optional[datetime] = None) -> ScheduledAction:
        """Re-trigger a failed action from the review UI."""
        action = await self._get_for_org(action_id, organization_id)
        if action.status != ActionStatus.FAILED.value:
            raise InvariantViolation(f"Only failed actions can be retried (action is {action.status})")

        retry_at = now or utcnow()
        self._shift_incentive(action, retry_at)
        action.status = ActionStatus.SCHEDULED.value
        action.scheduled_for = retry_at
        action.attempts = 0
        action.last_error = None
        await self.db.flush()
        return action

    @staticmethod
    def _shift_incentive(action: ScheduledAction, retry_at: datetime) -> None:
        """Move an offer's expiry by as much as the send moves, so it keeps its validity window."""
        if action.scheduled_for is None or retry_at <= action.scheduled_for:
            return
        payload = parse_action_payload(action.payload)
        incentive = getattr(payload, "incentive", None)
        if incentive is None:
            return
        incentive.expires_at = incentive.expires_at + (retry_at - action.scheduled_for)
        action.payload = payload.model_dump(mode="json")

    async def record_engagement(self, action_id: str, organization_id: str, engagement: str) -> ScheduledAction:
        """Apply provider feedback. Engagement only moves forward."""
        new_level = Engagement(engagement)
        action = await self._get_for_org(action_id, organization_id)

        current = ENGAGEMENT_ORDER.index(action.engagement) if action.engagement in ENGAGEMENT_ORDER else -1
        if ENGAGEMENT_ORDER.index(new_level.value) > current:
            action.engagement = new_level.value
            await self.db.flush()
        return action

    async def _get_for_org(self, action_id: str, organization_id: str) -> ScheduledAction:
        result = await self.db.execute(
            select(ScheduledAction).where(
                ScheduledAction.id == action_id,
                ScheduledAction.organization_id == organization_id,
            )
        )
        action = result.scalar_one_or_none()
        if action is None:
            raise ActionNotFoundError(f"Action {action_id} not found")
        return action
