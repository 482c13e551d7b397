"""
Action Plan Service

Persists generated plans and drives their review lifecycle:

    draft -> pending_approval -> approved -> in_progress -> completed

A plan may instead end rejected, or superseded by a newer plan.

Approval may cover only some invoices. Approved entries materialize their
proposed actions as ScheduledActions (linked by plan_id / plan_entry_id) and
move to in_progress; the rest stay pending for a later decision.

Services flush; callers own the transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from recoup.analysis.engine import InvoiceAnalyzer
from recoup.cashflow.service import CashSqueezeDetector
from recoup.engines.config import AREngineConfig
from recoup.errors import DataError, InvalidPlanStateError, MalformedPayloadError, PlanNotFoundError
from recoup.models import (
    AWAITING_DECISION_STATUSES,
    ActionPlanRecord,
    ActionStatus,
    Invoice,
    PENDING_ACTION_STATUSES,
    PlanEntryStatus,
    PlanInvoiceEntry,
    PlanStatus,
    ScheduledAction,
    utcnow,
)
from recoup.schemas.cashflow import CashSqueezeAlert, SpendingPattern
from recoup.schemas.plan import (
    ActionPlan,
    InvoiceActionPlan,
    ProactiveMeasure,
    ProposedAction,
    parse_analysis_snapshot,
)

from .builder import build_action_plan

logger = logging.getLogger(__name__)

TERMINAL_ACTION_STATUSES = (
    ActionStatus.COMPLETED.value,
    ActionStatus.FAILED.value,
    ActionStatus.CANCELLED.value,
)


@dataclass
class ApprovalResult:
    plan_id: str
    plan_status: str
    approved_invoice_ids: List[str] = field(default_factory=list)
    actions_created: int = 0
    duplicates_skipped: int = 0
    skipped_paid_invoice_ids: List[str] = field(default_factory=list)


def _parse_proposed_actions(raw: Iterable) -> List[ProposedAction]:
    try:
        return [ProposedAction.model_validate(item) for item in raw or []]
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid proposed actions: {e.error_count()} error(s)") from e


def plan_from_record(record: ActionPlanRecord) -> ActionPlan:
    """Deserialize a stored plan. Raises MalformedPayloadError on bad documents."""
    invoice_plans = [
        InvoiceActionPlan(
            invoice_id=entry.invoice_id,
            entry_id=entry.id,
            status=PlanEntryStatus(entry.status),
            analysis=parse_analysis_snapshot(entry.analysis_snapshot),
            actions=_parse_proposed_actions(entry.proposed_actions),
        )
        for entry in record.entries
    ]
    try:
        alerts = [CashSqueezeAlert.model_validate(a) for a in record.cash_squeeze_alerts or []]
        measures = [ProactiveMeasure.model_validate(m) for m in record.proactive_measures or []]
        patterns = [SpendingPattern.model_validate(p) for p in record.spending_patterns or []]
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid plan forecast data: {e.error_count()} error(s)") from e

    return ActionPlan(
        id=record.id,
        organization_id=record.organization_id,
        status=PlanStatus(record.status),
        generated_at=record.generated_at,
        invoice_plans=invoice_plans,
        cash_squeeze_alerts=alerts,
        proactive_measures=measures,
        spending_patterns=patterns,
        total_at_risk_cents=record.total_at_risk_cents,
        projected_recovery_cents=record.projected_recovery_cents,
        projected_fee_cents=record.projected_fee_cents,
    )


class ActionPlanService:
    """Generate, persist and review action plans for one organization."""

    def __init__(self, db: AsyncSession, organization_id: str, config: Optional[AREngineConfig] = None):
        self.db = db
        self.organization_id = organization_id
        self.config = config or AREngineConfig.from_settings()

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_plan(self, now: Optional[datetime] = None) -> ActionPlan:
        now = now or utcnow()
        analyses = await InvoiceAnalyzer(self.db, self.organization_id, self.config).analyze(now)
        detector = CashSqueezeDetector(self.db, self.organization_id, self.config)
        alerts = await detector.detect(now)
        patterns = await detector.spending_patterns(now)
        return build_action_plan(self.organization_id, analyses, alerts, self.config, now, patterns)

    async def save_plan(self, plan: ActionPlan) -> ActionPlanRecord:
        """Persist a plan for review. Older plans still awaiting decisions are superseded."""
        await self._supersede_pending_plans()

        record = ActionPlanRecord(
            organization_id=self.organization_id,
            status=PlanStatus.PENDING_APPROVAL.value,
            generated_at=plan.generated_at,
            total_at_risk_cents=plan.total_at_risk_cents,
            projected_recovery_cents=plan.projected_recovery_cents,
            projected_fee_cents=plan.projected_fee_cents,
            cash_squeeze_alerts=[a.model_dump(mode="json") for a in plan.cash_squeeze_alerts],
            proactive_measures=[m.model_dump(mode="json") for m in plan.proactive_measures],
            spending_patterns=[p.model_dump(mode="json") for p in plan.spending_patterns],
            entries=[
                PlanInvoiceEntry(
                    invoice_id=invoice_plan.invoice_id,
                    client_id=invoice_plan.analysis.client_id,
                    position=position,
                    status=PlanEntryStatus.PENDING.value,
                    analysis_snapshot=invoice_plan.analysis.model_dump(mode="json"),
                    proposed_actions=[a.model_dump(mode="json") for a in invoice_plan.actions],
                )
                for position, invoice_plan in enumerate(plan.invoice_plans)
            ],
        )
        self.db.add(record)
        await self.db.flush()

        plan.id = record.id
        plan.status = PlanStatus.PENDING_APPROVAL
        logger.info(
            f"Saved action plan {record.id} for organization {self.organization_id} "
            f"({len(record.entries)} invoices)"
        )
        return record

    async def generate_and_save(self, now: Optional[datetime] = None) -> ActionPlan:
        plan = await self.generate_plan(now)
        await self.save_plan(plan)
        return plan

    async def _supersede_pending_plans(self) -> None:
        result = await self.db.execute(
            select(ActionPlanRecord)
            .options(selectinload(ActionPlanRecord.entries))
            .where(
                ActionPlanRecord.organization_id == self.organization_id,
                ActionPlanRecord.status.in_(AWAITING_DECISION_STATUSES),
            )
        )
        for record in result.scalars().all():
            has_approved = False
            for entry in record.entries:
                if entry.status == PlanEntryStatus.PENDING.value:
                    entry.status = PlanEntryStatus.SUPERSEDED.value
                elif entry.status in (PlanEntryStatus.IN_PROGRESS.value, PlanEntryStatus.COMPLETED.value):
                    has_approved = True
            # Partially approved plans keep tracking the work already materialized
            record.status = PlanStatus.APPROVED.value if has_approved else PlanStatus.SUPERSEDED.value

    # =========================================================================
    # Review
    # =========================================================================

    async def _load(self, plan_id: str) -> ActionPlanRecord:
        result = await self.db.execute(
            select(ActionPlanRecord)
            .options(selectinload(ActionPlanRecord.entries))
            .where(
                ActionPlanRecord.id == plan_id,
                ActionPlanRecord.organization_id == self.organization_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise PlanNotFoundError(f"Action plan {plan_id} not found")
        return record

    def _select_pending_entries(
        self, record: ActionPlanRecord, invoice_ids: Optional[Iterable[str]]
    ) -> List[PlanInvoiceEntry]:
        if record.status not in AWAITING_DECISION_STATUSES:
            raise InvalidPlanStateError(f"Plan {record.id} is {record.status}, not awaiting approval")

        pending = [e for e in record.entries if e.status == PlanEntryStatus.PENDING.value]
        if invoice_ids is None:
            return pending

        wanted = set(invoice_ids)
        selected = [e for e in pending if e.invoice_id in wanted]
        unknown = wanted - {e.invoice_id for e in selected}
        if unknown:
            raise DataError(f"Invoices not pending in plan {record.id}: {', '.join(sorted(unknown))}")
        return selected

    async def approve_plan(
        self,
        plan_id: str,
        invoice_ids: Optional[Iterable[str]] = None,
        approved_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalResult:
        """
        Approve all pending invoices of a plan, or only `invoice_ids`.

        Everything is validated before anything is written: an unknown
        invoice id or a malformed stored action rejects the whole request.
        """
        now = now or utcnow()
        record = await self._load(plan_id)
        entries = self._select_pending_entries(record, invoice_ids)
        proposals = {entry.id: _parse_proposed_actions(entry.proposed_actions) for entry in entries}

        result = ApprovalResult(plan_id=record.id, plan_status=record.status)
        for entry in entries:
            invoice = await self.db.get(Invoice, entry.invoice_id)
            entry.decided_at = now
            if invoice is None or invoice.is_paid:
                entry.status = PlanEntryStatus.COMPLETED.value
                result.skipped_paid_invoice_ids.append(entry.invoice_id)
                continue

            for proposal in proposals[entry.id]:
                if await self._has_pending_duplicate(entry.invoice_id, proposal):
                    result.duplicates_skipped += 1
                    continue
                self.db.add(ScheduledAction(
                    organization_id=self.organization_id,
                    invoice_id=entry.invoice_id,
                    client_id=entry.client_id,
                    plan_id=record.id,
                    plan_entry_id=entry.id,
                    action_type=proposal.type.value,
                    scheduled_for=proposal.scheduled_for.replace(tzinfo=None),
                    priority=proposal.priority,
                    status=ActionStatus.SCHEDULED.value,
                    payload=proposal.payload.model_dump(mode="json"),
                ))
                result.actions_created += 1
                # Flush so the next duplicate check sees this action
                await self.db.flush()

            entry.status = PlanEntryStatus.IN_PROGRESS.value
            result.approved_invoice_ids.append(entry.invoice_id)

        record.approved_at = record.approved_at or now
        record.approved_by = approved_by or record.approved_by
        if not any(e.status == PlanEntryStatus.PENDING.value for e in record.entries):
            record.status = PlanStatus.APPROVED.value

        await self.db.flush()
        result.plan_status = record.status
        logger.info(
            f"Approved {len(result.approved_invoice_ids)} invoice(s) in plan {record.id}: "
            f"{result.actions_created} actions scheduled, {result.duplicates_skipped} duplicates skipped"
        )
        return result

    async def _has_pending_duplicate(self, invoice_id: str, proposal: ProposedAction) -> bool:
        window = timedelta(days=self.config.min_days_between_contacts)
        scheduled_for = proposal.scheduled_for.replace(tzinfo=None)
        result = await self.db.execute(
            select(ScheduledAction.id).where(
                ScheduledAction.invoice_id == invoice_id,
                ScheduledAction.action_type == proposal.type.value,
                ScheduledAction.status.in_(PENDING_ACTION_STATUSES),
                ScheduledAction.scheduled_for > scheduled_for - window,
                ScheduledAction.scheduled_for < scheduled_for + window,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def reject_plan(
        self,
        plan_id: str,
        invoice_ids: Optional[Iterable[str]] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionPlan:
        now = now or utcnow()
        record = await self._load(plan_id)
        for entry in self._select_pending_entries(record, invoice_ids):
            entry.status = PlanEntryStatus.REJECTED.value
            entry.decided_at = now

        if reason:
            record.rejection_reason = reason
        if not any(e.status == PlanEntryStatus.PENDING.value for e in record.entries):
            approved = any(
                e.status in (PlanEntryStatus.IN_PROGRESS.value, PlanEntryStatus.COMPLETED.value)
                for e in record.entries
            )
            record.status = PlanStatus.APPROVED.value if approved else PlanStatus.REJECTED.value

        await self.db.flush()
        return plan_from_record(record)

    async def get_pending_plan(self) -> Optional[ActionPlan]:
        """Newest plan still waiting on decisions, or None."""
        result = await self.db.execute(
            select(ActionPlanRecord)
            .options(selectinload(ActionPlanRecord.entries))
            .where(
                ActionPlanRecord.organization_id == self.organization_id,
                ActionPlanRecord.status.in_(AWAITING_DECISION_STATUSES),
            )
            .order_by(ActionPlanRecord.generated_at.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        return plan_from_record(record)

    async def get_plan(self, plan_id: str) -> ActionPlan:
        return plan_from_record(await self._load(plan_id))

    # =========================================================================
    # Progress
    # =========================================================================

    async def refresh_progress(self, now: Optional[datetime] = None) -> int:
        """
        Advance approved plans as their actions finish.

        An entry completes once all its actions are terminal; a plan moves
        to in_progress once any action completed and to completed once every
        non-rejected entry is done. Returns the number of plans completed.
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(ActionPlanRecord)
            .options(selectinload(ActionPlanRecord.entries))
            .where(
                ActionPlanRecord.organization_id == self.organization_id,
                ActionPlanRecord.status.in_((PlanStatus.APPROVED.value, PlanStatus.IN_PROGRESS.value)),
            )
        )
        completed_plans = 0
        for record in result.scalars().all():
            any_action_done = False
            for entry in record.entries:
                if entry.status != PlanEntryStatus.IN_PROGRESS.value:
                    continue
                statuses = (await self.db.execute(
                    select(ScheduledAction.status).where(ScheduledAction.plan_entry_id == entry.id)
                )).scalars().all()
                if any(s == ActionStatus.COMPLETED.value for s in statuses):
                    any_action_done = True
                if all(s in TERMINAL_ACTION_STATUSES for s in statuses):
                    entry.status = PlanEntryStatus.COMPLETED.value

            live = [
                e for e in record.entries
                if e.status not in (PlanEntryStatus.REJECTED.value, PlanEntryStatus.SUPERSEDED.value)
            ]
            if live and all(e.status == PlanEntryStatus.COMPLETED.value for e in live):
                record.status = PlanStatus.COMPLETED.value
                record.completed_at = now
                completed_plans += 1
            elif any_action_done and record.status == PlanStatus.APPROVED.value:
                record.status = PlanStatus.IN_PROGRESS.value

        await self.db.flush()
        return completed_plans
