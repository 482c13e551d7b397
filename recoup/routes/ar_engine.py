"""
API Routes for the AR Engine.

Provides endpoints to:
- Analyze open invoices and forecast cash squeezes
- Generate, fetch, approve and reject action plans
- Execute due outreach (scheduler or user), retry failed actions
- Receive provider engagement callbacks
- Record and sync payments, report success fees
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from recoup.analysis import InvoiceAnalysis
from recoup.auth.dependencies import CurrentUser, get_current_user, is_cron_request, security
from recoup.auth.utils import decode_access_token
from recoup.database import get_db
from recoup.engines.ar_engine import AREngine
from recoup.errors import ActionNotFoundError
from recoup.models import ScheduledAction
from recoup.outreach import OutreachExecutor
from recoup.scheduler import ar_scheduler
from recoup.schemas.api import (
    ApprovalResponse,
    ApprovePlanRequest,
    EngagementRequest,
    RecordPaymentRequest,
    RejectPlanRequest,
    ScheduledActionResponse,
)

router = APIRouter(prefix="/ar-engine", tags=["AR Engine"])


def _engine(db: AsyncSession, user: CurrentUser) -> AREngine:
    return AREngine(db, user.organization_id, ar_scheduler.config, rate_limiter=ar_scheduler.rate_limiter)


def _analysis_to_dict(analysis: InvoiceAnalysis) -> Dict[str, Any]:
    data = analysis.to_snapshot().model_dump(mode="json")
    data["recommended_actions"] = [
        {
            "type": action.type.value,
            "priority": action.priority,
            "scheduled_for": action.scheduled_for.isoformat(),
            "expected_response_rate": action.expected_response_rate,
            "reasoning": action.reasoning,
            "incentive": action.incentive.model_dump(mode="json") if action.incentive else None,
        }
        for action in analysis.recommended_actions
    ]
    return data


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _action_to_response(action: ScheduledAction) -> ScheduledActionResponse:
    return ScheduledActionResponse(
        id=action.id,
        invoice_id=action.invoice_id,
        action_type=action.action_type,
        status=action.status,
        scheduled_for=action.scheduled_for,
        attempts=action.attempts,
        last_error=action.last_error,
        engagement=action.engagement,
    )


# =============================================================================
# Analysis
# =============================================================================

@router.get("/analysis")
async def analyze_invoices(
    limit: int = 50,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open invoices ranked by urgency, with recommended actions."""
    analyses = await _engine(db, user).analyze_invoices()
    return {
        "total": len(analyses),
        "invoices": [_analysis_to_dict(a) for a in analyses[:limit]],
    }


@router.get("/cash-squeezes")
async def get_cash_squeezes(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    alerts = await _engine(db, user).detect_cash_squeezes()
    return {"alerts": [alert.model_dump(mode="json") for alert in alerts]}


# =============================================================================
# Action Plans
# =============================================================================

@router.post("/plans")
async def generate_plan(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Generate and save a new action plan for review."""
    plan = await _engine(db, user).generate_action_plan()
    await db.commit()
    return plan.model_dump(mode="json")


@router.get("/plans/pending")
async def get_pending_plan(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        plan = await _engine(db, user).get_pending_action_plan()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if plan is None:
        raise HTTPException(status_code=404, detail="No plan awaiting approval")
    return plan.model_dump(mode="json")


@router.get("/plans/{plan_id}")
async def get_plan(
    plan_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        plan = await _engine(db, user).plans.get_plan(plan_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return plan.model_dump(mode="json")


@router.post("/plans/{plan_id}/approve", response_model=ApprovalResponse)
async def approve_plan(
    plan_id: str,
    request: ApprovePlanRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Approve a plan (or a subset of its invoices).

    Materializes the proposed actions as scheduled actions.
    """
    try:
        result = await _engine(db, user).approve_action_plan(plan_id, request.invoice_ids, approved_by=user.user_id)
        await db.commit()
        return ApprovalResponse(**asdict(result))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/plans/{plan_id}/reject")
async def reject_plan(
    plan_id: str,
    request: RejectPlanRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        plan = await _engine(db, user).reject_action_plan(plan_id, request.invoice_ids, request.reason)
        await db.commit()
        return plan.model_dump(mode="json")
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =============================================================================
# Outreach
# =============================================================================

@router.post("/execute")
async def execute_due_actions(
    cron: bool = Depends(is_cron_request),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
):
    """
    Execute due outreach.

    With the cron secret this runs the scheduler job for every organization;
    with a user token it runs only that user's organization.
    """
    if cron:
        return await ar_scheduler.run_outreach()

    payload = decode_access_token(credentials.credentials) if credentials else None
    if not payload or not payload.get("org_id"):
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = CurrentUser(user_id=payload.get("sub"), organization_id=payload["org_id"])
    summary = await _engine(db, user).execute_due_actions()
    await db.commit()
    return summary.to_dict()


@router.post("/actions/{action_id}/retry", response_model=ScheduledActionResponse)
async def retry_action(
    action_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Re-schedule a failed action to run on the next outreach pass."""
    try:
        action = await _engine(db, user).executor().retry_action(action_id, user.organization_id)
        await db.commit()
        return _action_to_response(action)
    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/actions/{action_id}/engagement", response_model=ScheduledActionResponse)
async def record_engagement(
    action_id: str,
    request: EngagementRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    executor = OutreachExecutor(db, ar_scheduler.config, rate_limiter=ar_scheduler.rate_limiter)
    try:
        action = await executor.record_engagement(action_id, user.organization_id, request.engagement.value)
        await db.commit()
        return _action_to_response(action)
    except ActionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# Payments
# =============================================================================

@router.post("/payments")
async def record_payment(
    request: RecordPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a manual payment. Duplicates within a day return the existing event."""
    try:
        result = await _engine(db, user).record_payment(
            invoice_id=request.invoice_id,
            amount_cents=request.amount_cents,
            paid_at=_naive_utc(request.paid_at),
            payment_method=request.payment_method,
            reference=request.reference,
        )
        return result.to_dict()
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/payments/sync")
async def sync_payments(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    summary = await _engine(db, user).sync_payments()
    return summary.to_dict()


@router.get("/fees")
async def get_fee_summary(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _engine(db, user).get_success_fee_summary()


@router.get("/scheduler/status")
async def get_scheduler_status(user: CurrentUser = Depends(get_current_user)):
    return ar_scheduler.get_status()
