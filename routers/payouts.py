# Payouts Router
# Payout status, manual retry, connected account setup and operator jobs

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from database.config import get_db
from database.models import User
from schemas.deliverables import (
    AccountStatusResponse,
    OnboardingRequest,
    OnboardingResponse,
    PayoutStatusResponse,
    QueuedPayoutsResponse,
    ReconcileReportResponse,
    SweepSummaryResponse,
)
from services.account_status import AccountStatusTracker
from services.auto_approval import AutoApprovalSweeper
from services.exceptions import DeliverableError
from services.payout_service import PayoutOrchestrator, payout_view
from core.stripe_service import get_payment_processor
from auth.roles import UserType as UserTypeRole, Permission
from auth.decorators import require_user_type, require_permission, require_admin, get_user_type
from routers.deliverables import load_visible_deliverable
from routers.errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])


def get_orchestrator(db: Session = Depends(get_db), processor=Depends(get_payment_processor)) -> PayoutOrchestrator:
    return PayoutOrchestrator(db, processor=processor)


def get_account_tracker(db: Session = Depends(get_db), processor=Depends(get_payment_processor)) -> AccountStatusTracker:
    return AccountStatusTracker(db, processor=processor)


# ============================================================================
# CONNECTED ACCOUNT
# ============================================================================

@router.get("/account", response_model=AccountStatusResponse)
async def get_account(
    tracker: AccountStatusTracker = Depends(get_account_tracker),
    current_user: User = Depends(require_permission(Permission.MANAGE_PAYOUT_ACCOUNT))
):
    """
    The current creator's connected account as last mirrored.
    """
    account = tracker.get_account(current_user.id)
    if not account:
        raise HTTPException(status_code=404, detail="No connected payment account")
    return AccountStatusResponse(
        creator_id=account.creator_id,
        stripe_account_id=account.stripe_account_id,
        onboarding_completed=account.onboarding_completed,
    )


@router.post("/account/refresh", response_model=AccountStatusResponse)
async def refresh_account(
    tracker: AccountStatusTracker = Depends(get_account_tracker),
    current_user: User = Depends(require_permission(Permission.MANAGE_PAYOUT_ACCOUNT))
):
    """
    Re-read onboarding status from Stripe. Payouts that were waiting on
    onboarding resume once the account is complete.
    """
    try:
        return tracker.refresh(current_user.id)
    except DeliverableError as e:
        raise http_error(e)


@router.post("/account/onboarding", response_model=OnboardingResponse)
async def start_onboarding(
    payload: OnboardingRequest,
    tracker: AccountStatusTracker = Depends(get_account_tracker),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    Get a hosted onboarding link, creating the Express account on first use.
    """
    try:
        return tracker.start_onboarding(current_user.id, current_user.email, payload.refresh_url, payload.return_url)
    except DeliverableError as e:
        raise http_error(e)


# ============================================================================
# PER-DELIVERABLE PAYOUTS
# ============================================================================

@router.get("/{deliverable_id}", response_model=PayoutStatusResponse)
async def get_payout_status(
    deliverable_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.RETRY_PAYOUTS))
):
    deliverable = load_visible_deliverable(db, deliverable_id, current_user)
    return payout_view(deliverable)


@router.post("/{deliverable_id}/retry", response_model=PayoutStatusResponse)
async def retry_payout(
    deliverable_id: str,
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_permission(Permission.RETRY_PAYOUTS))
):
    """
    Retry a payout that failed or was waiting on onboarding.

    A creator who still has not finished onboarding gets 200 with
    `waiting: true`; no transfer is attempted.
    """
    actor_id = None if get_user_type(current_user) == UserTypeRole.ADMIN else current_user.id
    try:
        deliverable = orchestrator.retry_payout(deliverable_id, actor_id=actor_id)
    except DeliverableError as e:
        raise http_error(e)
    return payout_view(deliverable)


# ============================================================================
# OPERATOR JOBS
# ============================================================================

@router.post("/admin/sweep", response_model=SweepSummaryResponse)
async def run_auto_approval_sweep(
    limit: int = Query(100, ge=1, le=1000),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_admin())
):
    """
    Auto-approve every deliverable whose review window has closed.
    """
    sweeper = AutoApprovalSweeper(orchestrator.db, orchestrator=orchestrator, notifier=orchestrator.notifier)
    summary = sweeper.sweep(limit=limit)
    logger.info(f"Manual sweep by {current_user.id}: {summary['approved']} approved")
    return summary


@router.post("/admin/process-queued", response_model=QueuedPayoutsResponse)
async def process_queued_payouts(
    limit: int = Query(50, ge=1, le=500),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_admin())
):
    results = orchestrator.process_queued(limit=limit)
    return {"processed": len(results), "results": results}


@router.post("/admin/reconcile", response_model=ReconcileReportResponse)
async def reconcile_payouts(
    stale_minutes: Optional[int] = Query(None, ge=0, description="Override the stale-processing threshold"),
    limit: int = Query(100, ge=1, le=1000),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_admin())
):
    """
    Resolve payouts stuck in processing against Stripe's transfer records.
    """
    return orchestrator.reconcile_processing(stale_minutes=stale_minutes, limit=limit)
