# Reviews Router
# Business review of submitted deliverables

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from database.config import get_db
from database.models import User
from schemas.deliverables import (
    ApproveRequest,
    BulkApproveRequest,
    BulkApproveResponse,
    DeliverableCountsResponse,
    DeliverableResponse,
    PendingReviewItem,
    RejectRequest,
    ReviewMetricsResponse,
    RevisionRequest,
)
from services.exceptions import DeliverableError
from services.payout_service import PayoutOrchestrator
from services.review_service import ReviewService
from core.stripe_service import get_payment_processor
from auth.roles import UserType as UserTypeRole, Permission
from auth.decorators import require_user_type, require_permission, get_user_type
from routers.deliverables import to_response
from routers.errors import http_error

router = APIRouter(prefix="/reviews", tags=["Reviews"])


def get_review_service(db: Session = Depends(get_db), processor=Depends(get_payment_processor)) -> ReviewService:
    return ReviewService(db, orchestrator=PayoutOrchestrator(db, processor=processor))


# ============================================================================
# REVIEW QUEUE
# ============================================================================

@router.get("/pending", response_model=List[PendingReviewItem])
async def get_pending_reviews(
    limit: int = Query(100, ge=1, le=500),
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_user_type(UserTypeRole.BUSINESS))
):
    """
    Deliverables waiting for the current business, most urgent first.
    """
    items = service.get_pending_reviews(current_user.id, limit=limit)
    return [
        PendingReviewItem(
            **to_response(item["deliverable"]).model_dump(),
            hours_remaining=item["hours_remaining"],
            is_overdue=item["is_overdue"],
        )
        for item in items
    ]


# ============================================================================
# REVIEW DECISIONS
# ============================================================================

@router.post("/{deliverable_id}/approve", response_model=DeliverableResponse)
async def approve_deliverable(
    deliverable_id: str,
    payload: ApproveRequest,
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_user_type(UserTypeRole.BUSINESS))
):
    """
    Approve a deliverable. The payout starts right away; a payout problem
    shows up in payment_status, not as an error here.
    """
    try:
        deliverable = service.approve(deliverable_id, current_user.id, payload.notes)
    except DeliverableError as e:
        raise http_error(e)
    return to_response(deliverable)


@router.post("/{deliverable_id}/reject", response_model=DeliverableResponse)
async def reject_deliverable(
    deliverable_id: str,
    payload: RejectRequest,
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_user_type(UserTypeRole.BUSINESS))
):
    try:
        deliverable = service.reject(deliverable_id, current_user.id, payload.notes)
    except DeliverableError as e:
        raise http_error(e)
    return to_response(deliverable)


@router.post("/{deliverable_id}/request-revision", response_model=DeliverableResponse)
async def request_revision(
    deliverable_id: str,
    payload: RevisionRequest,
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_user_type(UserTypeRole.BUSINESS))
):
    """
    Send a deliverable back to the creator with notes and required changes.
    """
    try:
        deliverable = service.request_revision(
            deliverable_id, current_user.id, payload.notes, payload.changes_required
        )
    except DeliverableError as e:
        raise http_error(e)
    return to_response(deliverable)


@router.post("/bulk-approve", response_model=BulkApproveResponse)
async def bulk_approve(
    payload: BulkApproveRequest,
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_user_type(UserTypeRole.BUSINESS))
):
    """
    Approve several deliverables. Failures are reported per deliverable.
    """
    return service.bulk_approve(payload.deliverable_ids, current_user.id, payload.notes)


# ============================================================================
# STATS
# ============================================================================

@router.get("/campaigns/{campaign_id}/counts", response_model=DeliverableCountsResponse)
async def get_deliverable_counts(
    campaign_id: str,
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_user_type(UserTypeRole.BUSINESS))
):
    # Admins may read any campaign
    actor_id = None if get_user_type(current_user) == UserTypeRole.ADMIN else current_user.id
    try:
        return service.get_deliverable_counts(campaign_id, actor_id=actor_id)
    except DeliverableError as e:
        raise http_error(e)


@router.get("/metrics", response_model=ReviewMetricsResponse)
async def get_review_metrics(
    start: Optional[datetime] = Query(None, description="Only deliverables submitted at or after this time"),
    end: Optional[datetime] = Query(None, description="Only deliverables submitted at or before this time"),
    service: ReviewService = Depends(get_review_service),
    current_user: User = Depends(require_permission(Permission.VIEW_REVIEW_METRICS))
):
    """
    Review responsiveness for the current business.
    """
    return service.get_review_metrics(current_user.id, start=start, end=end)
