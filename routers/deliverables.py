# Deliverables Router
# Creator-facing submission endpoints

from fastapi import APIRouter, HTTPException, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List
import logging

from database.config import get_db
from database.models import User
from database.marketplace_models import Deliverable
from schemas.deliverables import (
    AutoApprovalStatusResponse,
    DeliverableContent,
    DeliverableDetailResponse,
    DeliverableResponse,
    DeliverableSubmit,
    PostUrlCheckResponse,
)
from services import deliverable_store as store
from services.exceptions import DeliverableError, ValidationError
from services.review_service import ReviewService
from services.submission_service import SubmissionService, validate_post_url
from core.media_service import resolve_media_url
from auth.roles import UserType as UserTypeRole
from auth.decorators import require_user_type, get_user_type
from auth.dependencies import get_current_user
from routers.errors import http_error

router = APIRouter(prefix="/deliverables", tags=["Deliverables"])


def to_response(deliverable: Deliverable, model=DeliverableResponse):
    response = model.model_validate(deliverable)
    response.media_url = resolve_media_url(deliverable.content_url)
    return response


def load_visible_deliverable(db: Session, deliverable_id: str, user: User) -> Deliverable:
    """The creator, the reviewing business and admins may read a deliverable."""
    try:
        deliverable = store.get_deliverable(db, deliverable_id)
    except DeliverableError as e:
        raise http_error(e)
    if get_user_type(user) != UserTypeRole.ADMIN and user.id not in (deliverable.creator_id, deliverable.business_id):
        raise HTTPException(status_code=404, detail="Deliverable not found")
    return deliverable


# ============================================================================
# SUBMISSION ENDPOINTS
# ============================================================================

@router.post("/drafts", response_model=DeliverableResponse, status_code=status.HTTP_201_CREATED)
async def save_draft(
    payload: DeliverableSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    Save a draft deliverable for an application. Drafts are not reviewed.
    """
    service = SubmissionService(db)
    try:
        deliverable = service.submit_draft(payload.campaign_application_id, payload, current_user.id)
    except DeliverableError as e:
        raise http_error(e)
    return to_response(deliverable)


@router.post("/submit", response_model=DeliverableResponse, status_code=status.HTTP_201_CREATED)
async def submit_deliverable(
    payload: DeliverableSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    Submit a deliverable for business review.
    The auto-approval clock starts now.
    """
    service = SubmissionService(db)
    try:
        deliverable = service.submit(payload.campaign_application_id, payload, current_user.id)
    except DeliverableError as e:
        raise http_error(e)

    logging.info(f"Deliverable {deliverable.id} submitted by {current_user.id}")
    return to_response(deliverable)


@router.get("/post-url/check", response_model=PostUrlCheckResponse)
async def check_post_url(
    url: str = Query(..., description="Public URL of the published post"),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    Validate a post URL and detect its platform before submitting.
    """
    try:
        check = validate_post_url(url)
    except ValidationError as e:
        return PostUrlCheckResponse(valid=False, platform="other", error=e.message)
    return PostUrlCheckResponse(valid=True, platform=check.platform, warning=check.warning)


@router.get("/history", response_model=List[DeliverableResponse])
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    The current creator's deliverables, newest first.
    """
    deliverables = SubmissionService(db).get_history(current_user.id, limit=limit)
    return [to_response(d) for d in deliverables]


@router.post("/{deliverable_id}/resubmit", response_model=DeliverableResponse)
async def resubmit_deliverable(
    deliverable_id: str,
    payload: DeliverableContent,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    Resubmit a deliverable after the business requested a revision.
    """
    service = SubmissionService(db)
    try:
        deliverable = service.resubmit(deliverable_id, payload, current_user.id)
    except DeliverableError as e:
        raise http_error(e)
    return to_response(deliverable)


@router.delete("/{deliverable_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_draft(
    deliverable_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_user_type(UserTypeRole.CREATOR))
):
    """
    Delete a draft. Submitted deliverables cannot be deleted.
    """
    try:
        SubmissionService(db).discard_draft(deliverable_id, current_user.id)
    except DeliverableError as e:
        raise http_error(e)


# ============================================================================
# READ ENDPOINTS
# ============================================================================

@router.get("/{deliverable_id}", response_model=DeliverableDetailResponse)
async def get_deliverable(
    deliverable_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    deliverable = load_visible_deliverable(db, deliverable_id, current_user)
    return to_response(deliverable, DeliverableDetailResponse)


@router.get("/{deliverable_id}/auto-approval", response_model=AutoApprovalStatusResponse)
async def get_auto_approval_status(
    deliverable_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Time left before the deliverable is approved automatically.
    """
    load_visible_deliverable(db, deliverable_id, current_user)
    service = ReviewService(db)
    try:
        return service.check_auto_approval_status(deliverable_id)
    except DeliverableError as e:
        raise http_error(e)
