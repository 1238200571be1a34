# Pydantic Schemas for deliverable review and payouts

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from database.marketplace_models import (
    ContentTypeDB,
    SocialPlatformDB,
    ReviewStatusDB,
    PaymentStatusDB,
    TransactionStatusDB,
)


# ============================================================================
# SUBMISSION
# ============================================================================

class DeliverableContent(BaseModel):
    """Content descriptor a creator submits."""
    content_type: ContentTypeDB = ContentTypeDB.POST
    content_url: Optional[str] = Field(None, max_length=1000)
    thumbnail_url: Optional[str] = Field(None, max_length=1000)
    caption: Optional[str] = Field(None, max_length=5000)
    post_url: Optional[str] = Field(None, max_length=1000)
    social_platform: Optional[SocialPlatformDB] = None  # Detected from post_url when omitted


class DeliverableSubmit(DeliverableContent):
    campaign_application_id: str


class PostUrlCheckResponse(BaseModel):
    valid: bool
    platform: SocialPlatformDB
    warning: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# REVIEW
# ============================================================================

class ApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    notes: str = Field("", max_length=2000)


class RevisionRequest(BaseModel):
    notes: str = Field("", max_length=2000)
    changes_required: List[str] = []


class BulkApproveRequest(BaseModel):
    deliverable_ids: List[str] = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class BulkApproveError(BaseModel):
    deliverable_id: str
    error: str


class BulkApproveResponse(BaseModel):
    approved: List[str]
    errors: List[BulkApproveError]


# ============================================================================
# DELIVERABLE RESPONSES
# ============================================================================

class PaymentTransactionResponse(BaseModel):
    id: str
    amount_cents: int
    currency: str
    status: TransactionStatusDB
    idempotency_key: str
    stripe_transfer_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeliverableResponse(BaseModel):
    id: str
    campaign_application_id: str
    campaign_id: str
    creator_id: str
    business_id: str
    restaurant_id: Optional[str] = None

    content_type: Optional[ContentTypeDB] = None
    content_url: Optional[str] = None
    media_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    caption: Optional[str] = None
    post_url: Optional[str] = None
    social_platform: Optional[SocialPlatformDB] = None

    review_status: ReviewStatusDB
    review_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    revision_number: int = 0
    submitted_at: Optional[datetime] = None
    auto_approval_deadline: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    payment_status: PaymentStatusDB
    payment_amount_cents: Optional[int] = None
    payout_attempts: int = 0
    payment_error: Optional[str] = None
    paid_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeliverableDetailResponse(DeliverableResponse):
    transactions: List[PaymentTransactionResponse] = []


class PendingReviewItem(DeliverableResponse):
    hours_remaining: float
    is_overdue: bool


class AutoApprovalStatusResponse(BaseModel):
    deliverable_id: str
    review_status: ReviewStatusDB
    eligible: bool
    submitted_at: Optional[datetime] = None
    deadline: Optional[datetime] = None
    hours_elapsed: float
    hours_remaining: float
    is_overdue: bool


class DeliverableCountsResponse(BaseModel):
    campaign_id: str
    total: int
    draft: int
    pending_review: int
    approved: int
    auto_approved: int
    rejected: int
    revision_requested: int


class ReviewMetricsResponse(BaseModel):
    total_reviewed: int
    pending_count: int
    average_review_hours: Optional[float] = None
    approval_rate: float
    rejection_rate: float
    revision_rate: float
    auto_approval_rate: float


# ============================================================================
# PAYOUTS
# ============================================================================

class PayoutStatusResponse(BaseModel):
    deliverable_id: str
    payment_status: PaymentStatusDB
    waiting: bool = False  # True while the creator still has to finish onboarding
    payment_error: Optional[str] = None
    paid_at: Optional[datetime] = None
    message: Optional[str] = None


class OnboardingRequest(BaseModel):
    refresh_url: str
    return_url: str


class OnboardingResponse(BaseModel):
    stripe_account_id: str
    url: str
    expires_at: Optional[int] = None


class AccountStatusResponse(BaseModel):
    creator_id: str
    stripe_account_id: str
    onboarding_completed: bool
    resumed_deliverable_ids: List[str] = []


class SweepSummaryResponse(BaseModel):
    scanned: int
    approved: int
    skipped: int
    approved_ids: List[str]
    skipped_ids: List[str]


class ReconcileItem(BaseModel):
    deliverable_id: str
    outcome: str  # completed | failed | ambiguous
    transfer_id: Optional[str] = None
    error: Optional[str] = None


class ReconcileReportResponse(BaseModel):
    summary: dict
    items: List[ReconcileItem]


class QueuedPayoutsResponse(BaseModel):
    processed: int
    results: dict


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: Optional[str] = None
    action_url: Optional[str] = None
    data: Optional[dict] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
