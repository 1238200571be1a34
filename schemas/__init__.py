# Schemas module for the Creator Payouts Platform

from schemas.deliverables import (
    # Submission
    DeliverableContent,
    DeliverableSubmit,
    PostUrlCheckResponse,

    # Review
    ApproveRequest,
    RejectRequest,
    RevisionRequest,
    BulkApproveRequest,
    BulkApproveResponse,

    # Deliverables
    DeliverableResponse,
    DeliverableDetailResponse,
    PendingReviewItem,
    AutoApprovalStatusResponse,
    DeliverableCountsResponse,
    ReviewMetricsResponse,

    # Payouts
    PayoutStatusResponse,
    OnboardingRequest,
    OnboardingResponse,
    AccountStatusResponse,
    SweepSummaryResponse,
    ReconcileReportResponse,
    QueuedPayoutsResponse,

    # Notifications
    NotificationResponse,
)
