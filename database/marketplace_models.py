# Marketplace Database Models for the Creator Payouts Platform
# Campaigns, applications, deliverables, payouts and connected payment accounts

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, JSON, Enum, Boolean, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from database.models import Base, generate_uuid


def _enum_column(enum_cls, name, **kwargs):
    return Column(Enum(enum_cls, values_callable=lambda x: [e.value for e in x], name=name), **kwargs)


# ============================================================================
# ENUMS
# ============================================================================

class CampaignStatusDB(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ApplicationStatusDB(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    COMPLETED = "completed"


class ContentTypeDB(str, enum.Enum):
    PHOTO = "photo"
    VIDEO = "video"
    REEL = "reel"
    STORY = "story"
    POST = "post"


class SocialPlatformDB(str, enum.Enum):
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    TWITTER = "twitter"
    FACEBOOK = "facebook"
    OTHER = "other"


class ReviewStatusDB(str, enum.Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    AUTO_APPROVED = "auto_approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class PaymentStatusDB(str, enum.Enum):
    NOT_APPLICABLE = "not_applicable"
    PENDING = "pending"                      # Queued for the orchestrator
    PENDING_ONBOARDING = "pending_onboarding"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionStatusDB(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# CAMPAIGN
# ============================================================================

class Campaign(Base):
    """Paid campaigns owned by a business. Read-only from the review engine."""
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    business_id = Column(String(36), ForeignKey("users.id"), nullable=False)  # User who owns the campaign
    restaurant_id = Column(String(36), nullable=True)

    title = Column(String(255), nullable=False)
    status = _enum_column(CampaignStatusDB, "campaignstatusdb", default=CampaignStatusDB.ACTIVE)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    business = relationship("User", foreign_keys=[business_id])


class CampaignApplication(Base):
    """A creator's accepted commitment to a campaign at an agreed rate."""
    __tablename__ = "campaign_applications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    proposed_rate_cents = Column(Integer, nullable=False)  # In cents
    status = _enum_column(ApplicationStatusDB, "applicationstatusdb", default=ApplicationStatusDB.PENDING)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    campaign = relationship("Campaign", backref="applications")
    creator = relationship("User", foreign_keys=[creator_id])


# ============================================================================
# DELIVERABLE
# ============================================================================

class Deliverable(Base):
    """Creator content submitted against a campaign application.

    Two independent state dimensions live on this row: the review state
    (owned by review transitions and the auto-approval sweeper) and the
    payment state (owned by the payout orchestrator).
    """
    __tablename__ = "campaign_deliverables"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    campaign_application_id = Column(String(36), ForeignKey("campaign_applications.id", ondelete="CASCADE"), nullable=False, unique=True)  # One deliverable per application
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    business_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(String(36), nullable=True)

    # Content
    content_type = _enum_column(ContentTypeDB, "contenttypedb", default=ContentTypeDB.POST)
    content_url = Column(String(1000))  # Opaque media reference
    thumbnail_url = Column(String(1000))
    caption = Column(Text)
    post_url = Column(String(1000))
    social_platform = _enum_column(SocialPlatformDB, "socialplatformdb", default=SocialPlatformDB.OTHER)

    # Review
    review_status = _enum_column(ReviewStatusDB, "reviewstatusdb", nullable=False, default=ReviewStatusDB.DRAFT)
    review_notes = Column(Text)
    reviewed_by = Column(String(36), nullable=True)
    revision_number = Column(Integer, default=0)

    submitted_at = Column(DateTime)
    auto_approval_deadline = Column(DateTime, index=True)
    reviewed_at = Column(DateTime)

    # Payment
    payment_status = _enum_column(PaymentStatusDB, "paymentstatusdb", nullable=False, default=PaymentStatusDB.NOT_APPLICABLE)
    payment_amount_cents = Column(Integer)  # Fixed at submission
    payout_attempts = Column(Integer, default=0)
    payment_error = Column(Text)
    paid_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    application = relationship("CampaignApplication", backref="deliverables")
    campaign = relationship("Campaign", backref="deliverables")
    transactions = relationship("PaymentTransaction", back_populates="deliverable", order_by="PaymentTransaction.created_at")


# ============================================================================
# PAYMENT TRANSACTION
# ============================================================================

class PaymentTransaction(Base):
    """One row per transfer attempt for a deliverable payout."""
    __tablename__ = "payment_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    deliverable_id = Column(String(36), ForeignKey("campaign_deliverables.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(String(36), nullable=True)
    creator_id = Column(String(36), nullable=False)
    business_id = Column(String(36), nullable=True)

    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = _enum_column(TransactionStatusDB, "transactionstatusdb", nullable=False, default=TransactionStatusDB.PROCESSING)

    # Shared by every attempt until the processor confirms no transfer exists for it
    idempotency_key = Column(String(100), nullable=False, index=True)
    stripe_transfer_id = Column(String(100), nullable=True, index=True)
    error_message = Column(Text)
    definitive_failure = Column(Boolean, nullable=False, default=False)  # Next attempt needs a fresh key

    created_at = Column(DateTime, server_default=func.now())
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    deliverable = relationship("Deliverable", back_populates="transactions")

    __table_args__ = (
        # At most one completed payout per deliverable
        Index(
            "uq_payment_transactions_completed",
            "deliverable_id",
            unique=True,
            postgresql_where=text("status = 'completed'"),
            sqlite_where=text("status = 'completed'"),
        ),
    )


# ============================================================================
# CONNECTED ACCOUNT
# ============================================================================

class ConnectedAccount(Base):
    """Local mirror of a creator's payment processor account."""
    __tablename__ = "connected_accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    creator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    stripe_account_id = Column(String(100), unique=True, nullable=False)

    onboarding_completed = Column(Boolean, default=False, nullable=False)
    last_event_at = Column(DateTime)  # Recency of the last applied status update
    last_event_id = Column(String(100))

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================================
# NOTIFICATION
# ============================================================================

class Notification(Base):
    """User notifications."""
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    type = Column(String(50), nullable=False)  # review_pending, payout_completed, etc.
    title = Column(String(200), nullable=False)
    message = Column(Text)
    action_url = Column(String(500))
    data = Column(JSON)

    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
