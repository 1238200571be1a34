# Submission Service
# Creator side of the deliverable lifecycle: drafts, first submission and resubmission.

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from urllib.parse import urlparse
import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.marketplace_models import (
    Campaign,
    CampaignApplication,
    Deliverable,
    ApplicationStatusDB,
    CampaignStatusDB,
    ReviewStatusDB,
    SocialPlatformDB,
)
from schemas.deliverables import DeliverableContent
from services import deliverable_store as store
from services.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)


# ============================================================================
# POST URL VALIDATION
# ============================================================================

PLATFORM_PATTERNS = {
    SocialPlatformDB.INSTAGRAM: [
        r"instagram\.com/(p|reel|reels|tv|stories|share)/",
        r"instagram\.com/[^/]+/(p|reel)/",
        r"instagr\.am/",
    ],
    SocialPlatformDB.TIKTOK: [
        r"tiktok\.com/@[^/]+/video/",
        r"tiktok\.com/t/",
        r"vm\.tiktok\.com/",
    ],
    SocialPlatformDB.YOUTUBE: [
        r"youtube\.com/watch",
        r"youtube\.com/shorts/",
        r"youtube\.com/live/",
        r"youtube\.com/embed/",
        r"youtu\.be/",
    ],
    SocialPlatformDB.TWITTER: [
        r"(mobile\.)?twitter\.com/[^/]+/status/",
        r"x\.com/[^/]+/status/",
    ],
    SocialPlatformDB.FACEBOOK: [
        r"facebook\.com/.+/posts/",
        r"facebook\.com/(watch|reel)/",
        r"fb\.watch/",
        r"fb\.com/",
    ],
}

DOMAIN_PLATFORMS = [
    (("instagram.com", "instagr.am", "threads.net"), SocialPlatformDB.INSTAGRAM),
    (("tiktok.com",), SocialPlatformDB.TIKTOK),
    (("youtube.com", "youtu.be"), SocialPlatformDB.YOUTUBE),
    (("twitter.com", "x.com"), SocialPlatformDB.TWITTER),
    (("facebook.com", "fb.com", "fb.watch"), SocialPlatformDB.FACEBOOK),
]


@dataclass
class PostUrlCheck:
    platform: SocialPlatformDB
    warning: Optional[str] = None


def _host_matches(hostname: str, domain: str) -> bool:
    return hostname == domain or hostname.endswith("." + domain)


def validate_post_url(url: Optional[str]) -> PostUrlCheck:
    """
    Check that a post URL is an https link and detect its platform.

    Unrecognized domains are accepted as `other` with a warning.
    Raises ValidationError for a missing, malformed or non-https URL.
    """
    if not url or not url.strip():
        raise ValidationError("Post URL is required")

    url = url.strip()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValidationError("Invalid URL format. Please enter a valid URL starting with https://")
    if parsed.scheme.lower() != "https":
        raise ValidationError("URL must use HTTPS")

    hostname = (parsed.hostname or "").lower()
    # Anchored on the host so a query string or path cannot name another platform
    target = f"{hostname}{parsed.path}"
    for platform, patterns in PLATFORM_PATTERNS.items():
        if any(re.match(r"(?:[^/]+\.)?" + p, target, re.IGNORECASE) for p in patterns):
            return PostUrlCheck(platform=platform)

    for domains, platform in DOMAIN_PLATFORMS:
        if any(_host_matches(hostname, d) for d in domains):
            return PostUrlCheck(
                platform=platform,
                warning="URL format not recognized. Please verify the link is to a specific post.",
            )

    return PostUrlCheck(
        platform=SocialPlatformDB.OTHER,
        warning="Platform not auto-detected. Please verify the link works and is publicly accessible.",
    )


# ============================================================================
# SUBMISSION SERVICE
# ============================================================================

class SubmissionService:
    """Drafts, submissions and resubmissions for a creator's deliverables."""

    def __init__(self, db: Session, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_application(self, application_id: str, actor_id: str) -> CampaignApplication:
        application = self.db.get(CampaignApplication, application_id)
        if not application:
            raise NotFoundError("Campaign application not found")
        if application.creator_id != actor_id:
            raise AuthorizationError("Only the creator of this application can submit deliverables")
        if application.status != ApplicationStatusDB.ACCEPTED:
            raise ValidationError("Application is not accepted")

        campaign = self.db.get(Campaign, application.campaign_id)
        if not campaign or campaign.status != CampaignStatusDB.ACTIVE:
            raise ValidationError("Campaign is not active")
        return application

    def _load_own_deliverable(self, deliverable_id: str, actor_id: str) -> Deliverable:
        deliverable = store.get_deliverable(self.db, deliverable_id)
        if deliverable.creator_id != actor_id:
            raise AuthorizationError("You can only modify your own deliverables", deliverable_id)
        return deliverable

    @staticmethod
    def _content_values(content: DeliverableContent, platform: Optional[SocialPlatformDB]) -> dict:
        return {
            "content_type": content.content_type,
            "content_url": content.content_url,
            "thumbnail_url": content.thumbnail_url,
            "caption": content.caption,
            "post_url": content.post_url.strip() if content.post_url else None,
            "social_platform": content.social_platform or platform or SocialPlatformDB.OTHER,
        }

    def _validate_for_review(self, content: DeliverableContent) -> PostUrlCheck:
        if not content.content_url or not content.content_url.strip():
            raise ValidationError("Content is required")
        return validate_post_url(content.post_url)

    def _notify_business(self, deliverable: Deliverable):
        self.notifier.notify_review_pending(
            business_user_id=deliverable.business_id,
            deliverable_id=deliverable.id,
            campaign_id=deliverable.campaign_id,
            revision_number=deliverable.revision_number or 1,
        )

    def _commit_new(self, deliverable: Deliverable) -> Deliverable:
        self.db.add(deliverable)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("A deliverable already exists for this application")
        self.db.refresh(deliverable)
        return deliverable

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit_draft(self, application_id: str, content: DeliverableContent, actor_id: str) -> Deliverable:
        """Create or update the single draft deliverable for an application."""
        application = self._load_application(application_id, actor_id)

        platform = None
        if content.post_url:
            platform = validate_post_url(content.post_url).platform
        values = self._content_values(content, platform)

        existing = store.find_for_application(self.db, application_id)
        if existing and existing.review_status != ReviewStatusDB.DRAFT:
            raise ValidationError("This application already has a submitted deliverable", existing.id)

        if existing:
            updated = self.db.query(Deliverable).filter(
                Deliverable.id == existing.id,
                Deliverable.review_status == ReviewStatusDB.DRAFT,
            ).update(values, synchronize_session=False)
            if updated != 1:
                self.db.rollback()
                raise ConflictError("Draft was submitted in the meantime", existing.id)
            self.db.commit()
            logger.info(f"Draft {existing.id} updated by creator {actor_id}")
            return store.reload(self.db, existing)

        campaign = application.campaign
        deliverable = Deliverable(
            campaign_application_id=application.id,
            campaign_id=application.campaign_id,
            creator_id=application.creator_id,
            business_id=campaign.business_id,
            restaurant_id=campaign.restaurant_id,
            review_status=ReviewStatusDB.DRAFT,
            revision_number=0,
            **values,
        )
        deliverable = self._commit_new(deliverable)
        logger.info(f"Draft {deliverable.id} created for application {application_id}")
        return deliverable

    def submit(
        self,
        application_id: str,
        content: DeliverableContent,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> Deliverable:
        """
        Submit a deliverable for review.

        Promotes an existing draft or creates the deliverable. Starts the
        auto-approval clock and fixes the payout amount from the application.
        """
        application = self._load_application(application_id, actor_id)
        check = self._validate_for_review(content)

        amount_cents = application.proposed_rate_cents
        if not amount_cents or amount_cents <= 0:
            raise ValidationError("Application has no positive agreed rate")

        now = now or store.utcnow()
        values = self._content_values(content, check.platform)
        values.update({
            "submitted_at": now,
            "auto_approval_deadline": store.compute_auto_approval_deadline(now),
            "payment_amount_cents": amount_cents,
            "revision_number": 1,
        })

        existing = store.find_for_application(self.db, application_id)
        if existing and existing.review_status != ReviewStatusDB.DRAFT:
            raise ValidationError("This application already has a submitted deliverable", existing.id)

        if existing:
            won = store.transition_review(
                self.db, existing.id, [ReviewStatusDB.DRAFT], ReviewStatusDB.PENDING_REVIEW, values
            )
            if not won:
                self.db.rollback()
                raise ConflictError("Draft was already submitted", existing.id)
            self.db.commit()
            deliverable = store.reload(self.db, existing)
        else:
            campaign = application.campaign
            deliverable = self._commit_new(Deliverable(
                campaign_application_id=application.id,
                campaign_id=application.campaign_id,
                creator_id=application.creator_id,
                business_id=campaign.business_id,
                restaurant_id=campaign.restaurant_id,
                review_status=ReviewStatusDB.PENDING_REVIEW,
                **values,
            ))

        logger.info(
            f"Deliverable {deliverable.id} submitted for review, auto-approval at {deliverable.auto_approval_deadline}"
        )
        if check.warning:
            logger.info(f"Deliverable {deliverable.id} post URL warning: {check.warning}")
        self._notify_business(deliverable)
        return deliverable

    def resubmit(
        self,
        deliverable_id: str,
        content: DeliverableContent,
        actor_id: str,
        now: Optional[datetime] = None,
    ) -> Deliverable:
        """Send a deliverable back to review after a revision request."""
        deliverable = self._load_own_deliverable(deliverable_id, actor_id)
        check = self._validate_for_review(content)

        now = now or store.utcnow()
        deadline = store.compute_auto_approval_deadline(now)
        # The new deadline must be strictly later than the one it replaces
        if deliverable.auto_approval_deadline and deadline <= deliverable.auto_approval_deadline:
            deadline = deliverable.auto_approval_deadline + timedelta(seconds=1)

        values = self._content_values(content, check.platform)
        values.update({
            "submitted_at": now,
            "auto_approval_deadline": deadline,
            "revision_number": Deliverable.revision_number + 1,
            "review_notes": None,
            "reviewed_at": None,
            "reviewed_by": None,
        })

        won = store.transition_review(
            self.db, deliverable_id, [ReviewStatusDB.REVISION_REQUESTED], ReviewStatusDB.PENDING_REVIEW, values
        )
        if not won:
            self.db.rollback()
            current = store.reload(self.db, deliverable)
            raise ConflictError(
                f"Deliverable cannot be resubmitted while {current.review_status.value}", deliverable_id
            )
        self.db.commit()
        deliverable = store.reload(self.db, deliverable)

        logger.info(f"Deliverable {deliverable_id} resubmitted (revision {deliverable.revision_number})")
        self._notify_business(deliverable)
        return deliverable

    def discard_draft(self, deliverable_id: str, actor_id: str) -> None:
        """Delete a deliverable that has not been submitted yet."""
        self._load_own_deliverable(deliverable_id, actor_id)

        deleted = self.db.query(Deliverable).filter(
            Deliverable.id == deliverable_id,
            Deliverable.review_status == ReviewStatusDB.DRAFT,
        ).delete(synchronize_session=False)
        if deleted != 1:
            self.db.rollback()
            raise ConflictError("Only drafts can be deleted", deliverable_id)
        self.db.commit()
        logger.info(f"Draft {deliverable_id} discarded by creator {actor_id}")

    def get_history(self, creator_id: str, limit: int = 50) -> List[Deliverable]:
        return self.db.query(Deliverable).filter(
            Deliverable.creator_id == creator_id
        ).order_by(Deliverable.created_at.desc()).limit(limit).all()
