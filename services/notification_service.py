# Notification Service for the Creator Payouts Platform
# Provides centralized notification creation and management

from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import datetime
from enum import Enum
import logging

from database.marketplace_models import Notification
from core.stripe_service import StripeConnectService

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Notification types stored in notifications.type."""
    REVIEW_PENDING = "review_pending"
    DELIVERABLE_APPROVED = "deliverable_approved"
    DELIVERABLE_AUTO_APPROVED = "deliverable_auto_approved"
    DELIVERABLE_REJECTED = "deliverable_rejected"
    REVISION_REQUESTED = "revision_requested"
    PAYOUT_ONBOARDING_REQUIRED = "payout_onboarding_required"
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"
    SYSTEM = "system"


class NotificationService:
    """
    Service for creating and managing user notifications.

    Notifications are fire-and-forget: `notify` commits its own row and a
    failure is logged, never raised, so it must only be called after the
    caller has committed its own work.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: str,
        type: NotificationType | str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> Notification:
        """
        Create a new notification for a user.

        Args:
            user_id: The user to notify
            type: Notification type (use NotificationType enum)
            title: Short notification title
            message: Full notification message
            action_url: Optional URL for the notification action
            data: Optional additional data as JSON

        Returns:
            The created Notification object
        """
        if isinstance(type, NotificationType):
            type = type.value
        elif type not in NotificationType._value2member_map_:
            type = NotificationType.SYSTEM.value

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            data=data or {},
        )
        self.db.add(notification)
        self.db.flush()  # Get the ID without committing
        return notification

    def notify(
        self,
        user_id: str,
        type: NotificationType | str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> Optional[Notification]:
        """Create and commit a notification. Returns None if dispatch failed."""
        try:
            notification = self.create(user_id, type, title, message, action_url=action_url, data=data)
            self.db.commit()
            return notification
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Notification dispatch failed for user {user_id} ({type}): {e}")
            return None

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)
        return query.order_by(Notification.created_at.desc()).limit(limit).all()

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        """
        Mark a notification as read.

        Returns:
            True if notification was marked read, False if not found
        """
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()

        if notification:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
            return True
        return False

    def mark_all_read(self, user_id: str) -> int:
        """
        Mark all notifications as read for a user.

        Returns:
            Number of notifications marked as read
        """
        count = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).update({
            "is_read": True,
            "read_at": datetime.utcnow()
        }, synchronize_session=False)
        return count

    def get_unread_count(self, user_id: str) -> int:
        """Get unread notification count for a user."""
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).count()

    # =========================================================================
    # REVIEW NOTIFICATION HELPERS
    # =========================================================================

    def notify_review_pending(self, business_user_id: str, deliverable_id: str, campaign_id: str, revision_number: int):
        """Notify business that a deliverable is waiting for review."""
        title = "Deliverable Ready for Review 📤" if revision_number <= 1 else "Revised Deliverable Submitted 🔁"
        return self.notify(
            user_id=business_user_id,
            type=NotificationType.REVIEW_PENDING,
            title=title,
            message="A creator submitted content for your campaign. It is auto-approved if not reviewed in time.",
            action_url=f"/campaigns/{campaign_id}/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id, "campaign_id": campaign_id, "revision_number": revision_number}
        )

    def notify_deliverable_approved(self, creator_user_id: str, deliverable_id: str, campaign_id: str, auto: bool = False):
        """Notify creator that their deliverable was approved."""
        if auto:
            return self.notify(
                user_id=creator_user_id,
                type=NotificationType.DELIVERABLE_AUTO_APPROVED,
                title="Deliverable Auto-Approved ⏰",
                message="Your deliverable was approved automatically after the review window closed.",
                action_url=f"/deliverables/{deliverable_id}",
                data={"deliverable_id": deliverable_id, "campaign_id": campaign_id}
            )
        return self.notify(
            user_id=creator_user_id,
            type=NotificationType.DELIVERABLE_APPROVED,
            title="Deliverable Approved! 🎉",
            message="Your deliverable was approved. Your payout is on its way.",
            action_url=f"/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id, "campaign_id": campaign_id}
        )

    def notify_business_auto_approved(self, business_user_id: str, deliverable_id: str, campaign_id: str):
        """Tell the business a deliverable passed its review window."""
        return self.notify(
            user_id=business_user_id,
            type=NotificationType.DELIVERABLE_AUTO_APPROVED,
            title="Deliverable Auto-Approved",
            message="A deliverable was not reviewed in time and has been approved automatically.",
            action_url=f"/campaigns/{campaign_id}/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id, "campaign_id": campaign_id}
        )

    def notify_deliverable_rejected(self, creator_user_id: str, deliverable_id: str, notes: str):
        """Notify creator that their deliverable was rejected."""
        return self.notify(
            user_id=creator_user_id,
            type=NotificationType.DELIVERABLE_REJECTED,
            title="Deliverable Rejected",
            message=notes,
            action_url=f"/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id}
        )

    def notify_revision_requested(self, creator_user_id: str, deliverable_id: str, notes: str):
        """Notify creator that revision was requested."""
        return self.notify(
            user_id=creator_user_id,
            type=NotificationType.REVISION_REQUESTED,
            title="Revision Requested 🔄",
            message=notes,
            action_url=f"/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id, "feedback": notes}
        )

    # =========================================================================
    # PAYOUT NOTIFICATION HELPERS
    # =========================================================================

    def notify_onboarding_required(self, creator_user_id: str, deliverable_id: str, amount_cents: int):
        """Ask the creator to finish payment account onboarding."""
        return self.notify(
            user_id=creator_user_id,
            type=NotificationType.PAYOUT_ONBOARDING_REQUIRED,
            title="Set Up Payouts to Get Paid 🏦",
            message=(
                f"Your deliverable was approved! Complete your payout account setup to receive "
                f"{StripeConnectService.format_amount(amount_cents)}."
            ),
            action_url="/settings/payouts",
            data={"deliverable_id": deliverable_id, "amount_cents": amount_cents}
        )

    def notify_payout_completed(self, creator_user_id: str, deliverable_id: str, amount_cents: int, transfer_id: str):
        """Notify creator of a completed payout."""
        return self.notify(
            user_id=creator_user_id,
            type=NotificationType.PAYOUT_COMPLETED,
            title="Payment Sent! 💰",
            message=f"{StripeConnectService.format_amount(amount_cents)} has been sent to your payout account.",
            action_url=f"/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id, "amount_cents": amount_cents, "transfer_id": transfer_id}
        )

    def notify_payout_failed(self, creator_user_id: str, deliverable_id: str, error: str):
        """Notify creator that a payout attempt failed."""
        return self.notify(
            user_id=creator_user_id,
            type=NotificationType.PAYOUT_FAILED,
            title="Payment Failed ⚠️",
            message="We could not send your payment. It will be retried.",
            action_url=f"/deliverables/{deliverable_id}",
            data={"deliverable_id": deliverable_id, "error": error}
        )
