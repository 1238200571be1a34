# Account Status Tracker
# Local mirror of each creator's connected payment account.
#
# Updates arrive by webhook push and by manual pull. Each update carries an
# event time and is applied only if it is newer than the last one applied,
# so late or duplicate webhook deliveries cannot roll the mirror back.

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import app_config
from core.stripe_service import PaymentProcessor, StripeConnectService, StripeWebhookHandler
from database.marketplace_models import ConnectedAccount
from services import deliverable_store as store
from services.exceptions import ConflictError, NotFoundError, ValidationError
from services.notification_service import NotificationService
from services.payout_service import PayoutOrchestrator

logger = logging.getLogger(__name__)


def event_time(created: Optional[int]) -> Optional[datetime]:
    """Stripe `created` (unix seconds) as naive UTC."""
    if created is None:
        return None
    return datetime.fromtimestamp(int(created), tz=timezone.utc).replace(tzinfo=None)


class AccountStatusTracker:

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        orchestrator: Optional[PayoutOrchestrator] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.processor = processor or StripeConnectService()
        self.notifier = notifier or NotificationService(db)
        self.orchestrator = orchestrator or PayoutOrchestrator(db, processor=self.processor, notifier=self.notifier)

    def get_account(self, creator_id: str) -> Optional[ConnectedAccount]:
        return self.db.query(ConnectedAccount).filter(ConnectedAccount.creator_id == creator_id).first()

    def _apply(
        self,
        account: ConnectedAccount,
        onboarding_completed: bool,
        event_at: datetime,
        event_id: Optional[str] = None,
    ) -> bool:
        """Write the status if `event_at` is strictly newer than the last applied update."""
        updated = self.db.query(ConnectedAccount).filter(
            ConnectedAccount.id == account.id,
            or_(ConnectedAccount.last_event_at.is_(None), ConnectedAccount.last_event_at < event_at),
        ).update({
            "onboarding_completed": onboarding_completed,
            "last_event_at": event_at,
            "last_event_id": event_id,
        }, synchronize_session=False)
        self.db.commit()
        self.db.refresh(account)
        return updated == 1

    def _view(self, account: ConnectedAccount, resumed=None) -> Dict[str, Any]:
        return {
            "creator_id": account.creator_id,
            "stripe_account_id": account.stripe_account_id,
            "onboarding_completed": account.onboarding_completed,
            "resumed_deliverable_ids": resumed or [],
        }

    # ========================================================================
    # PULL
    # ========================================================================

    def refresh(self, creator_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Re-read onboarding status from the processor.

        Raises ExternalProcessorError if the processor cannot be reached.
        """
        account = self.get_account(creator_id)
        if not account:
            raise NotFoundError("No connected payment account for this creator")

        # Stamped before the call so a push applied while it is in flight wins.
        # Pushes carry Stripe's whole-second `created` on Stripe's clock, so the
        # pull also steps back by the allowed skew instead of shadowing them.
        pulled_at = (now or store.utcnow()) - timedelta(seconds=app_config.STRIPE_CLOCK_SKEW_SECONDS)
        was_complete = account.onboarding_completed
        status = self.processor.get_account_status(account.stripe_account_id)
        applied = self._apply(account, bool(status["onboarding_completed"]), pulled_at)

        resumed = []
        if account.onboarding_completed:
            # Also picks up payouts parked before an earlier push was applied
            resumed = self.orchestrator.resume_for_creator(creator_id)
        if applied and account.onboarding_completed and not was_complete:
            logger.info(f"Creator {creator_id} completed onboarding (pull), resumed {len(resumed)} payouts")
        return self._view(account, resumed)

    # ========================================================================
    # PUSH
    # ========================================================================

    def on_webhook_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Apply an `account.updated` webhook. Other event types are ignored."""
        event_type = event.get("type")
        if event_type not in StripeWebhookHandler.ACCOUNT_EVENTS:
            logger.info(f"Ignoring Stripe event {event.get('id')} of type {event_type}")
            return {"handled": False, "applied": False, "resumed_deliverable_ids": []}

        parsed = StripeWebhookHandler.handle_account_updated(event)
        event_at = event_time(parsed["created"])
        if not parsed["account_id"] or event_at is None:
            raise ValidationError("account.updated event is missing the account or its timestamp")

        account = self.db.query(ConnectedAccount).filter(
            ConnectedAccount.stripe_account_id == parsed["account_id"]
        ).first()
        if not account:
            logger.warning(f"account.updated for unknown account {parsed['account_id']}")
            return {"handled": True, "applied": False, "resumed_deliverable_ids": []}

        was_complete = account.onboarding_completed
        applied = self._apply(account, parsed["onboarding_completed"], event_at, parsed["event_id"])
        if not applied:
            logger.info(f"Stale account.updated {parsed['event_id']} for {account.stripe_account_id} ignored")
            return {"handled": True, "applied": False, "resumed_deliverable_ids": []}

        resumed = []
        if account.onboarding_completed and not was_complete:
            resumed = self.orchestrator.resume_for_creator(account.creator_id)
            logger.info(f"Creator {account.creator_id} completed onboarding, resumed {len(resumed)} payouts")
        return {"handled": True, "applied": True, "resumed_deliverable_ids": resumed}

    # ========================================================================
    # ACCOUNT SETUP
    # ========================================================================

    def link_account(self, creator_id: str, stripe_account_id: str) -> ConnectedAccount:
        """Create or repoint the mirror row for a creator's connected account."""
        account = self.get_account(creator_id)
        if account and account.stripe_account_id == stripe_account_id:
            return account

        if account:
            account.stripe_account_id = stripe_account_id
            account.onboarding_completed = False
            account.last_event_at = None
            account.last_event_id = None
        else:
            account = ConnectedAccount(creator_id=creator_id, stripe_account_id=stripe_account_id)
            self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("This payment account is already linked to another creator")
        self.db.refresh(account)
        logger.info(f"Linked connected account {stripe_account_id} to creator {creator_id}")
        return account

    def start_onboarding(self, creator_id: str, email: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        """Return a hosted onboarding link, creating the Express account on first use."""
        account = self.get_account(creator_id)
        if not account:
            created = self.processor.create_express_account(email, creator_id)
            account = self.link_account(creator_id, created["id"])

        link = self.processor.create_account_link(account.stripe_account_id, refresh_url, return_url)
        return {
            "stripe_account_id": account.stripe_account_id,
            "url": link["url"],
            "expires_at": link.get("expires_at"),
        }
