# Payout Orchestrator
# Moves approved deliverables through the payment lifecycle:
#   not_applicable -> pending -> (pending_onboarding) -> processing -> completed | failed
#
# The processor call never runs inside a database transaction: `processing` is
# committed first, the transfer is attempted, then the outcome is committed.

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import app_config
from core.stripe_service import PaymentProcessor, StripeConnectService, StripeWebhookHandler
from database.marketplace_models import (
    ConnectedAccount,
    Deliverable,
    PaymentTransaction,
    PaymentStatusDB,
    TransactionStatusDB,
)
from services import deliverable_store as store
from services.exceptions import (
    AuthorizationError,
    ConflictError,
    DeliverableError,
    ExternalProcessorError,
    PayoutPendingError,
    ReconciliationAmbiguousError,
    ValidationError,
)
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Payment states from which a new transfer attempt may start
PAYABLE_STATES = (
    PaymentStatusDB.NOT_APPLICABLE,
    PaymentStatusDB.PENDING,
    PaymentStatusDB.PENDING_ONBOARDING,
    PaymentStatusDB.FAILED,
)


# Responses after which Stripe saved no result for the key
UNEXECUTED_STATUSES = (409, 429)


def idempotency_key_for(deliverable_id: str, generation: int = 0) -> str:
    """
    Processor idempotency key for a deliverable's transfer.

    Retries reuse the key, so a request that timed out but still went through
    is replayed instead of paid again. `generation` only moves on once the
    processor has confirmed that no transfer exists under the previous key.
    """
    if generation == 0:
        return f"payout-{deliverable_id}"
    return f"payout-{deliverable_id}-r{generation}"


class PayoutOrchestrator:
    """Drives payouts for approved deliverables."""

    def __init__(
        self,
        db: Session,
        processor: Optional[PaymentProcessor] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.processor = processor or StripeConnectService()
        self.notifier = notifier or NotificationService(db)

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    def enqueue(self, deliverable_id: str) -> bool:
        """Queue an approved deliverable for payout. Returns False if it was already queued."""
        won = store.transition_payment(
            self.db, deliverable_id, [PaymentStatusDB.NOT_APPLICABLE], PaymentStatusDB.PENDING
        )
        if won:
            self.db.commit()
            logger.info(f"Payout queued for deliverable {deliverable_id}")
        else:
            self.db.rollback()
        return won

    def on_approved(self, deliverable_id: str) -> Optional[Deliverable]:
        """
        Start the payout after a manual or automatic approval.

        The approval is already committed; a payout problem is logged and left
        in the payment state for retry, never raised to the approver.
        """
        try:
            self.enqueue(deliverable_id)
            return self.process(deliverable_id)
        except DeliverableError as e:
            logger.error(f"Payout for approved deliverable {deliverable_id} did not start: {e.message}")
            return None

    def process(self, deliverable_id: str) -> Deliverable:
        """
        Attempt the payout for one deliverable.

        Returns the refreshed deliverable. A deliverable waiting on onboarding,
        already processing or already paid is returned without a transfer.
        """
        deliverable = store.get_deliverable(self.db, deliverable_id)

        if deliverable.review_status not in store.APPROVED_STATES:
            raise ConflictError("Deliverable is not approved", deliverable_id)
        if deliverable.payment_status not in PAYABLE_STATES:
            logger.info(f"Payout for {deliverable_id} skipped: already {deliverable.payment_status.value}")
            return deliverable

        try:
            account = self._ready_account(deliverable)
        except PayoutPendingError as e:
            logger.info(f"Payout for {deliverable_id} waiting: {e.message}")
            return self._park_for_onboarding(deliverable)

        if deliverable.payment_status == PaymentStatusDB.FAILED:
            adopted = self._adopt_existing_transfer(deliverable)
            if adopted is not None:
                return adopted

        return self._transfer(deliverable, account)

    def retry_payout(self, deliverable_id: str, actor_id: Optional[str] = None) -> Deliverable:
        """
        Manual retry from `pending_onboarding` or `failed`.

        `actor_id` is the requesting creator or business; None for operators.
        """
        deliverable = store.get_deliverable(self.db, deliverable_id)
        if actor_id is not None and actor_id not in (deliverable.creator_id, deliverable.business_id):
            raise AuthorizationError("You cannot retry this payout", deliverable_id)

        logger.info(
            f"Payout retry requested for {deliverable_id} "
            f"(state {deliverable.payment_status.value}, by {actor_id or 'operator'})"
        )
        return self.process(deliverable_id)

    def process_queued(self, limit: int = 50) -> Dict[str, str]:
        """Worker pickup of deliverables left in `pending`. Returns {deliverable_id: payment_status}."""
        queued = store.list_by_payment_status(self.db, PaymentStatusDB.PENDING, limit=limit)
        results = {}
        for deliverable_id in [d.id for d in queued]:
            try:
                results[deliverable_id] = self.process(deliverable_id).payment_status.value
            except DeliverableError as e:
                logger.warning(f"Queued payout {deliverable_id} not processed: {e.message}")
                results[deliverable_id] = "error"
        if results:
            logger.info(f"Processed {len(results)} queued payouts")
        return results

    def resume_for_creator(self, creator_id: str) -> List[str]:
        """Re-run every payout parked on onboarding for a creator."""
        parked = store.list_by_payment_status(
            self.db, PaymentStatusDB.PENDING_ONBOARDING, creator_id=creator_id, limit=500
        )
        resumed = []
        for deliverable_id in [d.id for d in parked]:
            try:
                self.process(deliverable_id)
                resumed.append(deliverable_id)
            except DeliverableError as e:
                logger.warning(f"Deferred payout {deliverable_id} not resumed: {e.message}")
        return resumed

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    def reconcile_processing(
        self,
        stale_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """
        Resolve deliverables stuck in `processing` against the processor.

        A transfer found in the deliverable's transfer group completes it; no
        transfer fails it (retryable); a failed lookup leaves it for an operator.
        """
        stale_minutes = stale_minutes if stale_minutes is not None else app_config.PAYOUT_RECONCILE_STALE_MINUTES
        now = now or store.utcnow()
        cutoff = now - timedelta(minutes=stale_minutes)

        stuck = store.list_stale_processing(self.db, cutoff, limit=limit)
        items = []
        summary = {"scanned": len(stuck), "completed": 0, "failed": 0, "ambiguous": 0}

        for deliverable in stuck:
            try:
                transfers = self._lookup_transfers(deliverable.id)
            except ReconciliationAmbiguousError as e:
                summary["ambiguous"] += 1
                items.append({"deliverable_id": deliverable.id, "outcome": "ambiguous", "error": e.message})
                continue

            attempt = self._open_attempt(deliverable.id)
            if transfers:
                transfer_id = transfers[0]["id"]
                if self._settle_completed(deliverable, attempt, transfer_id, now=now):
                    summary["completed"] += 1
                    items.append({"deliverable_id": deliverable.id, "outcome": "completed", "transfer_id": transfer_id})
            else:
                error = "No transfer found at the payment processor"
                if self._settle_failed(deliverable, attempt, error, definitive=True):
                    summary["failed"] += 1
                    items.append({"deliverable_id": deliverable.id, "outcome": "failed", "error": error})

        if stuck:
            logger.info(f"Reconciliation: {summary}")
        return {"summary": summary, "items": items}

    # ========================================================================
    # TRANSFER WEBHOOKS
    # ========================================================================

    def on_transfer_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Settle a payout from a Stripe `transfer.*` webhook.

        `transfer.created`/`transfer.paid` complete a payout still in
        `processing`, or adopt the transfer for one that failed on a lost
        response. `transfer.failed` fails a `processing` payout and retires its
        idempotency key. Completed payouts are never changed.
        """
        parsed = StripeWebhookHandler.handle_transfer_event(event)
        transfer_id = parsed["transfer_id"]
        if not transfer_id or not parsed["deliverable_id"]:
            raise ValidationError(f"{parsed['event']} event is missing the transfer or its deliverable")

        deliverable = self.db.query(Deliverable).filter(Deliverable.id == parsed["deliverable_id"]).first()
        if not deliverable:
            logger.warning(f"{parsed['event']} for transfer {transfer_id} matches no deliverable")
            return {"handled": True, "applied": False, "deliverable_id": parsed["deliverable_id"]}

        state = deliverable.payment_status
        applied = False
        if parsed["event"] in StripeWebhookHandler.TRANSFER_SUCCESS_EVENTS:
            if state == PaymentStatusDB.PROCESSING:
                applied = self._settle_completed(deliverable, self._open_attempt(deliverable.id), transfer_id)
            elif state == PaymentStatusDB.FAILED:
                applied = self._adopt_transfer(deliverable, transfer_id)
        else:
            error = parsed["failure_message"] or "Transfer failed at the payment processor"
            if state == PaymentStatusDB.PROCESSING:
                applied = self._settle_failed(deliverable, self._open_attempt(deliverable.id), error, definitive=True)
            elif state == PaymentStatusDB.FAILED:
                applied = self._retire_key(deliverable.id)
            elif state == PaymentStatusDB.COMPLETED:
                logger.error(f"Transfer {transfer_id} failed after deliverable {deliverable.id} was paid; needs operator review")

        if not applied:
            logger.info(f"{parsed['event']} {parsed['event_id']} left deliverable {deliverable.id} as {state.value}")
        deliverable = store.reload(self.db, deliverable)
        return {
            "handled": True,
            "applied": applied,
            "deliverable_id": deliverable.id,
            "payment_status": deliverable.payment_status.value,
        }

    def _lookup_transfers(self, deliverable_id: str) -> List[Dict[str, Any]]:
        try:
            return self.processor.find_transfers(deliverable_id)
        except ExternalProcessorError as e:
            logger.error(f"Transfer lookup failed for {deliverable_id}: {e.message}")
            raise ReconciliationAmbiguousError(
                f"Could not determine transfer state: {e.message}", deliverable_id
            ) from e

    # ========================================================================
    # STEPS
    # ========================================================================

    def _ready_account(self, deliverable: Deliverable) -> ConnectedAccount:
        account = self.db.query(ConnectedAccount).filter(
            ConnectedAccount.creator_id == deliverable.creator_id
        ).first()
        if not account:
            raise PayoutPendingError("Creator has no connected payment account", deliverable.id)
        if not account.onboarding_completed:
            raise PayoutPendingError("Creator has not completed payment onboarding", deliverable.id)
        return account

    def _park_for_onboarding(self, deliverable: Deliverable) -> Deliverable:
        previous = deliverable.payment_status
        if previous == PaymentStatusDB.PENDING_ONBOARDING:
            return deliverable

        won = store.transition_payment(
            self.db, deliverable.id, [previous], PaymentStatusDB.PENDING_ONBOARDING
        )
        if not won:
            self.db.rollback()
            return store.reload(self.db, deliverable)

        self.db.commit()
        deliverable = store.reload(self.db, deliverable)
        logger.info(f"Deliverable {deliverable.id} payout waiting for creator onboarding")
        # Only on entry, so repeated retries do not spam the creator
        self.notifier.notify_onboarding_required(
            creator_user_id=deliverable.creator_id,
            deliverable_id=deliverable.id,
            amount_cents=deliverable.payment_amount_cents,
        )
        return deliverable

    def _adopt_existing_transfer(self, deliverable: Deliverable) -> Optional[Deliverable]:
        # A retired key no longer covers transfers made under it, so ask before paying again
        transfers = self.processor.find_transfers(deliverable.id)
        if not transfers:
            return None

        self._adopt_transfer(deliverable, transfers[0]["id"])
        return store.reload(self.db, deliverable)

    def _adopt_transfer(self, deliverable: Deliverable, transfer_id: str) -> bool:
        """Complete a failed payout with a transfer found at the processor."""
        now = store.utcnow()
        try:
            won = store.transition_payment(
                self.db,
                deliverable.id,
                [PaymentStatusDB.FAILED],
                PaymentStatusDB.COMPLETED,
                {"paid_at": now, "payment_error": None},
            )
            if not won:
                self.db.rollback()
                return False

            self.db.add(self._new_transaction(
                deliverable,
                idempotency_key=f"payout-{deliverable.id}-adopt-{transfer_id}",
                status=TransactionStatusDB.COMPLETED,
                stripe_transfer_id=transfer_id,
                completed_at=now,
            ))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.error(f"Deliverable {deliverable.id} already has a completed payout; transfer {transfer_id} not adopted")
            return False

        logger.warning(f"Adopted existing transfer {transfer_id} for deliverable {deliverable.id}")
        self.notifier.notify_payout_completed(
            deliverable.creator_id, deliverable.id, deliverable.payment_amount_cents, transfer_id
        )
        return True

    def _transfer(self, deliverable: Deliverable, account: ConnectedAccount) -> Deliverable:
        won = store.transition_payment(
            self.db,
            deliverable.id,
            PAYABLE_STATES,
            PaymentStatusDB.PROCESSING,
            {"payout_attempts": Deliverable.payout_attempts + 1, "payment_error": None},
        )
        if not won:
            self.db.rollback()
            logger.info(f"Payout for {deliverable.id} already claimed by another worker")
            return store.reload(self.db, deliverable)

        attempt = self.db.query(Deliverable.payout_attempts).filter(Deliverable.id == deliverable.id).scalar()
        idempotency_key = idempotency_key_for(deliverable.id, self._key_generation(deliverable.id))
        transaction = self._new_transaction(deliverable, idempotency_key=idempotency_key)
        self.db.add(transaction)
        self.db.commit()

        logger.info(
            f"Transferring {deliverable.payment_amount_cents} {app_config.PAYOUT_CURRENCY} "
            f"to {account.stripe_account_id} for deliverable {deliverable.id} (attempt {attempt})"
        )
        try:
            transfer = self.processor.create_transfer(
                account.stripe_account_id,
                deliverable.payment_amount_cents,
                idempotency_key,
                transfer_group=deliverable.id,
                metadata={
                    "deliverable_id": deliverable.id,
                    "creator_id": deliverable.creator_id,
                    "campaign_id": deliverable.campaign_id,
                },
            )
        except ExternalProcessorError as e:
            logger.error(f"Payout failed for deliverable {deliverable.id}: {e.message}")
            self._settle_transfer_error(deliverable, transaction, e)
            return store.reload(self.db, deliverable)

        self._settle_completed(deliverable, transaction, transfer["id"])
        return store.reload(self.db, deliverable)

    def _settle_transfer_error(
        self,
        deliverable: Deliverable,
        transaction: PaymentTransaction,
        error: ExternalProcessorError,
    ) -> None:
        """
        Fail the attempt, retiring its key only when no transfer can exist under it.

        A timeout or dropped connection keeps the key: the transfer may have
        gone through and the next attempt must replay it, not repeat it.
        """
        status_code = error.status_code
        if status_code is None or status_code in UNEXECUTED_STATUSES:
            self._settle_failed(deliverable, transaction, error.message)
        elif status_code < 500:
            self._settle_failed(deliverable, transaction, error.message, definitive=True)
        else:
            try:
                transfers = self._lookup_transfers(deliverable.id)
            except ReconciliationAmbiguousError:
                self._settle_failed(deliverable, transaction, error.message)
                return
            if transfers:
                self._settle_completed(deliverable, transaction, transfers[0]["id"])
            else:
                self._settle_failed(deliverable, transaction, error.message, definitive=True)

    def _settle_completed(
        self,
        deliverable: Deliverable,
        transaction: Optional[PaymentTransaction],
        transfer_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or store.utcnow()
        try:
            if transaction is not None:
                self.db.query(PaymentTransaction).filter(
                    PaymentTransaction.id == transaction.id,
                    PaymentTransaction.status == TransactionStatusDB.PROCESSING,
                ).update({
                    "status": TransactionStatusDB.COMPLETED,
                    "stripe_transfer_id": transfer_id,
                    "completed_at": now,
                }, synchronize_session=False)

            won = store.transition_payment(
                self.db,
                deliverable.id,
                [PaymentStatusDB.PROCESSING],
                PaymentStatusDB.COMPLETED,
                {"paid_at": now, "payment_error": None},
            )
            if not won:
                self.db.rollback()
                logger.warning(f"Deliverable {deliverable.id} left processing before transfer {transfer_id} settled")
                return False
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.error(f"Deliverable {deliverable.id} already has a completed payout; transfer {transfer_id} not recorded")
            return False

        logger.info(f"Payout completed for deliverable {deliverable.id}: transfer {transfer_id}")
        self.notifier.notify_payout_completed(
            deliverable.creator_id, deliverable.id, deliverable.payment_amount_cents, transfer_id
        )
        return True

    def _settle_failed(
        self,
        deliverable: Deliverable,
        transaction: Optional[PaymentTransaction],
        error: str,
        definitive: bool = False,
    ) -> bool:
        """`definitive` marks that no transfer exists under the attempt's key."""
        if transaction is not None:
            self.db.query(PaymentTransaction).filter(
                PaymentTransaction.id == transaction.id,
                PaymentTransaction.status == TransactionStatusDB.PROCESSING,
            ).update({
                "status": TransactionStatusDB.FAILED,
                "error_message": error,
                "definitive_failure": definitive,
            }, synchronize_session=False)

        won = store.transition_payment(
            self.db,
            deliverable.id,
            [PaymentStatusDB.PROCESSING],
            PaymentStatusDB.FAILED,
            {"payment_error": error},
        )
        if not won:
            self.db.rollback()
            return False
        self.db.commit()

        self.notifier.notify_payout_failed(deliverable.creator_id, deliverable.id, error)
        return True

    def _key_generation(self, deliverable_id: str) -> int:
        return self.db.query(func.count(PaymentTransaction.id)).filter(
            PaymentTransaction.deliverable_id == deliverable_id,
            PaymentTransaction.definitive_failure.is_(True),
        ).scalar() or 0

    def _retire_key(self, deliverable_id: str) -> bool:
        """Mark the latest failed attempt definitive so the next one gets a fresh key."""
        latest = self.db.query(PaymentTransaction).filter(
            PaymentTransaction.deliverable_id == deliverable_id,
            PaymentTransaction.status == TransactionStatusDB.FAILED,
        ).order_by(PaymentTransaction.created_at.desc()).first()
        if latest is None or latest.definitive_failure:
            return False

        updated = self.db.query(PaymentTransaction).filter(
            PaymentTransaction.id == latest.id,
            PaymentTransaction.definitive_failure.is_(False),
        ).update({"definitive_failure": True}, synchronize_session=False)
        self.db.commit()
        logger.info(f"Retired idempotency key {latest.idempotency_key} for deliverable {deliverable_id}")
        return updated == 1

    def _open_attempt(self, deliverable_id: str) -> Optional[PaymentTransaction]:
        return self.db.query(PaymentTransaction).filter(
            PaymentTransaction.deliverable_id == deliverable_id,
            PaymentTransaction.status == TransactionStatusDB.PROCESSING,
        ).order_by(PaymentTransaction.created_at.desc()).first()

    def _new_transaction(self, deliverable: Deliverable, idempotency_key: str, **fields) -> PaymentTransaction:
        return PaymentTransaction(
            deliverable_id=deliverable.id,
            campaign_id=deliverable.campaign_id,
            creator_id=deliverable.creator_id,
            business_id=deliverable.business_id,
            amount_cents=deliverable.payment_amount_cents,
            currency=app_config.PAYOUT_CURRENCY,
            idempotency_key=idempotency_key,
            created_at=store.utcnow(),
            **fields,
        )


def payout_view(deliverable: Deliverable) -> Dict[str, Any]:
    """Shape returned to API callers. `waiting` marks the onboarding wait state."""
    waiting = deliverable.payment_status == PaymentStatusDB.PENDING_ONBOARDING
    message = None
    if waiting:
        message = "Complete your payout account setup to receive this payment"
    elif deliverable.payment_status == PaymentStatusDB.FAILED:
        message = "Payment failed and can be retried"
    return {
        "deliverable_id": deliverable.id,
        "payment_status": deliverable.payment_status,
        "waiting": waiting,
        "payment_error": deliverable.payment_error,
        "paid_at": deliverable.paid_at,
        "message": message,
    }
