# Review Service
# Business-side review of submitted deliverables and the review read models.

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from database.marketplace_models import Campaign, Deliverable, ReviewStatusDB
from services import deliverable_store as store
from services.exceptions import AuthorizationError, ConflictError, DeliverableError, NotFoundError, ValidationError
from services.notification_service import NotificationService
from services.payout_service import PayoutOrchestrator

logger = logging.getLogger(__name__)


def _hours(delta) -> float:
    return round(delta.total_seconds() / 3600, 1)


def compose_revision_notes(notes: str, changes_required: Iterable[str] = ()) -> str:
    """Append required changes to the reviewer's notes as a numbered list."""
    changes = [c.strip() for c in changes_required if c and c.strip()]
    notes = notes.strip()
    if not changes:
        return notes
    numbered = "\n".join(f"{i}. {change}" for i, change in enumerate(changes, start=1))
    return f"{notes}\n\nChanges Required:\n{numbered}"


class ReviewService:
    """Approve, reject and request revisions on deliverables."""

    def __init__(
        self,
        db: Session,
        orchestrator: Optional[PayoutOrchestrator] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationService(db)
        self.orchestrator = orchestrator or PayoutOrchestrator(db, notifier=self.notifier)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _authorize(self, deliverable: Deliverable, actor_id: str) -> None:
        campaign = self.db.get(Campaign, deliverable.campaign_id)
        if not campaign or campaign.business_id != actor_id:
            raise AuthorizationError("Only the campaign's business can review this deliverable", deliverable.id)

    def _load_for_review(self, deliverable_id: str, actor_id: str) -> Deliverable:
        deliverable = store.get_deliverable(self.db, deliverable_id)
        self._authorize(deliverable, actor_id)
        return deliverable

    @staticmethod
    def _require_notes(notes: Optional[str], action: str) -> str:
        if not notes or not notes.strip():
            raise ValidationError(f"Notes are required to {action}")
        return notes.strip()

    def _decide(
        self,
        deliverable: Deliverable,
        new_status: ReviewStatusDB,
        actor_id: str,
        notes: Optional[str],
        now: Optional[datetime],
    ) -> Deliverable:
        now = now or store.utcnow()
        won = store.transition_review(
            self.db,
            deliverable.id,
            [ReviewStatusDB.PENDING_REVIEW],
            new_status,
            {"reviewed_at": now, "reviewed_by": actor_id, "review_notes": notes},
        )
        if not won:
            self.db.rollback()
            current = store.reload(self.db, deliverable)
            raise ConflictError(
                f"Deliverable has already been reviewed ({current.review_status.value})", deliverable.id
            )
        self.db.commit()
        logger.info(f"Deliverable {deliverable.id} -> {new_status.value} by {actor_id}")
        return store.reload(self.db, deliverable)

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def approve(
        self,
        deliverable_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Deliverable:
        """Approve a pending deliverable and start its payout."""
        deliverable = self._load_for_review(deliverable_id, actor_id)
        notes = notes.strip() if notes and notes.strip() else None

        deliverable = self._decide(deliverable, ReviewStatusDB.APPROVED, actor_id, notes, now)
        self.notifier.notify_deliverable_approved(deliverable.creator_id, deliverable.id, deliverable.campaign_id)

        self.orchestrator.on_approved(deliverable.id)
        return store.reload(self.db, deliverable)

    def reject(
        self,
        deliverable_id: str,
        actor_id: str,
        notes: str,
        now: Optional[datetime] = None,
    ) -> Deliverable:
        deliverable = self._load_for_review(deliverable_id, actor_id)
        notes = self._require_notes(notes, "reject a deliverable")

        deliverable = self._decide(deliverable, ReviewStatusDB.REJECTED, actor_id, notes, now)
        self.notifier.notify_deliverable_rejected(deliverable.creator_id, deliverable.id, notes)
        return deliverable

    def request_revision(
        self,
        deliverable_id: str,
        actor_id: str,
        notes: str,
        changes_required: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Deliverable:
        """Send a deliverable back to the creator. The auto-approval clock stops until resubmission."""
        deliverable = self._load_for_review(deliverable_id, actor_id)
        notes = compose_revision_notes(self._require_notes(notes, "request a revision"), changes_required)

        deliverable = self._decide(deliverable, ReviewStatusDB.REVISION_REQUESTED, actor_id, notes, now)
        self.notifier.notify_revision_requested(deliverable.creator_id, deliverable.id, notes)
        return deliverable

    def bulk_approve(self, deliverable_ids: List[str], actor_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """Approve several deliverables, collecting failures per id instead of stopping."""
        approved = []
        errors = []
        for deliverable_id in deliverable_ids:
            try:
                self.approve(deliverable_id, actor_id, notes)
                approved.append(deliverable_id)
            except DeliverableError as e:
                errors.append({"deliverable_id": deliverable_id, "error": e.message})

        logger.info(f"Bulk approve by {actor_id}: {len(approved)} approved, {len(errors)} failed")
        return {"approved": approved, "errors": errors}

    # ========================================================================
    # READS
    # ========================================================================

    def get_pending_reviews(self, business_id: str, now: Optional[datetime] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """Pending deliverables for a business, most urgent deadline first."""
        now = now or store.utcnow()
        pending = self.db.query(Deliverable).filter(
            Deliverable.business_id == business_id,
            Deliverable.review_status == ReviewStatusDB.PENDING_REVIEW,
        ).order_by(Deliverable.auto_approval_deadline.asc()).limit(limit).all()

        return [
            {
                "deliverable": d,
                "hours_remaining": max(0.0, _hours(d.auto_approval_deadline - now)),
                "is_overdue": now >= d.auto_approval_deadline,
            }
            for d in pending
        ]

    def get_deliverable_counts(self, campaign_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        campaign = self.db.get(Campaign, campaign_id)
        if not campaign:
            raise NotFoundError("Campaign not found")
        if actor_id is not None and campaign.business_id != actor_id:
            raise AuthorizationError("You can only view counts for your own campaigns")

        rows = self.db.query(Deliverable.review_status, func.count(Deliverable.id)).filter(
            Deliverable.campaign_id == campaign_id
        ).group_by(Deliverable.review_status).all()

        counts = {status.value: 0 for status in ReviewStatusDB}
        for status, count in rows:
            counts[status.value] = count
        return {"campaign_id": campaign_id, "total": sum(counts.values()), **counts}

    def get_review_metrics(
        self,
        business_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Review responsiveness for a business over an optional submission window."""
        query = self.db.query(Deliverable).filter(
            Deliverable.business_id == business_id,
            Deliverable.review_status != ReviewStatusDB.DRAFT,
        )
        if start:
            query = query.filter(Deliverable.submitted_at >= start)
        if end:
            query = query.filter(Deliverable.submitted_at <= end)
        deliverables = query.all()

        reviewed = [d for d in deliverables if d.reviewed_at and d.submitted_at]
        by_status = {status: 0 for status in ReviewStatusDB}
        for d in reviewed:
            by_status[d.review_status] += 1

        def rate(status):
            return round(by_status[status] / len(reviewed) * 100, 1) if reviewed else 0.0

        average = None
        if reviewed:
            total_hours = sum((d.reviewed_at - d.submitted_at).total_seconds() / 3600 for d in reviewed)
            average = round(total_hours / len(reviewed), 1)

        return {
            "total_reviewed": len(reviewed),
            "pending_count": sum(1 for d in deliverables if d.review_status == ReviewStatusDB.PENDING_REVIEW),
            "average_review_hours": average,
            "approval_rate": rate(ReviewStatusDB.APPROVED),
            "rejection_rate": rate(ReviewStatusDB.REJECTED),
            "revision_rate": rate(ReviewStatusDB.REVISION_REQUESTED),
            "auto_approval_rate": rate(ReviewStatusDB.AUTO_APPROVED),
        }

    def check_auto_approval_status(self, deliverable_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        deliverable = store.get_deliverable(self.db, deliverable_id)
        now = now or store.utcnow()

        status = {
            "deliverable_id": deliverable.id,
            "review_status": deliverable.review_status,
            "eligible": False,
            "submitted_at": deliverable.submitted_at,
            "deadline": deliverable.auto_approval_deadline,
            "hours_elapsed": 0.0,
            "hours_remaining": 0.0,
            "is_overdue": False,
        }
        if deliverable.review_status != ReviewStatusDB.PENDING_REVIEW or not deliverable.auto_approval_deadline:
            return status

        overdue = now >= deliverable.auto_approval_deadline
        status.update({
            "eligible": overdue,
            "hours_elapsed": _hours(now - deliverable.submitted_at),
            "hours_remaining": max(0.0, _hours(deliverable.auto_approval_deadline - now)),
            "is_overdue": overdue,
        })
        return status
