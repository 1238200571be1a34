# Auto-Approval Sweeper
# Approves deliverables whose review window closed without a decision.
# Stateless: each run rescans, and the review compare-and-swap settles races with
# manual reviews and with other sweeper runs.

from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from database.marketplace_models import Deliverable, ReviewStatusDB
from services import deliverable_store as store
from services.notification_service import NotificationService
from services.payout_service import PayoutOrchestrator

logger = logging.getLogger(__name__)


class AutoApprovalSweeper:

    def __init__(
        self,
        db: Session,
        orchestrator: Optional[PayoutOrchestrator] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.db = db
        self.notifier = notifier or NotificationService(db)
        self.orchestrator = orchestrator or PayoutOrchestrator(db, notifier=self.notifier)

    def sweep(self, now: Optional[datetime] = None, limit: int = 100) -> Dict[str, Any]:
        """
        Auto-approve every overdue `pending_review` deliverable.

        Returns {"scanned", "approved", "skipped", "approved_ids", "skipped_ids"}.
        """
        now = now or store.utcnow()
        candidate_ids = [d.id for d in store.list_overdue_reviews(self.db, now, limit=limit)]

        approved_ids = []
        skipped_ids = []
        for deliverable_id in candidate_ids:
            won = store.transition_review(
                self.db,
                deliverable_id,
                [ReviewStatusDB.PENDING_REVIEW],
                ReviewStatusDB.AUTO_APPROVED,
                {"reviewed_at": now},
                # A resubmission may have moved the deadline since the scan
                conditions=[Deliverable.auto_approval_deadline <= now],
            )
            if not won:
                self.db.rollback()
                skipped_ids.append(deliverable_id)
                continue

            self.db.commit()
            approved_ids.append(deliverable_id)
            logger.info(f"Deliverable {deliverable_id} auto-approved")

            deliverable = store.get_deliverable(self.db, deliverable_id)
            self.notifier.notify_deliverable_approved(
                deliverable.creator_id, deliverable.id, deliverable.campaign_id, auto=True
            )
            self.notifier.notify_business_auto_approved(
                deliverable.business_id, deliverable.id, deliverable.campaign_id
            )
            self.orchestrator.on_approved(deliverable_id)

        summary = {
            "scanned": len(candidate_ids),
            "approved": len(approved_ids),
            "skipped": len(skipped_ids),
            "approved_ids": approved_ids,
            "skipped_ids": skipped_ids,
        }
        if candidate_ids:
            logger.info(f"Auto-approval sweep: {summary['approved']} approved, {summary['skipped']} skipped")
        return summary
