# Deliverable Store
# Review and payment state transitions for campaign deliverables.
#
# Every transition is one conditional UPDATE:
#   UPDATE campaign_deliverables SET ... WHERE id = :id AND <state> IN (:expected)
# A row count of 0 means another writer got there first. Callers own the commit.

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import app_config
from database.marketplace_models import (
    Deliverable,
    PaymentTransaction,
    ReviewStatusDB,
    PaymentStatusDB,
    TransactionStatusDB,
)
from services.exceptions import NotFoundError

logger = logging.getLogger(__name__)


# ============================================================================
# TRANSITION TABLES
# ============================================================================

REVIEW_TRANSITIONS: Dict[ReviewStatusDB, Set[ReviewStatusDB]] = {
    ReviewStatusDB.DRAFT: {ReviewStatusDB.PENDING_REVIEW},
    ReviewStatusDB.PENDING_REVIEW: {
        ReviewStatusDB.APPROVED,
        ReviewStatusDB.AUTO_APPROVED,
        ReviewStatusDB.REJECTED,
        ReviewStatusDB.REVISION_REQUESTED,
    },
    ReviewStatusDB.REVISION_REQUESTED: {ReviewStatusDB.PENDING_REVIEW},
    ReviewStatusDB.APPROVED: set(),
    ReviewStatusDB.AUTO_APPROVED: set(),
    ReviewStatusDB.REJECTED: set(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatusDB, Set[PaymentStatusDB]] = {
    PaymentStatusDB.NOT_APPLICABLE: {
        PaymentStatusDB.PENDING,
        PaymentStatusDB.PENDING_ONBOARDING,
        PaymentStatusDB.PROCESSING,
    },
    PaymentStatusDB.PENDING: {PaymentStatusDB.PENDING_ONBOARDING, PaymentStatusDB.PROCESSING},
    PaymentStatusDB.PENDING_ONBOARDING: {PaymentStatusDB.PROCESSING},
    PaymentStatusDB.PROCESSING: {PaymentStatusDB.COMPLETED, PaymentStatusDB.FAILED},
    # failed -> completed adopts a transfer the processor already made
    PaymentStatusDB.FAILED: {
        PaymentStatusDB.PENDING_ONBOARDING,
        PaymentStatusDB.PROCESSING,
        PaymentStatusDB.COMPLETED,
    },
    PaymentStatusDB.COMPLETED: set(),
}

APPROVED_STATES = (ReviewStatusDB.APPROVED, ReviewStatusDB.AUTO_APPROVED)
TERMINAL_REVIEW_STATES = (ReviewStatusDB.APPROVED, ReviewStatusDB.AUTO_APPROVED, ReviewStatusDB.REJECTED)

# Columns each side may write. Review and payout writers never touch each other's columns.
REVIEW_COLUMNS = {
    "review_status", "review_notes", "reviewed_by", "reviewed_at", "revision_number",
    "submitted_at", "auto_approval_deadline",
    "content_type", "content_url", "thumbnail_url", "caption", "post_url", "social_platform",
    "payment_amount_cents",  # Fixed once, at first submission
}
PAYMENT_COLUMNS = {
    "payment_status", "payout_attempts", "payment_error", "paid_at",
}


class InvalidTransition(ValueError):
    pass


def assert_review_transition(old: ReviewStatusDB, new: ReviewStatusDB) -> None:
    if new not in REVIEW_TRANSITIONS.get(old, set()):
        raise InvalidTransition(f"Illegal review transition: {old.value} -> {new.value}")


def assert_payment_transition(old: PaymentStatusDB, new: PaymentStatusDB) -> None:
    if new not in PAYMENT_TRANSITIONS.get(old, set()):
        raise InvalidTransition(f"Illegal payment transition: {old.value} -> {new.value}")


def utcnow() -> datetime:
    return datetime.utcnow()


def compute_auto_approval_deadline(submitted_at: datetime) -> datetime:
    return submitted_at + timedelta(hours=app_config.AUTO_APPROVAL_HOURS)


# ============================================================================
# READS
# ============================================================================

def get_deliverable(db: Session, deliverable_id: str) -> Deliverable:
    deliverable = db.get(Deliverable, deliverable_id)
    if not deliverable:
        raise NotFoundError("Deliverable not found", deliverable_id)
    return deliverable


def find_for_application(db: Session, application_id: str) -> Optional[Deliverable]:
    return db.query(Deliverable).filter(
        Deliverable.campaign_application_id == application_id
    ).order_by(Deliverable.created_at.desc()).first()


def list_overdue_reviews(db: Session, now: datetime, limit: int = 100) -> List[Deliverable]:
    return db.query(Deliverable).filter(
        Deliverable.review_status == ReviewStatusDB.PENDING_REVIEW,
        Deliverable.auto_approval_deadline <= now,
    ).order_by(Deliverable.auto_approval_deadline.asc()).limit(limit).all()


def list_by_payment_status(
    db: Session,
    status: PaymentStatusDB,
    creator_id: Optional[str] = None,
    limit: int = 100,
) -> List[Deliverable]:
    query = db.query(Deliverable).filter(Deliverable.payment_status == status)
    if creator_id:
        query = query.filter(Deliverable.creator_id == creator_id)
    return query.order_by(Deliverable.reviewed_at.asc()).limit(limit).all()


def list_stale_processing(db: Session, cutoff: datetime, limit: int = 100) -> List[Deliverable]:
    """Deliverables whose open transfer attempt started before `cutoff`."""
    stale_ids = select(PaymentTransaction.deliverable_id).where(
        PaymentTransaction.status == TransactionStatusDB.PROCESSING,
        PaymentTransaction.created_at <= cutoff,
    )
    return db.query(Deliverable).filter(
        Deliverable.payment_status == PaymentStatusDB.PROCESSING,
        Deliverable.id.in_(stale_ids),
    ).order_by(Deliverable.id).limit(limit).all()


# ============================================================================
# COMPARE-AND-SWAP WRITES
# ============================================================================

def transition_review(
    db: Session,
    deliverable_id: str,
    expected: Iterable[ReviewStatusDB],
    new_status: ReviewStatusDB,
    values: Optional[dict] = None,
    conditions: Iterable = (),
) -> bool:
    """
    Move review state to `new_status` if it is currently one of `expected`.

    `conditions` are extra SQL criteria checked in the same statement.
    Returns True when this call won the update. Does not commit.
    """
    expected = tuple(expected)
    for old in expected:
        assert_review_transition(old, new_status)

    values = dict(values or {})
    stray = set(values) - REVIEW_COLUMNS
    if stray:
        raise ValueError(f"Review transition may not write {sorted(stray)}")
    values["review_status"] = new_status

    updated = db.query(Deliverable).filter(
        Deliverable.id == deliverable_id,
        Deliverable.review_status.in_(expected),
        *conditions,
    ).update(values, synchronize_session=False)

    if updated != 1:
        logger.info(
            f"Review CAS lost for {deliverable_id}: expected {[s.value for s in expected]} -> {new_status.value}"
        )
    return updated == 1


def transition_payment(
    db: Session,
    deliverable_id: str,
    expected: Iterable[PaymentStatusDB],
    new_status: PaymentStatusDB,
    values: Optional[dict] = None,
) -> bool:
    """
    Move payment state to `new_status` if it is currently one of `expected`.

    Only approved or auto-approved deliverables have a payment lifecycle, so the
    review state is part of the guard. Returns True on success. Does not commit.
    """
    expected = tuple(expected)
    for old in expected:
        assert_payment_transition(old, new_status)

    values = dict(values or {})
    stray = set(values) - PAYMENT_COLUMNS
    if stray:
        raise ValueError(f"Payment transition may not write {sorted(stray)}")
    values["payment_status"] = new_status

    updated = db.query(Deliverable).filter(
        Deliverable.id == deliverable_id,
        Deliverable.payment_status.in_(expected),
        Deliverable.review_status.in_(APPROVED_STATES),
    ).update(values, synchronize_session=False)

    if updated != 1:
        logger.info(
            f"Payment CAS lost for {deliverable_id}: expected {[s.value for s in expected]} -> {new_status.value}"
        )
    return updated == 1


def reload(db: Session, deliverable: Deliverable) -> Deliverable:
    """Re-read a row after a bulk UPDATE so callers see committed state."""
    db.refresh(deliverable)
    return deliverable
