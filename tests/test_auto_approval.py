from datetime import timedelta

import pytest

from database.marketplace_models import PaymentStatusDB, PaymentTransaction, ReviewStatusDB
from services import deliverable_store as store
from services.exceptions import ConflictError


def test_nothing_fires_before_deadline(sweeper, submitted):
    deadline = submitted.auto_approval_deadline

    summary = sweeper.sweep(now=deadline - timedelta(seconds=1))

    assert summary["scanned"] == 0
    assert store.reload(sweeper.db, submitted).review_status == ReviewStatusDB.PENDING_REVIEW


def test_deadline_auto_approves_and_waits_for_onboarding(sweeper, world, submitted, notifier, processor):
    deadline = submitted.auto_approval_deadline

    summary = sweeper.sweep(now=deadline)

    assert summary["approved_ids"] == [submitted.id]
    deliverable = store.reload(sweeper.db, submitted)
    assert deliverable.review_status == ReviewStatusDB.AUTO_APPROVED
    assert deliverable.reviewed_at == deadline
    assert deliverable.reviewed_by is None
    assert deliverable.payment_status == PaymentStatusDB.PENDING_ONBOARDING
    assert processor.transfer_calls == []
    assert "deliverable_auto_approved" in notifier.types_for(world.creator.id)
    assert "deliverable_auto_approved" in notifier.types_for(world.business.id)


def test_auto_approval_pays_ready_creator(sweeper, world, submitted, link_account):
    link_account(world.creator)

    sweeper.sweep(now=submitted.auto_approval_deadline + timedelta(minutes=3))

    deliverable = store.reload(sweeper.db, submitted)
    assert deliverable.review_status == ReviewStatusDB.AUTO_APPROVED
    assert deliverable.payment_status == PaymentStatusDB.COMPLETED


def test_sweep_is_idempotent(sweeper, submitted, processor, world, link_account):
    link_account(world.creator)
    now = submitted.auto_approval_deadline

    first = sweeper.sweep(now=now)
    second = sweeper.sweep(now=now)

    assert first["approved"] == 1
    assert second["scanned"] == 0
    assert len(processor.transfer_calls) == 1


def test_revision_requested_never_auto_approves(sweeper, reviews, world, submitted):
    deadline = submitted.auto_approval_deadline
    reviews.request_revision(submitted.id, world.business.id, "Reshoot")

    summary = sweeper.sweep(now=deadline + timedelta(days=10))

    assert summary["scanned"] == 0
    assert store.reload(sweeper.db, submitted).review_status == ReviewStatusDB.REVISION_REQUESTED


def test_manual_approval_wins_then_sweeper_skips(db, sweeper, reviews, world, submitted, monkeypatch):
    deadline = submitted.auto_approval_deadline
    # Sweeper scanned before the business clicked approve
    stale_scan = [submitted]
    monkeypatch.setattr(store, "list_overdue_reviews", lambda db, now, limit=100: stale_scan)

    reviews.approve(submitted.id, world.business.id)
    summary = sweeper.sweep(now=deadline)

    assert summary["approved"] == 0
    assert summary["skipped_ids"] == [submitted.id]
    deliverable = store.reload(db, submitted)
    assert deliverable.review_status == ReviewStatusDB.APPROVED
    assert deliverable.reviewed_by == world.business.id


def test_sweeper_wins_then_manual_approval_conflicts(db, sweeper, reviews, world, submitted):
    sweeper.sweep(now=submitted.auto_approval_deadline)

    with pytest.raises(ConflictError, match="auto_approved"):
        reviews.approve(submitted.id, world.business.id)

    deliverable = store.reload(db, submitted)
    assert deliverable.review_status == ReviewStatusDB.AUTO_APPROVED
    assert deliverable.payment_status == PaymentStatusDB.PENDING_ONBOARDING
    assert db.query(PaymentTransaction).count() == 0


def test_resubmission_after_scan_is_not_auto_approved(
    db, sweeper, reviews, submissions, world, submitted, content, monkeypatch
):
    old_deadline = submitted.auto_approval_deadline
    reviews.request_revision(submitted.id, world.business.id, "Reshoot")
    submissions.resubmit(submitted.id, content, world.creator.id, now=old_deadline)

    # A scan taken against the old deadline must not approve the resubmission
    monkeypatch.setattr(store, "list_overdue_reviews", lambda db, now, limit=100: [submitted])
    summary = sweeper.sweep(now=old_deadline + timedelta(minutes=1))

    assert summary["skipped_ids"] == [submitted.id]
    assert store.reload(db, submitted).review_status == ReviewStatusDB.PENDING_REVIEW
