import time

import pytest

from config import app_config
from database.marketplace_models import ConnectedAccount, PaymentStatusDB
from services import deliverable_store as store
from services.account_status import event_time
from services.exceptions import ConflictError, ExternalProcessorError, NotFoundError, ValidationError


def account_updated(account_id, details_submitted, created, event_id="evt_1"):
    return {
        "id": event_id,
        "type": "account.updated",
        "created": created,
        "data": {"object": {
            "id": account_id,
            "details_submitted": details_submitted,
            "charges_enabled": details_submitted,
            "payouts_enabled": details_submitted,
        }},
    }


@pytest.fixture
def parked(reviews, world, submitted, link_account):
    """Approved deliverable waiting on an incomplete connected account."""
    account = link_account(world.creator, completed=False)
    deliverable = reviews.approve(submitted.id, world.business.id)
    assert deliverable.payment_status == PaymentStatusDB.PENDING_ONBOARDING
    return deliverable, account


def test_webhook_completion_resumes_parked_payouts(db, tracker, parked, processor):
    deliverable, account = parked
    processor.accounts[account.stripe_account_id] = True

    result = tracker.on_webhook_event(account_updated(account.stripe_account_id, True, int(time.time())))

    assert result == {"handled": True, "applied": True, "resumed_deliverable_ids": [deliverable.id]}
    assert store.reload(db, deliverable).payment_status == PaymentStatusDB.COMPLETED
    db.refresh(account)
    assert account.onboarding_completed is True
    assert account.last_event_id == "evt_1"


def test_older_webhook_is_ignored(db, tracker, parked):
    _, account = parked
    now = int(time.time())

    tracker.on_webhook_event(account_updated(account.stripe_account_id, True, now, "evt_new"))
    result = tracker.on_webhook_event(account_updated(account.stripe_account_id, False, now - 60, "evt_old"))

    assert result["applied"] is False
    db.refresh(account)
    assert account.onboarding_completed is True
    assert account.last_event_id == "evt_new"


def test_duplicate_webhook_is_ignored(tracker, parked):
    _, account = parked
    event = account_updated(account.stripe_account_id, True, int(time.time()))

    assert tracker.on_webhook_event(event)["applied"] is True
    assert tracker.on_webhook_event(event)["applied"] is False


def test_incomplete_webhook_does_not_resume(db, tracker, parked, processor):
    deliverable, account = parked

    result = tracker.on_webhook_event(account_updated(account.stripe_account_id, False, int(time.time())))

    assert result["applied"] is True
    assert result["resumed_deliverable_ids"] == []
    assert processor.transfer_calls == []
    assert store.reload(db, deliverable).payment_status == PaymentStatusDB.PENDING_ONBOARDING


def test_other_event_types_are_not_handled(tracker):
    result = tracker.on_webhook_event({"id": "evt_x", "type": "payout.paid", "created": 1})
    assert result["handled"] is False


def test_unknown_account_is_acknowledged(tracker):
    result = tracker.on_webhook_event(account_updated("acct_unknown", True, int(time.time())))
    assert result == {"handled": True, "applied": False, "resumed_deliverable_ids": []}


def test_event_without_timestamp_is_invalid(tracker, parked):
    _, account = parked
    event = account_updated(account.stripe_account_id, True, None)
    with pytest.raises(ValidationError):
        tracker.on_webhook_event(event)


def test_refresh_pulls_status_and_resumes(db, tracker, world, parked, processor):
    deliverable, account = parked
    processor.accounts[account.stripe_account_id] = True

    result = tracker.refresh(world.creator.id)

    assert result["onboarding_completed"] is True
    assert result["resumed_deliverable_ids"] == [deliverable.id]
    assert store.reload(db, deliverable).payment_status == PaymentStatusDB.COMPLETED


def test_refresh_surfaces_processor_errors(tracker, world, parked, processor):
    processor.fail_account_status = True
    with pytest.raises(ExternalProcessorError):
        tracker.refresh(world.creator.id)


def test_refresh_without_account(tracker, world):
    with pytest.raises(NotFoundError):
        tracker.refresh(world.creator.id)


def test_refresh_does_not_roll_back_newer_webhook(db, tracker, world, parked, processor):
    _, account = parked
    future = int(time.time()) + 3600
    tracker.on_webhook_event(account_updated(account.stripe_account_id, True, future))

    # Stripe still reports incomplete, but the pull is older than the applied push
    processor.accounts[account.stripe_account_id] = False
    result = tracker.refresh(world.creator.id)

    assert result["onboarding_completed"] is True


def test_webhook_applied_during_refresh_wins(db, tracker, world, parked, processor, monkeypatch):
    deliverable, account = parked

    def status_with_webhook_in_flight(account_id):
        # The push lands while the pull is still waiting on Stripe
        tracker.on_webhook_event(account_updated(account_id, True, int(time.time()), "evt_during_pull"))
        return {"onboarding_completed": False, "charges_enabled": False, "payouts_enabled": False}

    monkeypatch.setattr(processor, "get_account_status", status_with_webhook_in_flight)

    result = tracker.refresh(world.creator.id)

    assert result["onboarding_completed"] is True
    db.refresh(account)
    assert account.last_event_id == "evt_during_pull"
    assert store.reload(db, deliverable).payment_status == PaymentStatusDB.COMPLETED


def test_pull_does_not_shadow_push_from_skewed_clock(db, tracker, world, parked, monkeypatch):
    monkeypatch.setattr(app_config, "STRIPE_CLOCK_SKEW_SECONDS", 5)
    _, account = parked
    created = int(time.time())

    # Local clock two seconds ahead of Stripe's
    tracker.refresh(world.creator.id, now=event_time(created + 2))
    result = tracker.on_webhook_event(account_updated(account.stripe_account_id, True, created))

    assert result["applied"] is True
    db.refresh(account)
    assert account.onboarding_completed is True


def test_start_onboarding_creates_account_once(db, tracker, world):
    first = tracker.start_onboarding(world.creator.id, world.creator.email, "https://app/refresh", "https://app/return")
    second = tracker.start_onboarding(world.creator.id, world.creator.email, "https://app/refresh", "https://app/return")

    assert first["stripe_account_id"] == second["stripe_account_id"]
    assert first["url"].endswith(first["stripe_account_id"])
    assert db.query(ConnectedAccount).count() == 1


def test_account_cannot_be_linked_to_two_creators(tracker, world, make_world):
    other = make_world()
    tracker.link_account(world.creator.id, "acct_shared")
    with pytest.raises(ConflictError):
        tracker.link_account(other.creator.id, "acct_shared")


def test_relinking_resets_onboarding(db, tracker, world, parked):
    _, account = parked
    tracker.on_webhook_event(account_updated(account.stripe_account_id, True, int(time.time())))

    relinked = tracker.link_account(world.creator.id, "acct_replacement")

    assert relinked.stripe_account_id == "acct_replacement"
    assert relinked.onboarding_completed is False
    assert relinked.last_event_at is None


def test_event_time_is_naive_utc():
    assert event_time(0).year == 1970
    assert event_time(0).tzinfo is None
    assert event_time(None) is None
