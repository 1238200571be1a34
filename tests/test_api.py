import hashlib
import hmac
import json
import time

import pytest

from config import app_config
from database.models import UserType
from conftest import INSTAGRAM_POST


@pytest.fixture
def submit_body(world):
    return {
        "campaign_application_id": world.application.id,
        "content_type": "reel",
        "content_url": "uploads/creator/reel.mp4",
        "post_url": INSTAGRAM_POST,
    }


@pytest.fixture
def api_submitted(client, auth_headers, world, submit_body):
    r = client.post("/api/v2/deliverables/submit", json=submit_body, headers=auth_headers(world.creator))
    assert r.status_code == 201, r.text
    return r.json()


def _signed(payload: dict, secret: str):
    body = json.dumps(payload).encode()
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return body, {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_requires_token(client):
    r = client.get("/api/v2/deliverables/history")
    assert r.status_code in (401, 403)


def test_bad_token_is_unauthorized(client):
    r = client.get("/api/v2/deliverables/history", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


# ---------------------------
# Creator endpoints
# ---------------------------

def test_submit_returns_review_fields(api_submitted):
    assert api_submitted["review_status"] == "pending_review"
    assert api_submitted["payment_status"] == "not_applicable"
    assert api_submitted["revision_number"] == 1
    assert api_submitted["payment_amount_cents"] == 2500
    assert api_submitted["social_platform"] == "instagram"
    assert api_submitted["media_url"].endswith("/uploads/creator/reel.mp4")


def test_submit_invalid_url_is_422(client, auth_headers, world, submit_body):
    submit_body["post_url"] = "http://instagram.com/p/abc/"
    r = client.post("/api/v2/deliverables/submit", json=submit_body, headers=auth_headers(world.creator))
    assert r.status_code == 422
    assert r.json()["detail"] == "URL must use HTTPS"


def test_business_cannot_submit(client, auth_headers, world, submit_body):
    r = client.post("/api/v2/deliverables/submit", json=submit_body, headers=auth_headers(world.business))
    assert r.status_code == 403


def test_post_url_check(client, auth_headers, world):
    r = client.get(
        "/api/v2/deliverables/post-url/check",
        params={"url": "https://www.tiktok.com/@chef/video/123"},
        headers=auth_headers(world.creator),
    )
    assert r.json() == {"valid": True, "platform": "tiktok", "warning": None, "error": None}

    r = client.get("/api/v2/deliverables/post-url/check", params={"url": "ftp://x"}, headers=auth_headers(world.creator))
    assert r.json()["valid"] is False


def test_draft_lifecycle(client, auth_headers, world):
    headers = auth_headers(world.creator)
    r = client.post(
        "/api/v2/deliverables/drafts",
        json={"campaign_application_id": world.application.id, "caption": "idea"},
        headers=headers,
    )
    assert r.status_code == 201
    draft_id = r.json()["id"]

    assert client.delete(f"/api/v2/deliverables/{draft_id}", headers=headers).status_code == 204
    assert client.get(f"/api/v2/deliverables/{draft_id}", headers=headers).status_code == 404


def test_deliverable_visibility(client, auth_headers, world, api_submitted, make_user):
    path = f"/api/v2/deliverables/{api_submitted['id']}"
    assert client.get(path, headers=auth_headers(world.creator)).status_code == 200
    assert client.get(path, headers=auth_headers(world.business)).status_code == 200
    assert client.get(path, headers=auth_headers(make_user(UserType.ADMIN))).status_code == 200
    assert client.get(path, headers=auth_headers(make_user(UserType.CREATOR))).status_code == 404


def test_auto_approval_status_endpoint(client, auth_headers, world, api_submitted):
    r = client.get(f"/api/v2/deliverables/{api_submitted['id']}/auto-approval", headers=auth_headers(world.creator))
    assert r.status_code == 200
    body = r.json()
    assert body["eligible"] is False
    assert 71.0 <= body["hours_remaining"] <= 72.0


def test_revision_round_trip(client, auth_headers, world, api_submitted, submit_body):
    r = client.post(
        f"/api/v2/reviews/{api_submitted['id']}/request-revision",
        json={"notes": "Show the plating", "changes_required": ["Close-up of dessert"]},
        headers=auth_headers(world.business),
    )
    assert r.status_code == 200
    assert "1. Close-up of dessert" in r.json()["review_notes"]

    submit_body.pop("campaign_application_id")
    r = client.post(
        f"/api/v2/deliverables/{api_submitted['id']}/resubmit", json=submit_body, headers=auth_headers(world.creator)
    )
    assert r.status_code == 200
    assert r.json()["review_status"] == "pending_review"
    assert r.json()["revision_number"] == 2


# ---------------------------
# Business endpoints
# ---------------------------

def test_approve_then_conflict(client, auth_headers, world, api_submitted):
    path = f"/api/v2/reviews/{api_submitted['id']}/approve"
    r = client.post(path, json={"notes": "Love it"}, headers=auth_headers(world.business))
    assert r.status_code == 200
    assert r.json()["review_status"] == "approved"
    assert r.json()["payment_status"] == "pending_onboarding"

    r = client.post(path, json={}, headers=auth_headers(world.business))
    assert r.status_code == 409


def test_reject_with_blank_notes_is_422(client, auth_headers, world, api_submitted):
    r = client.post(
        f"/api/v2/reviews/{api_submitted['id']}/reject", json={"notes": "  "}, headers=auth_headers(world.business)
    )
    assert r.status_code == 422
    assert r.json()["detail"] == "Notes are required to reject a deliverable"


def test_creator_cannot_review(client, auth_headers, world, api_submitted):
    r = client.post(f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(world.creator))
    assert r.status_code == 403


def test_other_business_gets_403(client, auth_headers, api_submitted, make_user):
    r = client.post(
        f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(make_user(UserType.BUSINESS))
    )
    assert r.status_code == 403


def test_pending_queue_and_counts(client, auth_headers, world, api_submitted):
    headers = auth_headers(world.business)

    pending = client.get("/api/v2/reviews/pending", headers=headers).json()
    assert [p["id"] for p in pending] == [api_submitted["id"]]
    assert pending[0]["is_overdue"] is False

    counts = client.get(f"/api/v2/reviews/campaigns/{world.campaign.id}/counts", headers=headers).json()
    assert counts["total"] == 1
    assert counts["pending_review"] == 1


def test_bulk_approve(client, auth_headers, world, api_submitted):
    r = client.post(
        "/api/v2/reviews/bulk-approve",
        json={"deliverable_ids": [api_submitted["id"], "missing"]},
        headers=auth_headers(world.business),
    )
    assert r.status_code == 200
    assert r.json()["approved"] == [api_submitted["id"]]
    assert r.json()["errors"][0]["deliverable_id"] == "missing"


def test_metrics(client, auth_headers, world, api_submitted):
    client.post(f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(world.business))
    metrics = client.get("/api/v2/reviews/metrics", headers=auth_headers(world.business)).json()
    assert metrics["total_reviewed"] == 1
    assert metrics["approval_rate"] == 100.0


# ---------------------------
# Payouts
# ---------------------------

def test_retry_while_waiting_returns_200(client, auth_headers, world, api_submitted, processor):
    client.post(f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(world.business))

    r = client.post(f"/api/v2/payouts/{api_submitted['id']}/retry", headers=auth_headers(world.creator))

    assert r.status_code == 200
    assert r.json()["waiting"] is True
    assert r.json()["payment_status"] == "pending_onboarding"
    assert processor.transfer_calls == []


def test_onboarding_then_refresh_pays(client, auth_headers, world, api_submitted, processor):
    creator = auth_headers(world.creator)
    client.post(f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(world.business))

    r = client.post(
        "/api/v2/payouts/account/onboarding",
        json={"refresh_url": "https://app/refresh", "return_url": "https://app/return"},
        headers=creator,
    )
    assert r.status_code == 200
    account_id = r.json()["stripe_account_id"]

    processor.accounts[account_id] = True
    r = client.post("/api/v2/payouts/account/refresh", headers=creator)
    assert r.status_code == 200
    assert r.json()["resumed_deliverable_ids"] == [api_submitted["id"]]

    status = client.get(f"/api/v2/payouts/{api_submitted['id']}", headers=creator).json()
    assert status["payment_status"] == "completed"
    assert status["waiting"] is False


def test_refresh_processor_outage_is_502(client, auth_headers, world, link_account, processor):
    link_account(world.creator, completed=False)
    processor.fail_account_status = True

    r = client.post("/api/v2/payouts/account/refresh", headers=auth_headers(world.creator))
    assert r.status_code == 502


def test_admin_jobs(client, auth_headers, world, api_submitted, make_user):
    admin = auth_headers(make_user(UserType.ADMIN))

    assert client.post("/api/v2/payouts/admin/sweep", headers=auth_headers(world.business)).status_code == 403

    sweep = client.post("/api/v2/payouts/admin/sweep", headers=admin).json()
    assert sweep["scanned"] == 0

    report = client.post("/api/v2/payouts/admin/reconcile", headers=admin).json()
    assert report["summary"]["scanned"] == 0

    queued = client.post("/api/v2/payouts/admin/process-queued", headers=admin).json()
    assert queued == {"processed": 0, "results": {}}


# ---------------------------
# Webhooks
# ---------------------------

def test_webhook_rejects_bad_signature(client, monkeypatch):
    monkeypatch.setattr(app_config, "STRIPE_WEBHOOK_SECRET", "whsec_api")
    body, headers = _signed({"id": "evt_1", "type": "account.updated"}, "whsec_wrong")

    r = client.post("/api/v2/webhooks/stripe", content=body, headers=headers)
    assert r.status_code == 400


def test_webhook_without_signature(client):
    assert client.post("/api/v2/webhooks/stripe", json={"id": "evt_1"}).status_code == 400


def test_webhook_completes_onboarding(client, auth_headers, world, api_submitted, link_account, processor, monkeypatch):
    monkeypatch.setattr(app_config, "STRIPE_WEBHOOK_SECRET", "whsec_api")
    account = link_account(world.creator, completed=False)
    client.post(f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(world.business))

    event = {
        "id": "evt_done",
        "type": "account.updated",
        "created": int(time.time()),
        "data": {"object": {"id": account.stripe_account_id, "details_submitted": True}},
    }
    body, headers = _signed(event, "whsec_api")
    r = client.post("/api/v2/webhooks/stripe", content=body, headers=headers)

    assert r.status_code == 200
    assert r.json()["status"] == "received"
    assert r.json()["resumed_deliverable_ids"] == [api_submitted["id"]]
    assert len(processor.transfer_calls) == 1


def test_webhook_transfer_paid_settles_payout(client, auth_headers, world, api_submitted, link_account, processor, monkeypatch):
    monkeypatch.setattr(app_config, "STRIPE_WEBHOOK_SECRET", "whsec_api")
    link_account(world.creator)
    processor.fail_transfers = "Payment service error: Read timed out"
    processor.fail_status = None
    client.post(f"/api/v2/reviews/{api_submitted['id']}/approve", json={}, headers=auth_headers(world.business))

    event = {
        "id": "evt_paid",
        "type": "transfer.paid",
        "created": int(time.time()),
        "data": {"object": {"id": "tr_webhook", "amount": 2500, "transfer_group": api_submitted["id"]}},
    }
    body, headers = _signed(event, "whsec_api")
    r = client.post("/api/v2/webhooks/stripe", content=body, headers=headers)

    assert r.status_code == 200
    assert r.json()["applied"] is True
    assert r.json()["payment_status"] == "completed"
    status = client.get(f"/api/v2/payouts/{api_submitted['id']}", headers=auth_headers(world.creator)).json()
    assert status["payment_status"] == "completed"


# ---------------------------
# Notifications
# ---------------------------

def test_notifications_flow(client, auth_headers, world, api_submitted):
    headers = auth_headers(world.business)

    items = client.get("/api/v2/notifications", headers=headers).json()
    assert [n["type"] for n in items] == ["review_pending"]
    assert client.get("/api/v2/notifications/unread-count", headers=headers).json() == {"unread_count": 1}

    r = client.post(f"/api/v2/notifications/{items[0]['id']}/read", headers=headers)
    assert r.status_code == 200
    assert client.get("/api/v2/notifications/unread-count", headers=headers).json() == {"unread_count": 0}

    assert client.post("/api/v2/notifications/missing/read", headers=headers).status_code == 404
    assert client.post("/api/v2/notifications/read-all", headers=headers).json()["marked_read"] == 0


def test_creator_cannot_read_review_metrics(client, auth_headers, world):
    assert client.get("/api/v2/reviews/metrics", headers=auth_headers(world.creator)).status_code == 403


def test_role_permissions():
    from auth.roles import Permission, UserType as Role, has_any_permission, has_permission

    assert has_permission(Role.CREATOR, Permission.MANAGE_PAYOUT_ACCOUNT)
    assert not has_permission(Role.BUSINESS, Permission.MANAGE_PAYOUT_ACCOUNT)
    assert all(has_permission(Role.ADMIN, p) for p in Permission)
    assert has_any_permission(Role.BUSINESS, [Permission.MANAGE_PAYOUT_ACCOUNT, Permission.RETRY_PAYOUTS])
    assert not has_any_permission(Role.CREATOR, [])
