# tests/conftest.py

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth.dependencies import create_access_token
from core.stripe_service import get_payment_processor
from database.config import get_db, init_db
from database.models import User, UserType
from database.marketplace_models import (
    ApplicationStatusDB,
    Campaign,
    CampaignApplication,
    CampaignStatusDB,
    ConnectedAccount,
    Deliverable,
    PaymentStatusDB,
    PaymentTransaction,
    ReviewStatusDB,
    TransactionStatusDB,
)
from schemas.deliverables import DeliverableContent
from services import deliverable_store as store
from services.account_status import AccountStatusTracker
from services.auto_approval import AutoApprovalSweeper
from services.exceptions import ExternalProcessorError
from services.notification_service import NotificationService
from services.payout_service import PayoutOrchestrator, idempotency_key_for
from services.review_service import ReviewService
from services.submission_service import SubmissionService


INSTAGRAM_POST = "https://www.instagram.com/p/Cx1abc/"


# ---------------------------
# Test doubles
# ---------------------------

class FakeProcessor:
    """In-memory stand-in for Stripe Connect with switchable failures."""

    def __init__(self):
        self.accounts: Dict[str, bool] = {}
        self.transfers: List[Dict[str, Any]] = []
        self.transfer_calls: List[Dict[str, Any]] = []
        self.fail_transfers: Optional[str] = None
        self.fail_status: Optional[int] = 402
        self.lose_responses = False  # Transfer happens but the caller sees a timeout
        self.fail_lookups = False
        self.listing_delayed = False  # Created transfers not yet returned by list calls
        self.fail_account_status = False
        self._by_key: Dict[str, Dict[str, Any]] = {}

    def create_transfer(self, account_id, amount_cents, idempotency_key, transfer_group=None, metadata=None):
        self.transfer_calls.append({
            "account_id": account_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
            "transfer_group": transfer_group,
            "metadata": metadata,
        })
        if self.fail_transfers:
            raise ExternalProcessorError(self.fail_transfers, status_code=self.fail_status)

        transfer = self._by_key.get(idempotency_key)
        if transfer is None:
            transfer = {
                "id": f"tr_{len(self.transfers) + 1}",
                "amount": amount_cents,
                "destination": account_id,
                "transfer_group": transfer_group,
            }
            self.transfers.append(transfer)
            self._by_key[idempotency_key] = transfer

        if self.lose_responses:
            raise ExternalProcessorError("Payment service error: Read timed out")
        return {"id": transfer["id"], "status": "paid", "amount": transfer["amount"]}

    def find_transfers(self, transfer_group):
        if self.fail_lookups:
            raise ExternalProcessorError("Payment service error: 503 Service Unavailable", status_code=503)
        if self.listing_delayed:
            return []
        return [
            {"id": t["id"], "amount": t["amount"], "status": "paid"}
            for t in self.transfers
            if t["transfer_group"] == transfer_group
        ]

    def get_account_status(self, account_id):
        if self.fail_account_status:
            raise ExternalProcessorError("Payment service error: connection refused")
        completed = self.accounts.get(account_id, False)
        return {"onboarding_completed": completed, "charges_enabled": completed, "payouts_enabled": completed}

    def create_express_account(self, email, creator_id):
        account_id = f"acct_{len(self.accounts) + 1:04d}"
        self.accounts[account_id] = False
        return {"id": account_id, "email": email}

    def create_account_link(self, account_id, refresh_url, return_url):
        return {"url": f"https://connect.stripe.com/setup/e/{account_id}", "expires_at": 1893456000}


class RecordingNotifier(NotificationService):
    """Writes notifications like the real service and remembers what was sent."""

    def __init__(self, db):
        super().__init__(db)
        self.sent = []

    def notify(self, user_id, type, title, message, action_url=None, data=None):
        self.sent.append({"user_id": user_id, "type": getattr(type, "value", type), "data": data or {}})
        return super().notify(user_id, type, title, message, action_url=action_url, data=data)

    def types_for(self, user_id):
        return [n["type"] for n in self.sent if n["user_id"] == user_id]


@dataclass
class World:
    business: User
    creator: User
    campaign: Campaign
    application: CampaignApplication


# ---------------------------
# Database
# ---------------------------

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ---------------------------
# Services
# ---------------------------

@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def notifier(db):
    return RecordingNotifier(db)


@pytest.fixture
def orchestrator(db, processor, notifier):
    return PayoutOrchestrator(db, processor=processor, notifier=notifier)


@pytest.fixture
def submissions(db, notifier):
    return SubmissionService(db, notifier=notifier)


@pytest.fixture
def reviews(db, orchestrator, notifier):
    return ReviewService(db, orchestrator=orchestrator, notifier=notifier)


@pytest.fixture
def sweeper(db, orchestrator, notifier):
    return AutoApprovalSweeper(db, orchestrator=orchestrator, notifier=notifier)


@pytest.fixture
def tracker(db, processor, orchestrator, notifier):
    return AccountStatusTracker(db, processor=processor, orchestrator=orchestrator, notifier=notifier)


# ---------------------------
# Data builders
# ---------------------------

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(user_type: UserType, name: Optional[str] = None) -> User:
        counter["n"] += 1
        user = User(
            email=f"{user_type.value}{counter['n']}@example.com",
            name=name or f"{user_type.value.title()} {counter['n']}",
            user_type=user_type,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_world(db, make_user):
    def _make(
        rate_cents: int = 2500,
        application_status: ApplicationStatusDB = ApplicationStatusDB.ACCEPTED,
        campaign_status: CampaignStatusDB = CampaignStatusDB.ACTIVE,
        business: Optional[User] = None,
        creator: Optional[User] = None,
    ) -> World:
        business = business or make_user(UserType.BUSINESS)
        creator = creator or make_user(UserType.CREATOR)
        campaign = Campaign(
            business_id=business.id,
            restaurant_id="rest-1",
            title="Spring tasting menu",
            status=campaign_status,
        )
        db.add(campaign)
        db.commit()
        application = CampaignApplication(
            campaign_id=campaign.id,
            creator_id=creator.id,
            proposed_rate_cents=rate_cents,
            status=application_status,
        )
        db.add(application)
        db.commit()
        db.refresh(application)
        return World(business=business, creator=creator, campaign=campaign, application=application)

    return _make


@pytest.fixture
def world(make_world):
    return make_world()


@pytest.fixture
def content():
    return DeliverableContent(content_url="uploads/creator/reel.mp4", post_url=INSTAGRAM_POST, caption="So good")


@pytest.fixture
def submitted(submissions, world, content):
    """A deliverable waiting for review."""
    return submissions.submit(world.application.id, content, world.creator.id)


@pytest.fixture
def link_account(db, processor):
    """Give a creator a connected account, complete or not."""
    def _link(creator: User, completed: bool = True, account_id: Optional[str] = None) -> ConnectedAccount:
        account_id = account_id or f"acct_{creator.id[:8]}"
        processor.accounts[account_id] = completed
        account = ConnectedAccount(
            creator_id=creator.id,
            stripe_account_id=account_id,
            onboarding_completed=completed,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _link


@pytest.fixture
def stuck_processing(db):
    """Put an approved deliverable in `processing` with an attempt that started `age` ago."""
    def _stuck(deliverable: Deliverable, age: timedelta = timedelta(hours=2)) -> PaymentTransaction:
        db.query(Deliverable).filter(Deliverable.id == deliverable.id).update({
            "review_status": ReviewStatusDB.APPROVED,
            "reviewed_at": store.utcnow() - age,
            "payment_status": PaymentStatusDB.PROCESSING,
            "payout_attempts": 1,
        }, synchronize_session=False)
        transaction = PaymentTransaction(
            deliverable_id=deliverable.id,
            campaign_id=deliverable.campaign_id,
            creator_id=deliverable.creator_id,
            business_id=deliverable.business_id,
            amount_cents=deliverable.payment_amount_cents,
            currency="usd",
            status=TransactionStatusDB.PROCESSING,
            idempotency_key=idempotency_key_for(deliverable.id),
            created_at=store.utcnow() - age,
        )
        db.add(transaction)
        db.commit()
        db.refresh(deliverable)
        return transaction

    return _stuck


# ---------------------------
# Client + Auth Helpers
# ---------------------------

@pytest.fixture
def client(session_factory, processor):
    from server import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_processor] = lambda: processor
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers
