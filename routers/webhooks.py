# Webhooks Router
# Stripe Connect account and transfer events

from fastapi import APIRouter, HTTPException, Depends, Request
from sqlalchemy.orm import Session
import json
import logging

from config import app_config
from database.config import get_db
from core.stripe_service import StripeWebhookHandler, get_payment_processor
from services.account_status import AccountStatusTracker
from services.exceptions import DeliverableError
from services.payout_service import PayoutOrchestrator
from routers.errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    processor=Depends(get_payment_processor)
):
    """
    Handle Stripe webhooks
    """
    # Verify signature
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="No signature")

    body = await request.body()
    if not StripeWebhookHandler.verify_webhook(body, signature, app_config.STRIPE_WEBHOOK_SECRET):
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    logger.info(f"Stripe webhook received: {event.get('type')} ({event.get('id')})")

    try:
        if event.get("type") in StripeWebhookHandler.TRANSFER_EVENTS:
            result = PayoutOrchestrator(db, processor=processor).on_transfer_event(event)
        else:
            result = AccountStatusTracker(db, processor=processor).on_webhook_event(event)
    except DeliverableError as e:
        raise http_error(e)

    return {"status": "received", **result}
