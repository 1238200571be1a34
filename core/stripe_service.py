# Stripe Connect Service for creator payouts
import hmac
import hashlib
import time
import requests
from typing import Optional, Dict, Any, List, Protocol
import logging

from config import app_config
from services.exceptions import ExternalProcessorError

logger = logging.getLogger(__name__)


class StripeConfig:
    """Stripe Connect configuration"""
    BASE_URL = app_config.STRIPE_API_BASE_URL
    SECRET_KEY = app_config.STRIPE_SECRET_KEY
    WEBHOOK_SECRET = app_config.STRIPE_WEBHOOK_SECRET
    CURRENCY = app_config.PAYOUT_CURRENCY
    TIMEOUT_SECONDS = app_config.STRIPE_HTTP_TIMEOUT_SECONDS
    WEBHOOK_TOLERANCE_SECONDS = app_config.STRIPE_WEBHOOK_TOLERANCE_SECONDS


class PaymentProcessor(Protocol):
    """What the payout orchestrator needs from a payment processor."""

    def create_transfer(
        self,
        account_id: str,
        amount_cents: int,
        idempotency_key: str,
        transfer_group: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]: ...

    def get_account_status(self, account_id: str) -> Dict[str, Any]: ...

    def find_transfers(self, transfer_group: str) -> List[Dict[str, Any]]: ...

    def create_express_account(self, email: str, creator_id: str) -> Dict[str, Any]: ...

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]: ...


def _form_encode(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested dicts into Stripe's bracket notation: metadata[key]=value."""
    encoded = {}
    for key, value in data.items():
        if value is None:
            continue
        name = f"{prefix}[{key}]" if prefix else key
        if isinstance(value, dict):
            encoded.update(_form_encode(value, name))
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        else:
            encoded[name] = value
    return encoded


class StripeConnectService:
    """Service for Stripe Connect transfers and Express accounts"""

    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None):
        self.base_url = base_url or StripeConfig.BASE_URL
        self.secret_key = secret_key or StripeConfig.SECRET_KEY
        self.headers = {
            "Authorization": f"Bearer {self.secret_key}",
        }

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Make a request to the Stripe API"""
        url = f"{self.base_url}{endpoint}"
        headers = dict(self.headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            if method == "GET":
                response = requests.get(url, headers=headers, params=data, timeout=StripeConfig.TIMEOUT_SECONDS)
            elif method == "POST":
                response = requests.post(
                    url,
                    headers=headers,
                    data=_form_encode(data or {}),
                    timeout=StripeConfig.TIMEOUT_SECONDS,
                )
            else:
                raise ValueError(f"Unsupported method: {method}")

            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            message = self._error_message(e.response) or str(e)
            logger.error(f"Stripe API error on {method} {endpoint}: {status_code} {message}")
            raise ExternalProcessorError(f"Payment service error: {message}", status_code=status_code)
        except requests.exceptions.RequestException as e:
            logger.error(f"Stripe API unreachable on {method} {endpoint}: {e}")
            raise ExternalProcessorError(f"Payment service error: {str(e)}")

    @staticmethod
    def _error_message(response) -> Optional[str]:
        if response is None:
            return None
        try:
            return response.json().get("error", {}).get("message")
        except ValueError:
            return None

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def create_transfer(
        self,
        account_id: str,
        amount_cents: int,
        idempotency_key: str,
        transfer_group: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Transfer funds from the platform balance to a connected account

        Args:
            account_id: Destination connected account (acct_...)
            amount_cents: Amount in cents
            idempotency_key: Stripe replays the original result for a repeated key
            transfer_group: Groups every attempt for one deliverable
            metadata: Additional transfer metadata

        Returns:
            {"id": transfer id, "status": "paid", "amount": amount in cents}
        """
        data = {
            "amount": amount_cents,
            "currency": StripeConfig.CURRENCY,
            "destination": account_id,
            "transfer_group": transfer_group,
            "metadata": metadata or {},
        }
        transfer = self._make_request("POST", "/v1/transfers", data, idempotency_key=idempotency_key)
        # A transfer that returns without an error has moved the funds
        return {
            "id": transfer.get("id"),
            "status": "paid",
            "amount": transfer.get("amount", amount_cents),
        }

    def find_transfers(self, transfer_group: str) -> List[Dict[str, Any]]:
        """
        List transfers already created in a transfer group

        Returns:
            Transfers that have not been fully reversed
        """
        result = self._make_request("GET", "/v1/transfers", {"transfer_group": transfer_group, "limit": 10})
        return [
            {"id": t.get("id"), "amount": t.get("amount"), "status": "paid"}
            for t in result.get("data", [])
            if not t.get("reversed")
        ]

    # ========================================================================
    # CONNECTED ACCOUNTS
    # ========================================================================

    def get_account_status(self, account_id: str) -> Dict[str, Any]:
        """
        Fetch onboarding status of a connected account

        Returns:
            {"onboarding_completed": bool, "charges_enabled": bool, "payouts_enabled": bool}
        """
        account = self._make_request("GET", f"/v1/accounts/{account_id}")
        return account_status_from_payload(account)

    def create_express_account(self, email: str, creator_id: str) -> Dict[str, Any]:
        """Create an Express connected account for a creator"""
        data = {
            "type": "express",
            "email": email,
            "capabilities": {"transfers": {"requested": True}},
            "metadata": {"creator_id": creator_id},
        }
        return self._make_request("POST", "/v1/accounts", data)

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        """Create a hosted onboarding link for a connected account"""
        data = {
            "account": account_id,
            "refresh_url": refresh_url,
            "return_url": return_url,
            "type": "account_onboarding",
        }
        return self._make_request("POST", "/v1/account_links", data)

    @staticmethod
    def format_amount(amount_in_cents: int) -> str:
        """Format cents as a display string like "USD 25.00" """
        return f"{StripeConfig.CURRENCY.upper()} {amount_in_cents / 100:,.2f}"


def account_status_from_payload(account: Dict[str, Any]) -> Dict[str, Any]:
    # Onboarding counts as complete once the creator has submitted their details
    return {
        "onboarding_completed": bool(account.get("details_submitted")),
        "charges_enabled": bool(account.get("charges_enabled")),
        "payouts_enabled": bool(account.get("payouts_enabled")),
    }


# Webhook handler for Stripe events
class StripeWebhookHandler:
    """Handle Stripe webhook events"""

    ACCOUNT_EVENTS = [
        "account.updated",
    ]
    TRANSFER_SUCCESS_EVENTS = [
        "transfer.created",
        "transfer.paid",
    ]
    TRANSFER_FAILURE_EVENTS = [
        "transfer.failed",
    ]
    TRANSFER_EVENTS = TRANSFER_SUCCESS_EVENTS + TRANSFER_FAILURE_EVENTS

    @staticmethod
    def verify_webhook(
        payload: bytes,
        signature_header: str,
        secret: str,
        tolerance: int = StripeConfig.WEBHOOK_TOLERANCE_SECONDS,
        now: Optional[float] = None,
    ) -> bool:
        """
        Verify a Stripe-Signature header

        Args:
            payload: Raw request body
            signature_header: Header value, e.g. "t=1700000000,v1=abc..."
            secret: Endpoint signing secret (whsec_...)
            tolerance: Maximum age of the timestamp in seconds

        Returns:
            True if one of the v1 signatures matches and the timestamp is fresh
        """
        if not signature_header or not secret:
            return False

        timestamp = None
        signatures = []
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)

        if not timestamp or not signatures:
            return False
        try:
            signed_at = int(timestamp)
        except ValueError:
            return False

        current = now if now is not None else time.time()
        if tolerance and abs(current - signed_at) > tolerance:
            logger.warning("Stripe webhook timestamp outside tolerance")
            return False

        signed_payload = f"{timestamp}.".encode("utf-8") + payload
        computed_signature = hmac.new(
            secret.encode("utf-8"),
            signed_payload,
            hashlib.sha256
        ).hexdigest()

        return any(hmac.compare_digest(computed_signature, s) for s in signatures)

    @staticmethod
    def handle_account_updated(event: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten an account.updated event for the account status tracker"""
        account = event.get("data", {}).get("object", {})
        return {
            "event": "account.updated",
            "event_id": event.get("id"),
            "created": event.get("created"),
            "account_id": account.get("id"),
            **account_status_from_payload(account),
        }

    @staticmethod
    def handle_transfer_event(event: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten a transfer.* event. Payout transfers carry the deliverable id as their transfer group"""
        transfer = event.get("data", {}).get("object", {})
        metadata = transfer.get("metadata") or {}
        return {
            "event": event.get("type"),
            "event_id": event.get("id"),
            "created": event.get("created"),
            "transfer_id": transfer.get("id"),
            "deliverable_id": transfer.get("transfer_group") or metadata.get("deliverable_id"),
            "amount": transfer.get("amount"),
            "failure_message": transfer.get("failure_message"),
        }


# Dependency for FastAPI
def get_payment_processor() -> PaymentProcessor:
    """
    FastAPI dependency for the payment processor.
    Usage: processor: PaymentProcessor = Depends(get_payment_processor)
    """
    return StripeConnectService()
