import os
from dotenv import load_dotenv

load_dotenv()

# Review Settings
AUTO_APPROVAL_HOURS = int(os.getenv("AUTO_APPROVAL_HOURS", 72))
AUTO_APPROVAL_SWEEP_MINUTES = int(os.getenv("AUTO_APPROVAL_SWEEP_MINUTES", 5))

# Payout Settings
PAYOUT_CURRENCY = os.getenv("PAYOUT_CURRENCY", "usd")
PAYOUT_QUEUE_MINUTES = int(os.getenv("PAYOUT_QUEUE_MINUTES", 5))
PAYOUT_RECONCILE_STALE_MINUTES = int(os.getenv("PAYOUT_RECONCILE_STALE_MINUTES", 30))

# Media
MEDIA_BASE_URL = os.getenv("MEDIA_BASE_URL", "https://media.example.com")

# Stripe Settings
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_BASE_URL = os.getenv("STRIPE_API_BASE_URL", "https://api.stripe.com")
STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300))
STRIPE_HTTP_TIMEOUT_SECONDS = int(os.getenv("STRIPE_HTTP_TIMEOUT_SECONDS", 20))
STRIPE_CLOCK_SKEW_SECONDS = int(os.getenv("STRIPE_CLOCK_SKEW_SECONDS", 5))
