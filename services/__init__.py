# Services Module for the Creator Payouts Platform
# Review, payout and account-status business logic.
# Import from the submodules directly; core.stripe_service depends on services.exceptions.
