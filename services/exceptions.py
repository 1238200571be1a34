# Domain errors raised by the review and payout services.
# Routers translate these into HTTP responses (see routers.errors).


class DeliverableError(Exception):
    """Base class for review and payout failures."""

    def __init__(self, message: str, deliverable_id: str = None):
        super().__init__(message)
        self.message = message
        self.deliverable_id = deliverable_id


class ValidationError(DeliverableError):
    """Malformed or incomplete input. Nothing was written."""


class ConflictError(DeliverableError):
    """The deliverable was not in an expected state at write time."""


class AuthorizationError(DeliverableError):
    """The acting user may not perform this action."""


class NotFoundError(DeliverableError):
    pass


class PayoutPendingError(DeliverableError):
    """The creator's connected account cannot receive transfers yet."""


class ExternalProcessorError(DeliverableError):
    """The payment processor failed: network, decline or rate limit."""

    def __init__(self, message: str, deliverable_id: str = None, status_code: int = None):
        super().__init__(message, deliverable_id)
        self.status_code = status_code


class ReconciliationAmbiguousError(DeliverableError):
    """A stuck payout could not be resolved against the processor."""
