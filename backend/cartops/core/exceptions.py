"""CARTOPS - Engine exceptions.

Insufficient data and catalog no-match are NOT errors: they surface as
``None`` percentages and null matches. Everything below is recoverable;
the caller decides what to show the operator.
"""

from typing import Optional


class FulfillmentError(Exception):
    """Base class for fulfillment engine errors."""
    pass


class CollaboratorError(FulfillmentError):
    """Vision or voice service failed (transport, HTTP, or unparseable output)."""
    pass


class RateLimitedError(CollaboratorError):
    """Collaborator signalled quota exhaustion."""

    def __init__(self, message: str, retry_after_seconds: Optional[float] = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class PersistenceError(FulfillmentError):
    """Read or write against the cart store failed."""
    pass


class CartNotFoundError(FulfillmentError):
    """Cart id does not exist in the store."""
    pass


class PhaseTransitionError(FulfillmentError):
    """Operation not allowed in the cart's current phase."""
    pass


class PairNotFoundError(FulfillmentError):
    """Pair id is not in the pending pair list."""
    pass


class SessionClosedError(FulfillmentError):
    """Bottle-control session was used after close."""
    pass
