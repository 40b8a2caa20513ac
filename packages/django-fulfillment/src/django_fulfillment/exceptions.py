"""Exceptions for django-fulfillment."""


class FulfillmentError(Exception):
    """Base exception for fulfillment errors."""
    pass


class ValidationError(FulfillmentError):
    """Raised when caller input is malformed. Never retried automatically."""
    pass


class CurrencyMismatchError(ValidationError):
    """Raised when combining amounts in different currencies."""
    pass


class NotFoundError(FulfillmentError):
    """Raised when an order or product id is unknown."""
    pass


class InvalidTransitionError(FulfillmentError):
    """Raised when an order status transition is not allowed."""

    def __init__(self, message, current_status=None, requested_status=None):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class InsufficientStockError(FulfillmentError):
    """Raised when a credential pool cannot cover a requested quantity.

    Attributes:
        shortfall: Mapping of product id to {'requested': n, 'available': m}
    """

    def __init__(self, message, shortfall=None):
        super().__init__(message)
        self.shortfall = shortfall or {}


class ConflictingUpdateError(FulfillmentError):
    """Raised when a concurrent writer won a race for the same order or pool.

    Safe to retry once.
    """
    pass


class ImmutableSnapshotError(FulfillmentError):
    """Raised when attempting to modify an order line item snapshot."""
    pass


class StorageError(FulfillmentError):
    """Raised when the persistence layer fails. No partial state is left behind."""
    pass
