"""
Error taxonomy for the AR engine.

Everything subclasses ValueError or LookupError so the HTTP layer maps
them the same way the rest of the API does: LookupError -> 404,
ValueError -> 400.
"""


class ARError(ValueError):
    """Base class for AR engine errors."""


class ConfigurationError(ARError):
    """A provider is missing credentials and cannot degrade."""


class ProviderError(ARError):
    """Transient failure talking to an external provider."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class DataError(ARError):
    """A single unit of work cannot proceed because of its data."""


class MalformedPayloadError(DataError):
    """A stored payload or snapshot failed validation."""


class InvariantViolation(ARError):
    """Rejected before any state was mutated."""


class OverpaymentError(InvariantViolation):
    pass


class InvoiceAlreadyPaidError(InvariantViolation):
    pass


class InvalidPlanStateError(InvariantViolation):
    pass


class ConcurrentUpdateError(ARError):
    """Lost a concurrency race on an invoice or billing cycle."""


class NotFoundError(LookupError):
    """Base class for missing entities."""


class InvoiceNotFoundError(NotFoundError):
    pass


class PlanNotFoundError(NotFoundError):
    pass


class ActionNotFoundError(NotFoundError):
    pass
