"""
Error taxonomy for pricing, discount application and refresh jobs.

Bulk operations never raise for individual item failures; those are reported
per item in a ``BatchResult``.
"""
from typing import Optional


class PricingError(Exception):
    """Base class for all errors raised by the pricing package."""


class InvalidConfiguration(PricingError):
    """Product configuration cannot be priced (unknown metal type, bad weight...)."""


class ValidationError(PricingError):
    """Discount rule or input payload fails validation."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors))


class NotFound(PricingError):
    """Unknown rule, job, product or stone."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class ExternalWriteFailure(PricingError):
    """A remote store rejected a write."""

    def __init__(self, message: str, product_id: Optional[str] = None):
        self.product_id = product_id
        super().__init__(message)


class JobStateError(PricingError):
    """Operation not permitted in the job's current state."""
