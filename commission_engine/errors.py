"""
Error taxonomy for the commission engine.

Handlers map these onto HTTP responses:
- ValidationError       -> 400 validation_failed
- BusinessRuleError     -> 400 rejected
- NotFoundError         -> 404 not_found
- InvoiceGenerationError -> 500 failed
"""


class ValidationError(ValueError):
    """Bad input: missing or malformed fields."""


class BusinessRuleError(Exception):
    """A request that is well formed but not allowed by the business rules."""

    def __init__(self, message: str, reason: str = "rejected", details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.details = details or {}


class NotFoundError(Exception):
    """A referenced record (deal, rule) does not exist."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class InvoiceGenerationError(Exception):
    """The recurring invoice run could not fetch or insert its batch."""
