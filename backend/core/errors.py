"""
Storefront error taxonomy.

  - ValidationError: missing/malformed required fields, surfaced to the caller
  - NotFoundError: lookup by id/reference yields nothing
  - IntegrationFailure: mail or payment-gateway collaborator failure
"""


class StorefrontError(Exception):
    """Base class for domain errors raised by the storefront core."""


class ValidationError(StorefrontError, ValueError):
    """Request rejected because required data is missing or malformed."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class NotFoundError(StorefrontError, LookupError):
    """An entity looked up by id or reference does not exist."""

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class IntegrationFailure(StorefrontError, RuntimeError):
    """An external collaborator (mail sender, payment gateway) failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
