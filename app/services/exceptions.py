from typing import Any, Optional


class PixError(Exception):
    """Base error for the PIX payment flow."""

    status_code = 500
    error = "pix_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.__class__.__doc__ or self.error)
        self.message = message or (self.__class__.__doc__ or self.error)
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message, **self.details}


# Validation

class ValidationError(PixError):
    """Request failed validation."""

    status_code = 400
    error = "validation_error"


class MissingFieldError(ValidationError):
    """A required field is missing."""

    error = "missing_field"


class InvalidPlanError(ValidationError):
    """Unknown plan type."""

    error = "invalid_plan"


class InvalidFieldError(ValidationError):
    """A field has an invalid value."""

    error = "invalid_field"


# Store

class TransactionNotFoundError(PixError):
    """Transaction not found."""

    status_code = 404
    error = "not_found"


class DuplicateTransactionError(PixError):
    """A transaction with this id already exists."""

    status_code = 409
    error = "duplicate_id"


class PersistenceError(PixError):
    """Transaction store write failed."""

    error = "persistence_error"


class ImmutableFieldError(PixError):
    """Attempted to change a field that is fixed at creation."""

    error = "immutable_field"


# Provider

class ProviderError(PixError):
    """Payment provider call failed."""

    error = "provider_error"

    def __init__(self, message: str = "", status: Optional[int] = None, **details: Any):
        super().__init__(message, **details)
        self.status = status


class ProviderTimeoutError(ProviderError):
    """Payment provider did not answer in time."""

    error = "provider_timeout"


class ProviderConfigError(ProviderError):
    """Provider credentials are missing."""

    error = "provider_not_configured"


class OrphanedUpstreamIntentError(PixError):
    """Preference created upstream but the local transaction could not be stored."""

    error = "orphaned_upstream_intent"


class ConfigurationError(RuntimeError):
    """Service cannot start with the current settings."""
