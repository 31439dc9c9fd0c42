"""Exception hierarchy for tenantgate."""


class TenantGateError(Exception):
    """Base exception for all tenantgate errors."""


class ContextMissingError(TenantGateError):
    """Raised when a tenant-scoped operation runs without a bound application.

    This is a wiring error in the gateway, never a user-facing auth failure.
    """


class StorageError(TenantGateError):
    """Raised when storage operations fail."""


class DeliveryError(TenantGateError):
    """Raised when the outbound email channel fails."""


class ConfigError(TenantGateError):
    """Raised when configuration is invalid."""


class CredentialError(TenantGateError):
    """Base class for credential engine failures."""


class InvalidCredentialsError(CredentialError):
    """Raised when an email/password pair does not match."""


class UserAlreadyExistsError(CredentialError):
    """Raised when signing up an email already registered for the application."""
