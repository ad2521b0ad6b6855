"""
Error taxonomy for SecureVault.
"""
from typing import Dict, Optional


class VaultError(Exception):
    """Base class for every error raised by the vault core."""


class ConfigError(VaultError):
    """Raised when required configuration is missing or invalid."""


class ValidationError(VaultError):
    """User-correctable input error scoped to a single field."""

    def __init__(self, field: str, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
        self.errors = errors or {field: message}


class NotFoundError(VaultError):
    """Raised when a record id does not reference an existing record."""

    def __init__(self, record_id: str):
        super().__init__(f"No credential with id {record_id!r}")
        self.record_id = record_id


class CorruptStoreError(VaultError):
    """Persisted vault bytes are unreadable, undecryptable or tampered with."""


class StorageIOError(VaultError):
    """Durable storage is unavailable. Retryable."""


class VaultClosedError(VaultError):
    """Raised when a vault reference is used after its session ended."""


class NotAuthenticatedError(VaultError):
    """Raised when the vault is requested without an authenticated session."""


class ProviderError(VaultError):
    """Rejection reported by the identity provider."""

    def __init__(self, code, message: Optional[str] = None):
        super().__init__(message or str(code))
        self.code = code
        self.message = message or str(code)


class AuthenticationError(VaultError):
    """Provider rejection after it has been mapped to a user-facing reason."""

    def __init__(self, reason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message
