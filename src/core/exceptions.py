"""Custom exception classes for the AI settings store.

This module defines application-specific exceptions following Google Python
Style Guide.
"""


class AISettingsError(Exception):
    """Base exception for all AI settings store errors."""

    pass


class StorageError(AISettingsError):
    """Raised when the key-value store rejects a read or write."""

    pass


class StorageUnavailableError(StorageError):
    """Raised when no usable persistent store exists."""

    pass


class StorageQuotaExceededError(StorageError):
    """Raised when a write is rejected because the store is full."""

    def __init__(self, message: str = "Storage quota exceeded. Please clear some data."):
        super().__init__(message)


class NotFoundError(AISettingsError):
    """Raised when a profile, provider config or other CRUD target is missing."""

    def __init__(self, kind: str, identifier: str):
        """Initialize the exception.

        Args:
            kind: Human readable entity kind, e.g. "Profile".
            identifier: The identifier that was looked up.
        """
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class InvalidOperationError(AISettingsError):
    """Raised when an operation is rejected before any write happens."""

    pass


class ProviderAlreadyExistsError(InvalidOperationError):
    """Raised when adding a provider the current profile already has."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Provider {provider_id} already exists")


class ValidationError(AISettingsError):
    """Raised when caller-supplied data fails validation."""

    pass


class DecryptionError(AISettingsError):
    """Raised when an encrypted blob cannot be decrypted."""

    pass


class MigrationError(AISettingsError):
    """Raised when a migration aborts. Legacy data is left untouched."""

    pass
