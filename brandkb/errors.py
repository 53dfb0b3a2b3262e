"""Exception hierarchy for the knowledge pipeline.

    BrandKBError
    +-- NotFoundError        (missing source document or directory)
    +-- ProviderError        (embedding provider call failed)
    +-- StoreError           (persistence call failed)
    +-- MalformedInputError  (unreadable document or no extractable text)
    +-- ConfigError          (invalid chunking or pipeline parameters)
"""
from typing import Optional


class BrandKBError(Exception):
    """Base exception for all pipeline errors.

    Carries an optional ``provider_name`` naming the external service that
    caused the failure. ``str()`` prefixes it, e.g. ``[ollama] timed out``.
    """

    def __init__(self, message: str, provider_name: Optional[str] = None):
        self.message = message
        self.provider_name = provider_name
        super().__init__(message)

    def __str__(self) -> str:
        if self.provider_name:
            return f"[{self.provider_name}] {self.message}"
        return self.message


class NotFoundError(BrandKBError):
    """Raised when a source document or directory does not exist."""


class ProviderError(BrandKBError):
    """Raised when the embedding provider fails (network, auth, rate limit)."""


class StoreError(BrandKBError):
    """Raised when the knowledge store cannot complete a read or write."""


class MalformedInputError(BrandKBError):
    """Raised for corrupt documents or documents with no extractable text."""


class ConfigError(BrandKBError):
    """Raised for invalid configuration, e.g. chunk overlap >= chunk size."""
