"""Mink Vault — encrypted notes and bookmarks with password-derived keys."""
from .version import __version__
from .exceptions import (
    VaultError,
    AuthenticationError,
    MalformedRecordError,
    ValidationError,
    ConflictError,
    NotFoundError,
    CredentialsError,
    TransactionError,
    ReEncryptionError,
)

__all__ = [
    "__version__",
    "VaultError",
    "AuthenticationError",
    "MalformedRecordError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "CredentialsError",
    "TransactionError",
    "ReEncryptionError",
]
