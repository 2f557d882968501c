"""
Vault exceptions.

Messages never carry key material, passwords or ciphertext. Record ids
and record kinds are the only identifying values allowed in them.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for every error raised by mink_vault."""


class AuthenticationError(VaultError):
    """AEAD tag mismatch: wrong key, or tampered/corrupted ciphertext."""

    def __init__(self, message: str = "Authentication tag mismatch"):
        super().__init__(message)


class MalformedRecordError(VaultError):
    """A stored bundle could not be parsed (bad hex, tag count, labels JSON)."""


class ValidationError(VaultError):
    """Input rejected before any cryptographic or storage work."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ConflictError(VaultError):
    """Mutation would break a uniqueness or tree invariant."""


class NotFoundError(VaultError):
    """Record does not exist or is not owned by the caller."""


class CredentialsError(VaultError):
    """Password does not match the stored password hash."""


class TransactionError(VaultError):
    """An atomic multi-row operation failed; nothing was persisted."""


class ReEncryptionError(TransactionError):
    """A record could not be migrated to the new key during a password change."""

    def __init__(self, kind: str, record_id: str, reason: str):
        super().__init__(
            f"Failed to re-encrypt {kind} {record_id}: {reason}"
        )
        self.kind = kind
        self.record_id = record_id
