"""
Password hashing and strength policy.

The login hash (argon2id) and the encryption key (PBKDF2, see crypto.py)
are independent: the hash only proves the password, it never decrypts.
"""
import logging

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError

from ..exceptions import ValidationError
from .config import VaultConfig

logger = logging.getLogger("mink.vault")


def password_hasher(config: VaultConfig) -> PasswordHasher:
    """Build an argon2id hasher tuned by the vault configuration."""
    return PasswordHasher(
        time_cost=config.argon2_time_cost,
        memory_cost=config.argon2_memory_cost,
        parallelism=config.argon2_parallelism,
        type=Type.ID,
    )


def check_password_policy(password: str, config: VaultConfig) -> None:
    """Apply the registration password policy.

    Raises:
        ValidationError: If the password is not a string or its length is
            outside the configured window.
    """
    if not isinstance(password, str):
        raise ValidationError("Password must be a string")
    if len(password) < config.password_min_length:
        raise ValidationError(
            f"Password must be at least {config.password_min_length} characters"
        )
    if len(password) > config.password_max_length:
        raise ValidationError(
            f"Password must be at most {config.password_max_length} characters"
        )


def hash_password(password: str, config: VaultConfig) -> str:
    """Return the argon2id hash of ``password``."""
    return password_hasher(config).hash(password)


def verify_password(password_hash: str, password: str, config: VaultConfig) -> bool:
    """Check ``password`` against a stored hash.

    Returns:
        True if the password matches, False otherwise (including
        unparsable hashes).
    """
    try:
        return password_hasher(config).verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False
