"""
Vault Configuration — Pepper loading and validated settings.

Reads settings from environment variables:
    ENCRYPTION_PEPPER = <server-wide secret appended to passwords>
    VAULT_KDF_ITERATIONS = <PBKDF2 rounds, at least 300000>
    VAULT_PASSWORD_MIN_LENGTH / VAULT_PASSWORD_MAX_LENGTH
    VAULT_ARGON2_MEMORY_COST / VAULT_ARGON2_TIME_COST / VAULT_ARGON2_PARALLELISM
    VAULT_IMPORT_MAX_BYTES / VAULT_MAX_FOLDER_DEPTH

Security Note:
    Never log the pepper. Only log iteration counts and limits.
"""
import os
import secrets
import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("mink.vault")

DEV_PEPPER = "default-pepper-change-in-production"
PBKDF2_ITERATIONS = 310000
MIN_PBKDF2_ITERATIONS = 300000


def load_pepper() -> str:
    """Load the server-wide pepper from ENCRYPTION_PEPPER.

    Falls back to the development pepper (with a warning) when unset,
    unless VAULT_ENVIRONMENT is ``production``.

    Returns:
        Pepper string.

    Raises:
        RuntimeError: If the pepper is missing in production.
    """
    pepper = os.environ.get("ENCRYPTION_PEPPER")
    if pepper:
        return pepper
    if os.environ.get("VAULT_ENVIRONMENT", "development").lower() == "production":
        raise RuntimeError(
            "ENCRYPTION_PEPPER environment variable is not set. "
            "Generate one with mink_vault.vault.generate_pepper()"
        )
    logger.warning(
        "ENCRYPTION_PEPPER not set; using the development pepper"
    )
    return DEV_PEPPER


def generate_pepper() -> str:
    """Generate a random 32-byte pepper and return it hex-encoded.

    This is a utility for operators to generate new peppers. Changing
    the pepper makes every existing record undecryptable.

    Returns:
        Hex-encoded 32-byte pepper string.
    """
    return secrets.token_hex(32)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    pepper: str = Field(default=DEV_PEPPER, min_length=1, repr=False)
    kdf_iterations: int = Field(default=PBKDF2_ITERATIONS)
    password_min_length: int = Field(default=12, ge=1)
    password_max_length: int = Field(default=128, ge=1, le=4096)
    argon2_memory_cost: int = Field(default=65536, ge=8)
    argon2_time_cost: int = Field(default=3, ge=1)
    argon2_parallelism: int = Field(default=4, ge=1, le=64)
    import_max_bytes: int = Field(default=10_000_000, ge=1)
    max_folder_depth: int = Field(default=256, ge=1, le=10_000)

    @field_validator("kdf_iterations")
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        """Keep key derivation deliberately expensive."""
        if v < MIN_PBKDF2_ITERATIONS:
            raise ValueError(
                f"kdf_iterations must be at least {MIN_PBKDF2_ITERATIONS}, got {v}"
            )
        return v

    @model_validator(mode="after")
    def validate_password_bounds(self) -> "VaultConfig":
        """Ensure the password length window is not empty."""
        if self.password_min_length > self.password_max_length:
            raise ValueError(
                f"password_min_length ({self.password_min_length}) exceeds "
                f"password_max_length ({self.password_max_length})"
            )
        return self

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        config = cls(
            pepper=load_pepper(),
            kdf_iterations=_env_int("VAULT_KDF_ITERATIONS", PBKDF2_ITERATIONS),
            password_min_length=_env_int("VAULT_PASSWORD_MIN_LENGTH", 12),
            password_max_length=_env_int("VAULT_PASSWORD_MAX_LENGTH", 128),
            argon2_memory_cost=_env_int("VAULT_ARGON2_MEMORY_COST", 65536),
            argon2_time_cost=_env_int("VAULT_ARGON2_TIME_COST", 3),
            argon2_parallelism=_env_int("VAULT_ARGON2_PARALLELISM", 4),
            import_max_bytes=_env_int("VAULT_IMPORT_MAX_BYTES", 10_000_000),
            max_folder_depth=_env_int("VAULT_MAX_FOLDER_DEPTH", 256),
        )
        logger.debug(
            "Vault config loaded: kdf_iterations=%d, max_folder_depth=%d",
            config.kdf_iterations, config.max_folder_depth,
        )
        return config
