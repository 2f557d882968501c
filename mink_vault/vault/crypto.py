"""
Vault Crypto Core — Key derivation and per-field AEAD encryption.

Implements the envelope layer of the vault:
- Key derivation: PBKDF2-HMAC-SHA256(password + pepper, user salt) → 32-byte key
- Field encryption: AES-256-GCM, 128-bit IV, 128-bit tag, hex encoded

Security Note:
    Never log plaintext, ciphertext, passwords or key material.
    One IV is shared by all fields of one record version, so a fresh
    random IV must be generated for every write. ``generate_iv()`` is the
    only IV source used by the record ciphers.
"""
import os
import secrets
import logging
from typing import NamedTuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import AuthenticationError, MalformedRecordError
from .config import PBKDF2_ITERATIONS, VaultConfig

logger = logging.getLogger("mink.vault")

KEY_LENGTH = 32  # AES-256
IV_SIZE = 16  # 128-bit IV
TAG_SIZE = 16  # 128-bit GCM tag
SALT_SIZE = 32


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> str:
    """Generate a random per-user encryption salt.

    Called at account creation and on every password change or reset.

    Returns:
        Hex-encoded 32-byte salt.
    """
    return secrets.token_hex(SALT_SIZE)


def derive_key(
    password: str,
    salt_hex: str,
    pepper: str,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Derive a 32-byte encryption key using PBKDF2-HMAC-SHA256.

    Deterministic for a given (password, salt, pepper, iterations). A wrong
    password still yields a key; it simply fails tag verification later.

    Args:
        password: User password in plaintext.
        salt_hex: Hex-encoded per-user salt from the user record.
        pepper: Server-wide secret appended to the password.
        iterations: PBKDF2 rounds.

    Returns:
        32-byte derived key.

    Raises:
        MalformedRecordError: If the stored salt is not valid hex.
    """
    try:
        salt = bytes.fromhex(salt_hex)
    except (TypeError, ValueError):
        raise MalformedRecordError("Encryption salt is not valid hex") from None
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive((password + pepper).encode("utf-8"))


class EncryptionKey:
    """Request-scoped derived key.

    Holds the key in a mutable buffer that is zeroed by ``wipe()``; use it
    as a context manager so the key never outlives the request or
    transaction that derived it::

        with EncryptionKey.derive(password, user["encryption_salt"], config) as key:
            row = encrypt_note(note, key)
    """

    __slots__ = ("_material",)

    def __init__(self, material: Union[bytes, bytearray]):
        if len(material) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes")
        self._material = bytearray(material)

    @classmethod
    def derive(cls, password: str, salt_hex: str, config: VaultConfig) -> "EncryptionKey":
        """Derive a key for one request using the configured pepper and rounds."""
        return cls(
            derive_key(password, salt_hex, config.pepper, config.kdf_iterations)
        )

    @property
    def material(self) -> bytearray:
        if self._material is None:
            raise RuntimeError("Encryption key has already been wiped")
        return self._material

    @property
    def wiped(self) -> bool:
        return self._material is None

    def wipe(self) -> None:
        """Zero the key buffer and drop it."""
        if self._material is not None:
            for i in range(len(self._material)):
                self._material[i] = 0
            self._material = None

    def __enter__(self) -> "EncryptionKey":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else "active"
        return f"<EncryptionKey [{state}]>"


KeyLike = Union[EncryptionKey, bytes, bytearray]


def _key_bytes(key: KeyLike) -> Union[bytes, bytearray]:
    if isinstance(key, EncryptionKey):
        return key.material
    return key


# ---------------------------------------------------------------------------
# Field encryption
# ---------------------------------------------------------------------------

class SealedField(NamedTuple):
    """One encrypted field: hex ciphertext plus its hex GCM tag."""

    ciphertext: str
    tag: str


def generate_iv() -> bytes:
    """Return a fresh random 16-byte IV for one record version."""
    return os.urandom(IV_SIZE)


def encrypt_field(plaintext: str, key: KeyLike, iv: bytes) -> SealedField:
    """Encrypt one string field with AES-256-GCM.

    Args:
        plaintext: Field value.
        key: Derived 32-byte key.
        iv: Record-version IV shared by every field of the record.

    Returns:
        SealedField with hex ciphertext and hex tag.
    """
    cipher = AESGCM(_key_bytes(key))
    sealed = cipher.encrypt(iv, str(plaintext).encode("utf-8"), None)
    return SealedField(
        ciphertext=sealed[:-TAG_SIZE].hex(),
        tag=sealed[-TAG_SIZE:].hex(),
    )


def decrypt_field(ciphertext_hex: str, tag_hex: str, key: KeyLike, iv: bytes) -> str:
    """Decrypt one string field sealed by ``encrypt_field``.

    Args:
        ciphertext_hex: Hex ciphertext.
        tag_hex: Hex GCM tag for this field.
        key: Derived 32-byte key.
        iv: Record-version IV.

    Returns:
        Decrypted plaintext.

    Raises:
        AuthenticationError: On tag mismatch (wrong key or tampered data).
        MalformedRecordError: If the stored hex is invalid or the tag is truncated.
    """
    try:
        ciphertext = bytes.fromhex(ciphertext_hex)
        tag = bytes.fromhex(tag_hex)
    except (TypeError, ValueError):
        raise MalformedRecordError("Encrypted field is not valid hex") from None
    if len(tag) != TAG_SIZE:
        raise MalformedRecordError(
            f"Authentication tag must be {TAG_SIZE} bytes, got {len(tag)}"
        )
    cipher = AESGCM(_key_bytes(key))
    try:
        plaintext = cipher.decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise AuthenticationError() from None
    return plaintext.decode("utf-8")


def parse_iv(iv_hex: str) -> bytes:
    """Decode a stored hex IV.

    Raises:
        MalformedRecordError: If the IV is not 16 bytes of valid hex.
    """
    try:
        iv = bytes.fromhex(iv_hex)
    except (TypeError, ValueError):
        raise MalformedRecordError("IV is not valid hex") from None
    if len(iv) != IV_SIZE:
        raise MalformedRecordError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    return iv
