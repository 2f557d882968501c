"""Mink Vault — per-user encrypted notes, bookmarks and folders.

Security Note (Threat Model):
    Records are encrypted at rest with a key derived from the user's
    password, an installation pepper and a per-user salt. The key exists
    only in process memory for the duration of one request and is zeroed
    afterwards; decrypted values still live in process memory while in
    use. A memory dump of the application process during a request can
    expose them. This is an accepted limitation.
"""

from .session_vault import UserVault
from .key_rotation import change_password
from .accounts import (
    admin_reset_password,
    authenticate,
    clear_all_data,
    clear_user_data,
    list_accounts,
    register_user,
    update_account,
)
from .config import VaultConfig, load_pepper, generate_pepper
from .crypto import EncryptionKey

__all__ = [
    "UserVault",
    "change_password",
    "admin_reset_password",
    "authenticate",
    "clear_all_data",
    "clear_user_data",
    "list_accounts",
    "register_user",
    "update_account",
    "VaultConfig",
    "load_pepper",
    "generate_pepper",
    "EncryptionKey",
]
