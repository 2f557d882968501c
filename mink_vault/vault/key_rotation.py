"""
Vault Key Rotation — re-encryption of a user's records on password change.

The encryption key is derived from the password, so a new password means a
new key. Every note, bookmark and folder the user owns is decrypted with
the old key and sealed again with the new one (fresh IV per record), then
all rows and the new credentials are written in a single transaction.

Either every record moves to the new key together with the new hash and
salt, or nothing changes. A partial rotation would leave records under a
key that can no longer be derived.

Security Note:
    Plaintext exists in memory only between decrypt and re-encrypt.
    Never log plaintext, ciphertext or key material; only record kinds,
    record ids and user ids.
"""
import logging
from typing import Optional

from ..exceptions import (
    AuthenticationError,
    ConflictError,
    MalformedRecordError,
    ReEncryptionError,
    ValidationError,
)
from ..storage import VaultStorage
from .accounts import verify_user_password
from .config import VaultConfig
from .crypto import EncryptionKey, generate_salt
from .passwords import check_password_policy, hash_password
from .records import BOOKMARK_CIPHER, FOLDER_CIPHER, NOTE_CIPHER, RecordCipher
from .transactions import atomic, epoch_now

logger = logging.getLogger("mink.vault")

ROTATED_CIPHERS = (NOTE_CIPHER, BOOKMARK_CIPHER, FOLDER_CIPHER)


async def _load_rows(storage: VaultStorage, cipher: RecordCipher, user_id: str) -> list:
    if cipher is NOTE_CIPHER:
        return await storage.list_notes(user_id)
    if cipher is BOOKMARK_CIPHER:
        return await storage.list_bookmarks(user_id)
    return await storage.list_folders(user_id)


async def _write_row(
    tx: VaultStorage,
    cipher: RecordCipher,
    user_id: str,
    record_id: str,
    fields: dict,
) -> None:
    if cipher is NOTE_CIPHER:
        updated = await tx.update_note(user_id, record_id, fields)
    elif cipher is BOOKMARK_CIPHER:
        updated = await tx.update_bookmark(user_id, record_id, fields)
    else:
        updated = await tx.update_folder(user_id, record_id, fields)
    if not updated:
        raise ReEncryptionError(cipher.kind, record_id, "record disappeared")


async def change_password(
    storage: VaultStorage,
    config: VaultConfig,
    user_id: str,
    current_password: str,
    new_password: str,
    confirm_password: Optional[str] = None,
    now: Optional[int] = None,
) -> dict:
    """Change a user's password and re-encrypt every record they own.

    Args:
        storage: Storage handle.
        config: Vault configuration.
        user_id: User changing the password.
        current_password: Must verify against the stored hash.
        new_password: Replacement password; must differ from the current
            one and pass the password policy.
        confirm_password: When given, must equal ``new_password``.
        now: Epoch seconds written to ``updated_at``.

    Returns:
        Stats dict with keys: reencrypted, notes, bookmarks, folders.

    Raises:
        CredentialsError: ``current_password`` is wrong.
        ConflictError: The credentials changed while this call was running.
        ValidationError: Unchanged, unconfirmed or too weak new password.
        ReEncryptionError: A record did not decrypt under the old key;
            nothing was written.
        TransactionError: A write failed; nothing was persisted.
    """
    user = await verify_user_password(storage, config, user_id, current_password)
    if confirm_password is not None and new_password != confirm_password:
        raise ValidationError("Passwords do not match")
    if new_password == current_password:
        raise ValidationError(
            "New password must be different from current password"
        )
    check_password_policy(new_password, config)
    now = epoch_now() if now is None else now

    new_salt = generate_salt()
    new_hash = hash_password(new_password, config)
    stats = {"reencrypted": 0, "notes": 0, "bookmarks": 0, "folders": 0}

    logger.info("Starting key rotation for user=%s", user_id)

    with EncryptionKey.derive(current_password, user["encryption_salt"], config) as old_key, \
            EncryptionKey.derive(new_password, new_salt, config) as new_key:
        async with atomic(storage, "Password change", user_id) as tx:
            # The user row stays locked until commit; rows are read through
            # the same transaction they are written in.
            locked = await tx.lock_user(user_id)
            if locked is None or locked["encryption_salt"] != user["encryption_salt"]:
                raise ConflictError("Credentials changed during password change")

            # Everything is re-encrypted in memory before the first write.
            pending: list[tuple[RecordCipher, str, dict]] = []
            for cipher in ROTATED_CIPHERS:
                for row in await _load_rows(tx, cipher, user_id):
                    try:
                        plain = cipher.decrypt(row, old_key)
                    except (AuthenticationError, MalformedRecordError) as err:
                        logger.error(
                            "Cannot re-encrypt %s id=%s for user=%s: %s",
                            cipher.kind, row["id"], user_id, type(err).__name__,
                        )
                        raise ReEncryptionError(
                            cipher.kind, row["id"], type(err).__name__,
                        ) from err
                    pending.append((cipher, row["id"], cipher.encrypt(plain, new_key)))

            for cipher, record_id, sealed in pending:
                await _write_row(
                    tx, cipher, user_id, record_id, {**sealed, "updated_at": now},
                )
                stats[f"{cipher.kind}s"] += 1
                stats["reencrypted"] += 1
            await tx.update_user(user_id, {
                "password_hash": new_hash,
                "encryption_salt": new_salt,
                "updated_at": now,
            })

    logger.info("Key rotation complete for user=%s: %s", user_id, stats)
    return stats
