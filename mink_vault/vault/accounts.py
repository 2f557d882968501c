"""
User accounts — registration, login checks and admin operations.

Security Note:
    ``admin_reset_password`` replaces both the password hash and the
    encryption salt without re-encrypting anything. Every record the user
    owned becomes permanently undecryptable; read paths then show per-item
    error markers. This is the intended hard-reset behaviour.
"""
import logging
import secrets
from typing import Any, Optional

from ..exceptions import ConflictError, CredentialsError, NotFoundError
from ..storage import Row, VaultStorage
from .config import VaultConfig
from .crypto import generate_salt
from .models import Account, AccountUpdate, RegistrationInput, validate
from .passwords import check_password_policy, hash_password, verify_password
from .transactions import atomic, epoch_now, new_id

logger = logging.getLogger("mink.vault")

HARD_RESET_WARNING = (
    "Password reset. Existing notes, bookmarks and folders of this user "
    "can no longer be decrypted."
)

# argon2 parameters -> hash of a random secret, verified against when the
# username is unknown so both paths cost one hash verification.
_DUMMY_HASHES: dict[tuple[int, int, int], str] = {}


def _dummy_hash(config: VaultConfig) -> str:
    params = (
        config.argon2_memory_cost,
        config.argon2_time_cost,
        config.argon2_parallelism,
    )
    if params not in _DUMMY_HASHES:
        _DUMMY_HASHES[params] = hash_password(secrets.token_hex(16), config)
    return _DUMMY_HASHES[params]


def account_view(row: Row) -> Account:
    return Account(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        role=row.get("role") or "user",
        is_active=bool(row.get("is_active", True)),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


async def register_user(
    storage: VaultStorage,
    config: VaultConfig,
    username: str,
    email: str,
    password: str,
    role: Optional[str] = None,
    now: Optional[int] = None,
) -> Account:
    """Create an account with a fresh encryption salt.

    The first account of an empty store becomes ``admin``; later ones
    default to ``user`` unless an explicit ``role`` is given (admin-created
    accounts).

    Args:
        storage: Storage handle.
        config: Vault configuration (password policy, argon2 parameters).
        username: 3-32 characters of ``[A-Za-z0-9_-]``.
        email: Contact address, unique per store.
        password: Login and encryption password.
        role: Optional explicit role.
        now: Epoch seconds for the timestamps.

    Returns:
        The new Account.

    Raises:
        ValidationError: Bad username, email or password.
        ConflictError: Username or email already taken.
    """
    data: dict[str, Any] = {"username": username, "email": email}
    if role is not None:
        data["role"] = role
    account = validate(RegistrationInput, data)
    check_password_policy(password, config)
    now = epoch_now() if now is None else now

    async with atomic(storage, "Registration") as tx:
        if await tx.find_user(account.username, account.email):
            raise ConflictError("Username or email already taken")
        if role is None and await tx.count_users() == 0:
            assigned = "admin"
        else:
            assigned = account.role
        row = {
            "id": new_id(),
            "username": account.username,
            "email": account.email,
            "password_hash": hash_password(password, config),
            "encryption_salt": generate_salt(),
            "role": assigned,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        await tx.insert_user(row)

    logger.info("Registered user=%s role=%s", row["id"], assigned)
    return account_view(row)


async def authenticate(
    storage: VaultStorage,
    config: VaultConfig,
    username: str,
    password: str,
) -> Account:
    """Check a username/password pair.

    Unknown and inactive users are verified against a dummy hash, so the
    failure takes as long as a wrong password for a real account.

    Raises:
        CredentialsError: Unknown user, inactive user or wrong password.
    """
    user = await storage.get_user_by_username(username)
    if user is None or not user.get("is_active"):
        verify_password(_dummy_hash(config), password, config)
        raise CredentialsError("Invalid credentials")
    if not verify_password(user["password_hash"], password, config):
        logger.info("Failed login for user=%s", user["id"])
        raise CredentialsError("Invalid credentials")
    return account_view(user)


async def load_active_user(storage: VaultStorage, user_id: str) -> Row:
    """Fetch a user row that is allowed to act.

    Raises:
        NotFoundError: Missing or deactivated user.
    """
    user = await storage.get_user(user_id)
    if user is None or not user.get("is_active"):
        raise NotFoundError("User not found")
    return user


async def verify_user_password(
    storage: VaultStorage,
    config: VaultConfig,
    user_id: str,
    password: str,
) -> Row:
    """Re-check the password of an active user and return the row.

    Raises:
        NotFoundError: Missing or deactivated user.
        CredentialsError: Wrong password.
    """
    user = await load_active_user(storage, user_id)
    if not verify_password(user["password_hash"], password, config):
        raise CredentialsError("Incorrect password")
    return user


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

async def list_accounts(storage: VaultStorage) -> list[Account]:
    return [account_view(row) for row in await storage.list_users()]


async def update_account(
    storage: VaultStorage,
    user_id: str,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    now: Optional[int] = None,
) -> Account:
    """Change the role and/or active flag of an account.

    Raises:
        ValidationError: Unknown role.
        NotFoundError: No such user.
    """
    changes = validate(AccountUpdate, {"role": role, "is_active": is_active})
    fields = changes.model_dump(exclude_none=True)
    fields["updated_at"] = epoch_now() if now is None else now
    async with atomic(storage, "Account update", user_id) as tx:
        if not await tx.update_user(user_id, fields):
            raise NotFoundError("User not found")
        row = await tx.get_user(user_id)
    logger.info("Updated account user=%s: %s", user_id, sorted(fields))
    return account_view(row)


async def admin_reset_password(
    storage: VaultStorage,
    config: VaultConfig,
    user_id: str,
    new_password: str,
    now: Optional[int] = None,
) -> dict:
    """Force a new password without the old one (hard reset).

    Writes a new hash and a new salt and re-encrypts nothing.

    Returns:
        ``{"success": True, "warning": ...}``.

    Raises:
        ValidationError: New password fails the policy.
        NotFoundError: No such user.
    """
    check_password_policy(new_password, config)
    now = epoch_now() if now is None else now
    fields = {
        "password_hash": hash_password(new_password, config),
        "encryption_salt": generate_salt(),
        "updated_at": now,
    }
    async with atomic(storage, "Password reset", user_id) as tx:
        if not await tx.update_user(user_id, fields):
            raise NotFoundError("User not found")
    logger.warning("Admin hard reset of password for user=%s", user_id)
    return {"success": True, "warning": HARD_RESET_WARNING}


async def clear_user_data(storage: VaultStorage, user_id: str) -> dict[str, int]:
    """Delete every note, bookmark and folder of one user (account kept).

    Returns:
        Deleted counts: ``{"notes", "bookmarks", "folders"}``.
    """
    async with atomic(storage, "Clear data", user_id) as tx:
        if await tx.get_user(user_id) is None:
            raise NotFoundError("User not found")
        deleted = await tx.clear_user_data(user_id)
    logger.warning("Cleared data of user=%s: %s", user_id, deleted)
    return deleted


async def clear_all_data(storage: VaultStorage) -> dict[str, int]:
    """Delete every note, bookmark and folder of every user (accounts kept)."""
    async with atomic(storage, "Clear all data") as tx:
        deleted = await tx.clear_all_data()
    logger.warning("Cleared data of all users: %s", deleted)
    return deleted
