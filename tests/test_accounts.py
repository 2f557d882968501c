"""
Tests for accounts: registration, authentication and admin operations.
"""
import pytest

from mink_vault.exceptions import ConflictError, CredentialsError, NotFoundError, ValidationError
from mink_vault.vault import (
    authenticate,
    clear_all_data,
    clear_user_data,
    list_accounts,
    register_user,
    update_account,
)
from mink_vault.vault.passwords import check_password_policy, hash_password, verify_password

BOB_PASSWORD = "bob has a long password"


# --- Test Registration ---

class TestRegister:
    """Tests for register_user."""

    async def test_first_user_is_admin(self, user):
        """The first account of an empty store is an admin."""
        assert user.role == "admin"
        assert user.is_active is True

    async def test_second_user_is_regular(self, storage, config, user):
        """Later accounts default to the user role."""
        bob = await register_user(storage, config, "bob", "bob@example.com", BOB_PASSWORD)
        assert bob.role == "user"

    async def test_explicit_role(self, storage, config, user):
        """Admins can create accounts with an explicit role."""
        carol = await register_user(
            storage, config, "carol", "carol@example.com", BOB_PASSWORD, role="admin",
        )
        assert carol.role == "admin"

    async def test_credentials_stored(self, storage, config, user, password):
        """The row carries an argon2id hash and a 32-byte hex salt."""
        row = await storage.get_user(user.id)
        assert row["password_hash"].startswith("$argon2id$")
        assert len(bytes.fromhex(row["encryption_salt"])) == 32
        assert verify_password(row["password_hash"], password, config)
        assert "password_hash" not in user.model_dump()

    @pytest.mark.parametrize("username, email", [
        ("alice", "other@example.com"),
        ("someone", "alice@example.com"),
    ])
    async def test_duplicates(self, storage, config, user, username, email):
        """Usernames and emails are unique."""
        with pytest.raises(ConflictError):
            await register_user(storage, config, username, email, BOB_PASSWORD)

    @pytest.mark.parametrize("username, email, password", [
        ("ab", "ab@example.com", BOB_PASSWORD),
        ("has space", "x@example.com", BOB_PASSWORD),
        ("x" * 33, "x@example.com", BOB_PASSWORD),
        ("valid_name", "not-an-email", BOB_PASSWORD),
        ("valid_name", "v@example.com", "short"),
        ("valid_name", "v@example.com", "x" * 129),
    ])
    async def test_invalid_input(self, storage, config, username, email, password):
        """Bad usernames, emails and passwords are rejected."""
        with pytest.raises(ValidationError):
            await register_user(storage, config, username, email, password)
        assert await storage.count_users() == 0


# --- Test Authentication ---

class TestAuthenticate:
    """Tests for authenticate."""

    async def test_success(self, storage, config, user, password):
        """Correct credentials return the account."""
        account = await authenticate(storage, config, "alice", password)
        assert account.id == user.id

    async def test_wrong_password(self, storage, config, user):
        """A wrong password is rejected."""
        with pytest.raises(CredentialsError):
            await authenticate(storage, config, "alice", "wrong password!!")

    async def test_unknown_user(self, storage, config):
        """Unknown users get the same error."""
        with pytest.raises(CredentialsError):
            await authenticate(storage, config, "ghost", "whatever password")

    async def test_inactive_user(self, storage, config, user, password):
        """Deactivated users cannot log in."""
        await update_account(storage, user.id, is_active=False)
        with pytest.raises(CredentialsError):
            await authenticate(storage, config, "alice", password)


# --- Test Administration ---

class TestAdministration:
    """Tests for admin account operations."""

    async def test_list_and_update(self, storage, config, user):
        """Roles and active flags can be changed."""
        bob = await register_user(storage, config, "bob", "bob@example.com", BOB_PASSWORD)
        updated = await update_account(storage, bob.id, role="admin", now=2000)
        assert updated.role == "admin"
        assert updated.updated_at == 2000
        assert [a.username for a in await list_accounts(storage)] == ["alice", "bob"]

    async def test_update_unknown(self, storage):
        """Updating a missing account is NotFound."""
        with pytest.raises(NotFoundError):
            await update_account(storage, "nope", is_active=False)

    async def test_invalid_role(self, storage, user):
        """Only admin and user roles exist."""
        with pytest.raises(ValidationError):
            await update_account(storage, user.id, role="root")

    async def test_clear_user_and_all(self, storage, config, vault, user):
        """Bulk clears return per-table counts and keep the accounts."""
        await vault.create_note({"title": "n"})
        await vault.create_bookmark({"url": "https://x.example"})
        assert await clear_user_data(storage, user.id) == {"notes": 1, "bookmarks": 1, "folders": 0}

        await vault.create_folder({"name": "F"})
        assert await clear_all_data(storage) == {"notes": 0, "bookmarks": 0, "folders": 1}
        assert await storage.count_users() == 1

    async def test_clear_unknown_user(self, storage):
        """Clearing a missing user's data is NotFound."""
        with pytest.raises(NotFoundError):
            await clear_user_data(storage, "nope")


# --- Test Password Helpers ---

class TestPasswordHelpers:
    """Tests for hashing and policy helpers."""

    def test_policy_window(self, config):
        """Passwords must be 12..128 characters by default."""
        check_password_policy("x" * 12, config)
        check_password_policy("x" * 128, config)
        with pytest.raises(ValidationError):
            check_password_policy("x" * 11, config)

    def test_garbage_hash(self, config):
        """Unparsable hashes never verify."""
        assert verify_password("not-a-hash", "anything", config) is False

    def test_hash_differs_per_call(self, config):
        """Hashes are salted."""
        assert hash_password("same password", config) != hash_password("same password", config)
