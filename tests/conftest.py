"""Shared fixtures: cheap argon2 parameters and an in-memory store."""
import pytest

from mink_vault.storage import MemoryStorage
from mink_vault.vault import UserVault, VaultConfig, register_user

PASSWORD = "correct horse battery"
OTHER_PASSWORD = "another long passphrase"


@pytest.fixture
def config():
    """Vault configuration with fast argon2 settings for tests."""
    return VaultConfig(
        pepper="test-pepper",
        argon2_memory_cost=1024,
        argon2_time_cost=1,
        argon2_parallelism=1,
    )


@pytest.fixture
def storage():
    """Fresh in-memory storage."""
    return MemoryStorage()


@pytest.fixture
async def user(storage, config):
    """Registered user (the first account, hence admin)."""
    return await register_user(
        storage, config, "alice", "alice@example.com", PASSWORD, now=1000,
    )


@pytest.fixture
async def vault(storage, config, user, password):
    """Vault of ``user`` opened with the correct password."""
    async with UserVault.open(storage, config, user.id, password) as opened:
        yield opened


@pytest.fixture
def password():
    """Password of ``user``."""
    return PASSWORD
