"""
Atomic unit helper shared by every multi-row mutation.

``atomic()`` opens one storage transaction; the commit is the last thing
that happens when the block exits. Vault errors propagate unchanged, any
other failure is reported as a single ``TransactionError``.
"""
import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Optional

from ..exceptions import TransactionError, VaultError
from ..storage import VaultStorage

logger = logging.getLogger("mink.vault")


def new_id() -> str:
    return str(uuid.uuid4())


def epoch_now() -> int:
    return int(time.time())


@asynccontextmanager
async def atomic(storage: VaultStorage, operation: str, user_id: Optional[str] = None):
    """Run a block inside one storage transaction.

    Args:
        storage: Storage handle.
        operation: Operation name used in logs and the failure message.
        user_id: Owner of the rows being changed, for logging.

    Raises:
        TransactionError: If the block fails with a non-vault exception.
    """
    try:
        async with storage.transaction() as tx:
            yield tx
    except VaultError:
        logger.info("%s rolled back for user=%s", operation, user_id)
        raise
    except Exception as err:
        logger.error(
            "%s failed for user=%s: %s", operation, user_id, type(err).__name__,
        )
        raise TransactionError(
            f"{operation} failed. No changes were made."
        ) from err
