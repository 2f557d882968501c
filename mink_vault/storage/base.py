"""
Storage contract for the vault.

Rows are plain mappings whose keys are the column names of the original
tables (``users``, ``notes``, ``bookmark_folders``, ``bookmarks``). Every
query that touches user content is scoped by ``user_id``.

Multi-row mutations run inside ``transaction()``::

    async with storage.transaction() as tx:
        await tx.update_note(user_id, note_id, fields)
        await tx.update_user(user_id, {...})

The transaction commits only when the block exits cleanly; any exception
rolls back every write made through ``tx``.
"""
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, Optional

Row = dict[str, Any]

# Sentinel for "no folder filter" (``None`` means "bookmarks at the root").
ALL_FOLDERS = object()

USER_COLUMNS = (
    "id", "username", "email", "password_hash", "encryption_salt",
    "role", "is_active", "created_at", "updated_at",
)
NOTE_COLUMNS = (
    "id", "user_id", "encrypted_title", "encrypted_content", "encrypted_color",
    "encrypted_labels", "iv", "auth_tag", "is_pinned", "is_archived",
    "created_at", "updated_at",
)
FOLDER_COLUMNS = (
    "id", "user_id", "parent_id", "encrypted_name", "iv", "auth_tag",
    "sort_order", "created_at", "updated_at",
)
BOOKMARK_COLUMNS = (
    "id", "user_id", "folder_id", "encrypted_title", "encrypted_url",
    "encrypted_description", "iv", "auth_tag", "is_favorite", "sort_order",
    "created_at", "updated_at",
)


class VaultStorage(ABC):
    """Keyed record store for users, notes, bookmark folders and bookmarks."""

    # -- transactions -------------------------------------------------------

    @abstractmethod
    def transaction(self) -> "AsyncIterator[VaultStorage]":
        """Async context manager yielding a storage bound to one transaction."""

    # -- users --------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[Row]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[Row]: ...

    @abstractmethod
    async def find_user(self, username: str, email: str) -> Optional[Row]:
        """Return a user whose username OR email matches."""

    @abstractmethod
    async def count_users(self) -> int: ...

    @abstractmethod
    async def list_users(self) -> list[Row]: ...

    @abstractmethod
    async def insert_user(self, row: Row) -> None: ...

    @abstractmethod
    async def update_user(self, user_id: str, fields: Row) -> bool: ...

    @abstractmethod
    async def lock_user(self, user_id: str) -> Optional[Row]:
        """Return the user row, locked until the current transaction ends."""

    # -- notes --------------------------------------------------------------

    @abstractmethod
    async def list_notes(self, user_id: str, archived: Optional[bool] = None) -> list[Row]:
        """List notes; active ones pinned-first, newest first."""

    @abstractmethod
    async def get_note(self, user_id: str, note_id: str) -> Optional[Row]: ...

    @abstractmethod
    async def insert_note(self, row: Row) -> None: ...

    @abstractmethod
    async def update_note(self, user_id: str, note_id: str, fields: Row) -> bool: ...

    @abstractmethod
    async def delete_note(self, user_id: str, note_id: str) -> bool: ...

    # -- folders ------------------------------------------------------------

    @abstractmethod
    async def list_folders(self, user_id: str) -> list[Row]: ...

    @abstractmethod
    async def get_folder(self, user_id: str, folder_id: str) -> Optional[Row]: ...

    @abstractmethod
    async def insert_folder(self, row: Row) -> None: ...

    @abstractmethod
    async def update_folder(self, user_id: str, folder_id: str, fields: Row) -> bool: ...

    @abstractmethod
    async def delete_folder(self, user_id: str, folder_id: str) -> bool:
        """Delete one folder and the bookmarks filed directly in it."""

    # -- bookmarks ----------------------------------------------------------

    @abstractmethod
    async def list_bookmarks(
        self,
        user_id: str,
        folder_id: Any = ALL_FOLDERS,
        favorites_only: bool = False,
    ) -> list[Row]: ...

    @abstractmethod
    async def get_bookmark(self, user_id: str, bookmark_id: str) -> Optional[Row]: ...

    @abstractmethod
    async def insert_bookmark(self, row: Row) -> None: ...

    @abstractmethod
    async def update_bookmark(self, user_id: str, bookmark_id: str, fields: Row) -> bool: ...

    @abstractmethod
    async def delete_bookmark(self, user_id: str, bookmark_id: str) -> bool: ...

    # -- bulk ---------------------------------------------------------------

    @abstractmethod
    async def clear_user_data(self, user_id: str) -> dict[str, int]:
        """Delete every note, bookmark and folder of one user."""

    @abstractmethod
    async def clear_all_data(self) -> dict[str, int]:
        """Delete every note, bookmark and folder of every user."""
