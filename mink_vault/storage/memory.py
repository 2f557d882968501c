"""
In-process storage backend.

Keeps every table as an insertion-ordered dict of rows. ``transaction()``
snapshots all tables on entry and restores the snapshot if the block
raises, which gives the same all-or-nothing behaviour as a database
transaction for a single process.
"""
import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from .base import (
    ALL_FOLDERS,
    BOOKMARK_COLUMNS,
    FOLDER_COLUMNS,
    NOTE_COLUMNS,
    USER_COLUMNS,
    Row,
    VaultStorage,
)

logger = logging.getLogger("mink.storage")

_TABLE_COLUMNS = {
    "users": USER_COLUMNS,
    "notes": NOTE_COLUMNS,
    "bookmark_folders": FOLDER_COLUMNS,
    "bookmarks": BOOKMARK_COLUMNS,
}


class MemoryStorage(VaultStorage):
    """Dict-backed VaultStorage."""

    def __init__(self):
        self._tables: dict[str, dict[str, Row]] = {
            name: {} for name in _TABLE_COLUMNS
        }
        self._depth = 0

    @asynccontextmanager
    async def transaction(self):
        if self._depth:
            # nested blocks join the outer transaction
            yield self
            return
        snapshot = copy.deepcopy(self._tables)
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._tables = snapshot
            logger.debug("Memory transaction rolled back")
            raise
        finally:
            self._depth -= 1

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _insert(self, table: str, row: Row) -> None:
        columns = _TABLE_COLUMNS[table]
        unknown = set(row) - set(columns)
        if unknown:
            raise KeyError(f"Unknown column(s) for {table}: {sorted(unknown)}")
        if row["id"] in self._tables[table]:
            raise KeyError(f"Duplicate id in {table}: {row['id']}")
        record = {c: None for c in columns}
        record.update(row)
        self._tables[table][row["id"]] = record

    def _get(self, table: str, user_id: str, row_id: str) -> Optional[Row]:
        row = self._tables[table].get(row_id)
        if row is None or row["user_id"] != user_id:
            return None
        return dict(row)

    def _update(self, table: str, user_id: str, row_id: str, fields: Row) -> bool:
        unknown = set(fields) - set(_TABLE_COLUMNS[table])
        if unknown:
            raise KeyError(f"Unknown column(s) for {table}: {sorted(unknown)}")
        row = self._tables[table].get(row_id)
        if row is None or row["user_id"] != user_id:
            return False
        row.update(fields)
        return True

    def _delete(self, table: str, user_id: str, row_id: str) -> bool:
        row = self._tables[table].get(row_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self._tables[table][row_id]
        return True

    def _rows(self, table: str, user_id: str) -> list[Row]:
        return [
            dict(r) for r in self._tables[table].values() if r["user_id"] == user_id
        ]

    def _delete_where(self, table: str, predicate) -> int:
        doomed = [k for k, r in self._tables[table].items() if predicate(r)]
        for k in doomed:
            del self._tables[table][k]
        return len(doomed)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[Row]:
        row = self._tables["users"].get(user_id)
        return dict(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[Row]:
        for row in self._tables["users"].values():
            if row["username"] == username:
                return dict(row)
        return None

    async def find_user(self, username: str, email: str) -> Optional[Row]:
        for row in self._tables["users"].values():
            if row["username"] == username or row["email"] == email:
                return dict(row)
        return None

    async def count_users(self) -> int:
        return len(self._tables["users"])

    async def list_users(self) -> list[Row]:
        users = [dict(r) for r in self._tables["users"].values()]
        users.sort(key=lambda r: r["created_at"] or 0)
        return users

    async def insert_user(self, row: Row) -> None:
        if await self.find_user(row["username"], row["email"]):
            raise KeyError("Duplicate username or email")
        record = {c: None for c in USER_COLUMNS}
        record.update(row)
        self._tables["users"][row["id"]] = record

    async def update_user(self, user_id: str, fields: Row) -> bool:
        row = self._tables["users"].get(user_id)
        if row is None:
            return False
        row.update(fields)
        return True

    async def lock_user(self, user_id: str) -> Optional[Row]:
        # single process: nothing to lock
        return await self.get_user(user_id)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def list_notes(self, user_id: str, archived: Optional[bool] = None) -> list[Row]:
        rows = self._rows("notes", user_id)
        if archived is not None:
            rows = [r for r in rows if bool(r["is_archived"]) == archived]
        rows.sort(key=lambda r: r["updated_at"] or 0, reverse=True)
        if archived is False:
            rows.sort(key=lambda r: bool(r["is_pinned"]), reverse=True)
        return rows

    async def get_note(self, user_id: str, note_id: str) -> Optional[Row]:
        return self._get("notes", user_id, note_id)

    async def insert_note(self, row: Row) -> None:
        self._insert("notes", row)

    async def update_note(self, user_id: str, note_id: str, fields: Row) -> bool:
        return self._update("notes", user_id, note_id, fields)

    async def delete_note(self, user_id: str, note_id: str) -> bool:
        return self._delete("notes", user_id, note_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def list_folders(self, user_id: str) -> list[Row]:
        rows = self._rows("bookmark_folders", user_id)
        rows.sort(key=lambda r: (r["sort_order"] or 0, r["created_at"] or 0))
        return rows

    async def get_folder(self, user_id: str, folder_id: str) -> Optional[Row]:
        return self._get("bookmark_folders", user_id, folder_id)

    async def insert_folder(self, row: Row) -> None:
        self._insert("bookmark_folders", row)

    async def update_folder(self, user_id: str, folder_id: str, fields: Row) -> bool:
        return self._update("bookmark_folders", user_id, folder_id, fields)

    async def delete_folder(self, user_id: str, folder_id: str) -> bool:
        self._delete_where(
            "bookmarks",
            lambda r: r["user_id"] == user_id and r["folder_id"] == folder_id,
        )
        return self._delete("bookmark_folders", user_id, folder_id)

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    async def list_bookmarks(
        self,
        user_id: str,
        folder_id: Any = ALL_FOLDERS,
        favorites_only: bool = False,
    ) -> list[Row]:
        rows = self._rows("bookmarks", user_id)
        if favorites_only:
            rows = [r for r in rows if r["is_favorite"]]
            rows.sort(key=lambda r: r["updated_at"] or 0, reverse=True)
            return rows
        if folder_id is ALL_FOLDERS:
            rows.sort(key=lambda r: r["updated_at"] or 0, reverse=True)
        else:
            rows = [r for r in rows if r["folder_id"] == folder_id]
            rows.sort(key=lambda r: r["created_at"] or 0)
        rows.sort(key=lambda r: r["sort_order"] or 0)
        return rows

    async def get_bookmark(self, user_id: str, bookmark_id: str) -> Optional[Row]:
        return self._get("bookmarks", user_id, bookmark_id)

    async def insert_bookmark(self, row: Row) -> None:
        self._insert("bookmarks", row)

    async def update_bookmark(self, user_id: str, bookmark_id: str, fields: Row) -> bool:
        return self._update("bookmarks", user_id, bookmark_id, fields)

    async def delete_bookmark(self, user_id: str, bookmark_id: str) -> bool:
        return self._delete("bookmarks", user_id, bookmark_id)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def clear_user_data(self, user_id: str) -> dict[str, int]:
        def owned(r):
            return r["user_id"] == user_id
        return {
            "notes": self._delete_where("notes", owned),
            "bookmarks": self._delete_where("bookmarks", owned),
            "folders": self._delete_where("bookmark_folders", owned),
        }

    async def clear_all_data(self) -> dict[str, int]:
        def every(r):
            return True
        return {
            "notes": self._delete_where("notes", every),
            "bookmarks": self._delete_where("bookmarks", every),
            "folders": self._delete_where("bookmark_folders", every),
        }
