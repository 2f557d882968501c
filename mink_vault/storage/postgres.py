"""
PostgreSQL storage backend (asyncpg).

``PostgresStorage(pool)`` acquires a connection per call. Inside
``transaction()`` the yielded storage is bound to one connection whose
transaction is committed as the last step of the block, or rolled back if
the block raises for any reason (including cancellation).

Security Note:
    Only ciphertext, IVs and tags are written to these tables. Never log
    row contents; log ids and counts only.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg

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

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT UNIQUE NOT NULL,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    encryption_salt TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at BIGINT NOT NULL,
    updated_at BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    encrypted_title TEXT NOT NULL,
    encrypted_content TEXT NOT NULL,
    encrypted_color TEXT NOT NULL,
    encrypted_labels TEXT NOT NULL,
    iv TEXT NOT NULL,
    auth_tag TEXT NOT NULL,
    is_pinned BOOLEAN NOT NULL DEFAULT FALSE,
    is_archived BOOLEAN NOT NULL DEFAULT FALSE,
    created_at BIGINT NOT NULL,
    updated_at BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS bookmark_folders (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    parent_id TEXT REFERENCES bookmark_folders(id) ON DELETE CASCADE,
    encrypted_name TEXT NOT NULL,
    iv TEXT NOT NULL,
    auth_tag TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at BIGINT NOT NULL,
    updated_at BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS bookmarks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    folder_id TEXT REFERENCES bookmark_folders(id) ON DELETE SET NULL,
    encrypted_title TEXT NOT NULL,
    encrypted_url TEXT NOT NULL,
    encrypted_description TEXT NOT NULL,
    iv TEXT NOT NULL,
    auth_tag TEXT NOT NULL,
    is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at BIGINT NOT NULL,
    updated_at BIGINT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_user_id ON notes(user_id);
CREATE INDEX IF NOT EXISTS idx_notes_updated ON notes(user_id, updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_bookmark_folders_user ON bookmark_folders(user_id);
CREATE INDEX IF NOT EXISTS idx_bookmark_folders_parent ON bookmark_folders(parent_id);
CREATE INDEX IF NOT EXISTS idx_bookmarks_user ON bookmarks(user_id);
CREATE INDEX IF NOT EXISTS idx_bookmarks_folder ON bookmarks(folder_id);
"""

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_USER = "SELECT * FROM users WHERE id = $1"
_LOCK_USER = "SELECT * FROM users WHERE id = $1 FOR UPDATE"
_SELECT_USER_BY_NAME = "SELECT * FROM users WHERE username = $1"
_SELECT_USER_BY_NAME_OR_EMAIL = (
    "SELECT * FROM users WHERE username = $1 OR email = $2 LIMIT 1"
)
_COUNT_USERS = "SELECT COUNT(*) FROM users"
_SELECT_USERS = "SELECT * FROM users ORDER BY created_at ASC"

_SELECT_NOTES = """
SELECT * FROM notes WHERE user_id = $1
ORDER BY updated_at DESC
"""
_SELECT_ACTIVE_NOTES = """
SELECT * FROM notes WHERE user_id = $1 AND is_archived = FALSE
ORDER BY is_pinned DESC, updated_at DESC
"""
_SELECT_ARCHIVED_NOTES = """
SELECT * FROM notes WHERE user_id = $1 AND is_archived = TRUE
ORDER BY updated_at DESC
"""

_SELECT_FOLDERS = """
SELECT * FROM bookmark_folders WHERE user_id = $1
ORDER BY sort_order ASC, created_at ASC
"""
_DELETE_FOLDER_BOOKMARKS = "DELETE FROM bookmarks WHERE folder_id = $1 AND user_id = $2"

_SELECT_BOOKMARKS = """
SELECT * FROM bookmarks WHERE user_id = $1
ORDER BY sort_order ASC, updated_at DESC
"""
_SELECT_ROOT_BOOKMARKS = """
SELECT * FROM bookmarks WHERE user_id = $1 AND folder_id IS NULL
ORDER BY sort_order ASC, created_at ASC
"""
_SELECT_FOLDER_BOOKMARKS = """
SELECT * FROM bookmarks WHERE user_id = $1 AND folder_id = $2
ORDER BY sort_order ASC, created_at ASC
"""
_SELECT_FAVORITES = """
SELECT * FROM bookmarks WHERE user_id = $1 AND is_favorite = TRUE
ORDER BY updated_at DESC
"""

_TABLE_COLUMNS = {
    "users": USER_COLUMNS,
    "notes": NOTE_COLUMNS,
    "bookmark_folders": FOLDER_COLUMNS,
    "bookmarks": BOOKMARK_COLUMNS,
}


def _rowcount(status: str) -> int:
    """Parse the row count from an asyncpg status string ('DELETE 3')."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


def _check_columns(table: str, columns) -> None:
    unknown = set(columns) - set(_TABLE_COLUMNS[table])
    if unknown:
        raise KeyError(f"Unknown column(s) for {table}: {sorted(unknown)}")


class PostgresStorage(VaultStorage):
    """asyncpg-backed VaultStorage."""

    def __init__(self, pool: Any, conn: Any = None):
        self._pool = pool
        self._conn = conn

    @classmethod
    async def connect(cls, dsn: str, **pool_kwargs) -> "PostgresStorage":
        """Create an asyncpg pool for ``dsn`` and wrap it."""
        pool = await asyncpg.create_pool(dsn, **pool_kwargs)
        return cls(pool)

    async def close(self) -> None:
        await self._pool.close()

    @asynccontextmanager
    async def _acquire(self):
        if self._conn is not None:
            yield self._conn
        else:
            async with self._pool.acquire() as conn:
                yield conn

    @asynccontextmanager
    async def transaction(self):
        if self._conn is not None:
            yield self
            return
        async with self._pool.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                yield PostgresStorage(self._pool, conn=conn)
            except BaseException:
                await tx.rollback()
                raise
            await tx.commit()

    async def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        async with self._acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Vault schema ensured")

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    async def _fetchrow(self, sql: str, *args) -> Optional[Row]:
        async with self._acquire() as conn:
            row = await conn.fetchrow(sql, *args)
        return dict(row) if row is not None else None

    async def _fetch(self, sql: str, *args) -> list[Row]:
        async with self._acquire() as conn:
            rows = await conn.fetch(sql, *args)
        return [dict(r) for r in rows]

    async def _execute(self, sql: str, *args) -> int:
        async with self._acquire() as conn:
            status = await conn.execute(sql, *args)
        return _rowcount(status)

    async def _insert(self, table: str, row: Row) -> None:
        _check_columns(table, row)
        columns = list(row)
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({placeholders})"
        )
        await self._execute(sql, *row.values())

    async def _update(self, table: str, row_id: str, fields: Row, user_id: Optional[str]) -> bool:
        if not fields:
            return False
        _check_columns(table, fields)
        columns = list(fields)
        assignments = ", ".join(f"{c} = ${i}" for i, c in enumerate(columns, start=1))
        args = list(fields.values()) + [row_id]
        sql = f"UPDATE {table} SET {assignments} WHERE id = ${len(args)}"
        if user_id is not None:
            args.append(user_id)
            sql += f" AND user_id = ${len(args)}"
        return await self._execute(sql, *args) > 0

    async def _get(self, table: str, user_id: str, row_id: str) -> Optional[Row]:
        return await self._fetchrow(
            f"SELECT * FROM {table} WHERE id = $1 AND user_id = $2", row_id, user_id,
        )

    async def _delete(self, table: str, user_id: str, row_id: str) -> bool:
        return await self._execute(
            f"DELETE FROM {table} WHERE id = $1 AND user_id = $2", row_id, user_id,
        ) > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[Row]:
        return await self._fetchrow(_SELECT_USER, user_id)

    async def get_user_by_username(self, username: str) -> Optional[Row]:
        return await self._fetchrow(_SELECT_USER_BY_NAME, username)

    async def find_user(self, username: str, email: str) -> Optional[Row]:
        return await self._fetchrow(_SELECT_USER_BY_NAME_OR_EMAIL, username, email)

    async def count_users(self) -> int:
        async with self._acquire() as conn:
            return await conn.fetchval(_COUNT_USERS)

    async def list_users(self) -> list[Row]:
        return await self._fetch(_SELECT_USERS)

    async def insert_user(self, row: Row) -> None:
        await self._insert("users", row)

    async def update_user(self, user_id: str, fields: Row) -> bool:
        return await self._update("users", user_id, fields, None)

    async def lock_user(self, user_id: str) -> Optional[Row]:
        return await self._fetchrow(_LOCK_USER, user_id)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def list_notes(self, user_id: str, archived: Optional[bool] = None) -> list[Row]:
        if archived is None:
            return await self._fetch(_SELECT_NOTES, user_id)
        sql = _SELECT_ARCHIVED_NOTES if archived else _SELECT_ACTIVE_NOTES
        return await self._fetch(sql, user_id)

    async def get_note(self, user_id: str, note_id: str) -> Optional[Row]:
        return await self._get("notes", user_id, note_id)

    async def insert_note(self, row: Row) -> None:
        await self._insert("notes", row)

    async def update_note(self, user_id: str, note_id: str, fields: Row) -> bool:
        return await self._update("notes", note_id, fields, user_id)

    async def delete_note(self, user_id: str, note_id: str) -> bool:
        return await self._delete("notes", user_id, note_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def list_folders(self, user_id: str) -> list[Row]:
        return await self._fetch(_SELECT_FOLDERS, user_id)

    async def get_folder(self, user_id: str, folder_id: str) -> Optional[Row]:
        return await self._get("bookmark_folders", user_id, folder_id)

    async def insert_folder(self, row: Row) -> None:
        await self._insert("bookmark_folders", row)

    async def update_folder(self, user_id: str, folder_id: str, fields: Row) -> bool:
        return await self._update("bookmark_folders", folder_id, fields, user_id)

    async def delete_folder(self, user_id: str, folder_id: str) -> bool:
        await self._execute(_DELETE_FOLDER_BOOKMARKS, folder_id, user_id)
        return await self._delete("bookmark_folders", user_id, folder_id)

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    async def list_bookmarks(
        self,
        user_id: str,
        folder_id: Any = ALL_FOLDERS,
        favorites_only: bool = False,
    ) -> list[Row]:
        if favorites_only:
            return await self._fetch(_SELECT_FAVORITES, user_id)
        if folder_id is ALL_FOLDERS:
            return await self._fetch(_SELECT_BOOKMARKS, user_id)
        if folder_id is None:
            return await self._fetch(_SELECT_ROOT_BOOKMARKS, user_id)
        return await self._fetch(_SELECT_FOLDER_BOOKMARKS, user_id, folder_id)

    async def get_bookmark(self, user_id: str, bookmark_id: str) -> Optional[Row]:
        return await self._get("bookmarks", user_id, bookmark_id)

    async def insert_bookmark(self, row: Row) -> None:
        await self._insert("bookmarks", row)

    async def update_bookmark(self, user_id: str, bookmark_id: str, fields: Row) -> bool:
        return await self._update("bookmarks", bookmark_id, fields, user_id)

    async def delete_bookmark(self, user_id: str, bookmark_id: str) -> bool:
        return await self._delete("bookmarks", user_id, bookmark_id)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def clear_user_data(self, user_id: str) -> dict[str, int]:
        return {
            "notes": await self._execute(
                "DELETE FROM notes WHERE user_id = $1", user_id,
            ),
            "bookmarks": await self._execute(
                "DELETE FROM bookmarks WHERE user_id = $1", user_id,
            ),
            "folders": await self._execute(
                "DELETE FROM bookmark_folders WHERE user_id = $1", user_id,
            ),
        }

    async def clear_all_data(self) -> dict[str, int]:
        return {
            "notes": await self._execute("DELETE FROM notes"),
            "bookmarks": await self._execute("DELETE FROM bookmarks"),
            "folders": await self._execute("DELETE FROM bookmark_folders"),
        }
