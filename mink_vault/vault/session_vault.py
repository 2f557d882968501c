"""
UserVault — encrypted notes, bookmarks and folders bound to one user request.

Provides the public API of the vault:
- notes: ``list_notes`` / ``create_note`` / ``update_note`` / ``delete_note``
- folders: ``list_folders`` / ``create_folder`` / ``update_folder`` / ``delete_folder``
- bookmarks: ``list_bookmarks`` / ``create_bookmark`` / ``update_bookmark`` /
  ``move_bookmark`` / ``delete_bookmark``
- import/export: ``preview_import`` / ``confirm_import`` / ``export_bookmarks``
- ``open()`` — factory that loads the user and derives the request key

Security Note:
    The derived key lives only as long as the ``open()`` block and is
    zeroed on exit. Never log plaintext, ciphertext or key material. Only
    log record ids, operations and user ids.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from ..bookmarks import exporter as bookmark_export
from ..bookmarks import importer as bookmark_import
from ..bookmarks.folders import descendant_ids, index_by_id, would_create_cycle
from ..exceptions import ConflictError, CredentialsError, NotFoundError
from ..storage import ALL_FOLDERS, VaultStorage
from .accounts import load_active_user
from .config import VaultConfig
from .crypto import EncryptionKey
from .passwords import verify_password
from .models import (
    Bookmark,
    BookmarkInput,
    DecryptionFailure,
    Folder,
    FolderInput,
    FolderUpdate,
    Note,
    NoteInput,
    validate,
)
from .records import (
    BOOKMARK_CIPHER,
    FOLDER_CIPHER,
    NOTE_CIPHER,
    decrypt_bookmark,
    decrypt_folder,
    decrypt_note,
    encrypt_bookmark,
    encrypt_folder,
    encrypt_note,
    safe_decrypt,
)
from .transactions import atomic, epoch_now, new_id

logger = logging.getLogger("mink.vault")

NoteView = Union[Note, DecryptionFailure]
BookmarkView = Union[Bookmark, DecryptionFailure]
FolderView = Union[Folder, DecryptionFailure]


class UserVault:
    """Encrypted record store bound to one user and one derived key.

    Every write seals the record under a fresh IV. Every read decrypts
    row by row; a row that fails authentication is returned as a
    ``DecryptionFailure`` marker instead of failing the listing.
    """

    def __init__(
        self,
        storage: VaultStorage,
        config: VaultConfig,
        user: dict,
        key: EncryptionKey,
    ):
        self._storage = storage
        self._config = config
        self._user = user
        self._user_id = user["id"]
        self._key = key

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def key(self) -> EncryptionKey:
        return self._key

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        storage: VaultStorage,
        config: VaultConfig,
        user_id: str,
        password: str,
    ):
        """Open the vault of an active user for one request.

        The key is derived from ``password`` and the stored salt. The
        password is not checked against the login hash here; a wrong
        password yields a key under which every record fails
        authentication.

        Args:
            storage: Storage handle.
            config: Vault configuration.
            user_id: Owner of the vault.
            password: The user's current password.

        Yields:
            UserVault whose key is wiped when the block exits.

        Raises:
            NotFoundError: Missing or deactivated user.
        """
        user = await load_active_user(storage, user_id)
        with EncryptionKey.derive(password, user["encryption_salt"], config) as key:
            yield cls(storage, config, user, key)
        logger.debug("Vault closed for user=%s", user_id)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def list_notes(self, archived: bool = False) -> list[NoteView]:
        """Active (pinned first) or archived notes, newest first."""
        rows = await self._storage.list_notes(self._user_id, archived=archived)
        return [safe_decrypt(NOTE_CIPHER, row, self._key) for row in rows]

    async def list_archived_notes(self) -> list[NoteView]:
        return await self.list_notes(archived=True)

    async def get_note(self, note_id: str) -> Note:
        row = await self._storage.get_note(self._user_id, note_id)
        if row is None:
            raise NotFoundError("Note not found")
        return decrypt_note(row, self._key)

    async def create_note(self, data: Any, now: Optional[int] = None) -> Note:
        """Encrypt and store a new note.

        Args:
            data: NoteInput or mapping of its fields.
            now: Epoch seconds for the timestamps.

        Raises:
            ValidationError: Field limits exceeded.
        """
        note = validate(NoteInput, data)
        now = epoch_now() if now is None else now
        row = {
            "id": new_id(),
            "user_id": self._user_id,
            **encrypt_note(note, self._key),
            "is_pinned": note.is_pinned,
            "is_archived": note.is_archived,
            "created_at": now,
            "updated_at": now,
        }
        await self._storage.insert_note(row)
        logger.debug("Note created: user=%s id=%s", self._user_id, row["id"])
        return decrypt_note(row, self._key)

    async def update_note(self, note_id: str, data: Any, now: Optional[int] = None) -> Note:
        """Replace the content of a note, sealed under a fresh IV.

        Raises:
            ValidationError: Field limits exceeded.
            NotFoundError: No such note for this user.
        """
        note = validate(NoteInput, data)
        now = epoch_now() if now is None else now
        fields = {
            **encrypt_note(note, self._key),
            "is_pinned": note.is_pinned,
            "is_archived": note.is_archived,
            "updated_at": now,
        }
        if not await self._storage.update_note(self._user_id, note_id, fields):
            raise NotFoundError("Note not found")
        logger.debug("Note updated: user=%s id=%s", self._user_id, note_id)
        return await self.get_note(note_id)

    async def delete_note(self, note_id: str) -> None:
        if not await self._storage.delete_note(self._user_id, note_id):
            raise NotFoundError("Note not found")
        logger.debug("Note deleted: user=%s id=%s", self._user_id, note_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def list_folders(self) -> list[FolderView]:
        rows = await self._storage.list_folders(self._user_id)
        return [safe_decrypt(FOLDER_CIPHER, row, self._key) for row in rows]

    async def _require_folder(self, folder_id: Optional[str], tx: Optional[VaultStorage] = None) -> None:
        if folder_id is None:
            return
        storage = tx or self._storage
        if await storage.get_folder(self._user_id, folder_id) is None:
            raise NotFoundError("Folder not found")

    async def create_folder(self, data: Any, now: Optional[int] = None) -> Folder:
        """Create a folder, optionally under an existing parent.

        Raises:
            ValidationError: Empty or too long name.
            NotFoundError: Parent folder does not exist.
        """
        folder = validate(FolderInput, data)
        await self._require_folder(folder.parent_id)
        now = epoch_now() if now is None else now
        row = {
            "id": new_id(),
            "user_id": self._user_id,
            "parent_id": folder.parent_id,
            **encrypt_folder(folder, self._key),
            "sort_order": 0,
            "created_at": now,
            "updated_at": now,
        }
        await self._storage.insert_folder(row)
        logger.debug("Folder created: user=%s id=%s", self._user_id, row["id"])
        return decrypt_folder(row, self._key)

    async def update_folder(self, folder_id: str, data: Any, now: Optional[int] = None) -> Folder:
        """Rename and/or re-parent a folder.

        Only the fields present in ``data`` change; ``parent_id=None`` moves
        the folder to the root. A rename re-encrypts the name under a fresh IV.

        Raises:
            NotFoundError: Folder or new parent does not exist.
            ConflictError: New parent is the folder itself or a descendant.
        """
        changes = validate(FolderUpdate, data)
        now = epoch_now() if now is None else now

        async with atomic(self._storage, "Folder update", self._user_id) as tx:
            row = await tx.get_folder(self._user_id, folder_id)
            if row is None:
                raise NotFoundError("Folder not found")
            fields: dict[str, Any] = {"updated_at": now}

            if "parent_id" in changes.model_fields_set:
                parent_id = changes.parent_id
                await self._require_folder(parent_id, tx)
                by_id = index_by_id(await tx.list_folders(self._user_id))
                if would_create_cycle(folder_id, parent_id, by_id):
                    raise ConflictError(
                        "A folder cannot be moved into itself or one of its subfolders"
                    )
                fields["parent_id"] = parent_id

            if "name" in changes.model_fields_set and changes.name is not None:
                fields.update(encrypt_folder({"name": changes.name}, self._key))

            await tx.update_folder(self._user_id, folder_id, fields)
            row = await tx.get_folder(self._user_id, folder_id)

        logger.debug("Folder updated: user=%s id=%s", self._user_id, folder_id)
        return decrypt_folder(row, self._key)

    async def delete_folder(self, folder_id: str) -> dict[str, int]:
        """Delete a folder, all of its subfolders and their bookmarks.

        Returns:
            Deleted counts: ``{"folders", "bookmarks"}``.

        Raises:
            NotFoundError: No such folder for this user.
        """
        async with atomic(self._storage, "Folder delete", self._user_id) as tx:
            if await tx.get_folder(self._user_id, folder_id) is None:
                raise NotFoundError("Folder not found")
            doomed = descendant_ids(folder_id, await tx.list_folders(self._user_id))
            doomed_set = set(doomed)
            bookmarks = sum(
                1 for b in await tx.list_bookmarks(self._user_id)
                if b["folder_id"] in doomed_set
            )
            # deepest first, so no folder is removed before its children
            for fid in reversed(doomed):
                await tx.delete_folder(self._user_id, fid)

        deleted = {"folders": len(doomed), "bookmarks": bookmarks}
        logger.info("Folder deleted: user=%s id=%s %s", self._user_id, folder_id, deleted)
        return deleted

    # ------------------------------------------------------------------
    # Bookmarks
    # ------------------------------------------------------------------

    async def list_bookmarks(self, folder_id: Any = ALL_FOLDERS) -> list[BookmarkView]:
        """All bookmarks, or the ones filed in ``folder_id`` (None = root)."""
        rows = await self._storage.list_bookmarks(self._user_id, folder_id=folder_id)
        return [safe_decrypt(BOOKMARK_CIPHER, row, self._key) for row in rows]

    async def list_favorites(self) -> list[BookmarkView]:
        rows = await self._storage.list_bookmarks(self._user_id, favorites_only=True)
        return [safe_decrypt(BOOKMARK_CIPHER, row, self._key) for row in rows]

    async def get_bookmark(self, bookmark_id: str) -> Bookmark:
        row = await self._storage.get_bookmark(self._user_id, bookmark_id)
        if row is None:
            raise NotFoundError("Bookmark not found")
        return decrypt_bookmark(row, self._key)

    async def create_bookmark(self, data: Any, now: Optional[int] = None) -> Bookmark:
        """Encrypt and store a bookmark.

        Raises:
            ValidationError: Field limits exceeded.
            NotFoundError: Target folder does not exist.
        """
        bookmark = validate(BookmarkInput, data)
        await self._require_folder(bookmark.folder_id)
        now = epoch_now() if now is None else now
        row = {
            "id": new_id(),
            "user_id": self._user_id,
            "folder_id": bookmark.folder_id,
            **encrypt_bookmark(bookmark, self._key),
            "is_favorite": bookmark.is_favorite,
            "sort_order": 0,
            "created_at": now,
            "updated_at": now,
        }
        await self._storage.insert_bookmark(row)
        logger.debug("Bookmark created: user=%s id=%s", self._user_id, row["id"])
        return decrypt_bookmark(row, self._key)

    async def update_bookmark(self, bookmark_id: str, data: Any, now: Optional[int] = None) -> Bookmark:
        """Replace a bookmark's content, sealed under a fresh IV."""
        bookmark = validate(BookmarkInput, data)
        await self._require_folder(bookmark.folder_id)
        now = epoch_now() if now is None else now
        fields = {
            "folder_id": bookmark.folder_id,
            **encrypt_bookmark(bookmark, self._key),
            "is_favorite": bookmark.is_favorite,
            "updated_at": now,
        }
        if not await self._storage.update_bookmark(self._user_id, bookmark_id, fields):
            raise NotFoundError("Bookmark not found")
        return await self.get_bookmark(bookmark_id)

    async def move_bookmark(
        self,
        bookmark_id: str,
        folder_id: Optional[str],
        now: Optional[int] = None,
    ) -> Bookmark:
        """File a bookmark in another folder (None = root) without re-encrypting."""
        await self._require_folder(folder_id)
        now = epoch_now() if now is None else now
        fields = {"folder_id": folder_id, "updated_at": now}
        if not await self._storage.update_bookmark(self._user_id, bookmark_id, fields):
            raise NotFoundError("Bookmark not found")
        return await self.get_bookmark(bookmark_id)

    async def delete_bookmark(self, bookmark_id: str) -> None:
        if not await self._storage.delete_bookmark(self._user_id, bookmark_id):
            raise NotFoundError("Bookmark not found")
        logger.debug("Bookmark deleted: user=%s id=%s", self._user_id, bookmark_id)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    async def preview_import(self, html: str) -> "bookmark_import.ImportPreview":
        return await bookmark_import.preview_import(
            self._storage, self._user_id, html, self._key, self._config,
        )

    async def confirm_import(
        self,
        html: str,
        resolutions: Optional[dict[str, str]] = None,
        now: Optional[int] = None,
    ) -> "bookmark_import.ImportResult":
        return await bookmark_import.confirm_import(
            self._storage, self._user_id, html, resolutions,
            self._key, self._config, now=now,
        )

    async def export_bookmarks(self) -> str:
        return await bookmark_export.export_bookmarks(
            self._storage, self._user_id, self._key,
        )

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def clear_data(self, password: str) -> dict[str, int]:
        """Delete all of this user's notes, bookmarks and folders.

        Raises:
            CredentialsError: ``password`` does not match the login hash.
        """
        if not verify_password(self._user["password_hash"], password, self._config):
            raise CredentialsError("Incorrect password")
        async with atomic(self._storage, "Clear data", self._user_id) as tx:
            deleted = await tx.clear_user_data(self._user_id)
        logger.warning("User cleared own data: user=%s %s", self._user_id, deleted)
        return deleted
