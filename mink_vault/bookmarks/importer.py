"""
Bookmark import reconciliation.

Two stateless phases keyed on the same source file:

- ``preview_import`` parses the file and classifies every incoming bookmark
  against the user's decrypted bookmarks as a new item, an exact duplicate
  or a conflict. Nothing is written.
- ``confirm_import`` parses the file again and applies the caller's
  per-URL resolutions inside one transaction.

The normalized URL (see ``normalize_url``) is the only matching key.

Incoming nodes are held to the same limits as hand-made records: titles
and folder names longer than allowed are truncated, bookmarks whose URL
is too long are dropped and counted as invalid. Folders with an empty
name are kept; their path is the empty string.
"""
import logging
from collections.abc import Mapping
from typing import Any, Literal, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field

from ..exceptions import ValidationError
from ..storage import VaultStorage
from ..vault.config import VaultConfig
from ..vault.crypto import KeyLike
from ..vault.models import (
    FOLDER_NAME_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    URL_MAX_LENGTH,
    Bookmark,
    Folder,
    ImportRequest,
    validate,
)
from ..vault.records import (
    decrypt_bookmark,
    decrypt_folder,
    encrypt_bookmark,
    encrypt_folder,
)
from ..vault.transactions import atomic, epoch_now, new_id
from .folders import PATH_SEPARATOR, folder_path, index_by_id, path_index
from .parser import BookmarkNode, FolderNode, iter_bookmarks, iter_folders, parse_bookmarks

logger = logging.getLogger("mink.bookmarks")

Resolution = Literal["keep_existing", "keep_incoming", "keep_both"]
DEFAULT_RESOLUTION: Resolution = "keep_both"


def normalize_url(url: str) -> str:
    """Comparison key for a bookmark URL.

    ``scheme://host/path`` lower-cased with one trailing slash removed,
    followed by the untouched query string. Strings that do not parse as
    absolute URLs fall back to their trimmed lower-cased form.
    """
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
        host = parts.hostname
    except ValueError:
        return raw.lower()
    if not parts.scheme or not host:
        return raw.lower()
    base = f"{parts.scheme}://{host}{parts.path}".lower()
    if base.endswith("/"):
        base = base[:-1]
    return base + (f"?{parts.query}" if parts.query else "")


# ---------------------------------------------------------------------------
# Preview models
# ---------------------------------------------------------------------------

class IncomingBookmark(BaseModel):
    title: str
    url: str
    folder_path: Optional[str] = None
    normalized_url: str


class ExistingBookmark(Bookmark):
    folder_path: Optional[str] = None


class ExactDuplicate(BaseModel):
    incoming: IncomingBookmark
    existing: ExistingBookmark


class Differences(BaseModel):
    title: bool
    folder: bool


class ImportConflict(BaseModel):
    incoming: IncomingBookmark
    existing: ExistingBookmark
    all_existing: list[ExistingBookmark]
    differences: Differences


class ImportSummary(BaseModel):
    new_bookmarks: int = 0
    conflicts: int = 0
    exact_duplicates: int = 0
    new_folders: int = 0
    merged_folders: int = 0
    invalid_bookmarks: int = 0


class ImportPreview(BaseModel):
    summary: ImportSummary
    new_items: list[IncomingBookmark] = Field(default_factory=list)
    conflicts: list[ImportConflict] = Field(default_factory=list)
    exact_duplicates: list[ExactDuplicate] = Field(default_factory=list)


class ImportResult(BaseModel):
    folders_created: int = 0
    bookmarks_created: int = 0
    bookmarks_updated: int = 0
    bookmarks_skipped: int = 0
    bookmarks_invalid: int = 0


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _check_source(html: str, config: VaultConfig) -> None:
    try:
        size = len(html.encode("utf-8"))
    except UnicodeEncodeError as err:
        raise ValidationError(
            f"Import file is not valid UTF-8 text at position {err.start}"
        ) from None
    if size > config.import_max_bytes:
        raise ValidationError(
            f"Import file exceeds {config.import_max_bytes} bytes"
        )


def _fit_tree(tree: list) -> tuple[list, int]:
    """Apply record limits to a parsed tree.

    Returns the fitted tree and the number of bookmarks dropped.
    """
    dropped = 0
    fitted: list = []
    for node in tree:
        if isinstance(node, FolderNode):
            children, inner = _fit_tree(node.children)
            dropped += inner
            fitted.append(node._replace(
                name=node.name[:FOLDER_NAME_MAX_LENGTH], children=children,
            ))
        elif len(node.url) > URL_MAX_LENGTH:
            logger.warning("Dropping imported bookmark with a %d character URL", len(node.url))
            dropped += 1
        else:
            fitted.append(node._replace(title=node.title[:TITLE_MAX_LENGTH]))
    return fitted, dropped


async def _load_existing(
    storage: VaultStorage,
    user_id: str,
    key: KeyLike,
) -> tuple[list[Folder], list[Bookmark]]:
    """Decrypt every folder and bookmark of the user.

    Import needs the complete existing state, so a record that fails to
    decrypt aborts the operation instead of being skipped.
    """
    folders = [decrypt_folder(r, key) for r in await storage.list_folders(user_id)]
    bookmarks = [decrypt_bookmark(r, key) for r in await storage.list_bookmarks(user_id)]
    return folders, bookmarks


def _existing_by_url(
    bookmarks: list[Bookmark],
    folders_by_id: Mapping[str, Any],
) -> dict[str, list[ExistingBookmark]]:
    index: dict[str, list[ExistingBookmark]] = {}
    for bm in bookmarks:
        entry = ExistingBookmark(
            **bm.model_dump(),
            folder_path=folder_path(bm.folder_id, folders_by_id),
        )
        index.setdefault(normalize_url(bm.url), []).append(entry)
    return index


def _same_title(a: str, b: str) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------

async def preview_import(
    storage: VaultStorage,
    user_id: str,
    html: str,
    key: KeyLike,
    config: VaultConfig,
) -> ImportPreview:
    """Classify an import file against the user's bookmarks without writing.

    Args:
        storage: Storage handle.
        user_id: Importing user.
        html: Netscape bookmark file content.
        key: The user's derived key for this request.
        config: Vault configuration (size and depth limits).

    Returns:
        ImportPreview with summary counts and the three categorized lists.

    Raises:
        ValidationError: Oversized or too deeply nested source.
        AuthenticationError: An existing record does not decrypt under ``key``.
    """
    html = validate(ImportRequest, {"html": html}).html
    _check_source(html, config)
    tree, invalid = _fit_tree(parse_bookmarks(html, max_depth=config.max_folder_depth))

    folders, bookmarks = await _load_existing(storage, user_id, key)
    folders_by_id = index_by_id(folders)
    existing_by_url = _existing_by_url(bookmarks, folders_by_id)

    incoming: list[IncomingBookmark] = []
    seen: set[str] = set()
    for node, parts in iter_bookmarks(tree):
        normalized = normalize_url(node.url)
        if normalized in seen:
            continue
        seen.add(normalized)
        incoming.append(IncomingBookmark(
            title=node.title,
            url=node.url,
            folder_path=PATH_SEPARATOR.join(parts) if parts else None,
            normalized_url=normalized,
        ))

    preview = ImportPreview(summary=ImportSummary())
    for item in incoming:
        matches = existing_by_url.get(item.normalized_url, [])
        if not matches:
            preview.new_items.append(item)
            continue
        exact = next(
            (
                ex for ex in matches
                if _same_title(ex.title, item.title)
                and ex.folder_path == item.folder_path
            ),
            None,
        )
        if exact is not None:
            preview.exact_duplicates.append(
                ExactDuplicate(incoming=item, existing=exact)
            )
            continue
        primary = matches[0]
        preview.conflicts.append(ImportConflict(
            incoming=item,
            existing=primary,
            all_existing=matches,
            differences=Differences(
                title=(item.title or "") != (primary.title or ""),
                folder=item.folder_path != primary.folder_path,
            ),
        ))

    existing_paths = set(path_index(folders_by_id))
    incoming_paths = [
        PATH_SEPARATOR.join(parts).lower() for _, parts in iter_folders(tree)
    ]
    merged = sum(1 for p in incoming_paths if p in existing_paths)

    preview.summary = ImportSummary(
        new_bookmarks=len(preview.new_items),
        conflicts=len(preview.conflicts),
        exact_duplicates=len(preview.exact_duplicates),
        new_folders=len(incoming_paths) - merged,
        merged_folders=merged,
        invalid_bookmarks=invalid,
    )
    logger.info(
        "Import preview for user=%s: %d new, %d conflict(s), %d duplicate(s)",
        user_id, preview.summary.new_bookmarks,
        preview.summary.conflicts, preview.summary.exact_duplicates,
    )
    return preview


# ---------------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------------

async def confirm_import(
    storage: VaultStorage,
    user_id: str,
    html: str,
    resolutions: Optional[Mapping[str, str]],
    key: KeyLike,
    config: VaultConfig,
    now: Optional[int] = None,
) -> ImportResult:
    """Write an import file, applying per-URL conflict resolutions.

    Folders whose full path (case-insensitive) already exists are reused;
    new folders are registered as soon as they are created so deeper nodes
    attach to them. For a bookmark whose normalized URL already exists:

    - ``keep_existing`` skips it,
    - ``keep_incoming`` rewrites the first existing match in place,
    - ``keep_both`` (the default) inserts it as an additional bookmark.

    All writes happen in one transaction.

    Args:
        storage: Storage handle.
        user_id: Importing user.
        html: The same file content passed to ``preview_import``.
        resolutions: Normalized URL → resolution.
        key: The user's derived key for this request.
        config: Vault configuration.
        now: Epoch seconds used for created/updated timestamps.

    Returns:
        ImportResult counts.

    Raises:
        ValidationError: Bad source or unknown resolution value.
        AuthenticationError: An existing record does not decrypt under ``key``.
        TransactionError: A write failed; nothing was persisted.
    """
    request = validate(ImportRequest, {"html": html, "resolutions": resolutions or {}})
    _check_source(request.html, config)
    tree, invalid = _fit_tree(
        parse_bookmarks(request.html, max_depth=config.max_folder_depth)
    )
    now = epoch_now() if now is None else now

    folders, bookmarks = await _load_existing(storage, user_id, key)
    path_to_id = path_index(index_by_id(folders))
    existing_by_url: dict[str, list[Bookmark]] = {}
    for bm in bookmarks:
        existing_by_url.setdefault(normalize_url(bm.url), []).append(bm)

    result = ImportResult(bookmarks_invalid=invalid)
    stack: list[tuple[Any, Optional[str], tuple[str, ...]]] = [
        (node, None, ()) for node in reversed(tree)
    ]

    async with atomic(storage, "Bookmark import", user_id) as tx:
        while stack:
            node, parent_id, parts = stack.pop()

            if isinstance(node, FolderNode):
                inner = parts + (node.name,)
                path = PATH_SEPARATOR.join(inner).lower()
                folder_id = path_to_id.get(path)
                if folder_id is None:
                    folder_id = new_id()
                    await tx.insert_folder({
                        "id": folder_id,
                        "user_id": user_id,
                        "parent_id": parent_id,
                        **encrypt_folder({"name": node.name}, key),
                        "sort_order": 0,
                        "created_at": now,
                        "updated_at": now,
                    })
                    path_to_id[path] = folder_id
                    result.folders_created += 1
                stack.extend(
                    (child, folder_id, inner) for child in reversed(node.children)
                )
                continue

            await _import_bookmark(
                tx, user_id, node, parent_id, existing_by_url,
                request.resolutions, key, now, result,
            )

    logger.info(
        "Import confirmed for user=%s: %d folder(s), %d created, %d updated, %d skipped",
        user_id, result.folders_created, result.bookmarks_created,
        result.bookmarks_updated, result.bookmarks_skipped,
    )
    return result


async def _import_bookmark(
    tx: VaultStorage,
    user_id: str,
    node: BookmarkNode,
    folder_id: Optional[str],
    existing_by_url: Mapping[str, list[Bookmark]],
    resolutions: Mapping[str, str],
    key: KeyLike,
    now: int,
    result: ImportResult,
) -> None:
    normalized = normalize_url(node.url)
    matches = existing_by_url.get(normalized, [])
    resolution = resolutions.get(normalized, DEFAULT_RESOLUTION)

    if matches and resolution == "keep_existing":
        result.bookmarks_skipped += 1
        return

    sealed = encrypt_bookmark(
        {"title": node.title, "url": node.url, "description": ""}, key,
    )

    if matches and resolution == "keep_incoming":
        await tx.update_bookmark(user_id, matches[0].id, {
            "folder_id": folder_id,
            **sealed,
            "updated_at": now,
        })
        result.bookmarks_updated += 1
        return

    await tx.insert_bookmark({
        "id": new_id(),
        "user_id": user_id,
        "folder_id": folder_id,
        **sealed,
        "is_favorite": False,
        "sort_order": 0,
        "created_at": now,
        "updated_at": now,
    })
    result.bookmarks_created += 1
