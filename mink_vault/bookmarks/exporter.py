"""
Netscape bookmark export.

Each level lists its child folders first, then the bookmarks filed
directly in it, one four-space indent per level. A folder that fails to
decrypt keeps its place as ``[encrypted]`` so its children are still
exported; a bookmark that fails to decrypt is left out. Bookmarks are
written in ``sort_order`` then creation order.
"""
import logging
from typing import Optional, Union

from ..storage import VaultStorage
from ..vault.crypto import KeyLike
from ..vault.models import Bookmark, DecryptionFailure
from ..vault.records import BOOKMARK_CIPHER, FOLDER_CIPHER, safe_decrypt
from .folders import children_index

logger = logging.getLogger("mink.bookmarks")

INDENT = "    "
ENCRYPTED_FOLDER_NAME = "[encrypted]"

HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
"""
FOOTER = "</DL>\n"


def escape(value: Optional[str]) -> str:
    """Escape ``& < > "`` for element text and attribute values."""
    return (
        (value or "")
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def render_bookmarks(
    names: dict[str, str],
    children: dict[Optional[str], list[str]],
    bookmarks: dict[Optional[str], list[Bookmark]],
) -> str:
    """Render a folder tree into the Netscape document.

    Args:
        names: Folder id → display name.
        children: Parent id (None for the root) → child folder ids.
        bookmarks: Folder id (None for the root) → bookmarks filed there.
    """
    lines: list[str] = []
    visited: set[str] = set()
    # Work items: ("level", folder_id, depth) expands a level,
    # ("line", text, depth) emits one line.
    stack: list[tuple[str, Union[str, None], int]] = [("level", None, 1)]
    while stack:
        action, value, depth = stack.pop()
        if action == "line":
            lines.append(f"{INDENT * depth}{value}")
            continue

        pending: list[tuple[str, Union[str, None], int]] = []
        for child_id in children.get(value, []):
            if child_id in visited:
                continue
            visited.add(child_id)
            pending.append(("line", f"<DT><H3>{escape(names[child_id])}</H3>", depth))
            pending.append(("line", "<DL><p>", depth))
            pending.append(("level", child_id, depth + 1))
            pending.append(("line", "</DL><p>", depth))
        for bm in bookmarks.get(value, []):
            pending.append((
                "line",
                f'<DT><A HREF="{escape(bm.url)}">{escape(bm.title)}</A>',
                depth,
            ))
        stack.extend(reversed(pending))

    body = "".join(f"{line}\n" for line in lines)
    return HEADER + body + FOOTER


async def export_bookmarks(storage: VaultStorage, user_id: str, key: KeyLike) -> str:
    """Export the user's folders and bookmarks as a Netscape bookmark file.

    Args:
        storage: Storage handle.
        user_id: Exporting user.
        key: The user's derived key for this request.

    Returns:
        HTML document text.
    """
    folders = [
        safe_decrypt(FOLDER_CIPHER, row, key)
        for row in await storage.list_folders(user_id)
    ]
    names = {
        f.id: ENCRYPTED_FOLDER_NAME if isinstance(f, DecryptionFailure) else f.name
        for f in folders
    }
    children = children_index(
        {"id": f.id, "parent_id": f.parent_id} for f in folders
    )

    by_folder: dict[Optional[str], list[Bookmark]] = {}
    skipped = 0
    for row in await storage.list_bookmarks(user_id):
        bm = safe_decrypt(BOOKMARK_CIPHER, row, key)
        if isinstance(bm, DecryptionFailure):
            skipped += 1
            continue
        by_folder.setdefault(bm.folder_id, []).append(bm)
    for items in by_folder.values():
        items.sort(key=lambda b: (b.sort_order, b.created_at or 0))

    if skipped:
        logger.warning(
            "Export for user=%s left out %d undecryptable bookmark(s)",
            user_id, skipped,
        )
    return render_bookmarks(names, children, by_folder)
