"""
Folder tree helpers.

Folders reference an optional parent. Stored data may be malformed
(legacy rows, partially migrated trees), so every walk here is iterative
and guarded by a visited set.
"""
from collections.abc import Iterable, Mapping
from typing import Any, Optional

PATH_SEPARATOR = " / "


def _parent(folder: Any) -> Optional[str]:
    if isinstance(folder, Mapping):
        return folder.get("parent_id")
    return getattr(folder, "parent_id", None)


def _name(folder: Any) -> str:
    if isinstance(folder, Mapping):
        return folder.get("name") or ""
    return getattr(folder, "name", "") or ""


def index_by_id(folders: Iterable[Any]) -> dict[str, Any]:
    return {
        (f["id"] if isinstance(f, Mapping) else f.id): f for f in folders
    }


def folder_path(folder_id: Optional[str], by_id: Mapping[str, Any]) -> Optional[str]:
    """Full ``"Parent / Child"`` path of a folder, or None at the root.

    A folder with an empty name still has a path (possibly ``""``); only
    a missing or unknown id yields None.

    Walks parent links upwards and stops at an unknown id or at the first
    folder already seen.
    """
    if not folder_id:
        return None
    parts: list[str] = []
    visited: set[str] = set()
    current = folder_id
    while current and current not in visited:
        visited.add(current)
        folder = by_id.get(current)
        if folder is None:
            break
        parts.append(_name(folder))
        current = _parent(folder)
    if not parts:
        return None
    parts.reverse()
    return PATH_SEPARATOR.join(parts)


def path_index(by_id: Mapping[str, Any]) -> dict[str, str]:
    """Map lower-cased full path → folder id (oldest folder wins on ties)."""
    index: dict[str, str] = {}
    for folder_id in by_id:
        path = folder_path(folder_id, by_id)
        if path is not None:
            index.setdefault(path.lower(), folder_id)
    return index


def children_index(folders: Iterable[Any]) -> dict[Optional[str], list[str]]:
    """Map parent id → ordered child folder ids."""
    children: dict[Optional[str], list[str]] = {}
    for folder_id, folder in index_by_id(folders).items():
        children.setdefault(_parent(folder), []).append(folder_id)
    return children


def descendant_ids(folder_id: str, folders: Iterable[Any]) -> list[str]:
    """Return ``folder_id`` followed by all of its descendants (pre-order)."""
    children = children_index(folders)
    ordered: list[str] = []
    visited: set[str] = set()
    stack = [folder_id]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        ordered.append(current)
        stack.extend(reversed(children.get(current, [])))
    return ordered


def would_create_cycle(
    folder_id: str,
    new_parent_id: Optional[str],
    by_id: Mapping[str, Any],
) -> bool:
    """True if moving ``folder_id`` under ``new_parent_id`` makes it its own ancestor."""
    visited: set[str] = set()
    current = new_parent_id
    while current and current not in visited:
        if current == folder_id:
            return True
        visited.add(current)
        folder = by_id.get(current)
        if folder is None:
            return False
        current = _parent(folder)
    return False
