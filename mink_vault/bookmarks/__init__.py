"""Bookmark folders, Netscape import reconciliation and export."""
from .parser import BookmarkNode, FolderNode, parse_bookmarks
from .importer import (
    ImportPreview,
    ImportResult,
    confirm_import,
    normalize_url,
    preview_import,
)
from .exporter import export_bookmarks

__all__ = [
    "BookmarkNode",
    "FolderNode",
    "parse_bookmarks",
    "ImportPreview",
    "ImportResult",
    "confirm_import",
    "normalize_url",
    "preview_import",
    "export_bookmarks",
]
