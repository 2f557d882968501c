"""
Record ciphers — encrypt and decrypt whole notes, bookmarks and folders.

Every record version gets one fresh IV shared by all of its fields. Each
field is sealed independently and the tags are stored colon-joined in a
fixed order, which is part of the storage contract:

    note:     title:content:color:labels
    bookmark: title:url:description
    folder:   name

Swapping the order makes every existing record fail authentication.
"""
import logging
from collections.abc import Callable, Mapping
from typing import Any, NamedTuple, Union

import orjson

from ..exceptions import AuthenticationError, MalformedRecordError
from .crypto import KeyLike, decrypt_field, encrypt_field, generate_iv, parse_iv
from .models import Bookmark, DecryptionFailure, Folder, Note

logger = logging.getLogger("mink.vault")

NOTE_FIELDS = ("title", "content", "color", "labels")
BOOKMARK_FIELDS = ("title", "url", "description")
FOLDER_FIELDS = ("name",)

TAG_SEPARATOR = ":"


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _seal(values: dict[str, str], fields: tuple[str, ...], key: KeyLike) -> dict[str, str]:
    """Encrypt ``values`` in ``fields`` order under one fresh IV."""
    iv = generate_iv()
    row: dict[str, str] = {}
    tags = []
    for field in fields:
        sealed = encrypt_field(values[field], key, iv)
        row[f"encrypted_{field}"] = sealed.ciphertext
        tags.append(sealed.tag)
    row["iv"] = iv.hex()
    row["auth_tag"] = TAG_SEPARATOR.join(tags)
    return row


def _open(row: Mapping[str, Any], fields: tuple[str, ...], key: KeyLike) -> dict[str, str]:
    """Decrypt ``fields`` of a stored row, pairing tags by position."""
    iv = parse_iv(row["iv"])
    tags = (row["auth_tag"] or "").split(TAG_SEPARATOR)
    if len(tags) != len(fields):
        raise MalformedRecordError(
            f"Expected {len(fields)} authentication tag(s), found {len(tags)}"
        )
    return {
        field: decrypt_field(row[f"encrypted_{field}"], tag, key, iv)
        for field, tag in zip(fields, tags)
    }


def sealed_columns(fields: tuple[str, ...]) -> tuple[str, ...]:
    """Storage columns rewritten on every encrypted write."""
    return tuple(f"encrypted_{f}" for f in fields) + ("iv", "auth_tag")


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

def dump_labels(labels: Any) -> str:
    """Canonical JSON array form of a label list."""
    return orjson.dumps(list(labels or [])).decode("utf-8")


def load_labels(raw: str) -> list[str]:
    """Parse decrypted labels; malformed content is an error, never defaulted."""
    try:
        labels = orjson.loads(raw)
    except orjson.JSONDecodeError:
        raise MalformedRecordError("Decrypted labels are not valid JSON") from None
    if not isinstance(labels, list) or not all(isinstance(x, str) for x in labels):
        raise MalformedRecordError("Decrypted labels are not a list of strings")
    return labels


def encrypt_note(note: Any, key: KeyLike) -> dict[str, str]:
    """Encrypt title, content, color and labels of a note.

    Args:
        note: NoteInput, Note or mapping with the plaintext fields.
        key: Derived key.

    Returns:
        Column mapping: encrypted_title, encrypted_content, encrypted_color,
        encrypted_labels, iv, auth_tag.
    """
    values = {
        "title": _attr(note, "title") or "",
        "content": _attr(note, "content") or "",
        "color": _attr(note, "color") or "default",
        "labels": dump_labels(_attr(note, "labels")),
    }
    return _seal(values, NOTE_FIELDS, key)


def decrypt_note(row: Mapping[str, Any], key: KeyLike) -> Note:
    """Decrypt a stored note row.

    Raises:
        AuthenticationError: On tag mismatch.
        MalformedRecordError: On a malformed bundle or labels payload.
    """
    plain = _open(row, NOTE_FIELDS, key)
    return Note(
        id=row["id"],
        title=plain["title"],
        content=plain["content"],
        color=plain["color"],
        labels=load_labels(plain["labels"]),
        is_pinned=bool(row.get("is_pinned", False)),
        is_archived=bool(row.get("is_archived", False)),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

def encrypt_bookmark(bookmark: Any, key: KeyLike) -> dict[str, str]:
    """Encrypt title, url and description of a bookmark."""
    values = {
        "title": _attr(bookmark, "title") or "",
        "url": _attr(bookmark, "url") or "",
        "description": _attr(bookmark, "description") or "",
    }
    return _seal(values, BOOKMARK_FIELDS, key)


def decrypt_bookmark(row: Mapping[str, Any], key: KeyLike) -> Bookmark:
    """Decrypt a stored bookmark row."""
    plain = _open(row, BOOKMARK_FIELDS, key)
    return Bookmark(
        id=row["id"],
        folder_id=row.get("folder_id"),
        title=plain["title"],
        url=plain["url"],
        description=plain["description"],
        is_favorite=bool(row.get("is_favorite", False)),
        sort_order=row.get("sort_order") or 0,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


# ---------------------------------------------------------------------------
# Folders
# ---------------------------------------------------------------------------

def encrypt_folder(folder: Any, key: KeyLike) -> dict[str, str]:
    """Encrypt a folder name."""
    return _seal({"name": _attr(folder, "name") or ""}, FOLDER_FIELDS, key)


def decrypt_folder(row: Mapping[str, Any], key: KeyLike) -> Folder:
    """Decrypt a stored folder row."""
    plain = _open(row, FOLDER_FIELDS, key)
    return Folder(
        id=row["id"],
        parent_id=row.get("parent_id"),
        name=plain["name"],
        sort_order=row.get("sort_order") or 0,
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


# ---------------------------------------------------------------------------
# Registry and read-path fallback
# ---------------------------------------------------------------------------

class RecordCipher(NamedTuple):
    kind: str
    fields: tuple[str, ...]
    encrypt: Callable[[Any, KeyLike], dict[str, str]]
    decrypt: Callable[[Mapping[str, Any], KeyLike], Any]
    parent_column: str


NOTE_CIPHER = RecordCipher("note", NOTE_FIELDS, encrypt_note, decrypt_note, "")
BOOKMARK_CIPHER = RecordCipher(
    "bookmark", BOOKMARK_FIELDS, encrypt_bookmark, decrypt_bookmark, "folder_id",
)
FOLDER_CIPHER = RecordCipher(
    "folder", FOLDER_FIELDS, encrypt_folder, decrypt_folder, "parent_id",
)

RECORD_CIPHERS = {
    c.kind: c for c in (NOTE_CIPHER, BOOKMARK_CIPHER, FOLDER_CIPHER)
}


def safe_decrypt(
    cipher: RecordCipher,
    row: Mapping[str, Any],
    key: KeyLike,
) -> Union[Note, Bookmark, Folder, DecryptionFailure]:
    """Decrypt a row, or return a DecryptionFailure marker.

    Used by every read path so one undecryptable record (e.g. after an
    admin hard reset) never blocks the rest of a listing.
    """
    try:
        return cipher.decrypt(row, key)
    except (AuthenticationError, MalformedRecordError) as err:
        logger.debug(
            "Decryption failed for %s id=%s: %s",
            cipher.kind, row.get("id"), type(err).__name__,
        )
        return DecryptionFailure(
            id=row["id"],
            kind=cipher.kind,
            parent_id=row.get(cipher.parent_column) if cipher.parent_column else None,
        )
