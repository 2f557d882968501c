"""
Tests for record ciphers.

Tests cover:
- Per-record IV sharing and colon-joined tag order
- Labels JSON handling
- Read-path fallback markers
"""
import pytest

from mink_vault.exceptions import AuthenticationError, MalformedRecordError
from mink_vault.vault.crypto import decrypt_field, derive_key, encrypt_field, generate_salt, parse_iv
from mink_vault.vault.models import DecryptionFailure, Note
from mink_vault.vault.records import (
    BOOKMARK_CIPHER,
    FOLDER_CIPHER,
    NOTE_CIPHER,
    decrypt_bookmark,
    decrypt_folder,
    decrypt_note,
    encrypt_bookmark,
    encrypt_folder,
    encrypt_note,
    load_labels,
    safe_decrypt,
)


@pytest.fixture(scope="module")
def key():
    return derive_key("correct horse battery", generate_salt(), "pepper")


@pytest.fixture(scope="module")
def other_key():
    return derive_key("some other password", generate_salt(), "pepper")


def note_row(sealed: dict, **extra) -> dict:
    return {"id": "n1", "is_pinned": False, "is_archived": False, **sealed, **extra}


# --- Test Notes ---

class TestNoteCipher:
    """Tests for note encryption."""

    def test_round_trip(self, key):
        """All four fields survive encryption."""
        sealed = encrypt_note(
            {"title": "T", "content": "body", "color": "blue", "labels": ["a", "b"]}, key,
        )
        note = decrypt_note(note_row(sealed), key)
        assert isinstance(note, Note)
        assert (note.title, note.content, note.color, note.labels) == (
            "T", "body", "blue", ["a", "b"],
        )

    def test_tag_order(self, key):
        """Tags are stored as title:content:color:labels under one IV."""
        sealed = encrypt_note(
            {"title": "T", "content": "C", "color": "red", "labels": []}, key,
        )
        tags = sealed["auth_tag"].split(":")
        assert len(tags) == 4
        iv = parse_iv(sealed["iv"])
        assert decrypt_field(sealed["encrypted_title"], tags[0], key, iv) == "T"
        assert decrypt_field(sealed["encrypted_content"], tags[1], key, iv) == "C"
        assert decrypt_field(sealed["encrypted_color"], tags[2], key, iv) == "red"
        assert decrypt_field(sealed["encrypted_labels"], tags[3], key, iv) == "[]"

    def test_swapped_tags_fail(self, key):
        """Reordering the tags breaks authentication."""
        sealed = encrypt_note({"title": "T", "content": "C"}, key)
        tags = sealed["auth_tag"].split(":")
        tags[0], tags[1] = tags[1], tags[0]
        sealed["auth_tag"] = ":".join(tags)
        with pytest.raises(AuthenticationError):
            decrypt_note(note_row(sealed), key)

    def test_defaults(self, key):
        """Missing color and labels default to "default" and []."""
        note = decrypt_note(note_row(encrypt_note({"title": "x"}, key)), key)
        assert note.color == "default"
        assert note.labels == []

    def test_fresh_iv_each_write(self, key):
        """Encrypting the same note twice uses two IVs."""
        data = {"title": "same", "content": "same"}
        assert encrypt_note(data, key)["iv"] != encrypt_note(data, key)["iv"]

    def test_wrong_tag_count(self, key):
        """A bundle with the wrong number of tags is malformed."""
        sealed = encrypt_note({"title": "T"}, key)
        sealed["auth_tag"] = sealed["auth_tag"].rsplit(":", 1)[0]
        with pytest.raises(MalformedRecordError):
            decrypt_note(note_row(sealed), key)

    def test_malformed_labels(self, key):
        """Labels that decrypt to invalid JSON are an error, never defaulted."""
        sealed = encrypt_note({"title": "T"}, key)
        iv = parse_iv(sealed["iv"])
        bad = encrypt_field("not json", key, iv)
        tags = sealed["auth_tag"].split(":")
        tags[3] = bad.tag
        sealed["encrypted_labels"] = bad.ciphertext
        sealed["auth_tag"] = ":".join(tags)
        with pytest.raises(MalformedRecordError):
            decrypt_note(note_row(sealed), key)

    def test_load_labels_rejects_non_list(self):
        """Only a JSON array of strings is accepted."""
        assert load_labels('["x"]') == ["x"]
        with pytest.raises(MalformedRecordError):
            load_labels('{"a": 1}')
        with pytest.raises(MalformedRecordError):
            load_labels("[1, 2]")


# --- Test Bookmarks and Folders ---

class TestBookmarkAndFolderCiphers:
    """Tests for bookmark and folder encryption."""

    def test_bookmark_round_trip(self, key):
        """Bookmarks keep title, url and description."""
        sealed = encrypt_bookmark(
            {"title": "Ex", "url": "https://example.com", "description": "d"}, key,
        )
        assert len(sealed["auth_tag"].split(":")) == 3
        bm = decrypt_bookmark({"id": "b1", "folder_id": "f1", **sealed}, key)
        assert (bm.title, bm.url, bm.description, bm.folder_id) == (
            "Ex", "https://example.com", "d", "f1",
        )

    def test_folder_round_trip(self, key):
        """Folders carry a single tag."""
        sealed = encrypt_folder({"name": "Work"}, key)
        assert ":" not in sealed["auth_tag"]
        folder = decrypt_folder({"id": "f1", "parent_id": None, **sealed}, key)
        assert folder.name == "Work"


# --- Test safe_decrypt ---

class TestSafeDecrypt:
    """Tests for the read-path fallback."""

    def test_returns_record(self, key):
        """Decryptable rows come back as models."""
        row = note_row(encrypt_note({"title": "ok"}, key))
        assert safe_decrypt(NOTE_CIPHER, row, key).title == "ok"

    def test_marker_on_wrong_key(self, key, other_key):
        """Undecryptable rows become markers carrying id and kind."""
        row = {"id": "b9", "folder_id": "f2", **encrypt_bookmark({"url": "u"}, key)}
        marker = safe_decrypt(BOOKMARK_CIPHER, row, other_key)
        assert isinstance(marker, DecryptionFailure)
        assert marker.id == "b9"
        assert marker.kind == "bookmark"
        assert marker.parent_id == "f2"
        assert marker.decryption_error is True

    def test_marker_on_malformed(self, key):
        """Malformed bundles also become markers."""
        row = {"id": "f1", "parent_id": None, **encrypt_folder({"name": "x"}, key)}
        row["iv"] = "nothex"
        marker = safe_decrypt(FOLDER_CIPHER, row, key)
        assert isinstance(marker, DecryptionFailure)
        assert marker.kind == "folder"
