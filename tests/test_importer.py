"""
Tests for bookmark import preview and confirm.

Tests cover:
- URL normalization
- Classification into new items, exact duplicates and conflicts
- Resolutions keep_existing / keep_incoming / keep_both
- Folder path reuse, including unnamed folders, and all-or-nothing writes
- Record limits applied to imported entries
"""
import pytest

from mink_vault.bookmarks.importer import normalize_url
from mink_vault.exceptions import TransactionError, ValidationError
from mink_vault.vault import UserVault
from mink_vault.vault.models import TITLE_MAX_LENGTH, URL_MAX_LENGTH, Bookmark, Folder


def bookmark_file(body: str) -> str:
    return f"<!DOCTYPE NETSCAPE-Bookmark-file-1>\n<DL><p>\n{body}\n</DL>\n"


def anchor(url: str, title: str) -> str:
    return f'<DT><A HREF="{url}">{title}</A>'


def folder(name: str, *children: str) -> str:
    return f"<DT><H3>{name}</H3>\n<DL><p>\n" + "\n".join(children) + "\n</DL><p>"


async def decrypted_bookmarks(vault) -> list[Bookmark]:
    items = await vault.list_bookmarks()
    assert all(isinstance(b, Bookmark) for b in items)
    return items


async def decrypted_folders(vault) -> list[Folder]:
    items = await vault.list_folders()
    assert all(isinstance(f, Folder) for f in items)
    return items


# --- Test normalize_url ---

class TestNormalizeUrl:
    """Tests for the URL comparison key."""

    @pytest.mark.parametrize("url, expected", [
        ("https://Example.COM/Path/", "https://example.com/path"),
        ("https://example.com", "https://example.com"),
        ("https://example.com/", "https://example.com"),
        ("https://x.example/a/?Q=Upper", "https://x.example/a?Q=Upper"),
        ("http://x.example:8080/a", "http://x.example/a"),
        ("https://x.example/a#section", "https://x.example/a"),
        ("  Not A Url  ", "not a url"),
        ("http://[broken/", "http://[broken/"),
    ])
    def test_normalize(self, url, expected):
        """Scheme, host and path are lower-cased; query is kept verbatim."""
        assert normalize_url(url) == expected

    def test_scheme_is_significant(self):
        """http and https URLs are different keys."""
        assert normalize_url("http://x.example") != normalize_url("https://x.example")


# --- Test Preview ---

class TestPreviewImport:
    """Tests for preview classification."""

    async def test_new_items(self, vault):
        """Everything is new in an empty vault; nothing is written."""
        html = bookmark_file(folder("Work", anchor("https://a.example", "A")))
        preview = await vault.preview_import(html)
        assert preview.summary.new_bookmarks == 1
        assert preview.summary.new_folders == 1
        assert preview.new_items[0].folder_path == "Work"
        assert preview.new_items[0].normalized_url == "https://a.example"
        assert await vault.list_bookmarks() == []
        assert await vault.list_folders() == []

    async def test_trailing_slash_exact_duplicate(self, vault):
        """Same URL modulo trailing slash, same title (any case), same folder."""
        await vault.create_bookmark({"url": "https://Example.com/", "title": "Example"})
        html = bookmark_file(anchor("https://example.com", " example "))
        preview = await vault.preview_import(html)
        assert preview.summary.exact_duplicates == 1
        assert preview.summary.conflicts == 0
        assert preview.exact_duplicates[0].existing.title == "Example"

    async def test_title_conflict(self, vault):
        """A different title under the same URL is a conflict."""
        await vault.create_bookmark({"url": "https://x.example", "title": "Old"})
        preview = await vault.preview_import(bookmark_file(anchor("https://x.example/", "New")))
        assert preview.summary.conflicts == 1
        conflict = preview.conflicts[0]
        assert conflict.differences.title is True
        assert conflict.differences.folder is False
        assert conflict.existing.title == "Old"
        assert len(conflict.all_existing) == 1

    async def test_folder_conflict(self, vault):
        """The same bookmark filed in another folder is a conflict."""
        work = await vault.create_folder({"name": "Work"})
        await vault.create_bookmark(
            {"url": "https://x.example", "title": "X", "folder_id": work.id},
        )
        preview = await vault.preview_import(bookmark_file(anchor("https://x.example", "X")))
        conflict = preview.conflicts[0]
        assert conflict.differences.folder is True
        assert conflict.differences.title is False
        assert conflict.existing.folder_path == "Work"

    async def test_duplicate_urls_in_file(self, vault):
        """Only the first occurrence of a URL in the file is previewed."""
        html = bookmark_file(
            anchor("https://a.example", "A")
            + anchor("https://A.example/", "A again")
        )
        preview = await vault.preview_import(html)
        assert preview.summary.new_bookmarks == 1
        assert preview.new_items[0].title == "A"

    async def test_folder_counts(self, vault):
        """Existing folder paths (case-insensitive) count as merged."""
        await vault.create_folder({"name": "Work"})
        html = bookmark_file(folder("work", folder("Sub", anchor("https://a.example", "A"))))
        preview = await vault.preview_import(html)
        assert preview.summary.merged_folders == 1
        assert preview.summary.new_folders == 1

    async def test_size_limit(self, storage, config, user, password):
        """Sources above import_max_bytes are rejected."""
        small = config.model_copy(update={"import_max_bytes": 64})
        async with UserVault.open(storage, small, user.id, password) as vault:
            with pytest.raises(ValidationError):
                await vault.preview_import(bookmark_file(anchor("https://a.example", "A" * 100)))


    async def test_unencodable_source(self, vault):
        """Text that cannot be encoded as UTF-8 is a validation error."""
        with pytest.raises(ValidationError):
            await vault.preview_import(bookmark_file(anchor("https://a.example", "\ud800")))

    async def test_oversized_entries(self, vault):
        """Over-long URLs are dropped and counted; over-long titles are cut."""
        html = bookmark_file(
            anchor("https://a.example/" + "x" * URL_MAX_LENGTH, "Too long")
            + anchor("https://b.example", "T" * (TITLE_MAX_LENGTH + 400))
        )
        preview = await vault.preview_import(html)
        assert preview.summary.invalid_bookmarks == 1
        assert preview.summary.new_bookmarks == 1
        assert len(preview.new_items[0].title) == TITLE_MAX_LENGTH


# --- Test Confirm ---

class TestConfirmImport:
    """Tests for confirm and conflict resolutions."""

    async def test_creates_tree(self, vault):
        """Folders and bookmarks are created with their hierarchy."""
        html = bookmark_file(
            folder("Work", anchor("https://a.example", "A"), folder("Sub", anchor("https://b.example", "B")))
            + anchor("https://c.example", "C")
        )
        result = await vault.confirm_import(html)
        assert result.folders_created == 2
        assert result.bookmarks_created == 3

        folders = {f.name: f for f in await decrypted_folders(vault)}
        assert folders["Work"].parent_id is None
        assert folders["Sub"].parent_id == folders["Work"].id
        by_title = {b.title: b for b in await decrypted_bookmarks(vault)}
        assert by_title["A"].folder_id == folders["Work"].id
        assert by_title["B"].folder_id == folders["Sub"].id
        assert by_title["C"].folder_id is None

    async def test_keep_both_is_default(self, vault):
        """Without a resolution the incoming bookmark is added alongside."""
        await vault.create_bookmark({"url": "https://x.example", "title": "Old"})
        result = await vault.confirm_import(bookmark_file(anchor("https://x.example", "New")))
        assert result.bookmarks_created == 1
        titles = sorted(b.title for b in await decrypted_bookmarks(vault))
        assert titles == ["New", "Old"]

    async def test_keep_existing(self, vault):
        """keep_existing skips the incoming bookmark."""
        await vault.create_bookmark({"url": "https://x.example", "title": "Old"})
        result = await vault.confirm_import(
            bookmark_file(anchor("https://x.example", "New")),
            {"https://x.example": "keep_existing"},
        )
        assert result.bookmarks_skipped == 1
        assert result.bookmarks_created == 0
        assert [b.title for b in await decrypted_bookmarks(vault)] == ["Old"]

    async def test_keep_incoming(self, vault):
        """keep_incoming rewrites the existing bookmark in place."""
        existing = await vault.create_bookmark({"url": "https://x.example", "title": "Old"})
        html = bookmark_file(folder("Imported", anchor("https://x.example/", "New")))
        result = await vault.confirm_import(html, {"https://x.example": "keep_incoming"})
        assert result.bookmarks_updated == 1
        bookmarks = await decrypted_bookmarks(vault)
        assert len(bookmarks) == 1
        assert bookmarks[0].id == existing.id
        assert bookmarks[0].title == "New"
        assert bookmarks[0].url == "https://x.example/"
        folders = await decrypted_folders(vault)
        assert bookmarks[0].folder_id == folders[0].id

    async def test_reuses_existing_folder_path(self, vault):
        """A matching path reuses the folder and children attach under it."""
        work = await vault.create_folder({"name": "Work"})
        html = bookmark_file(folder("WORK", folder("Sub", anchor("https://a.example", "A"))))
        result = await vault.confirm_import(html)
        assert result.folders_created == 1
        folders = {f.name: f for f in await decrypted_folders(vault)}
        assert set(folders) == {"Work", "Sub"}
        assert folders["Sub"].parent_id == work.id
        bookmarks = await decrypted_bookmarks(vault)
        assert bookmarks[0].folder_id == folders["Sub"].id

    async def test_repeated_folder_in_file(self, vault):
        """A folder path appearing twice in one file is created once."""
        html = bookmark_file(
            folder("Dup", anchor("https://a.example", "A"))
            + folder("Dup", anchor("https://b.example", "B"))
        )
        result = await vault.confirm_import(html)
        assert result.folders_created == 1
        assert result.bookmarks_created == 2

    async def test_unnamed_folder_imported_twice(self, vault):
        """A folder without a name is reused on the next import of the file."""
        html = bookmark_file(folder("", anchor("https://a.example", "A")))
        first = await vault.confirm_import(html)
        assert first.folders_created == 1

        preview = await vault.preview_import(html)
        assert preview.summary.exact_duplicates == 1
        assert preview.summary.conflicts == 0
        assert preview.summary.merged_folders == 1
        assert preview.summary.new_folders == 0
        assert preview.exact_duplicates[0].existing.folder_path == ""

        second = await vault.confirm_import(html, {"https://a.example": "keep_existing"})
        assert second.folders_created == 0
        assert second.bookmarks_skipped == 1
        assert len(await decrypted_folders(vault)) == 1

    async def test_oversized_entries_fit_limits(self, vault):
        """Imported bookmarks can be saved again unchanged."""
        html = bookmark_file(
            anchor("https://a.example/" + "x" * URL_MAX_LENGTH, "Too long")
            + anchor("https://b.example", "T" * (TITLE_MAX_LENGTH + 400))
        )
        result = await vault.confirm_import(html)
        assert result.bookmarks_invalid == 1
        assert result.bookmarks_created == 1

        [bookmark] = await decrypted_bookmarks(vault)
        assert len(bookmark.title) == TITLE_MAX_LENGTH
        saved = await vault.update_bookmark(bookmark.id, {
            "url": bookmark.url, "title": bookmark.title, "folder_id": bookmark.folder_id,
        })
        assert saved.title == bookmark.title

    async def test_invalid_resolution(self, vault):
        """Unknown resolution values are rejected before any write."""
        with pytest.raises(ValidationError):
            await vault.confirm_import(
                bookmark_file(anchor("https://a.example", "A")),
                {"https://a.example": "merge"},
            )
        assert await vault.list_bookmarks() == []

    async def test_failure_writes_nothing(self, vault, storage, monkeypatch):
        """A failing write rolls back every folder and bookmark of the import."""
        calls = {"n": 0}
        original = storage.insert_bookmark

        async def flaky_insert(row):
            calls["n"] += 1
            if calls["n"] == 2:
                raise RuntimeError("disk full")
            await original(row)

        monkeypatch.setattr(storage, "insert_bookmark", flaky_insert)
        html = bookmark_file(
            folder("Work", anchor("https://a.example", "A"), anchor("https://b.example", "B"))
        )
        with pytest.raises(TransactionError):
            await vault.confirm_import(html)
        assert await vault.list_folders() == []
        assert await vault.list_bookmarks() == []
