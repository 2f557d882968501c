"""
Tests for Netscape bookmark export.
"""
from mink_vault.bookmarks.exporter import escape, render_bookmarks
from mink_vault.bookmarks.parser import BookmarkNode, FolderNode, parse_bookmarks
from mink_vault.vault import UserVault, admin_reset_password
from mink_vault.vault.models import Bookmark


def bm(url: str, title: str, folder_id=None) -> Bookmark:
    return Bookmark(id=url, url=url, title=title, folder_id=folder_id)


# --- Test Rendering ---

class TestRender:
    """Tests for the document layout."""

    def test_escape(self):
        """Ampersands, angle brackets and double quotes are escaped."""
        assert escape('a & <b> "c"') == "a &amp; &lt;b&gt; &quot;c&quot;"
        assert escape(None) == ""

    def test_empty_document(self):
        """An empty vault exports header and an empty list."""
        html = render_bookmarks({}, {}, {})
        assert html.startswith("<!DOCTYPE NETSCAPE-Bookmark-file-1>\n")
        assert "<TITLE>Bookmarks</TITLE>" in html
        assert html.endswith("<DL><p>\n</DL>\n")

    def test_layout(self):
        """Folders come before bookmarks and each level is indented four spaces."""
        html = render_bookmarks(
            {"f1": "Work", "f2": "Sub"},
            {None: ["f1"], "f1": ["f2"]},
            {
                None: [bm("https://root.example", "Root")],
                "f1": [bm("https://w.example", "W", "f1")],
                "f2": [bm("https://s.example", "S", "f2")],
            },
        )
        body = html.split("<DL><p>\n", 1)[1]
        assert body == (
            "    <DT><H3>Work</H3>\n"
            "    <DL><p>\n"
            "        <DT><H3>Sub</H3>\n"
            "        <DL><p>\n"
            '            <DT><A HREF="https://s.example">S</A>\n'
            "        </DL><p>\n"
            '        <DT><A HREF="https://w.example">W</A>\n'
            "    </DL><p>\n"
            '    <DT><A HREF="https://root.example">Root</A>\n'
            "</DL>\n"
        )

    def test_escaped_values(self):
        """Titles, names and URLs are escaped in the output."""
        html = render_bookmarks(
            {"f": "R&D"},
            {None: ["f"]},
            {"f": [bm('https://x.example/?a=1&b="2"', "<b>Bold</b>", "f")]},
        )
        assert "<DT><H3>R&amp;D</H3>" in html
        assert '<A HREF="https://x.example/?a=1&amp;b=&quot;2&quot;">&lt;b&gt;Bold&lt;/b&gt;</A>' in html

    def test_cycle_safe(self):
        """Folders reachable twice are written once."""
        html = render_bookmarks(
            {"a": "A", "b": "B"},
            {None: ["a"], "a": ["b"], "b": ["a"]},
            {},
        )
        assert html.count("<H3>A</H3>") == 1
        assert html.count("<H3>B</H3>") == 1


# --- Test Export From Vault ---

class TestExportBookmarks:
    """Tests for exporting a vault."""

    async def test_export_parses_back(self, vault):
        """Exported files import as the same tree."""
        work = await vault.create_folder({"name": "Work & Play"})
        await vault.create_bookmark({"url": "https://w.example", "title": "W", "folder_id": work.id})
        await vault.create_bookmark({"url": "https://r.example", "title": "R"})

        html = await vault.export_bookmarks()

        assert parse_bookmarks(html) == [
            FolderNode("Work & Play", [BookmarkNode("W", "https://w.example")]),
            BookmarkNode("R", "https://r.example"),
        ]

    async def test_undecryptable_records(self, storage, config, user, vault):
        """Lost folders keep their place; lost bookmarks are skipped."""
        old = await vault.create_folder({"name": "Old"})
        await vault.create_bookmark({"url": "https://old.example", "folder_id": old.id})
        await admin_reset_password(storage, config, user.id, "reset by the admin 123")

        async with UserVault.open(storage, config, user.id, "reset by the admin 123") as fresh:
            await fresh.create_bookmark(
                {"url": "https://new.example", "title": "New", "folder_id": old.id},
            )
            html = await fresh.export_bookmarks()

        assert "<H3>[encrypted]</H3>" in html
        assert "https://new.example" in html
        assert "https://old.example" not in html

    async def test_creation_order(self, vault):
        """Bookmarks are written oldest first, not most recently updated first."""
        await vault.create_bookmark({"url": "https://first.example", "title": "1"}, now=10)
        await vault.create_bookmark({"url": "https://second.example", "title": "2"}, now=20)

        html = await vault.export_bookmarks()

        assert html.index("https://first.example") < html.index("https://second.example")
