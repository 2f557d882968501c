"""
Netscape bookmark file parser.

Every major browser exports bookmarks as nested ``DL``/``DT`` lists::

    <DL><p>
      <DT><H3>Folder</H3>
      <DL><p>
        <DT><A HREF="https://a.example">A</A>
        <DT><H3>Sub</H3>
        <DL><p>
          <DT><A HREF="https://b.example">B</A>
        </DL><p>
      </DL><p>
      <DT><A HREF="https://c.example">C</A>
    </DL>

A folder's contents are the ``DL`` that follows its ``H3`` as a sibling,
not a child, so the hierarchy cannot be recovered from element nesting.
The source is first flattened into open/close/text tokens for a fixed tag
set and then walked with an explicit stack of open lists.
"""
import logging
from html.parser import HTMLParser
from typing import Literal, NamedTuple, Optional, Union

from ..exceptions import ValidationError

logger = logging.getLogger("mink.bookmarks")

TOKEN_TAGS = frozenset({"dl", "dt", "h3", "a", "h1", "h2", "p"})
DISCARDED_URLS = ("javascript:",)
DEFAULT_MAX_DEPTH = 256


class Token(NamedTuple):
    type: Literal["open", "close", "text"]
    tag: str = ""
    value: str = ""
    attrs: Optional[dict[str, str]] = None


class FolderNode(NamedTuple):
    name: str
    children: list
    type: Literal["folder"] = "folder"


class BookmarkNode(NamedTuple):
    title: str
    url: str
    type: Literal["bookmark"] = "bookmark"


Node = Union[FolderNode, BookmarkNode]


class _Tokenizer(HTMLParser):
    """Collect tokens for TOKEN_TAGS; text of other tags is kept as text.

    Character references are decoded by HTMLParser in both text and
    attribute values.
    """

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.tokens: list[Token] = []

    def handle_starttag(self, tag, attrs):
        if tag in TOKEN_TAGS:
            self.tokens.append(
                Token("open", tag, attrs={k.lower(): v or "" for k, v in attrs})
            )

    def handle_startendtag(self, tag, attrs):
        self.handle_starttag(tag, attrs)

    def handle_endtag(self, tag):
        if tag in TOKEN_TAGS:
            self.tokens.append(Token("close", tag))

    def handle_data(self, data):
        text = data.replace("\xa0", " ").strip()
        if text:
            self.tokens.append(Token("text", value=text))


def tokenize(source: str) -> list[Token]:
    tokenizer = _Tokenizer()
    tokenizer.feed(source)
    tokenizer.close()
    return tokenizer.tokens


def _is(token: Token, kind: str, tag: str) -> bool:
    return token.type == kind and token.tag == tag


def _collect_text(tokens: list[Token], pos: int, closing: str) -> tuple[str, int]:
    """Concatenate text tokens up to the ``closing`` tag (consumed)."""
    text = ""
    while pos < len(tokens):
        token = tokens[pos]
        if token.type == "text":
            text += token.value
            pos += 1
        elif _is(token, "close", closing):
            pos += 1
            break
        else:
            break
    return text.strip(), pos


def _keep_url(url: str) -> bool:
    if not url or url == "about:blank":
        return False
    return not url.lower().startswith(DISCARDED_URLS)


def parse_bookmarks(source: str, max_depth: int = DEFAULT_MAX_DEPTH) -> list[Node]:
    """Parse a Netscape bookmark export into a tree.

    Args:
        source: File content.
        max_depth: Maximum folder nesting accepted.

    Returns:
        Ordered FolderNode / BookmarkNode list of the first top-level ``DL``;
        empty when the source has no list.

    Raises:
        ValidationError: If lists are nested deeper than ``max_depth``.
    """
    tokens = tokenize(source)
    pos = 0
    while pos < len(tokens) and not _is(tokens[pos], "open", "dl"):
        pos += 1
    if pos >= len(tokens):
        return []
    pos += 1

    root: list[Node] = []
    # Each frame: (items of the open list, folder to merge into on close)
    stack: list[tuple[list[Node], Optional[FolderNode]]] = [(root, None)]

    def push(items: list[Node], merge_into: Optional[FolderNode] = None) -> None:
        if len(stack) > max_depth:
            raise ValidationError(
                f"Bookmark folders are nested deeper than {max_depth} levels"
            )
        stack.append((items, merge_into))

    while pos < len(tokens) and stack:
        token = tokens[pos]
        items = stack[-1][0]

        if _is(token, "close", "dl"):
            pos += 1
            closed, merge_into = stack.pop()
            if merge_into is not None:
                merge_into.children.extend(closed)
            continue

        if _is(token, "open", "dl"):
            # list without a heading: its items belong to the previous folder
            pos += 1
            last = items[-1] if items and isinstance(items[-1], FolderNode) else None
            push([], last)
            continue

        if not _is(token, "open", "dt"):
            pos += 1
            continue

        pos += 1
        if pos >= len(tokens):
            break
        inner = tokens[pos]

        if _is(inner, "open", "h3"):
            name, pos = _collect_text(tokens, pos + 1, "h3")
            folder = FolderNode(name=name, children=[])
            items.append(folder)
            # find the sibling DL holding this folder's contents
            while pos < len(tokens):
                peek = tokens[pos]
                if _is(peek, "open", "dl"):
                    pos += 1
                    push(folder.children)
                    break
                if _is(peek, "open", "dt") or _is(peek, "close", "dl"):
                    break
                pos += 1
        elif _is(inner, "open", "a"):
            url = (inner.attrs or {}).get("href", "").strip()
            title, pos = _collect_text(tokens, pos + 1, "a")
            if _keep_url(url):
                items.append(BookmarkNode(title=title or url, url=url))
        else:
            pos += 1

    logger.debug("Parsed bookmark file: %d top-level node(s)", len(root))
    return root


def iter_bookmarks(tree: list[Node]):
    """Yield ``(BookmarkNode, path_parts)`` depth-first, in document order."""
    stack: list[tuple[Node, tuple[str, ...]]] = [(n, ()) for n in reversed(tree)]
    while stack:
        node, parts = stack.pop()
        if isinstance(node, FolderNode):
            inner = parts + (node.name,)
            stack.extend((child, inner) for child in reversed(node.children))
        else:
            yield node, parts


def iter_folders(tree: list[Node]):
    """Yield ``(FolderNode, path_parts)`` for every folder, pre-order."""
    stack: list[tuple[Node, tuple[str, ...]]] = [(n, ()) for n in reversed(tree)]
    while stack:
        node, parts = stack.pop()
        if isinstance(node, FolderNode):
            inner = parts + (node.name,)
            yield node, inner
            stack.extend((child, inner) for child in reversed(node.children))
