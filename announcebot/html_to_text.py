"""Structural HTML-to-text conversion for the text/plain mail part.

The converter walks the parsed document and renders block elements
(paragraphs, headings, lists) as separated text blocks, wrapping inline text
at a fixed column width. Per-element formatting is table driven so callers
can override single elements, as the announcement renderer does for ``h2``
and ``h3``.

Block separation: between two adjacent blocks the number of line breaks is
the maximum of the first block's trailing and the second block's leading
breaks, and at least one.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, replace
from typing import Callable, Optional

from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, ProcessingInstruction, Tag

DEFAULT_WRAP_WIDTH = 72

_HARD_BREAK = "\n"
_SPACE_RUN = re.compile(r"[ \t\r\n\f]+")
_SKIPPED_TAGS = frozenset({"script", "style", "head", "title", "template"})


@dataclass(frozen=True)
class BlockFormat:
    """Formatting rule for one block element.

    ``reserved`` shrinks the wrap width for the block content, ``transform``
    post-processes the rendered block text and receives the wrap width.
    """

    leading: int = 2
    trailing: int = 2
    uppercase: bool = False
    reserved: int = 0
    transform: Optional[Callable[[str, int], str]] = None


def _list_item(text: str, _width: int) -> str:
    lines = text.split("\n")
    return "\n".join([" * " + lines[0]] + ["   " + line if line else line for line in lines[1:]])


def boxed(text: str, width: int) -> str:
    """Frame ``text`` between dash rules of ``width`` and indent it by two spaces."""
    rule = "-" * width
    body = "\n".join("  " + line for line in text.split("\n"))
    return f"{rule}\n{body}\n{rule}"


DEFAULT_FORMATS: dict[str, BlockFormat] = {
    "p": BlockFormat(),
    "div": BlockFormat(leading=1, trailing=1),
    "section": BlockFormat(leading=1, trailing=1),
    "article": BlockFormat(leading=1, trailing=1),
    "blockquote": BlockFormat(),
    "pre": BlockFormat(),
    "h1": BlockFormat(leading=3, trailing=2, uppercase=True),
    "h2": BlockFormat(uppercase=True),
    "h3": BlockFormat(uppercase=True),
    "h4": BlockFormat(uppercase=True),
    "h5": BlockFormat(uppercase=True),
    "h6": BlockFormat(uppercase=True),
    "ul": BlockFormat(),
    "ol": BlockFormat(),
    "li": BlockFormat(leading=1, trailing=1, reserved=3, transform=_list_item),
    "table": BlockFormat(),
    "tr": BlockFormat(leading=1, trailing=1),
}

_ROOT_FORMAT = BlockFormat(leading=0, trailing=0)


def announcement_formats(base: Optional[dict[str, BlockFormat]] = None) -> dict[str, BlockFormat]:
    """Formats used for announcements.

    - ``h2`` (the title) is boxed: no leading break, two trailing breaks.
    - ``h3`` (date line, presenter) has no leading break and keeps its case.
    """
    formats = dict(base or DEFAULT_FORMATS)
    formats["h2"] = BlockFormat(leading=0, trailing=2, reserved=4, transform=boxed)
    formats["h3"] = replace(formats["h3"], leading=0, uppercase=False)
    return formats


class _Block:
    """Accumulates inline text and rendered child blocks for one element."""

    def __init__(self, fmt: BlockFormat, width: int) -> None:
        self.fmt = fmt
        self.width = max(width - fmt.reserved, 1)
        self._pieces: list[tuple[int, str, int]] = []
        self._tokens: list[str] = []

    def add_text(self, text: str) -> None:
        collapsed = _SPACE_RUN.sub(" ", text)
        if collapsed:
            self._tokens.append(collapsed)

    def add_break(self) -> None:
        self._tokens.append(_HARD_BREAK)

    def add_block(self, piece: tuple[int, str, int]) -> None:
        self._flush_inline()
        if piece[1].strip():
            self._pieces.append(piece)

    def _flush_inline(self) -> None:
        if not self._tokens:
            return
        text = "".join(self._tokens)
        self._tokens = []

        lines: list[str] = []
        for line in text.split(_HARD_BREAK):
            line = line.strip(" ")
            if self.fmt.uppercase:
                line = line.upper()
            wrapped = textwrap.wrap(
                line, self.width, break_long_words=False, break_on_hyphens=False
            )
            lines.extend(wrapped or [""])

        rendered = "\n".join(lines).strip("\n")
        if rendered.strip():
            self._pieces.append((0, rendered, 0))

    def render(self) -> tuple[int, str, int]:
        self._flush_inline()
        out = ""
        prev_trailing = 0
        for leading, text, trailing in self._pieces:
            if out:
                out += "\n" * max(1, prev_trailing, leading)
            out += text
            prev_trailing = trailing

        if out and self.fmt.transform is not None:
            out = self.fmt.transform(out, self.width + self.fmt.reserved)
        return self.fmt.leading, out, self.fmt.trailing


class HtmlToText:
    """Configurable converter; see ``html_to_text`` for the one-shot helper."""

    def __init__(
        self,
        wrap_width: int = DEFAULT_WRAP_WIDTH,
        formats: Optional[dict[str, BlockFormat]] = None,
        hide_href_if_same_as_text: bool = True,
    ) -> None:
        if wrap_width < 8:
            raise ValueError("wrap_width must be at least 8")
        self.wrap_width = wrap_width
        self.formats = formats if formats is not None else dict(DEFAULT_FORMATS)
        self.hide_href_if_same_as_text = hide_href_if_same_as_text

    def convert(self, html: str) -> str:
        if not html:
            return ""
        soup = BeautifulSoup(html, "html.parser")
        root = _Block(_ROOT_FORMAT, self.wrap_width)
        self._walk(soup, root)
        _, text, _ = root.render()
        return "\n".join(line.rstrip() for line in text.split("\n"))

    def _walk(self, node: Tag, block: _Block) -> None:
        for child in node.children:
            if isinstance(child, (Comment, Doctype, ProcessingInstruction)):
                continue
            if isinstance(child, NavigableString):
                block.add_text(str(child))
                continue
            if not isinstance(child, Tag):
                continue

            name = child.name.lower()
            if name in _SKIPPED_TAGS:
                continue
            if name == "br":
                block.add_break()
            elif name == "a":
                block.add_text(self._link_text(child))
            elif name == "img":
                alt = child.get("alt")
                if alt:
                    block.add_text(str(alt))
            elif name in self.formats:
                inner = _Block(self.formats[name], block.width)
                self._walk(child, inner)
                block.add_block(inner.render())
            else:
                self._walk(child, block)

    def _link_text(self, anchor: Tag) -> str:
        text = " ".join(anchor.get_text().split())
        href = str(anchor.get("href") or "").strip()

        if not href or href.startswith("#"):
            return text
        if not text:
            return href
        if self.hide_href_if_same_as_text and href.removeprefix("mailto:") == text:
            return text
        return f"{text} [{href}]"


def html_to_text(
    html: str,
    wrap_width: int = DEFAULT_WRAP_WIDTH,
    formats: Optional[dict[str, BlockFormat]] = None,
) -> str:
    """Convert ``html`` to wrapped plain text."""
    return HtmlToText(wrap_width=wrap_width, formats=formats).convert(html)
