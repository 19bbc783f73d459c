# SPDX-License-Identifier: AGPL-3.0-only
"""Targeted markup helpers: start-tag parsing and offset-aware tag scanning.

Repairs rewrite single tags in place rather than re-serializing a whole DOM, so
everything here works on source offsets and keeps attribute spelling and order.
"""
from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Iterable

VOID_ELEMENTS = frozenset(
    {
        "area", "base", "br", "col", "embed", "hr", "img", "input",
        "link", "meta", "param", "source", "track", "wbr",
    }
)
LANDMARK_ROLES = frozenset(
    {"banner", "complementary", "contentinfo", "form", "main", "navigation", "region", "search"}
)
NATIVE_LANDMARKS = frozenset({"main", "nav", "aside", "header", "footer"})
# Document-level elements never receive landmark or semantic roles.
DOCUMENT_TAGS = frozenset({"html", "head", "body"})
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")

_START_TAG_RE = re.compile(
    r"""^\s*<([A-Za-z][\w:.-]*)((?:\s+[^\s=/>"']+(?:\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'=<>`]+))?)*)\s*(/?)>\s*$""",
    re.S,
)
_ATTR_RE = re.compile(r"""([^\s=/>"']+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?""")


@dataclass
class Tag:
    """A parsed start tag. Attribute values are kept as written in the source."""

    name: str
    attrs: list[tuple[str, str | None]] = field(default_factory=list)
    self_closing: bool = False

    def _index(self, name: str) -> int:
        key = name.lower()
        for i, (k, _) in enumerate(self.attrs):
            if k.lower() == key:
                return i
        return -1

    def has(self, name: str) -> bool:
        return self._index(name) >= 0

    def get(self, name: str, default: str | None = None) -> str | None:
        i = self._index(name)
        if i < 0:
            return default
        value = self.attrs[i][1]
        return html.unescape(value) if value is not None else ""

    def set(self, name: str, value: str | None, *, raw: bool = False) -> None:
        if value is not None and not raw:
            value = html.escape(value, quote=True)
        i = self._index(name)
        if i >= 0:
            self.attrs[i] = (self.attrs[i][0], value)
        else:
            self.attrs.append((name, value))

    def tokens(self, name: str) -> list[str]:
        return str(self.get(name) or "").split()

    def render(self) -> str:
        parts = [self.name]
        for key, value in self.attrs:
            if value is None:
                parts.append(key)
            elif '"' in value:
                parts.append(f"{key}='{value}'")
            else:
                parts.append(f'{key}="{value}"')
        return "<" + " ".join(parts) + ("/>" if self.self_closing else ">")


def parse_start_tag(text: str) -> Tag | None:
    """Parse ``text`` if it is exactly one start tag, else ``None``."""
    m = _START_TAG_RE.match(text or "")
    if not m:
        return None
    attrs: list[tuple[str, str | None]] = []
    for am in _ATTR_RE.finditer(m.group(2) or ""):
        value = next((g for g in am.group(2, 3, 4) if g is not None), None)
        attrs.append((am.group(1), value))
    return Tag(name=m.group(1), attrs=attrs, self_closing=bool(m.group(3)))


def merge_attrs(
    old: Iterable[tuple[str, str | None]], new: Iterable[tuple[str, str | None]]
) -> list[tuple[str, str | None]]:
    """New values override; old attributes absent from ``new`` are kept in place."""
    merged = list(old)
    index = {k.lower(): i for i, (k, _) in enumerate(merged)}
    for key, value in new:
        i = index.get(key.lower())
        if i is None:
            index[key.lower()] = len(merged)
            merged.append((key, value))
        else:
            merged[i] = (merged[i][0], value)
    return merged


@dataclass
class Element:
    tag: Tag
    start: int
    end: int
    depth: int
    index: int
    parent: int | None
    close: tuple[int, int] | None = None

    @property
    def name(self) -> str:
        return self.tag.name.lower()

    @property
    def raw_span(self) -> tuple[int, int]:
        return self.start, self.end


class TagScanner(HTMLParser):
    """Collect every start tag with its source offsets, depth and parent."""

    def __init__(self, text: str) -> None:
        super().__init__(convert_charrefs=True)
        self.text = text
        self.elements: list[Element] = []
        self._stack: list[int] = []
        self._line_starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(i + 1)
        self.feed(text)
        self.close()

    def _offset(self) -> int:
        line, col = self.getpos()
        return self._line_starts[line - 1] + col

    def _open(self, self_closing: bool) -> None:
        raw = self.get_starttag_text() or ""
        start = self._offset()
        tag = parse_start_tag(raw)
        if tag is None:
            return
        el = Element(
            tag=tag,
            start=start,
            end=start + len(raw),
            depth=len(self._stack),
            index=len(self.elements),
            parent=self._stack[-1] if self._stack else None,
        )
        self.elements.append(el)
        if not self_closing and el.name not in VOID_ELEMENTS:
            self._stack.append(el.index)

    def handle_starttag(self, tag, attrs):
        self._open(False)

    def handle_startendtag(self, tag, attrs):
        self._open(True)

    def handle_endtag(self, tag):
        name = tag.lower()
        opened = [i for i in self._stack if self.elements[i].name == name]
        if not opened:
            return
        start = self._offset()
        end = self.text.find(">", start) + 1
        target = opened[-1]
        while self._stack:
            idx = self._stack.pop()
            if idx == target:
                self.elements[idx].close = (start, end)
                break

    def find(self, *names: str) -> list[Element]:
        wanted = {n.lower() for n in names}
        return [e for e in self.elements if e.name in wanted]

    def first(self, name: str) -> Element | None:
        found = self.find(name)
        return found[0] if found else None

    def children(self, parent: Element) -> list[Element]:
        return [e for e in self.elements if e.parent == parent.index]


def scan(text: str) -> TagScanner:
    return TagScanner(text)


def body_children(text: str, scanner: TagScanner | None = None) -> list[Element]:
    sc = scanner or scan(text)
    body = sc.first("body")
    return sc.children(body) if body is not None else []


def replace_span(text: str, start: int, end: int, new: str) -> str:
    return text[:start] + new + text[end:]


def rewrite_tag(text: str, element: Element, tag: Tag) -> str:
    return replace_span(text, element.start, element.end, tag.render())


def apply_edits(text: str, edits: Iterable[tuple[int, int, str]]) -> str:
    """Apply non-overlapping ``(start, end, replacement)`` edits taken from one scan."""
    out = text
    for start, end, new in sorted(edits, key=lambda e: (e[0], e[1]), reverse=True):
        out = replace_span(out, start, end, new)
    return out


def copy_tag(tag: Tag, name: str | None = None) -> Tag:
    return Tag(name or tag.name, list(tag.attrs), tag.self_closing)


def descendants(scanner: TagScanner, element: Element) -> list[Element]:
    if element.close is None:
        return []
    lo, hi = element.end, element.close[0]
    return [e for e in scanner.elements if lo <= e.start < hi]


def roles(tag: Tag) -> list[str]:
    return [r.lower() for r in tag.tokens("role")]


def epub_types(tag: Tag) -> list[str]:
    return [t.lower() for t in tag.tokens("epub:type")]


def has_main_landmark(text: str, scanner: TagScanner | None = None) -> bool:
    sc = scanner or scan(text)
    for el in sc.elements:
        if el.name == "main" or "main" in roles(el.tag) or "bodymatter" in epub_types(el.tag):
            return True
    return False


def has_any_landmark(text: str, scanner: TagScanner | None = None) -> bool:
    sc = scanner or scan(text)
    for el in sc.elements:
        if el.name in NATIVE_LANDMARKS or LANDMARK_ROLES.intersection(roles(el.tag)):
            return True
    return False


def text_between(text: str, element: Element) -> str:
    """Inner text of ``element`` with markup stripped."""
    if element.close is None:
        return ""
    inner = text[element.end:element.close[0]]
    return html.unescape(re.sub(r"<[^>]*>", "", inner))
