# SPDX-License-Identifier: AGPL-3.0-only
"""Cascading match-and-rewrite of markup fragments.

A change names an anchor (the fragment as a detector saw it) and what should
replace it. Detector coordinates drift as earlier repairs land, so the anchor is
located by an ordered list of matchers, each a pure function
``(content, anchor, replacement) -> StrategyMatch | None``. The first matcher
that returns a result wins and its name is recorded.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Literal

from .archive import Archive
from .errors import BinaryMemberError, PatchMatchError
from .markup import DOCUMENT_TAGS, Tag, epub_types, merge_attrs, parse_start_tag, replace_span, scan

logger = logging.getLogger(__name__)

ChangeKind = Literal["insert", "replace", "delete"]
CHANGE_KINDS: tuple[str, ...] = ("insert", "replace", "delete")

ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class Change:
    kind: ChangeKind
    old_content: str | None = None
    new_content: str = ""
    description: str = ""


@dataclass(frozen=True)
class StrategyMatch:
    content: str
    span: tuple[int, int] | None
    match_count: int = 1


@dataclass(frozen=True)
class PatchResult:
    content: str
    strategy: str
    span: tuple[int, int] | None = None
    match_count: int = 0
    changed: bool = False


def excerpt(text: str | None, limit: int = 80) -> str:
    flat = " ".join(str(text or "").split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def _tag_pair(anchor: str, replacement: str) -> tuple[Tag, Tag] | None:
    old = parse_start_tag(anchor)
    new = parse_start_tag(replacement)
    if old is None or new is None or old.name.lower() != new.name.lower():
        return None
    return old, new


def _merged_replacement(matched: str, replacement: str) -> str:
    """If ``matched`` and ``replacement`` are the same start tag, merge their attributes."""
    found = parse_start_tag(matched)
    new = parse_start_tag(replacement)
    if found is None or new is None or found.name.lower() != new.name.lower():
        return replacement
    out = Tag(found.name, merge_attrs(found.attrs, new.attrs), found.self_closing)
    return out.render()


def match_exact(content: str, anchor: str, replacement: str) -> StrategyMatch | None:
    idx = content.find(anchor)
    if idx < 0:
        return None
    end = idx + len(anchor)
    new = _merged_replacement(anchor, replacement)
    return StrategyMatch(replace_span(content, idx, end, new), (idx, idx + len(new)), content.count(anchor))


def _attrs_include(tag: Tag, wanted: Tag) -> bool:
    for key, _ in wanted.attrs:
        if tag.get(key) != wanted.get(key):
            return False
    return True


def match_attribute_merge(content: str, anchor: str, replacement: str) -> StrategyMatch | None:
    pair = _tag_pair(anchor, replacement)
    if pair is None:
        return None
    old, new = pair
    candidates = [
        el for el in scan(content).find(old.name) if _attrs_include(el.tag, old)
    ]
    if not candidates:
        return None
    el = candidates[0]
    rendered = Tag(el.tag.name, merge_attrs(el.tag.attrs, new.attrs), el.tag.self_closing).render()
    return StrategyMatch(
        replace_span(content, el.start, el.end, rendered),
        (el.start, el.start + len(rendered)),
        len(candidates),
    )


def flexible_pattern(anchor: str) -> re.Pattern[str]:
    parts: list[str] = []
    for token in re.split(r"(\s+)", anchor):
        if not token:
            continue
        if token.isspace():
            parts.append(r"\s+")
            continue
        parts.append("".join("[\"']" if ch in "\"'" else re.escape(ch) for ch in token))
    return re.compile("".join(parts))


def match_whitespace_flexible(content: str, anchor: str, replacement: str) -> StrategyMatch | None:
    if not anchor.strip():
        return None
    pattern = flexible_pattern(anchor.strip())
    hits = list(pattern.finditer(content))
    if not hits:
        return None
    m = hits[0]
    new = _merged_replacement(m.group(0), replacement)
    return StrategyMatch(replace_span(content, m.start(), m.end(), new), (m.start(), m.start() + len(new)), len(hits))


def match_semantic_role(content: str, anchor: str, replacement: str) -> StrategyMatch | None:
    """Add the replacement's role to every element carrying the anchor's epub:type.

    ``html``, ``head`` and ``body`` are never carriers, and elements that already
    declare a role are left alone. When the semantic value
    exists but every carrier already has a role the result has zero matches.
    """
    pair = _tag_pair(anchor, replacement)
    if pair is None:
        return None
    old, new = pair
    wanted = epub_types(old)
    role = new.get("role")
    if not wanted or not role or old.has("role"):
        return None
    extra = {k.lower() for k, _ in new.attrs} - {k.lower() for k, _ in old.attrs}
    if extra != {"role"}:
        return None
    carriers = [
        el for el in scan(content).elements
        if el.name not in DOCUMENT_TAGS and set(wanted) <= set(epub_types(el.tag))
    ]
    if not carriers:
        return None
    targets = [el for el in carriers if not el.tag.has("role")]
    out = content
    for el in reversed(targets):
        tag = Tag(el.tag.name, list(el.tag.attrs), el.tag.self_closing)
        tag.set("role", role)
        out = replace_span(out, el.start, el.end, tag.render())
    span = (targets[0].start, targets[0].end) if targets else None
    return StrategyMatch(out, span, len(targets))


def match_key_attribute(content: str, anchor: str, replacement: str) -> StrategyMatch | None:
    pair = _tag_pair(anchor, replacement)
    if pair is None:
        return None
    old, new = pair
    keys = sorted(old.attrs, key=lambda kv: (kv[0].lower() != "id", kv[0].lower() != "href"))
    elements = scan(content).find(old.name)
    for key, _ in keys:
        value = old.get(key)
        hits = [el for el in elements if el.tag.get(key) == value]
        if hits:
            el = hits[0]
            rendered = Tag(el.tag.name, merge_attrs(el.tag.attrs, new.attrs), el.tag.self_closing).render()
            return StrategyMatch(
                replace_span(content, el.start, el.end, rendered),
                (el.start, el.start + len(rendered)),
                len(hits),
            )
    return None


StrategyFn = Callable[[str, str, str], "StrategyMatch | None"]

MATCH_STRATEGIES: tuple[tuple[str, StrategyFn], ...] = (
    ("exact", match_exact),
    ("attribute_merge", match_attribute_merge),
    ("whitespace_flexible", match_whitespace_flexible),
    ("semantic_role", match_semantic_role),
    ("key_attribute", match_key_attribute),
)


def _replacement(change: Change) -> str:
    if change.kind == "delete":
        return ""
    if change.kind == "insert":
        return str(change.old_content) + change.new_content
    return change.new_content


def _already_applied(content: str, change: Change) -> bool:
    new = change.new_content
    if change.kind == "delete" or not new:
        return False
    if new not in content:
        return False
    old = change.old_content or ""
    if change.kind == "insert":
        return True
    return old not in content or old in new


def apply_change(content: str, change: Change) -> PatchResult:
    """Apply one change to text content, trying each matcher in order.

    Raises ``PatchMatchError`` when no matcher locates the anchor.
    """
    if change.kind not in CHANGE_KINDS:
        raise ValueError(f"unknown change kind: {change.kind!r}")
    anchor = change.old_content
    if not anchor:
        if change.kind != "insert":
            raise ValueError(f"{change.kind} requires an anchor")
        if change.new_content and change.new_content in content:
            return PatchResult(content, ALREADY_APPLIED)
        out = content + change.new_content
        return PatchResult(out, "append", (len(content), len(out)), 1, out != content)

    if _already_applied(content, change):
        return PatchResult(content, ALREADY_APPLIED)

    replacement = _replacement(change)
    tried: list[str] = []
    for name, fn in MATCH_STRATEGIES:
        tried.append(name)
        hit = fn(content, anchor, replacement)
        if hit is None:
            continue
        changed = hit.content != content
        if not changed and name != "semantic_role":
            return PatchResult(content, ALREADY_APPLIED, hit.span, hit.match_count)
        logger.debug("change %r matched by %s", change.description or change.kind, name)
        return PatchResult(hit.content, name, hit.span, hit.match_count, changed)

    raise PatchMatchError(
        f"could not locate anchor {excerpt(anchor)!r}"
        + (f" for {change.description}" if change.description else ""),
        anchor=anchor,
        strategies_tried=tuple(tried),
    )


def apply_to_archive(archive: Archive, path: str, change: Change) -> PatchResult:
    if not archive.is_text(path):
        raise BinaryMemberError(path, change.kind)
    content = archive.read_text(path)
    result = apply_change(content, change)
    if result.changed:
        archive.write_text(path, result.content)
    return result
