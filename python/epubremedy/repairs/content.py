# SPDX-License-Identifier: AGPL-3.0-only
"""Content-document repairs that add or adjust attributes on existing markup."""
from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath

from ..archive import Archive
from ..markup import DOCUMENT_TAGS, apply_edits, copy_tag, descendants, epub_types, scan, text_between
from ..patching import Change, apply_to_archive, match_semantic_role
from ..types import FixOutcome

logger = logging.getLogger(__name__)

EPUB_TYPE_TO_ARIA_ROLE: dict[str, str] = {
    "chapter": "doc-chapter",
    "part": "doc-part",
    "appendix": "doc-appendix",
    "bibliography": "doc-bibliography",
    "colophon": "doc-colophon",
    "conclusion": "doc-conclusion",
    "dedication": "doc-dedication",
    "endnotes": "doc-endnotes",
    "epilogue": "doc-epilogue",
    "epigraph": "doc-epigraph",
    "errata": "doc-errata",
    "example": "doc-example",
    "foreword": "doc-foreword",
    "glossary": "doc-glossary",
    "index": "doc-index",
    "introduction": "doc-introduction",
    "noteref": "doc-noteref",
    "notice": "doc-notice",
    "pagelist": "doc-pagelist",
    "preface": "doc-preface",
    "prologue": "doc-prologue",
    "pullquote": "doc-pullquote",
    "qna": "doc-qna",
    "toc": "doc-toc",
    "abstract": "doc-abstract",
    "acknowledgments": "doc-acknowledgments",
    "afterword": "doc-afterword",
    "credit": "doc-credit",
    "credits": "doc-credits",
    "landmarks": "navigation",
    "rearnotes": "doc-endnotes",
    "sidebar": "complementary",
    "footnote": "note",
    "endnote": "note",
    "rearnote": "note",
}

SKIP_AUTO_ROLE_TYPES = frozenset(
    {
        "frontmatter", "bodymatter", "backmatter", "cover", "titlepage", "subtitle",
        "pagebreak", "loi", "lot", "tip", "footnotes", "page-list",
    }
)

SKIP_LINK_HREFS = frozenset({"#main", "#content", "#main-content"})
SKIP_LINK_STYLE = "position:absolute;left:-9999px;top:auto;width:1px;height:1px;overflow:hidden;"


def role_for_epub_type(epub_type: str) -> str | None:
    token = epub_type.lower()
    if token in SKIP_AUTO_ROLE_TYPES:
        return None
    return EPUB_TYPE_TO_ARIA_ROLE.get(token)


def _nothing(change_type: str, description: str) -> list[FixOutcome]:
    return [FixOutcome(True, None, description, change_type)]


def add_html_lang(archive: Archive, language: str = "en") -> list[FixOutcome]:
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        text = archive.read_text(path)
        root = scan(text).first("html")
        if root is None or root.tag.has("lang"):
            continue
        new = copy_tag(root.tag)
        new.set("lang", language)
        if not new.has("xml:lang"):
            new.set("xml:lang", language)
        raw = text[root.start:root.end]
        result = apply_to_archive(archive, path, Change("replace", raw, new.render(), "add html lang"))
        outcomes.append(
            FixOutcome(
                success=True,
                file_path=path,
                description=f'Added lang="{language}" attribute',
                change_type="attribute",
                before=raw,
                after=new.render(),
                modified=result.changed,
                strategy=result.strategy,
            )
        )
    return outcomes or _nothing("attribute", "All content documents already declare a language")


def link_label(href: str) -> str:
    if href.startswith("#"):
        return "Jump to " + re.sub(r"[-_]+", " ", href[1:]).strip()
    name = href.split("#", 1)[0].rsplit("/", 1)[-1]
    if re.search(r"\.(x?html?)$", name, re.I):
        return re.sub(r"[-_]+", " ", PurePosixPath(name).stem).strip() or "Link"
    return "Link"


def fix_empty_links(archive: Archive) -> list[FixOutcome]:
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        text = archive.read_text(path)
        sc = scan(text)
        edits: list[tuple[int, int, str]] = []
        labels: list[str] = []
        for a in sc.find("a"):
            href = a.tag.get("href")
            if not href or (a.close is None and not a.tag.self_closing):
                continue
            if a.tag.has("aria-label") or a.tag.has("aria-labelledby") or a.tag.has("title"):
                continue
            if text_between(text, a).strip():
                continue
            if any(el.name == "img" and (el.tag.get("alt") or "").strip() for el in descendants(sc, a)):
                continue
            label = link_label(href)
            new = copy_tag(a.tag)
            new.set("aria-label", label)
            edits.append((a.start, a.end, new.render()))
            labels.append(f'aria-label="{label}"')
        if not edits:
            continue
        archive.write_text(path, apply_edits(text, edits))
        outcomes.append(
            FixOutcome(
                success=True,
                file_path=path,
                description=f"Fixed {len(edits)} empty link(s)",
                change_type="attribute",
                after="\n".join(labels),
                modified=True,
            )
        )
    return outcomes or _nothing("attribute", "No empty links found")


def add_epub_type_roles(archive: Archive) -> list[FixOutcome]:
    """Mirror ``epub:type`` semantics into ARIA roles, one semantic value at a time."""
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        text = archive.read_text(path)
        seen: list[str] = []
        for el in scan(text).elements:
            if el.name in DOCUMENT_TAGS or el.tag.has("role"):
                continue
            for token in epub_types(el.tag):
                if role_for_epub_type(token) and token not in seen:
                    seen.append(token)
                    break
        if not seen:
            continue
        updated = text
        added = 0
        for token in seen:
            role = role_for_epub_type(token)
            hit = match_semantic_role(
                updated, f'<div epub:type="{token}">', f'<div epub:type="{token}" role="{role}">'
            )
            if hit is None or hit.match_count == 0:
                continue
            updated = hit.content
            added += hit.match_count
        if updated == text:
            continue
        archive.write_text(path, updated)
        outcomes.append(
            FixOutcome(
                success=True,
                file_path=path,
                description=f"Added {added} role(s) matching epub:type",
                change_type="attribute",
                after=", ".join(f"{t} -> {role_for_epub_type(t)}" for t in seen),
                modified=True,
                strategy="semantic_role",
            )
        )
    return outcomes or _nothing("attribute", "All epub:type carriers already have roles")


def add_table_headers(archive: Archive) -> list[FixOutcome]:
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        text = archive.read_text(path)
        sc = scan(text)
        edits: list[tuple[int, int, str]] = []
        tables = 0
        for table in sc.find("table"):
            inner = descendants(sc, table)
            if any(el.name == "th" for el in inner):
                continue
            row = next((el for el in inner if el.name == "tr"), None)
            if row is None:
                continue
            cells = [el for el in inner if el.parent == row.index and el.name == "td"]
            if not cells or any(c.close is None for c in cells):
                continue
            for cell in cells:
                th = copy_tag(cell.tag, "th")
                if not th.has("scope"):
                    th.set("scope", "col")
                edits.append((cell.start, cell.end, th.render()))
                edits.append((cell.close[0], cell.close[1], "</th>"))
            tables += 1
        if not edits:
            continue
        archive.write_text(path, apply_edits(text, edits))
        outcomes.append(
            FixOutcome(True, path, f"Added headers to {tables} table(s)", "structure", modified=True)
        )
    return outcomes or _nothing("structure", "All tables already have headers")


def add_skip_navigation(archive: Archive) -> list[FixOutcome]:
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        text = archive.read_text(path)
        sc = scan(text)
        body = sc.first("body")
        if body is None:
            continue
        if any(
            a.tag.get("href") in SKIP_LINK_HREFS or {"skip-link", "skip-nav"} & set(a.tag.tokens("class"))
            for a in sc.find("a")
        ):
            continue
        target = next(
            (
                el for el in sc.elements[body.index + 1:]
                if el.name == "main" or "main" in el.tag.tokens("role") or el.tag.get("id") in ("main", "content")
            ),
            None,
        )
        if target is None:
            target = next(
                (el for el in sc.children(body) if el.name in ("div", "section", "article")), None
            )
        if target is None:
            continue
        edits: list[tuple[int, int, str]] = []
        target_id = target.tag.get("id")
        if not target_id:
            target_id = "main-content"
            tagged = copy_tag(target.tag)
            tagged.set("id", target_id)
            edits.append((target.start, target.end, tagged.render()))
        link = (
            f'<a href="#{target_id}" class="skip-link" style="{SKIP_LINK_STYLE}">'
            "Skip to main content</a>"
        )
        edits.append((body.end, body.end, "\n" + link))
        archive.write_text(path, apply_edits(text, edits))
        outcomes.append(
            FixOutcome(True, path, "Added skip navigation link", "structure", after=link, modified=True)
        )
    return outcomes or _nothing("structure", "Skip navigation already present or not applicable")
