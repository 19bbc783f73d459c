# SPDX-License-Identifier: AGPL-3.0-only
"""Built-in detector for the defects the repair algorithms know how to fix."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any

from .archive import Archive
from .errors import ArchiveError
from .markup import DOCUMENT_TAGS
from .repairs.contrast import (
    CONTRAST_THRESHOLD,
    DEFAULT_BACKGROUND,
    DEFAULT_LOW_CONTRAST_PALETTE,
    contrast_ratio,
    parse_color,
)
from .repairs.content import role_for_epub_type
from .repairs.headings import normalize_heading_levels
from .types import Issue

logger = logging.getLogger(__name__)

SOURCE = "auditor"

_RULE_RE = re.compile(r"([^{}]+)\{([^{}]*)\}")
_COLOR_RE = re.compile(r"(?:^|[;\s{])color\s*:\s*([^;}]+)", re.I)
_BG_RE = re.compile(r"background(?:-color)?\s*:\s*([^;}]+)", re.I)


def _split_tokens(value: str | None) -> list[str]:
    return [t.lower() for t in str(value or "").split() if t.strip()]


@dataclass
class DocumentFacts:
    html_lang: str | None
    has_html: bool
    has_body: bool
    heading_levels: list[int]
    image_count: int
    image_missing_alt_count: int
    link_count: int
    empty_link_count: int
    table_count: int
    tables_without_headers: int
    epub_type_missing_role_count: int
    has_main_landmark: bool
    style_blocks: list[str] = field(default_factory=list)


class _P(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.html_lang: str | None = None
        self.has_html = False
        self.has_body = False
        self.heading_levels: list[int] = []
        self.image_count = 0
        self.image_missing_alt_count = 0
        self.link_count = 0
        self.empty_link_count = 0
        self.tables: list[dict[str, Any]] = []
        self.epub_type_missing_role_count = 0
        self.has_main_landmark = False
        self.style_blocks: list[str] = []
        self._in_style = False
        self._links: list[dict[str, Any]] = []
        self._table_stack: list[dict[str, Any]] = []

    def handle_starttag(self, tag, attrs):
        a = {k.lower(): (v if v is not None else "") for k, v in attrs}
        t = tag.lower()
        roles = _split_tokens(a.get("role"))
        types = _split_tokens(a.get("epub:type"))
        if t == "html":
            self.has_html = True
            lang = a.get("lang") or a.get("xml:lang")
            self.html_lang = lang.strip() if lang and lang.strip() else None
        elif t == "body":
            self.has_body = True
        if t == "main" or "main" in roles or "bodymatter" in types:
            self.has_main_landmark = True
        if t in ("h1", "h2", "h3", "h4", "h5", "h6"):
            self.heading_levels.append(int(t[1]))
        if types and not roles and t not in DOCUMENT_TAGS:
            if any(role_for_epub_type(x) for x in types):
                self.epub_type_missing_role_count += 1
        if t == "img":
            self.image_count += 1
            if "alt" not in a:
                self.image_missing_alt_count += 1
            for link in self._links:
                if a.get("alt", "").strip():
                    link["named"] = True
        if t == "a" and a.get("href"):
            self.link_count += 1
            named = bool(
                a.get("aria-label", "").strip() or a.get("aria-labelledby", "").strip() or a.get("title", "").strip()
            )
            self._links.append({"named": named})
        elif t == "a":
            self._links.append({"named": True})
        if t == "table":
            row = {"has_th": False}
            self.tables.append(row)
            self._table_stack.append(row)
        if t == "th" and self._table_stack:
            self._table_stack[-1]["has_th"] = True
        if t == "style":
            self._in_style = True
            self.style_blocks.append("")

    def handle_startendtag(self, tag, attrs):
        self.handle_starttag(tag, attrs)
        if tag.lower() in ("a", "table", "style"):
            self.handle_endtag(tag)

    def handle_endtag(self, tag):
        t = tag.lower()
        if t == "a" and self._links:
            link = self._links.pop()
            if not link["named"]:
                self.empty_link_count += 1
        elif t == "table" and self._table_stack:
            self._table_stack.pop()
        elif t == "style":
            self._in_style = False

    def handle_data(self, data):
        if self._in_style and self.style_blocks:
            self.style_blocks[-1] += data
        if data.strip():
            for link in self._links:
                link["named"] = True


def parse_document_facts(text: str) -> DocumentFacts:
    p = _P()
    p.feed(text)
    p.close()
    return DocumentFacts(
        html_lang=p.html_lang,
        has_html=p.has_html,
        has_body=p.has_body,
        heading_levels=p.heading_levels,
        image_count=p.image_count,
        image_missing_alt_count=p.image_missing_alt_count,
        link_count=p.link_count,
        empty_link_count=p.empty_link_count,
        table_count=len(p.tables),
        tables_without_headers=sum(1 for t in p.tables if not t["has_th"]),
        epub_type_missing_role_count=p.epub_type_missing_role_count,
        has_main_landmark=p.has_main_landmark,
        style_blocks=p.style_blocks,
    )


def low_contrast_colors(
    css: str,
    *,
    palette: tuple[str, ...] = DEFAULT_LOW_CONTRAST_PALETTE,
    background: str = DEFAULT_BACKGROUND,
    threshold: float = CONTRAST_THRESHOLD,
) -> list[str]:
    wanted = {parse_color(c) for c in palette} - {None}
    default_bg = parse_color(background) or (255, 255, 255)
    found: list[str] = []
    for m in _RULE_RE.finditer(re.sub(r"/\*.*?\*/", "", css, flags=re.S)):
        body = m.group(2)
        cm = _COLOR_RE.search(";" + body)
        if not cm:
            continue
        fg = parse_color(cm.group(1))
        if fg is None or fg not in wanted:
            continue
        bm = _BG_RE.search(body)
        bg = (parse_color(bm.group(1)) if bm else None) or default_bg
        if contrast_ratio(fg, bg) < threshold:
            found.append(cm.group(1).strip())
    return found


class EpubAuditor:
    """Read-only checker producing canonical issues with source ``auditor``."""

    name = "auditor"

    def __init__(
        self,
        *,
        palette: tuple[str, ...] = DEFAULT_LOW_CONTRAST_PALETTE,
        background: str = DEFAULT_BACKGROUND,
        threshold: float = CONTRAST_THRESHOLD,
    ) -> None:
        self.palette = tuple(palette)
        self.background = background
        self.threshold = threshold

    def detect(self, archive_bytes: bytes) -> list[Issue]:
        archive = Archive.from_bytes(archive_bytes)
        issues: list[Issue] = []
        issues.extend(self._package_issues(archive))
        facts_by_path: dict[str, DocumentFacts] = {}
        for path in archive.content_documents():
            facts = parse_document_facts(archive.read_text(path))
            facts_by_path[path] = facts
            issues.extend(self._document_issues(path, facts))
        if facts_by_path and not any(f.has_main_landmark for f in facts_by_path.values()):
            issues.append(
                self._issue(
                    "STRUCT-004", "moderate",
                    "No content document declares a main content landmark", None,
                )
            )
        for path in archive.stylesheets():
            issues.extend(self._contrast_issues(path, archive.read_text(path)))
        for path, facts in facts_by_path.items():
            if facts.style_blocks:
                issues.extend(self._contrast_issues(path, "\n".join(facts.style_blocks)))
        logger.info("auditor found %d issue(s)", len(issues))
        return issues

    def _issue(self, code: str, severity: str, message: str, location: str | None, **extra: Any) -> Issue:
        return Issue(code=code, source=SOURCE, severity=severity, message=message, location=location, **extra)

    def _package_issues(self, archive: Archive) -> list[Issue]:
        try:
            opf_path = archive.opf_path()
        except ArchiveError as exc:
            logger.warning("skipping package checks: %s", exc)
            return []
        opf = archive.read_text(opf_path)
        out: list[Issue] = []
        lang = re.search(r"<dc:language\b[^>]*>([^<]*)</dc:language>", opf, re.I)
        if not lang or not lang.group(1).strip():
            out.append(self._issue("META-001", "serious", "Package document declares no dc:language", opf_path))
        if not re.search(r"schema:accessibilityFeature", opf, re.I):
            out.append(self._issue("META-002", "moderate", "Missing schema:accessibilityFeature metadata", opf_path))
        if not re.search(r"schema:accessibilitySummary", opf, re.I):
            out.append(self._issue("META-003", "moderate", "Missing schema:accessibilitySummary metadata", opf_path))
        if not re.search(r"schema:accessMode[\"'\s>]", opf, re.I):
            out.append(self._issue("META-004", "moderate", "Missing schema:accessMode metadata", opf_path))
        return out

    def _document_issues(self, path: str, facts: DocumentFacts) -> list[Issue]:
        out: list[Issue] = []
        if facts.has_html and not facts.html_lang:
            out.append(self._issue("SEM-001", "serious", "<html> element has no lang attribute", path))
        if facts.empty_link_count:
            out.append(
                self._issue("SEM-002", "serious", f"{facts.empty_link_count} link(s) without accessible text", path)
            )
        if facts.epub_type_missing_role_count:
            out.append(
                self._issue(
                    "SEM-003", "minor",
                    f"{facts.epub_type_missing_role_count} epub:type element(s) without matching role", path,
                )
            )
        if facts.image_missing_alt_count:
            out.append(
                self._issue("IMG-001", "critical", f"{facts.image_missing_alt_count} image(s) without alt", path)
            )
        if facts.tables_without_headers:
            out.append(
                self._issue("STRUCT-002", "serious", f"{facts.tables_without_headers} table(s) without headers", path)
            )
        levels = facts.heading_levels
        if levels and normalize_heading_levels(levels) != levels:
            out.append(
                self._issue(
                    "STRUCT-003", "moderate",
                    "Heading levels skip: " + " ".join(f"h{v}" for v in levels), path,
                )
            )
        return out

    def _contrast_issues(self, path: str, css: str) -> list[Issue]:
        colors = low_contrast_colors(
            css, palette=self.palette, background=self.background, threshold=self.threshold
        )
        if not colors:
            return []
        return [
            self._issue(
                "CONTRAST-001", "serious",
                f"{len(colors)} rule(s) use low-contrast text colors: {', '.join(sorted(set(colors)))}",
                path,
            )
        ]


def audit_report(issues: list[Issue]) -> dict[str, Any]:
    by_code: dict[str, int] = {}
    for i in issues:
        by_code[i.code] = by_code.get(i.code, 0) + 1
    return {
        "schema": "epubremedy.audit.v1",
        "total": len(issues),
        "by_code": dict(sorted(by_code.items())),
        "issues": [i.to_dict() for i in issues],
    }
