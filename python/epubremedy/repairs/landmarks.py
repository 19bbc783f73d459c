# SPDX-License-Identifier: AGPL-3.0-only
"""Main-landmark insertion and the post-remediation landmark invariant.

Across the whole content collection there is exactly one primary content
landmark; every content document carries at least one landmark of some kind.
"""
from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import Iterable

from ..archive import Archive
from ..errors import ArchiveError
from ..markup import (
    Element,
    Tag,
    body_children,
    copy_tag,
    epub_types,
    has_any_landmark,
    has_main_landmark,
    rewrite_tag,
    scan,
)
from ..patching import Change, apply_to_archive
from ..types import FixOutcome

logger = logging.getLogger(__name__)

MAIN_CANDIDATES = ("main", "section", "article")
_SKIP_CHILDREN = frozenset({"script", "noscript", "style", "template"})


def _stem(path: str) -> str:
    return PurePosixPath(path).stem.lower()


def _is_nav_document(path: str, text: str) -> bool:
    stem = _stem(path)
    if stem in {"nav", "toc"} or stem.startswith(("nav", "toc")):
        return True
    return any(el.name == "nav" and "toc" in epub_types(el.tag) for el in scan(text).elements)


def _matches(path: str, location: str) -> bool:
    loc = location.strip().lstrip("/")
    return bool(loc) and (path == loc or path.endswith("/" + loc))


def _ordered(archive: Archive, priority_locations: Iterable[str]) -> list[str]:
    docs = archive.content_documents()
    ordered: list[str] = []
    for loc in priority_locations:
        for path in docs:
            if _matches(path, str(loc)) and path not in ordered:
                ordered.append(path)
    rest = [p for p in docs if p not in ordered]
    navs = [p for p in rest if _is_nav_document(p, archive.read_text(p))]
    return ordered + [p for p in rest if p not in navs] + navs


def _add_role(archive: Archive, path: str, el: Element, raw: str, tag_role: str, description: str) -> FixOutcome:
    new = copy_tag(el.tag)
    new.set("role", tag_role)
    result = apply_to_archive(archive, path, Change("replace", raw, new.render(), description))
    return FixOutcome(
        success=True,
        file_path=path,
        description=description,
        change_type="landmark",
        before=raw,
        after=new.render(),
        modified=result.changed,
        strategy=result.strategy,
    )


def ensure_main_landmark(archive: Archive, priority_locations: Iterable[str] = ()) -> list[FixOutcome]:
    """Make sure exactly one primary content landmark exists across all content documents.

    Existing landmarks (``role="main"``, ``<main>``, ``epub:type="bodymatter"``)
    short-circuit the whole run. Otherwise the first ``main``/``section``/
    ``article`` without a role receives ``role="main"``, searching priority
    locations first and navigation documents last; failing that, one body is
    wrapped in ``<main>``.
    """
    docs = archive.content_documents()
    for path in docs:
        if has_main_landmark(archive.read_text(path)):
            logger.info("main landmark already present in %s", path)
            return [FixOutcome(True, None, f"Main landmark already present in {path}", "landmark")]

    order = _ordered(archive, priority_locations)
    for path in order:
        text = archive.read_text(path)
        sc = scan(text)
        body = sc.first("body")
        if body is None:
            continue
        for el in sc.elements[body.index + 1:]:
            if el.name in MAIN_CANDIDATES and not el.tag.has("role"):
                raw = text[el.start:el.end]
                return [_add_role(archive, path, el, raw, "main", f'Added role="main" to <{el.name}>')]

    for path in order:
        text = archive.read_text(path)
        body = scan(text).first("body")
        if body is None or body.close is None:
            continue
        inner = text[body.end:body.close[0]]
        wrapped = f"{text[:body.end]}\n<main>{inner}</main>\n{text[body.close[0]:]}"
        archive.write_text(path, wrapped)
        return [
            FixOutcome(
                success=True,
                file_path=path,
                description="Wrapped body content in <main>",
                change_type="landmark",
                before=text[body.start:body.end],
                after=text[body.start:body.end] + "\n<main>",
                modified=True,
                strategy="wrap_body",
            )
        ]

    logger.warning("no content document offers an insertion point for a main landmark")
    return [FixOutcome(False, None, "No content document offers a landmark insertion point", "landmark")]


def role_for_filename(path: str) -> str:
    stem = _stem(path)
    if "cover" in stem or "title" in stem:
        return "banner"
    if "toc" in stem or "nav" in stem:
        return "navigation"
    if "acknowledg" in stem or "colophon" in stem:
        return "contentinfo"
    return "region"


def region_label(path: str) -> str:
    words = re.sub(r"[-_.]+", " ", PurePosixPath(path).stem).strip()
    return words[:1].upper() + words[1:] if words else "Content"


def _landmark_tag(tag: Tag, role: str, path: str) -> Tag:
    tag.set("role", role)
    if role == "region" and not tag.has("aria-label") and not tag.has("aria-labelledby"):
        tag.set("aria-label", region_label(path))
    return tag


def validate_landmarks(archive: Archive) -> list[FixOutcome]:
    """Give every content document still lacking a landmark one on its first body child.

    The first child other than script-like elements receives the role derived
    from the file name. When that child already carries a non-landmark role
    (``doc-chapter`` and the like), the body content is wrapped in a ``<div>``
    with the landmark role instead. Files without a usable body child are
    reported as failures and left alone.
    """
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        try:
            text = archive.read_text(path)
        except ArchiveError as exc:
            logger.warning("%s: skipped by landmark validator: %s", path, exc)
            outcomes.append(FixOutcome(False, path, str(exc), "landmark"))
            continue
        sc = scan(text)
        if has_any_landmark(text, sc):
            continue
        role = role_for_filename(path)
        target = next((el for el in body_children(text, sc) if el.name not in _SKIP_CHILDREN), None)
        if target is None:
            logger.warning("%s: no body child available for a %s landmark", path, role)
            outcomes.append(
                FixOutcome(False, path, f"No insertion point for role={role!r}", "landmark")
            )
            continue

        if not target.tag.has("role"):
            new = _landmark_tag(copy_tag(target.tag), role, path)
            raw = text[target.start:target.end]
            archive.write_text(path, rewrite_tag(text, target, new))
            logger.info("%s: added role=%s to <%s>", path, role, target.name)
            outcomes.append(
                FixOutcome(
                    success=True,
                    file_path=path,
                    description=f'Added role="{role}" to <{target.name}>',
                    change_type="landmark",
                    before=raw,
                    after=new.render(),
                    modified=True,
                    strategy="offset",
                )
            )
            continue

        body = sc.first("body")
        if body is None or body.close is None:
            outcomes.append(
                FixOutcome(False, path, f"No insertion point for role={role!r}", "landmark")
            )
            continue
        wrapper = _landmark_tag(Tag("div"), role, path).render()
        inner = text[body.end:body.close[0]]
        archive.write_text(path, f"{text[:body.end]}\n{wrapper}{inner}</div>\n{text[body.close[0]:]}")
        logger.info("%s: wrapped body content in role=%s", path, role)
        outcomes.append(
            FixOutcome(
                success=True,
                file_path=path,
                description=f'Wrapped body content in <div role="{role}">',
                change_type="landmark",
                before=text[body.start:body.end],
                after=text[body.start:body.end] + "\n" + wrapper,
                modified=True,
                strategy="wrap_body",
            )
        )
    return outcomes
