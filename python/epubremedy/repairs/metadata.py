# SPDX-License-Identifier: AGPL-3.0-only
"""Package-document (OPF) metadata repairs."""
from __future__ import annotations

import html
import logging
import re
from typing import Sequence

from ..archive import Archive
from ..errors import ArchiveError
from ..patching import Change, apply_to_archive
from ..types import FixOutcome

logger = logging.getLogger(__name__)

DEFAULT_FEATURES: tuple[str, ...] = ("structuralNavigation", "tableOfContents", "readingOrder")
DEFAULT_SUMMARY = (
    "This publication includes structural navigation, a table of contents, "
    "and follows a logical reading order."
)

_LANG_RE = re.compile(r"<dc:language\b[^>]*>", re.I)
_EMPTY_LANG_RE = re.compile(r"<dc:language\b[^>/]*(?:/>|>\s*</dc:language>)", re.I)
_DC_ELEMENT_RE = re.compile(r"<dc:\w+\b[^>]*>[^<]*</dc:\w+>", re.I)
_METADATA_OPEN_RE = re.compile(r"<metadata\b[^>]*>", re.I)


def _opf(archive: Archive, change_type: str) -> tuple[str | None, FixOutcome | None]:
    try:
        return archive.opf_path(), None
    except ArchiveError as exc:
        logger.warning("cannot locate package document: %s", exc)
        return None, FixOutcome(False, None, f"Failed to locate package document: {exc}", change_type)


def add_language(archive: Archive, language: str = "en") -> FixOutcome:
    path, failed = _opf(archive, "metadata")
    if failed:
        return failed
    opf = archive.read_text(path)
    element = f"<dc:language>{html.escape(language)}</dc:language>"

    empty = _EMPTY_LANG_RE.search(opf)
    if empty:
        result = apply_to_archive(archive, path, Change("replace", empty.group(0), element, "fill empty dc:language"))
        return FixOutcome(
            True, path, f'Filled empty dc:language with "{language}"', "metadata",
            before=empty.group(0), after=element, modified=result.changed, strategy=result.strategy,
        )
    if _LANG_RE.search(opf):
        return FixOutcome(True, path, "Language declaration already exists", "metadata")

    anchor = _DC_ELEMENT_RE.search(opf) or _METADATA_OPEN_RE.search(opf)
    if anchor is None:
        return FixOutcome(False, path, "Package document has no <metadata> element", "metadata")
    result = apply_to_archive(
        archive, path, Change("insert", anchor.group(0), f"\n    {element}", "add dc:language")
    )
    return FixOutcome(
        success=True,
        file_path=path,
        description=f'Added dc:language element with value "{language}"',
        change_type="metadata",
        before="No dc:language element",
        after=element,
        modified=result.changed,
        strategy=result.strategy,
    )


def _insert_before_metadata_end(archive: Archive, path: str, elements: Sequence[str], description: str) -> bool:
    new = "".join(f"  {e}\n  " for e in elements) + "</metadata>"
    result = apply_to_archive(archive, path, Change("replace", "</metadata>", new, description))
    return result.changed


def add_accessibility_metadata(
    archive: Archive,
    features: Sequence[str] = DEFAULT_FEATURES,
    *,
    access_mode: str = "textual",
    hazard: str = "none",
) -> FixOutcome:
    """Add whichever schema.org accessibility properties the package lacks."""
    path, failed = _opf(archive, "metadata")
    if failed:
        return failed
    opf = archive.read_text(path)
    missing: list[str] = []
    for feature in features:
        pattern = re.compile(
            r"schema:accessibilityFeature[^>]*>\s*" + re.escape(feature) + r"\s*<", re.I
        )
        if not pattern.search(opf):
            missing.append(f'<meta property="schema:accessibilityFeature">{feature}</meta>')
    if not re.search(r"schema:accessMode[\"'\s>]", opf, re.I):
        missing.append(f'<meta property="schema:accessMode">{access_mode}</meta>')
    if not re.search(r"schema:accessModeSufficient", opf, re.I):
        missing.append(f'<meta property="schema:accessModeSufficient">{access_mode}</meta>')
    if not re.search(r"schema:accessibilityHazard", opf, re.I):
        missing.append(f'<meta property="schema:accessibilityHazard">{hazard}</meta>')

    if not missing:
        return FixOutcome(True, path, "Accessibility metadata already present", "metadata")
    if "</metadata>" not in opf:
        return FixOutcome(False, path, "Package document has no </metadata> end tag", "metadata")
    _insert_before_metadata_end(archive, path, missing, "add accessibility metadata")
    return FixOutcome(
        success=True,
        file_path=path,
        description=f"Added {len(missing)} accessibility metadata element(s)",
        change_type="metadata",
        after="\n".join(missing),
        modified=True,
    )


def add_accessibility_summary(archive: Archive, summary: str | None = None) -> FixOutcome:
    path, failed = _opf(archive, "metadata")
    if failed:
        return failed
    opf = archive.read_text(path)
    if re.search(r"schema:accessibilitySummary", opf, re.I):
        return FixOutcome(True, path, "Accessibility summary already exists", "metadata")
    if "</metadata>" not in opf:
        return FixOutcome(False, path, "Package document has no </metadata> end tag", "metadata")
    element = f'<meta property="schema:accessibilitySummary">{html.escape(summary or DEFAULT_SUMMARY, quote=False)}</meta>'
    _insert_before_metadata_end(archive, path, [element], "add accessibility summary")
    return FixOutcome(True, path, "Added accessibility summary", "metadata", after=element, modified=True)
