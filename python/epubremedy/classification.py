# SPDX-License-Identifier: AGPL-3.0-only
"""Fix-type classification and cross-detector deduplication."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .errors import IssueValidationError
from .types import FixType, Issue, issue_from_dict

logger = logging.getLogger(__name__)

AUTO_FIXABLE_CODES: frozenset[str] = frozenset(
    {
        "META-001",
        "META-002",
        "META-003",
        "META-004",
        "SEM-001",
        "SEM-002",
        "SEM-003",
        "STRUCT-002",
        "STRUCT-003",
        "STRUCT-004",
        "NAV-001",
    }
)

QUICK_FIXABLE_CODES: frozenset[str] = frozenset(
    {
        "IMG-001",
        "ACE-IMG-001",
        "FIG-001",
        "LANDMARK-UNIQUE",
        "METADATA-ACCESSMODE",
        "METADATA-ACCESSIBILITYFEATURE",
        "METADATA-ACCESSIBILITYHAZARD",
        "METADATA-ACCESSIBILITYSUMMARY",
    }
)

# Auto-fixable only while the contrast toggle is on; quickfix otherwise.
CONTRAST_CODES: frozenset[str] = frozenset({"CONTRAST-001", "COLOR-CONTRAST"})

DUPLICATE_CODE_MAP: dict[str, str] = {
    "ACE-META-001": "META-001",
    "ACE-META-002": "META-002",
    "ACE-META-003": "META-003",
    "ACE-META-004": "META-004",
    "ACE-SEM-001": "SEM-001",
    "ACE-IMG-001": "IMG-001",
    "ACE-LANDMARK-001": "STRUCT-004",
    "METADATA-ACCESSMODE": "META-004",
    "METADATA-ACCESSIBILITYFEATURE": "META-002",
    "METADATA-ACCESSIBILITYHAZARD": "META-002",
    "METADATA-ACCESSIBILITYSUMMARY": "META-003",
    "COLOR-CONTRAST": "CONTRAST-001",
}

CODE_ALIASES: dict[str, str] = {
    "metadata-accessmode": "METADATA-ACCESSMODE",
    "metadata-accessmode-missing": "METADATA-ACCESSMODE",
    "metadata-accessibilityfeature": "METADATA-ACCESSIBILITYFEATURE",
    "metadata-accessibilityfeature-missing": "METADATA-ACCESSIBILITYFEATURE",
    "metadata-accessibilityhazard": "METADATA-ACCESSIBILITYHAZARD",
    "metadata-accessibilityhazard-missing": "METADATA-ACCESSIBILITYHAZARD",
    "metadata-accessibilitysummary": "METADATA-ACCESSIBILITYSUMMARY",
    "metadata-accessibilitysummary-missing": "METADATA-ACCESSIBILITYSUMMARY",
    "color-contrast": "COLOR-CONTRAST",
    "landmark-unique": "LANDMARK-UNIQUE",
    "image-alt": "ACE-IMG-001",
    "html-has-lang": "ACE-SEM-001",
    "epub-type-has-matching-role": "SEM-003",
    "opf-014": "META-001",
}

WCAG_CRITERIA: dict[str, tuple[str, ...]] = {
    "META-001": ("3.1.1",),
    "META-002": ("4.1.2",),
    "META-003": ("4.1.2",),
    "META-004": ("4.1.2",),
    "SEM-001": ("3.1.1",),
    "SEM-002": ("2.4.4", "4.1.2"),
    "SEM-003": ("1.3.1", "4.1.2"),
    "IMG-001": ("1.1.1",),
    "ACE-IMG-001": ("1.1.1",),
    "FIG-001": ("1.1.1", "1.3.1"),
    "STRUCT-002": ("1.3.1",),
    "STRUCT-003": ("1.3.1", "2.4.6"),
    "STRUCT-004": ("1.3.1", "2.4.1"),
    "LANDMARK-UNIQUE": ("1.3.1",),
    "NAV-001": ("2.4.1",),
    "CONTRAST-001": ("1.4.3",),
    "COLOR-CONTRAST": ("1.4.3",),
}

CHANGE_TYPES: dict[str, str] = {
    "META-001": "metadata",
    "META-002": "metadata",
    "META-003": "metadata",
    "META-004": "metadata",
    "SEM-001": "attribute",
    "SEM-002": "attribute",
    "SEM-003": "attribute",
    "STRUCT-002": "structure",
    "STRUCT-003": "structure",
    "STRUCT-004": "landmark",
    "NAV-001": "structure",
    "CONTRAST-001": "style",
    "COLOR-CONTRAST": "style",
}

_FIX_TYPE_LABELS = {"auto": "Auto-Fixable", "quickfix": "Quick Fix", "manual": "Manual"}

_KNOWN = AUTO_FIXABLE_CODES | QUICK_FIXABLE_CODES | CONTRAST_CODES | set(DUPLICATE_CODE_MAP)


def normalize_code(code: str) -> str:
    """Canonical spelling of a detector code: alias lookup, then upper case.

    A leading ``EPUB-`` is dropped when the remainder is a known code.
    """
    raw = str(code or "").strip()
    alias = CODE_ALIASES.get(raw) or CODE_ALIASES.get(raw.lower())
    if alias:
        return alias
    upper = raw.upper()
    if upper.startswith("EPUB-") and upper[5:] in _KNOWN:
        return upper[5:]
    return upper


def classify(code: str, *, contrast_auto_fix: bool = False) -> FixType:
    normalized = normalize_code(code)
    if normalized in CONTRAST_CODES:
        return "auto" if contrast_auto_fix else "quickfix"
    if normalized in AUTO_FIXABLE_CODES:
        return "auto"
    if normalized in QUICK_FIXABLE_CODES:
        return "quickfix"
    return "manual"


def fix_type_label(fix_type: str) -> str:
    return _FIX_TYPE_LABELS.get(fix_type, "Manual")


def can_fix_in_app(code: str, *, contrast_auto_fix: bool = False) -> bool:
    return classify(code, contrast_auto_fix=contrast_auto_fix) in ("auto", "quickfix")


def wcag_criteria_for(code: str) -> frozenset[str]:
    return frozenset(WCAG_CRITERIA.get(normalize_code(code), ()))


def change_type_for(code: str) -> str:
    return CHANGE_TYPES.get(normalize_code(code), "content")


def deduplicate(issues: Iterable[Issue]) -> tuple[list[Issue], list[Issue]]:
    """Drop mapped issues whose canonical code is reported at the same location.

    Returns ``(survivors, removed)``, both in input order.
    """
    items = list(issues)
    present = {(normalize_code(i.code), i.normalized_location) for i in items}
    survivors: list[Issue] = []
    removed: list[Issue] = []
    for issue in items:
        canonical = DUPLICATE_CODE_MAP.get(normalize_code(issue.code))
        if canonical and (canonical, issue.normalized_location) in present:
            logger.info(
                "dropping duplicate %s [%s] at %r (covered by %s)",
                issue.code,
                issue.source,
                issue.normalized_location or "<package>",
                canonical,
            )
            removed.append(issue)
            continue
        survivors.append(issue)
    return survivors, removed


@dataclass
class ClassificationResult:
    issues: list[Issue]
    duplicates: list[Issue] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)
    fix_types: list[str] = field(default_factory=list)
    valid: list[Issue] = field(default_factory=list)

    @property
    def duplicates_removed(self) -> int:
        return len(self.duplicates)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


def _coerce(raw: Iterable[Any]) -> tuple[list[Issue], list[dict[str, Any]]]:
    valid: list[Issue] = []
    rejected: list[dict[str, Any]] = []
    for idx, entry in enumerate(raw):
        try:
            valid.append(entry if isinstance(entry, Issue) else issue_from_dict(entry))
        except IssueValidationError as exc:
            rejected.append({"index": idx, "entry": entry, "errors": exc.errors or [str(exc)]})
    return valid, rejected


def classify_and_deduplicate(
    raw: Iterable[Any], *, contrast_auto_fix: bool = False
) -> ClassificationResult:
    """Validate, deduplicate and classify one audit run's raw issues.

    Invalid entries are dropped and counted rather than raised.
    """
    valid, rejected = _coerce(raw)
    if rejected:
        logger.warning("rejected %d invalid issue record(s)", len(rejected))
        for row in rejected:
            logger.debug("rejected issue #%d: %s", row["index"], "; ".join(row["errors"]))

    survivors, duplicates = deduplicate(valid)
    if duplicates:
        logger.info(
            "deduplication: %d -> %d issues (removed %d duplicates)",
            len(valid),
            len(survivors),
            len(duplicates),
        )
    return ClassificationResult(
        issues=survivors,
        duplicates=duplicates,
        rejected=rejected,
        fix_types=[classify(i.code, contrast_auto_fix=contrast_auto_fix) for i in survivors],
        valid=valid,
    )
