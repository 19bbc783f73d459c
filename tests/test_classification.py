from __future__ import annotations

import logging

import pytest

from epubremedy.classification import (
    AUTO_FIXABLE_CODES,
    can_fix_in_app,
    change_type_for,
    classify,
    classify_and_deduplicate,
    deduplicate,
    fix_type_label,
    normalize_code,
    wcag_criteria_for,
)
from epubremedy.types import Issue


def _issue(code: str, source: str = "auditor", location: str | None = None) -> Issue:
    return Issue(code=code, source=source, severity="moderate", location=location)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("meta-001", "META-001"),
        (" SEM-002 ", "SEM-002"),
        ("color-contrast", "COLOR-CONTRAST"),
        ("image-alt", "ACE-IMG-001"),
        ("OPF-014", "META-001"),
        ("EPUB-META-001", "META-001"),
        ("EPUB-UNKNOWN-9", "EPUB-UNKNOWN-9"),
    ],
)
def test_normalize_code(raw: str, expected: str) -> None:
    assert normalize_code(raw) == expected


def test_classify_buckets() -> None:
    for code in AUTO_FIXABLE_CODES:
        assert classify(code) == "auto"
    assert classify("sem-003") == "auto"
    assert classify("IMG-001") == "quickfix"
    assert classify("metadata-accessmode") == "quickfix"
    assert classify("RSC-005") == "manual"
    assert classify("CONTRAST-001") == "quickfix"
    assert classify("color-contrast", contrast_auto_fix=True) == "auto"


def test_labels_and_lookup_tables() -> None:
    assert fix_type_label("auto") == "Auto-Fixable"
    assert fix_type_label("quickfix") == "Quick Fix"
    assert fix_type_label("bogus") == "Manual"
    assert can_fix_in_app("IMG-001")
    assert not can_fix_in_app("RSC-005")
    assert wcag_criteria_for("meta-001") == frozenset({"3.1.1"})
    assert wcag_criteria_for("RSC-005") == frozenset()
    assert change_type_for("STRUCT-004") == "landmark"
    assert change_type_for("RSC-005") == "content"


def test_mapped_and_canonical_report_at_same_location_deduplicate_to_canonical() -> None:
    ace = _issue("ACE-META-002", "ace", "OEBPS/content.opf")
    ours = _issue("META-002", "auditor", "OEBPS/content.opf")
    result = classify_and_deduplicate([ace, ours])
    assert [i.code for i in result.issues] == ["META-002"]
    assert result.duplicates == [ace]
    assert result.duplicates_removed == 1


def test_deduplicate_keeps_mapped_issue_at_a_different_location() -> None:
    survivors, removed = deduplicate(
        [_issue("ACE-IMG-001", "ace", "a.xhtml"), _issue("IMG-001", "auditor", "b.xhtml")]
    )
    assert len(survivors) == 2
    assert removed == []


def test_deduplicate_treats_blank_location_as_package_wide() -> None:
    survivors, removed = deduplicate([_issue("ACE-META-001", "ace", "  "), _issue("META-001")])
    assert [i.code for i in survivors] == ["META-001"]
    assert len(removed) == 1


def test_deduplicate_leaves_lone_mapped_code_alone() -> None:
    survivors, removed = deduplicate([_issue("ACE-META-001", "ace")])
    assert [i.code for i in survivors] == ["ACE-META-001"]
    assert removed == []


def test_invalid_entries_are_rejected_and_counted(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="epubremedy")
    result = classify_and_deduplicate(
        [
            {"code": "META-001", "source": "epubcheck", "severity": "serious"},
            {"severity": "serious"},
            {"code": "SEM-001", "severity": "unheard-of"},
            "not a record",
        ]
    )
    assert [i.code for i in result.issues] == ["META-001"]
    assert result.rejected_count == 3
    assert [r["index"] for r in result.rejected] == [1, 2, 3]
    assert result.fix_types == ["auto"]
    assert any("rejected 3 invalid issue record(s)" in r.getMessage() for r in caplog.records)
