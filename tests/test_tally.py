from __future__ import annotations

import logging

from hypothesis import given, settings
from hypothesis import strategies as st

from epubremedy.config import RemediationSettings
from epubremedy.planner import build_plan
from epubremedy.tally import create_tally, normalize_source, validate_transition
from epubremedy.types import Issue


CODES = ["META-001", "ACE-META-001", "IMG-001", "ACE-IMG-001", "image-alt", "CONTRAST-001", "color-contrast", "X-42"]
LOCATIONS = [None, "OEBPS/a.xhtml", "OEBPS/b.xhtml"]
SOURCES = ["epubcheck", "DAISY Ace", "js-auditor", "mystery"]
SEVERITIES = ["critical", "serious", "moderate", "minor"]


def _issue(code: str, source: str = "auditor", severity: str = "serious", location: str | None = None) -> Issue:
    return Issue(code=code, source=source, severity=severity, location=location)  # type: ignore[arg-type]


def test_normalize_source_buckets() -> None:
    assert normalize_source("EPUBCheck 5.1") == "epubcheck"
    assert normalize_source("epub-check") == "epubcheck"
    assert normalize_source("DAISY Ace") == "ace"
    assert normalize_source("ace") == "ace"
    assert normalize_source("js-auditor") == "auditor"
    assert normalize_source("auditor") == "auditor"
    assert normalize_source("") == "unknown"
    assert normalize_source(None) == "unknown"
    assert normalize_source("something-else") == "unknown"


def test_create_tally_counts_every_dimension() -> None:
    tally = create_tally(
        [
            _issue("META-001", "epubcheck", "serious"),
            _issue("IMG-001", "ace", "critical"),
            {"code": "X-1", "source": "auditor", "severity": "minor"},
        ],
        "audit",
    )
    assert tally.grand_total == 3
    assert tally.by_source == {"epubcheck": 1, "ace": 1, "auditor": 1, "unknown": 0}
    assert tally.by_severity == {"critical": 1, "serious": 1, "moderate": 0, "minor": 1}
    assert tally.by_classification == {"auto": 1, "quickfix": 1, "manual": 1}
    assert tally.is_valid
    assert tally.to_dict()["schema"] == "epubremedy.tally.v1"


def test_create_tally_flags_unbucketed_severity_without_raising() -> None:
    tally = create_tally([{"code": "X-1", "source": "ace", "severity": "catastrophic"}], "audit")
    assert tally.grand_total == 1
    assert not tally.is_valid
    assert any("severity" in msg for msg in tally.validation_errors)


def test_contrast_toggle_changes_classification_bucket() -> None:
    items = [_issue("CONTRAST-001")]
    assert create_tally(items, "audit").by_classification["quickfix"] == 1
    assert create_tally(items, "audit", contrast_auto_fix=True).by_classification["auto"] == 1


def test_validate_transition_reports_signed_discrepancies() -> None:
    before = create_tally([_issue("META-001"), _issue("IMG-001", "ace", "critical")], "audit")
    after = create_tally([_issue("META-001")], "plan")
    result = validate_transition(before, after)
    assert not result.is_valid
    by_field = {d.field: d for d in result.discrepancies}
    assert by_field["grand_total"].difference == -1
    assert by_field["by_source.ace"].expected == 1
    assert by_field["by_source.ace"].actual == 0
    assert by_field["by_severity.critical"].difference == -1
    assert "by_source.auditor" not in by_field


def test_validate_transition_allows_declared_removals() -> None:
    dup = _issue("ACE-META-001", "ace")
    before = create_tally([_issue("META-001"), dup], "audit")
    after = create_tally([_issue("META-001")], "plan")
    removed = create_tally([dup], "deduplicated")
    assert validate_transition(before, after, allowed=removed).is_valid


def test_plan_logs_conservation_summary(caplog) -> None:
    caplog.set_level(logging.INFO, logger="epubremedy")
    build_plan([_issue("META-001")], job_id="job")
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("tally[audit] total=1") for m in messages)
    assert any("tally check audit -> plan passed" in m for m in messages)


issue_records = st.builds(
    _issue,
    code=st.sampled_from(CODES),
    source=st.sampled_from(SOURCES),
    severity=st.sampled_from(SEVERITIES),
    location=st.sampled_from(LOCATIONS),
)


@settings(derandomize=True, deadline=None, max_examples=60)
@given(st.lists(issue_records, max_size=25), st.booleans())
def test_every_valid_issue_becomes_a_task_or_a_counted_duplicate(issues, contrast_auto_fix) -> None:
    plan = build_plan(issues, job_id="prop", settings=RemediationSettings(contrast_auto_fix=contrast_auto_fix))
    assert plan.total_issues + plan.duplicates_removed == len(issues)
    assert plan.tally_validation.is_valid
    assert plan.missing_issues == []
    assert plan.audit_tally.grand_total == len(issues)
    assert plan.plan_tally.grand_total == plan.total_issues
    assert len({t.id for t in plan.tasks}) == plan.total_issues
