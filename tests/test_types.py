from __future__ import annotations

import pytest

from epubremedy.errors import IssueValidationError
from epubremedy.types import Issue, Task, issue_from_dict, task_id_for


def test_issue_trims_location_and_treats_blank_as_package_wide() -> None:
    issue = Issue(code="SEM-001", source="auditor", severity="serious", location="  OEBPS/ch1.xhtml ")
    assert issue.location == "OEBPS/ch1.xhtml"
    assert Issue(code="META-001", source="ace", severity="serious", location="   ").location is None
    assert Issue(code="META-001", source="ace", severity="serious").normalized_location == ""


def test_issue_rejects_unknown_severity_and_empty_code() -> None:
    with pytest.raises(IssueValidationError):
        Issue(code="SEM-001", source="auditor", severity="fatal")  # type: ignore[arg-type]
    with pytest.raises(IssueValidationError):
        Issue(code="  ", source="auditor", severity="minor")


def test_issue_from_dict_accepts_aliases_and_lowercases_severity() -> None:
    issue = issue_from_dict(
        {
            "code": "IMG-001",
            "ruleSource": "DAISY Ace",
            "severity": "CRITICAL",
            "filePath": "OEBPS/ch2.xhtml",
            "wcagCriteria": "1.1.1, 1.3.1",
            "html": "<img src='a.png'>",
            "affectedFiles": ["OEBPS/ch2.xhtml"],
        }
    )
    assert issue.source == "DAISY Ace"
    assert issue.severity == "critical"
    assert issue.location == "OEBPS/ch2.xhtml"
    assert issue.wcag_criteria == frozenset({"1.1.1", "1.3.1"})
    assert issue.snippet == "<img src='a.png'>"
    assert issue.affected_files == ("OEBPS/ch2.xhtml",)


def test_issue_from_dict_reports_every_schema_violation() -> None:
    with pytest.raises(IssueValidationError) as exc:
        issue_from_dict({"code": "", "severity": "loud", "location": 12})
    assert {m.split(":")[0] for m in exc.value.errors} == {"code", "severity", "location"}
    with pytest.raises(IssueValidationError):
        issue_from_dict(["not", "an", "object"])  # type: ignore[arg-type]


def test_issue_from_dict_defaults() -> None:
    issue = issue_from_dict({"code": "X-1"}, default_source="epubcheck")
    assert issue.source == "epubcheck"
    assert issue.severity == "moderate"
    assert issue.category == "general"


def test_task_id_is_content_addressed() -> None:
    a = task_id_for("job-1", "META-001", "OEBPS/content.opf")
    assert a == task_id_for("job-1", "META-001", " OEBPS/content.opf ")
    assert a != task_id_for("job-2", "META-001", "OEBPS/content.opf")
    assert a.startswith("task-") and len(a) == len("task-") + 12
    assert task_id_for("job-1", "META-001", "OEBPS/content.opf", 2) == a + "-2"


def test_task_from_issue_maps_severity_to_priority() -> None:
    issue = Issue(code="STRUCT-003", source="auditor", severity="moderate", location="a.xhtml")
    task = Task.from_issue(issue, task_id="task-x", fix_type="auto")
    assert task.priority == "medium"
    assert task.status == "pending"
    assert task.code == "STRUCT-003"
    assert task.to_dict()["issueCode"] == "STRUCT-003"
