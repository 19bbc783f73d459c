from __future__ import annotations

import threading

import pytest

from epubremedy.audit import EpubAuditor
from epubremedy.interfaces import JobStore
from epubremedy.pipeline import remediate, run_detectors
from epubremedy.types import Issue


class _Detector:
    def __init__(self, name: str, found: list, wait: threading.Event | None = None, done: threading.Event | None = None):
        self.name = name
        self.found = found
        self.wait = wait
        self.done = done

    def detect(self, archive_bytes: bytes) -> list:
        if self.wait is not None:
            assert self.wait.wait(timeout=5)
        if self.done is not None:
            self.done.set()
        return list(self.found)


class _Broken:
    name = "broken"

    def detect(self, archive_bytes: bytes) -> list:
        raise RuntimeError("detector crashed")


class _MemoryStore:
    def __init__(self, issues: list) -> None:
        self.issues = issues
        self.plans: dict = {}
        self.archives: dict = {}

    def load_job_issues(self, job_id: str) -> list:
        return list(self.issues)

    def save_plan(self, job_id: str, plan) -> None:
        self.plans[job_id] = plan

    def save_archive(self, job_id: str, data: bytes) -> None:
        self.archives[job_id] = data


def test_results_merge_in_detector_order_after_all_finish() -> None:
    second_done = threading.Event()
    first = _Detector("first", [{"code": "A-1"}], wait=second_done)
    second = _Detector("ace", [{"code": "B-1", "source": "DAISY Ace"}], done=second_done)
    merged = run_detectors([first, second], b"")
    assert merged == [{"code": "A-1", "source": "first"}, {"code": "B-1", "source": "DAISY Ace"}]
    assert run_detectors([], b"") == []


def test_detector_failure_propagates() -> None:
    with pytest.raises(RuntimeError):
        run_detectors([_Detector("ok", []), _Broken()], b"")


def test_end_to_end_leaves_only_non_automatic_issues(make_epub, page) -> None:
    epub = make_epub(
        {
            "OEBPS/ch1.xhtml": page("<h2>Start</h2>\n<p><img src='a.png'/></p>", lang=None),
            "OEBPS/style.css": ".dim { color: #999999; }",
        }
    )
    run = remediate(epub, job_id="e2e", detectors=[EpubAuditor()])
    assert run.results.failed == 0
    assert run.plan.tally_validation.is_valid
    assert {t.issue_code for t in run.plan.tasks if t.status == "pending"} == {"IMG-001", "CONTRAST-001"}
    remaining = {i.code for i in EpubAuditor().detect(run.output)}
    assert remaining == {"IMG-001", "CONTRAST-001"}
    payload = run.to_dict()
    assert payload["schema"] == "epubremedy.run.v1"
    assert payload["changes"]["count"] == len(run.changelog)

    rerun = remediate(run.output, job_id="e2e", detectors=[EpubAuditor()])
    assert len(rerun.changelog) == 0
    assert rerun.output == run.output


def test_missing_language_remediation_is_byte_stable(make_epub) -> None:
    issue = Issue(code="META-001", source="epubcheck", severity="serious", location="OEBPS/content.opf")
    first = remediate(make_epub(), job_id="a", issues=[issue])
    second = remediate(first.output, job_id="a", issues=[issue])
    assert second.output == first.output
    assert second.plan.tasks[0].status == "completed"
    assert len(second.changelog) == 0


def test_store_supplies_issues_and_receives_results(make_epub) -> None:
    store = _MemoryStore([{"code": "META-001", "source": "epubcheck", "severity": "serious"}])
    assert isinstance(store, JobStore)
    run = remediate(make_epub(), job_id="job-7", store=store)
    assert store.plans["job-7"] is run.plan
    assert store.archives["job-7"] == run.output
    assert run.plan.tasks[0].status == "completed"
