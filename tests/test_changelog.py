from __future__ import annotations

from epubremedy.changelog import EXCERPT_LIMIT, ChangeLog
from epubremedy.interfaces import ChangeReporter


def test_records_are_sequenced_and_filterable() -> None:
    log = ChangeLog()
    log.record("task-a", "OEBPS/content.opf", "metadata", "Added dc:language", after="<dc:language>en</dc:language>")
    log.record("task-b", "OEBPS/ch1.xhtml", "attribute", "Added lang")
    log.record("task-a", "OEBPS/content.opf", "metadata", "again", strategy="exact")
    assert len(log) == 3
    assert [r.sequence for r in log.get_changes()] == [1, 2, 3]
    assert [r.description for r in log.get_changes("task-a")] == ["Added dc:language", "again"]
    assert log.get_changes("task-z") == []
    assert log.files_changed() == ["OEBPS/content.opf", "OEBPS/ch1.xhtml"]


def test_excerpts_are_truncated_and_payload_is_tagged() -> None:
    log = ChangeLog()
    rec = log.record("t", "a.css", "style", "big", before="x" * (EXCERPT_LIMIT + 10))
    assert rec.before is not None
    assert len(rec.before) == EXCERPT_LIMIT + 3
    assert rec.before.endswith("...")
    payload = log.to_dict()
    assert payload["schema"] == "epubremedy.changes.v1"
    assert payload["count"] == 1
    assert payload["changes"][0]["task_id"] == "t"


def test_changelog_satisfies_reporter_protocol() -> None:
    assert isinstance(ChangeLog(), ChangeReporter)
