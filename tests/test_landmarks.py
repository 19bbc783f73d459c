from __future__ import annotations

from epubremedy.archive import Archive
from epubremedy.markup import has_main_landmark
from epubremedy.repairs.landmarks import (
    ensure_main_landmark,
    region_label,
    role_for_filename,
    validate_landmarks,
)


def _archive(docs: dict[str, str]) -> Archive:
    return Archive({path: text.encode("utf-8") for path, text in docs.items()})


def _main_count(archive: Archive) -> int:
    return sum(1 for p in archive.content_documents() if has_main_landmark(archive.read_text(p)))


def test_existing_landmark_elsewhere_means_no_changes(page) -> None:
    archive = _archive(
        {
            "OEBPS/chapter1.xhtml": page("<section><h1>One</h1></section>"),
            "OEBPS/chapter2.xhtml": page('<div role="main"><h1>Two</h1></div>'),
        }
    )
    before = archive.snapshot()
    outcomes = ensure_main_landmark(archive)
    assert [o.success for o in outcomes] == [True]
    assert not any(o.modified for o in outcomes)
    assert archive.snapshot() == before


def test_exactly_one_main_landmark_is_added_and_reruns_are_stable(page) -> None:
    archive = _archive(
        {
            "OEBPS/chapter1.xhtml": page('<section id="c1" class="chapter"><h1>One</h1></section>'),
            "OEBPS/chapter2.xhtml": page("<section><h1>Two</h1></section>"),
        }
    )
    outcomes = ensure_main_landmark(archive)
    assert len(outcomes) == 1
    assert outcomes[0].file_path == "OEBPS/chapter1.xhtml"
    assert outcomes[0].modified
    assert '<section id="c1" class="chapter" role="main">' in archive.read_text("OEBPS/chapter1.xhtml")
    assert _main_count(archive) == 1
    snapshot = archive.snapshot()
    assert not any(o.modified for o in ensure_main_landmark(archive))
    assert archive.snapshot() == snapshot


def test_priority_locations_win_and_navigation_documents_come_last(page) -> None:
    archive = _archive(
        {
            "OEBPS/nav.xhtml": page('<nav epub:type="toc"><ol><li>x</li></ol></nav><section>s</section>'),
            "OEBPS/chapter1.xhtml": page("<section>one</section>"),
            "OEBPS/chapter2.xhtml": page("<article>two</article>"),
        }
    )
    outcomes = ensure_main_landmark(archive, ["chapter2.xhtml"])
    assert outcomes[0].file_path == "OEBPS/chapter2.xhtml"
    assert '<article role="main">' in archive.read_text("OEBPS/chapter2.xhtml")

    archive = _archive(
        {
            "OEBPS/nav.xhtml": page('<nav epub:type="toc"><ol><li>x</li></ol></nav><section>s</section>'),
            "OEBPS/chapter1.xhtml": page("<section>one</section>"),
        }
    )
    assert ensure_main_landmark(archive)[0].file_path == "OEBPS/chapter1.xhtml"


def test_body_is_wrapped_when_no_candidate_element_exists(page) -> None:
    archive = _archive({"OEBPS/a.xhtml": page("<p>Just text</p>")})
    outcomes = ensure_main_landmark(archive)
    assert outcomes[0].strategy == "wrap_body"
    text = archive.read_text("OEBPS/a.xhtml")
    assert "<main>\n<p>Just text</p>\n</main>" in text
    assert _main_count(archive) == 1


def test_no_content_documents_is_a_failure() -> None:
    outcomes = ensure_main_landmark(Archive({"OEBPS/style.css": b"p{}"}))
    assert [o.success for o in outcomes] == [False]


def test_filename_roles_and_labels() -> None:
    assert role_for_filename("OEBPS/cover.xhtml") == "banner"
    assert role_for_filename("OEBPS/titlepage.xhtml") == "banner"
    assert role_for_filename("OEBPS/toc.xhtml") == "navigation"
    assert role_for_filename("OEBPS/colophon.xhtml") == "contentinfo"
    assert role_for_filename("OEBPS/chapter-3.xhtml") == "region"
    assert region_label("OEBPS/chapter-3.xhtml") == "Chapter 3"


def test_validator_gives_every_document_a_landmark(page) -> None:
    archive = _archive(
        {
            "OEBPS/cover.xhtml": page('<div class="cover"><img src="c.jpg" alt="Cover"/></div>'),
            "OEBPS/chapter-3.xhtml": page("<script>var x;</script>\n<div><p>text</p></div>"),
            "OEBPS/chapter-4.xhtml": page("<nav><p>already</p></nav>"),
            "OEBPS/empty.xhtml": page("<script>var y;</script>"),
        }
    )
    outcomes = validate_landmarks(archive)
    by_path = {o.file_path: o for o in outcomes}
    assert set(by_path) == {"OEBPS/cover.xhtml", "OEBPS/chapter-3.xhtml", "OEBPS/empty.xhtml"}
    assert '<div class="cover" role="banner">' in archive.read_text("OEBPS/cover.xhtml")
    assert '<div role="region" aria-label="Chapter 3">' in archive.read_text("OEBPS/chapter-3.xhtml")
    assert by_path["OEBPS/chapter-3.xhtml"].strategy == "offset"
    assert not by_path["OEBPS/empty.xhtml"].success
    assert validate_landmarks(archive) == [by_path["OEBPS/empty.xhtml"]]


def test_validator_wraps_body_when_first_child_has_a_non_landmark_role(page) -> None:
    archive = _archive(
        {"OEBPS/chapter-5.xhtml": page('<script>var z;</script>\n<section role="doc-chapter"><p>t</p></section>')}
    )
    outcomes = validate_landmarks(archive)
    assert [(o.success, o.strategy) for o in outcomes] == [(True, "wrap_body")]
    text = archive.read_text("OEBPS/chapter-5.xhtml")
    assert '<div role="region" aria-label="Chapter 5">\n<script>var z;</script>' in text
    assert '<section role="doc-chapter">' in text
    assert validate_landmarks(archive) == []


def test_validator_reports_undecodable_documents(page) -> None:
    archive = Archive({"OEBPS/ch1.xhtml": b"<p>\xff</p>", "OEBPS/ch2.xhtml": page("<div>x</div>").encode("utf-8")})
    outcomes = validate_landmarks(archive)
    by_path = {o.file_path: o for o in outcomes}
    assert not by_path["OEBPS/ch1.xhtml"].success
    assert by_path["OEBPS/ch2.xhtml"].success
