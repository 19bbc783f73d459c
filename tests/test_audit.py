from __future__ import annotations

from epubremedy.audit import EpubAuditor, audit_report, low_contrast_colors, parse_document_facts
from epubremedy.interfaces import Detector

ACCESSIBLE_METADATA = (
    "<dc:title>T</dc:title>\n"
    "    <dc:language>en</dc:language>\n"
    '    <meta property="schema:accessibilityFeature">structuralNavigation</meta>\n'
    '    <meta property="schema:accessibilitySummary">Fine.</meta>\n'
    '    <meta property="schema:accessMode">textual</meta>'
)


def _codes(issues) -> list[str]:
    return sorted(i.code for i in issues)


def test_document_facts() -> None:
    facts = parse_document_facts(
        "<html><body>"
        "<h1>a</h1><h3>b</h3>"
        "<img src='x.png'/><img src='y.png' alt=''/>"
        "<a href='#n'></a><a href='#m'>named</a><a href='#i'><img src='i' alt='Icon'/></a>"
        "<table><tr><td>1</td></tr></table>"
        "<section epub:type='chapter'>c</section><section epub:type='bodymatter'>d</section>"
        "</body></html>"
    )
    assert facts.html_lang is None
    assert facts.heading_levels == [1, 3]
    assert facts.image_count == 3
    assert facts.image_missing_alt_count == 1
    assert facts.link_count == 3
    assert facts.empty_link_count == 1
    assert facts.tables_without_headers == 1
    assert facts.epub_type_missing_role_count == 1
    assert facts.has_main_landmark


def test_auditor_reports_package_and_document_defects(make_epub, page) -> None:
    epub = make_epub(
        {
            "OEBPS/ch1.xhtml": page("<h2>Start</h2><p><img src='a.png'/></p>", lang=None),
            "OEBPS/style.css": ".dim { color: #999999; }",
        }
    )
    issues = EpubAuditor().detect(epub)
    assert _codes(issues) == sorted(
        [
            "META-001", "META-002", "META-003", "META-004",
            "SEM-001", "IMG-001", "STRUCT-003", "STRUCT-004", "CONTRAST-001",
        ]
    )
    by_code = {i.code: i for i in issues}
    assert by_code["META-001"].location == "OEBPS/content.opf"
    assert by_code["STRUCT-004"].location is None
    assert by_code["CONTRAST-001"].location == "OEBPS/style.css"
    assert all(i.source == "auditor" for i in issues)


def test_clean_package_has_no_issues(make_epub, page) -> None:
    epub = make_epub(
        {"OEBPS/ch1.xhtml": page("<main><h1>Start</h1><p>x</p></main>")},
        opf_metadata=ACCESSIBLE_METADATA,
    )
    assert EpubAuditor().detect(epub) == []


def test_low_contrast_colors_respect_declared_background() -> None:
    css = "/* .x { color: #999 } */ .a { color: #999999; } .b { color: #999999; background: #000000; } .c { color: #333; }"
    assert low_contrast_colors(css) == ["#999999"]


def test_report_shape_and_protocol() -> None:
    assert isinstance(EpubAuditor(), Detector)
    report = audit_report([])
    assert report == {"schema": "epubremedy.audit.v1", "total": 0, "by_code": {}, "issues": []}
