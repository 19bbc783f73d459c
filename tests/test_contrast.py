from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from epubremedy.archive import Archive
from epubremedy.repairs.contrast import (
    OVERRIDE_START,
    check_pair,
    contrast_ratio,
    fix_low_contrast,
    parse_color,
    suggest_foreground,
    to_hex,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("#fff", (255, 255, 255)),
        ("#777777", (119, 119, 119)),
        ("#11223344", (17, 34, 51)),
        ("rgb(10, 20, 30)", (10, 20, 30)),
        ("rgba(100%, 0%, 0%, 0.5)", (255, 0, 0)),
        ("Grey", (128, 128, 128)),
        ("#999 !important", (153, 153, 153)),
        ("not-a-color", None),
        ("#12", None),
    ],
)
def test_parse_color(value, expected) -> None:
    assert parse_color(value) == expected


def test_known_ratios() -> None:
    assert contrast_ratio((0, 0, 0), (255, 255, 255)) == pytest.approx(21.0)
    assert contrast_ratio((255, 255, 255), (255, 255, 255)) == pytest.approx(1.0)
    assert contrast_ratio((119, 119, 119), (255, 255, 255)) == pytest.approx(4.48, abs=0.01)


def test_check_pair_report() -> None:
    report = check_pair("#777777", "#ffffff")
    assert report["schema"] == "epubremedy.contrast.v1"
    assert report["passes"] is False
    assert report["suggested_ratio"] >= 4.5
    assert check_pair("#000", "#fff")["suggested"] == "#000000"
    with pytest.raises(ValueError):
        check_pair("nope", "#fff")


rgb = st.tuples(*(st.integers(min_value=0, max_value=255) for _ in range(3)))


@settings(derandomize=True, deadline=None, max_examples=200)
@given(rgb, rgb)
def test_suggestion_meets_threshold_whenever_it_is_reachable(fg, bg) -> None:
    suggested = suggest_foreground(fg, bg)
    best = max(contrast_ratio((0, 0, 0), bg), contrast_ratio((255, 255, 255), bg))
    if best >= 4.5:
        assert contrast_ratio(suggested, bg) >= 4.5
    if contrast_ratio(fg, bg) >= 4.5:
        assert suggested == fg


def test_stylesheet_gets_idempotent_override_block() -> None:
    css = "p { color: #999999; }\n.ok { color: #000; }\nh1 { color: #777; background-color: #fff; }\n"
    archive = Archive({"OEBPS/style.css": css.encode("utf-8")})
    outcomes = fix_low_contrast(archive)
    assert [o.modified for o in outcomes] == [True]
    out = archive.read_text("OEBPS/style.css")
    assert out.startswith(css.rstrip("\n"))
    assert out.count(OVERRIDE_START) == 1
    block = out[out.index(OVERRIDE_START):]
    assert "p { color:" in block and "h1 { color:" in block
    assert ".ok" not in block
    for line in block.splitlines()[1:-1]:
        color = parse_color(line.split("color:", 1)[1].split(";", 1)[0])
        assert color is not None
        assert contrast_ratio(color, (255, 255, 255)) >= 4.5

    again = fix_low_contrast(archive)
    assert not any(o.modified for o in again)
    assert archive.read_text("OEBPS/style.css") == out


def test_style_elements_get_a_second_style_block(page) -> None:
    doc = page("<p class='dim'>x</p>", head="<style>.dim { color: #aaaaaa; }</style>")
    archive = Archive({"OEBPS/a.xhtml": doc.encode("utf-8")})
    outcomes = fix_low_contrast(archive)
    assert outcomes[0].file_path == "OEBPS/a.xhtml"
    text = archive.read_text("OEBPS/a.xhtml")
    assert text.count("<style>") == 2
    assert text.index(OVERRIDE_START) < text.index("</head>")
    fix_low_contrast(archive)
    assert archive.read_text("OEBPS/a.xhtml") == text


def test_explicit_pairs_and_nothing_to_fix() -> None:
    archive = Archive({"s.css": b"p { color: #777777; }"})
    outcomes = fix_low_contrast(archive, [("#000000", "#ffffff")])
    assert [(o.success, o.modified) for o in outcomes] == [(True, False)]
    assert archive.read_text("s.css") == "p { color: #777777; }"
    assert to_hex((1, 2, 255)) == "#0102ff"
