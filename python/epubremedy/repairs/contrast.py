# SPDX-License-Identifier: AGPL-3.0-only
"""WCAG contrast arithmetic and the stylesheet override fixer."""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable

from ..archive import Archive
from ..markup import scan
from ..types import FixOutcome

logger = logging.getLogger(__name__)

RGB = tuple[int, int, int]

CONTRAST_THRESHOLD = 4.5
STEP = 0.05
DEFAULT_BACKGROUND = "#ffffff"
DEFAULT_LOW_CONTRAST_PALETTE: tuple[str, ...] = (
    "#777777",
    "#808080",
    "#888888",
    "#999999",
    "#aaaaaa",
    "#bbbbbb",
    "#cccccc",
)
OVERRIDE_START = "/* epubremedy:contrast-overrides */"
OVERRIDE_END = "/* /epubremedy:contrast-overrides */"

_NAMED = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "gray": (128, 128, 128),
    "grey": (128, 128, 128),
    "silver": (192, 192, 192),
    "lightgray": (211, 211, 211),
    "lightgrey": (211, 211, 211),
    "darkgray": (169, 169, 169),
    "darkgrey": (169, 169, 169),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
    "yellow": (255, 255, 0),
    "orange": (255, 165, 0),
}
_RGB_FN_RE = re.compile(r"^rgba?\(\s*([\d.]+%?)\s*[, ]\s*([\d.]+%?)\s*[, ]\s*([\d.]+%?)(?:\s*[,/]\s*[\d.]+%?)?\s*\)$", re.I)
_RULE_RE = re.compile(r"([^{}]+)\{([^{}]*)\}")
_DECL_RE = re.compile(r"(?:^|;)\s*([\w-]+)\s*:\s*([^;]+)")
_COMMENT_RE = re.compile(r"/\*.*?\*/", re.S)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def _channel(token: str) -> int:
    if token.endswith("%"):
        return int(round(_clamp(float(token[:-1]), 0.0, 100.0) * 2.55))
    return int(round(_clamp(float(token), 0.0, 255.0)))


def parse_color(value: str | None) -> RGB | None:
    text = str(value or "").strip().lower().replace("!important", "").strip()
    if not text:
        return None
    if text in _NAMED:
        return _NAMED[text]
    if text.startswith("#"):
        digits = text[1:]
        if len(digits) in (3, 4):
            digits = "".join(ch * 2 for ch in digits[:3])
        elif len(digits) == 8:
            digits = digits[:6]
        if len(digits) != 6 or any(ch not in "0123456789abcdef" for ch in digits):
            return None
        return (int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
    m = _RGB_FN_RE.match(text)
    if m:
        return (_channel(m.group(1)), _channel(m.group(2)), _channel(m.group(3)))
    return None


def to_hex(rgb: RGB) -> str:
    return "#" + "".join(f"{int(_clamp(c, 0, 255)):02x}" for c in rgb)


def _linear(channel: int) -> float:
    c = channel / 255.0
    return c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4


def relative_luminance(rgb: RGB) -> float:
    r, g, b = rgb
    return 0.2126 * _linear(r) + 0.7152 * _linear(g) + 0.0722 * _linear(b)


def contrast_ratio(fg: RGB, bg: RGB) -> float:
    a = relative_luminance(fg)
    b = relative_luminance(bg)
    hi, lo = max(a, b), min(a, b)
    return (hi + 0.05) / (lo + 0.05)


def _distance(a: RGB, b: RGB) -> float:
    return math.sqrt(sum((x - y) ** 2 for x, y in zip(a, b)))


def _search(fg: RGB, bg: RGB, threshold: float, toward: int) -> RGB | None:
    steps = int(round(1 / STEP))
    for i in range(1, steps + 1):
        t = i / steps
        r, g, b = (int(round(c + (toward - c) * t)) for c in fg)
        if contrast_ratio((r, g, b), bg) >= threshold:
            return (r, g, b)
    return None


def suggest_foreground(fg: RGB, bg: RGB, threshold: float = CONTRAST_THRESHOLD) -> RGB:
    """Closest foreground reaching ``threshold`` against ``bg``.

    Lightening and darkening are searched independently in 5% steps. When both
    reach the threshold the candidate nearer the original wins; when neither
    does, white or black is returned, whichever contrasts more.
    """
    if contrast_ratio(fg, bg) >= threshold:
        return fg
    lighter = _search(fg, bg, threshold, 255)
    darker = _search(fg, bg, threshold, 0)
    if lighter and darker:
        return lighter if _distance(lighter, fg) < _distance(darker, fg) else darker
    if lighter:
        return lighter
    if darker:
        return darker
    white, black = (255, 255, 255), (0, 0, 0)
    return white if contrast_ratio(white, bg) >= contrast_ratio(black, bg) else black


def check_pair(fg: str, bg: str, threshold: float = CONTRAST_THRESHOLD) -> dict[str, Any]:
    fg_rgb, bg_rgb = parse_color(fg), parse_color(bg)
    if fg_rgb is None or bg_rgb is None:
        raise ValueError(f"unparseable color pair: {fg!r} on {bg!r}")
    suggested = suggest_foreground(fg_rgb, bg_rgb, threshold)
    return {
        "schema": "epubremedy.contrast.v1",
        "foreground": to_hex(fg_rgb),
        "background": to_hex(bg_rgb),
        "ratio": round(contrast_ratio(fg_rgb, bg_rgb), 2),
        "threshold": threshold,
        "passes": contrast_ratio(fg_rgb, bg_rgb) >= threshold,
        "suggested": to_hex(suggested),
        "suggested_ratio": round(contrast_ratio(suggested, bg_rgb), 2),
    }


def _strip_overrides(css: str) -> str:
    start = css.find(OVERRIDE_START)
    if start < 0:
        return css
    end = css.find(OVERRIDE_END, start)
    end = len(css) if end < 0 else end + len(OVERRIDE_END)
    before = css[:start].rstrip("\n")
    after = css[end:].lstrip("\n")
    return before + "\n" + after


def _declarations(body: str) -> dict[str, str]:
    return {m.group(1).lower(): m.group(2).strip() for m in _DECL_RE.finditer(body)}


def _override_rules(css: str, targets: dict[RGB, RGB], background: RGB, threshold: float) -> list[str]:
    rules: list[str] = []
    for m in _RULE_RE.finditer(_COMMENT_RE.sub("", css)):
        selector = " ".join(m.group(1).split())
        if not selector or selector.startswith("@"):
            continue
        decls = _declarations(m.group(2))
        fg = parse_color(decls.get("color"))
        if fg is None or fg not in targets:
            continue
        bg = parse_color(decls.get("background-color") or decls.get("background")) or background
        fixed = targets[fg] if bg == background else suggest_foreground(fg, bg, threshold)
        if contrast_ratio(fg, bg) >= threshold or fixed == fg:
            continue
        rules.append(f"{selector} {{ color: {to_hex(fixed)} !important; }}")
    return rules


def _block(rules: list[str]) -> str:
    return "\n".join([OVERRIDE_START, *rules, OVERRIDE_END])


def _targets(
    pairs: Iterable[tuple[str, str]] | None,
    palette: Iterable[str],
    background: RGB,
    threshold: float,
) -> tuple[dict[RGB, RGB], RGB]:
    targets: dict[RGB, RGB] = {}
    if pairs is None:
        pairs = [(c, to_hex(background)) for c in palette]
    for fg_s, bg_s in pairs:
        fg, bg = parse_color(fg_s), parse_color(bg_s)
        if fg is None or bg is None:
            logger.warning("skipping unparseable contrast pair %r on %r", fg_s, bg_s)
            continue
        if contrast_ratio(fg, bg) < threshold:
            targets[fg] = suggest_foreground(fg, bg, threshold)
            background = bg
    return targets, background


def fix_low_contrast(
    archive: Archive,
    pairs: Iterable[tuple[str, str]] | None = None,
    *,
    palette: Iterable[str] = DEFAULT_LOW_CONTRAST_PALETTE,
    background: str = DEFAULT_BACKGROUND,
    threshold: float = CONTRAST_THRESHOLD,
) -> list[FixOutcome]:
    """Append a marked override block for every rule using a low-contrast color.

    Stylesheets get the block at the end; ``<style>`` elements in content
    documents get a second ``<style>`` before ``</head>``. The block is rebuilt
    from the untouched rules on every run, so repeated runs are stable.
    """
    bg = parse_color(background) or (255, 255, 255)
    targets, bg = _targets(pairs, palette, bg, threshold)
    outcomes: list[FixOutcome] = []
    if not targets:
        return [FixOutcome(True, None, "No low-contrast colors to fix", "style")]

    for path in archive.stylesheets():
        css = archive.read_text(path)
        base = _strip_overrides(css)
        rules = _override_rules(base, targets, bg, threshold)
        if not rules:
            continue
        block = _block(rules)
        new = base.rstrip("\n") + "\n\n" + block + "\n"
        if new == css:
            continue
        archive.write_text(path, new)
        outcomes.append(
            FixOutcome(True, path, f"Added {len(rules)} contrast override(s)", "style", after=block, modified=True)
        )

    for path in archive.content_documents():
        text = archive.read_text(path)
        sc = scan(text)
        head = sc.first("head")
        if head is None or head.close is None:
            continue
        css_parts = [
            text[el.end:el.close[0]]
            for el in sc.find("style")
            if el.close is not None and OVERRIDE_START not in text[el.end:el.close[0]]
        ]
        rules = _override_rules("\n".join(css_parts), targets, bg, threshold)
        if not rules:
            continue
        block = f"<style>\n{_block(rules)}\n</style>\n"
        if block in text:
            continue
        existing = next(
            (el for el in sc.find("style") if el.close is not None and OVERRIDE_START in text[el.end:el.close[0]]),
            None,
        )
        if existing is not None:
            new = text[:existing.start] + block.rstrip("\n") + text[existing.close[1]:]
        else:
            new = text[:head.close[0]] + block + text[head.close[0]:]
        archive.write_text(path, new)
        outcomes.append(
            FixOutcome(True, path, f"Added {len(rules)} contrast override(s)", "style", after=block, modified=True)
        )

    if not outcomes:
        outcomes.append(FixOutcome(True, None, "No low-contrast colors found in styles", "style"))
    return outcomes
