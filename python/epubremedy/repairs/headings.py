# SPDX-License-Identifier: AGPL-3.0-only
from __future__ import annotations

import logging
from typing import Sequence

from ..archive import Archive
from ..markup import HEADING_TAGS, apply_edits, copy_tag, scan
from ..types import FixOutcome

logger = logging.getLogger(__name__)


def normalize_heading_levels(levels: Sequence[int]) -> list[int]:
    """Return heading levels that start at 1 and never skip a level going deeper.

    Headings before the first ``h1`` (all of them when there is none) are shifted
    up so the first one becomes level 1; afterwards each level is clamped to one
    more than the deepest level seen so far.
    """
    out = [int(v) for v in levels]
    if not out:
        return out
    first_h1 = next((i for i, v in enumerate(out) if v == 1), len(out))
    shift = out[0] - 1
    if shift > 0:
        for i in range(first_h1):
            out[i] = max(1, out[i] - shift)
    running_max = 0
    for i, level in enumerate(out):
        level = max(1, min(level, running_max + 1))
        out[i] = level
        running_max = max(running_max, level)
    return out


def fix_heading_hierarchy(archive: Archive) -> list[FixOutcome]:
    outcomes: list[FixOutcome] = []
    for path in archive.content_documents():
        text = archive.read_text(path)
        sc = scan(text)
        headings = sc.find(*HEADING_TAGS)
        if not headings:
            continue
        levels = [int(h.name[1]) for h in headings]
        fixed = normalize_heading_levels(levels)
        if fixed == levels:
            continue

        edits: list[tuple[int, int, str]] = []
        unclosed = False
        for el, old, new in zip(headings, levels, fixed):
            if old == new:
                continue
            if el.close is None:
                unclosed = True
                break
            edits.append((el.start, el.end, copy_tag(el.tag, f"h{new}").render()))
            edits.append((el.close[0], el.close[1], f"</h{new}>"))
        if unclosed:
            logger.warning("%s: heading without end tag, hierarchy left unchanged", path)
            outcomes.append(
                FixOutcome(False, path, "Heading without end tag; hierarchy not rewritten", "structure")
            )
            continue

        archive.write_text(path, apply_edits(text, edits))
        changed = sum(1 for a, b in zip(levels, fixed) if a != b)
        outcomes.append(
            FixOutcome(
                success=True,
                file_path=path,
                description=f"Fixed {changed} heading level(s)",
                change_type="structure",
                before=" ".join(f"h{v}" for v in levels),
                after=" ".join(f"h{v}" for v in fixed),
                modified=True,
            )
        )

    if not outcomes:
        outcomes.append(FixOutcome(True, None, "Heading hierarchy is correct", "structure"))
    return outcomes
