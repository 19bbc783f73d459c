# SPDX-License-Identifier: AGPL-3.0-only
"""Issue tallies and the cross-stage conservation check.

A tally is a snapshot of how many issues (or tasks) exist per source, severity
and fix-type at one pipeline stage. Comparing the tallies of adjacent stages
makes any dropped or invented issue visible as a signed discrepancy.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .classification import classify
from .types import FIX_TYPES, SEVERITIES

logger = logging.getLogger(__name__)

SOURCES: tuple[str, ...] = ("epubcheck", "ace", "auditor", "unknown")
DIMENSIONS: tuple[str, ...] = ("by_source", "by_severity", "by_classification")


def normalize_source(source: str | None) -> str:
    text = "".join(ch for ch in str(source or "").lower() if ch.isalpha())
    if not text:
        return "unknown"
    if "epub" in text and "check" in text:
        return "epubcheck"
    if text.startswith("ace") or text == "daisyace":
        return "ace"
    if "auditor" in text or text.startswith("js"):
        return "auditor"
    return "unknown"


def _field(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, dict):
            if item.get(name) is not None:
                return item[name]
        elif getattr(item, name, None) is not None:
            return getattr(item, name)
    return None


@dataclass(frozen=True)
class Tally:
    stage: str
    by_source: dict[str, int]
    by_severity: dict[str, int]
    by_classification: dict[str, int]
    grand_total: int
    is_valid: bool = True
    validation_errors: tuple[str, ...] = ()

    def dimension(self, name: str) -> dict[str, int]:
        return dict(getattr(self, name))

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": "epubremedy.tally.v1",
            "stage": self.stage,
            "by_source": dict(self.by_source),
            "by_severity": dict(self.by_severity),
            "by_classification": dict(self.by_classification),
            "grand_total": self.grand_total,
            "is_valid": self.is_valid,
            "validation_errors": list(self.validation_errors),
        }


@dataclass(frozen=True)
class Discrepancy:
    field: str
    expected: int
    actual: int

    @property
    def difference(self) -> int:
        return self.actual - self.expected

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
            "difference": self.difference,
        }


@dataclass(frozen=True)
class TallyValidation:
    previous_stage: str
    current_stage: str
    discrepancies: tuple[Discrepancy, ...] = ()
    errors: tuple[str, ...] = field(default=())

    @property
    def is_valid(self) -> bool:
        return not self.discrepancies and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_stage": self.previous_stage,
            "current_stage": self.current_stage,
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
        }


def create_tally(
    items: Iterable[Any], stage: str, *, contrast_auto_fix: bool = False
) -> Tally:
    """Count issues or tasks per source, severity and fix-type.

    Never raises: a severity or fix-type outside the known buckets leaves its
    dimension short of the grand total and the tally is reported invalid.
    """
    by_source = {name: 0 for name in SOURCES}
    by_severity = {name: 0 for name in SEVERITIES}
    by_classification = {name: 0 for name in FIX_TYPES}
    grand_total = 0

    for item in items:
        grand_total += 1
        by_source[normalize_source(_field(item, "source", "rule_source"))] += 1

        severity = str(_field(item, "severity") or "").strip().lower()
        if severity in by_severity:
            by_severity[severity] += 1

        fix_type = _field(item, "type", "fix_type")
        if fix_type is None:
            code = _field(item, "code", "issue_code")
            fix_type = classify(str(code or ""), contrast_auto_fix=contrast_auto_fix)
        if fix_type in by_classification:
            by_classification[fix_type] += 1

    errors: list[str] = []
    for name, counts in (
        ("source", by_source),
        ("severity", by_severity),
        ("classification", by_classification),
    ):
        total = sum(counts.values())
        if total != grand_total:
            errors.append(f"{name} total ({total}) != grand total ({grand_total})")

    return Tally(
        stage=stage,
        by_source=by_source,
        by_severity=by_severity,
        by_classification=by_classification,
        grand_total=grand_total,
        is_valid=not errors,
        validation_errors=tuple(errors),
    )


def validate_transition(
    previous: Tally, current: Tally, *, allowed: Tally | None = None
) -> TallyValidation:
    """Compare two adjacent-stage tallies.

    ``allowed`` is the tally of issues intentionally removed between the two
    stages (deduplication); every other difference is a discrepancy.
    """
    discrepancies: list[Discrepancy] = []
    errors: list[str] = []

    removed_total = allowed.grand_total if allowed is not None else 0
    expected_total = previous.grand_total - removed_total
    if expected_total != current.grand_total:
        discrepancies.append(Discrepancy("grand_total", expected_total, current.grand_total))

    for dim in DIMENSIONS:
        prev_counts = previous.dimension(dim)
        curr_counts = current.dimension(dim)
        removed = allowed.dimension(dim) if allowed is not None else {}
        for bucket in sorted(set(prev_counts) | set(curr_counts)):
            expected = prev_counts.get(bucket, 0) - removed.get(bucket, 0)
            actual = curr_counts.get(bucket, 0)
            if expected != actual:
                discrepancies.append(Discrepancy(f"{dim}.{bucket}", expected, actual))

    for tally in (previous, current):
        if not tally.is_valid:
            errors.extend(f"{tally.stage}: {msg}" for msg in tally.validation_errors)

    return TallyValidation(
        previous_stage=previous.stage,
        current_stage=current.stage,
        discrepancies=tuple(discrepancies),
        errors=tuple(errors),
    )


def log_tally(tally: Tally) -> None:
    src = tally.by_source
    sev = tally.by_severity
    cls = tally.by_classification
    logger.info(
        "tally[%s] total=%d source(epubcheck=%d ace=%d auditor=%d unknown=%d) "
        "severity(critical=%d serious=%d moderate=%d minor=%d) "
        "classification(auto=%d quickfix=%d manual=%d)",
        tally.stage,
        tally.grand_total,
        src["epubcheck"], src["ace"], src["auditor"], src["unknown"],
        sev["critical"], sev["serious"], sev["moderate"], sev["minor"],
        cls["auto"], cls["quickfix"], cls["manual"],
    )
    for msg in tally.validation_errors:
        logger.error("tally[%s] inconsistent: %s", tally.stage, msg)


def log_transition(validation: TallyValidation) -> None:
    label = f"{validation.previous_stage} -> {validation.current_stage}"
    if validation.is_valid:
        logger.info("tally check %s passed", label)
        return
    logger.error("tally check %s FAILED", label)
    for item in validation.discrepancies:
        logger.error(
            "  %s: expected %d, got %d (%+d)",
            item.field, item.expected, item.actual, item.difference,
        )
    for msg in validation.errors:
        logger.error("  %s", msg)
