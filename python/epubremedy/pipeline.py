# SPDX-License-Identifier: AGPL-3.0-only
"""End-to-end remediation: detect, plan, repair, serialize.

Detectors are read-only and run in parallel against the original bytes; the
repair pass is sequential and exclusively owns its decoded archive.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .archive import Archive
from .changelog import ChangeLog
from .config import RemediationSettings
from .interfaces import Detector, JobStore
from .planner import Plan, RemediationResults, build_plan, plan_summary, run_auto_remediation

logger = logging.getLogger(__name__)


def _tag_source(entry: Any, name: str) -> Any:
    if isinstance(entry, dict) and not entry.get("source") and not entry.get("ruleSource"):
        return {**entry, "source": name}
    return entry


def run_detectors(detectors: Sequence[Detector], archive_bytes: bytes) -> list[Any]:
    """Run every detector concurrently; results are merged in detector order once all finish."""
    if not detectors:
        return []
    by_index: dict[int, list[Any]] = {}
    with ThreadPoolExecutor(max_workers=len(detectors)) as pool:
        fut_to_index = {pool.submit(d.detect, archive_bytes): i for i, d in enumerate(detectors)}
        for fut in as_completed(fut_to_index):
            by_index[fut_to_index[fut]] = list(fut.result())
    merged: list[Any] = []
    for i, detector in enumerate(detectors):
        name = getattr(detector, "name", type(detector).__name__)
        found = by_index[i]
        logger.info("detector %s reported %d issue(s)", name, len(found))
        merged.extend(_tag_source(entry, name) for entry in found)
    return merged


@dataclass
class RemediationRun:
    plan: Plan
    results: RemediationResults
    changelog: ChangeLog
    output: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": "epubremedy.run.v1",
            "summary": plan_summary(self.plan),
            "plan": self.plan.to_dict(),
            "results": self.results.to_dict(),
            "changes": self.changelog.to_dict(),
        }


def remediate(
    epub_bytes: bytes,
    *,
    job_id: str,
    issues: Iterable[Any] | None = None,
    detectors: Sequence[Detector] = (),
    settings: RemediationSettings | None = None,
    store: JobStore | None = None,
) -> RemediationRun:
    settings = settings or RemediationSettings()
    raw: list[Any] = []
    if issues is not None:
        raw.extend(issues)
    elif store is not None:
        raw.extend(store.load_job_issues(job_id))
    raw.extend(run_detectors(detectors, epub_bytes))

    plan = build_plan(raw, job_id=job_id, settings=settings)
    archive = Archive.from_bytes(epub_bytes)
    changelog = ChangeLog()
    results = run_auto_remediation(plan, archive, settings=settings, changelog=changelog)
    output = archive.to_bytes()

    if store is not None:
        store.save_plan(job_id, plan)
        store.save_archive(job_id, output)
    logger.info(
        "job %s: %d completed, %d failed, %d change(s) recorded",
        job_id, results.completed, results.failed, len(changelog),
    )
    return RemediationRun(plan=plan, results=results, changelog=changelog, output=output)
