# SPDX-License-Identifier: AGPL-3.0-only
"""Remediation planning and the automatic fix pass.

``build_plan`` turns one audit run's raw issues into an ordered task list and
proves, via tallies, that every valid issue either became a task or was
dropped as a duplicate. ``run_auto_remediation`` drives the repair algorithms
for pending auto tasks, one code group at a time in a fixed order.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from .archive import Archive
from .changelog import ChangeLog
from .classification import classify_and_deduplicate, normalize_code, wcag_criteria_for
from .config import RemediationSettings
from .errors import ArchiveError, BinaryMemberError, InvalidTransitionError, PatchMatchError
from .repairs import (
    add_accessibility_metadata,
    add_accessibility_summary,
    add_epub_type_roles,
    add_html_lang,
    add_language,
    add_skip_navigation,
    add_table_headers,
    ensure_main_landmark,
    fix_empty_links,
    fix_heading_hierarchy,
    fix_low_contrast,
    validate_landmarks,
)
from .tally import (
    Tally,
    TallyValidation,
    create_tally,
    log_tally,
    log_transition,
    normalize_source,
    validate_transition,
)
from .types import (
    FIX_TYPES,
    PRIORITIES,
    SEVERITIES,
    TASK_STATUSES,
    FixOutcome,
    Issue,
    Task,
    normalize_location,
    task_id_for,
)

logger = logging.getLogger(__name__)

VALIDATOR_TASK_ID = "invariant-validator"
MANUAL_MINUTES_PER_TASK = 5

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "skipped"}),
    "in_progress": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "skipped": frozenset(),
    "failed": frozenset(),
}

_PRIORITY_RANK = {p: i for i, p in enumerate(PRIORITIES)}

Handler = Callable[[Archive, RemediationSettings, list[Task]], list[FixOutcome]]


def _one(outcome: FixOutcome) -> list[FixOutcome]:
    return [outcome]


def _landmark_priority(settings: RemediationSettings, tasks: list[Task]) -> list[str]:
    out = list(settings.priority_locations)
    for t in tasks:
        for loc in (t.location, *t.affected_files):
            if loc and loc not in out:
                out.append(loc)
    return out


def _contrast(archive: Archive, settings: RemediationSettings, tasks: list[Task]) -> list[FixOutcome]:
    return fix_low_contrast(
        archive,
        palette=settings.low_contrast_palette,
        background=settings.contrast_background,
        threshold=settings.contrast_threshold,
    )


# Registry order is the processing order of code groups.
AUTO_FIX_HANDLERS: dict[str, Handler] = {
    "META-001": lambda a, s, t: _one(add_language(a, s.default_language)),
    "META-002": lambda a, s, t: _one(add_accessibility_metadata(a, s.accessibility_features)),
    "META-004": lambda a, s, t: _one(add_accessibility_metadata(a, s.accessibility_features)),
    "META-003": lambda a, s, t: _one(add_accessibility_summary(a, s.accessibility_summary)),
    "SEM-001": lambda a, s, t: add_html_lang(a, s.default_language),
    "SEM-002": lambda a, s, t: fix_empty_links(a),
    "SEM-003": lambda a, s, t: add_epub_type_roles(a),
    "STRUCT-002": lambda a, s, t: add_table_headers(a),
    "STRUCT-003": lambda a, s, t: fix_heading_hierarchy(a),
    "STRUCT-004": lambda a, s, t: ensure_main_landmark(a, _landmark_priority(s, t)),
    "NAV-001": lambda a, s, t: add_skip_navigation(a),
    "CONTRAST-001": _contrast,
    "COLOR-CONTRAST": _contrast,
}


@dataclass
class Plan:
    job_id: str
    tasks: list[Task]
    audit_tally: Tally
    plan_tally: Tally
    tally_validation: TallyValidation
    duplicates: list[Issue] = field(default_factory=list)
    rejected_count: int = 0
    missing_issues: list[dict[str, Any]] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    settings: RemediationSettings = field(default_factory=RemediationSettings)

    @property
    def duplicates_removed(self) -> int:
        return len(self.duplicates)

    @property
    def total_issues(self) -> int:
        return len(self.tasks)

    def task(self, task_id: str) -> Task:
        for t in self.tasks:
            if t.id == task_id:
                return t
        raise KeyError(task_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": "epubremedy.plan.v1",
            "job_id": self.job_id,
            "total_issues": self.total_issues,
            "duplicates_removed": self.duplicates_removed,
            "rejected_count": self.rejected_count,
            "stats": dict(self.stats),
            "audit_tally": self.audit_tally.to_dict(),
            "plan_tally": self.plan_tally.to_dict(),
            "tally_validation": self.tally_validation.to_dict(),
            "missing_issues": list(self.missing_issues),
            "duplicates": [i.to_dict() for i in self.duplicates],
            "tasks": [t.to_dict() for t in self.tasks],
        }


def _missing(expected: Iterable[Issue], tasks: Iterable[Task]) -> list[dict[str, Any]]:
    have = Counter((t.issue_code, normalize_location(t.location), t.source) for t in tasks)
    missing: list[dict[str, Any]] = []
    for issue in expected:
        key = (issue.code, issue.normalized_location, issue.source)
        if have[key] > 0:
            have[key] -= 1
            continue
        missing.append(
            {
                "code": issue.code,
                "source": issue.source,
                "location": issue.location,
                "severity": issue.severity,
                "message": issue.message,
            }
        )
    return missing


def build_plan(
    raw_issues: Iterable[Any], *, job_id: str, settings: RemediationSettings | None = None
) -> Plan:
    settings = settings or RemediationSettings()
    auto_contrast = settings.contrast_auto_fix
    result = classify_and_deduplicate(raw_issues, contrast_auto_fix=auto_contrast)

    audit_tally = create_tally(result.valid, "audit", contrast_auto_fix=auto_contrast)
    log_tally(audit_tally)

    occurrences: Counter[tuple[str, str]] = Counter()
    tasks: list[Task] = []
    for issue, fix_type in zip(result.issues, result.fix_types):
        key = (issue.code, issue.normalized_location)
        occurrences[key] += 1
        task = Task.from_issue(
            issue,
            task_id=task_id_for(job_id, issue.code, issue.location, occurrences[key]),
            fix_type=fix_type,
        )
        if not task.wcag_criteria:
            task = replace(task, wcag_criteria=wcag_criteria_for(issue.code))
        tasks.append(task)
    tasks.sort(key=lambda t: _PRIORITY_RANK.get(t.priority, len(PRIORITIES)))

    plan_tally = create_tally(tasks, "plan", contrast_auto_fix=auto_contrast)
    log_tally(plan_tally)
    removed = create_tally(result.duplicates, "deduplicated", contrast_auto_fix=auto_contrast)
    validation = validate_transition(audit_tally, plan_tally, allowed=removed)
    log_transition(validation)

    missing = _missing(result.issues, tasks)
    for row in missing:
        logger.error(
            "issue without task: code=%s source=%s location=%s message=%s",
            row["code"], row["source"], row["location"] or "<package>", row["message"],
        )

    plan = Plan(
        job_id=job_id,
        tasks=tasks,
        audit_tally=audit_tally,
        plan_tally=plan_tally,
        tally_validation=validation,
        duplicates=result.duplicates,
        rejected_count=result.rejected_count,
        missing_issues=missing,
        settings=settings,
    )
    recompute_stats(plan)
    logger.info(
        "plan %s: %d task(s), %d duplicate(s) removed, %d rejected",
        job_id, len(tasks), plan.duplicates_removed, plan.rejected_count,
    )
    return plan


def recompute_stats(plan: Plan) -> dict[str, Any]:
    """Derive every aggregate from the task list; nothing is counted incrementally."""
    tasks = plan.tasks
    by_status = {s: 0 for s in TASK_STATUSES}
    by_fix_type = {f: 0 for f in FIX_TYPES}
    by_severity = {s: 0 for s in SEVERITIES}
    by_source: dict[str, int] = {"epubcheck": 0, "ace": 0, "auditor": 0, "unknown": 0}
    for t in tasks:
        by_status[t.status] = by_status.get(t.status, 0) + 1
        by_fix_type[t.type] = by_fix_type.get(t.type, 0) + 1
        by_severity[t.severity] = by_severity.get(t.severity, 0) + 1
        by_source[normalize_source(t.source)] += 1
    plan.stats = {
        "total": len(tasks),
        **by_status,
        "auto_fixable": by_fix_type["auto"],
        "quick_fixable": by_fix_type["quickfix"],
        "manual_required": by_fix_type["manual"],
        "by_fix_type": by_fix_type,
        "by_source": by_source,
        "by_severity": by_severity,
    }
    return plan.stats


def _resolved_location(task: Task, files: tuple[str, ...]) -> str | None:
    loc = normalize_location(task.location)
    if loc:
        for f in files:
            if f == loc or f.endswith("/" + loc.lstrip("/")):
                return f
    if files:
        return files[0]
    return task.location


def update_status(
    plan: Plan,
    task_id: str,
    status: str,
    resolution: str | None = None,
    *,
    resolved_files: Iterable[str] | None = None,
    completion_method: str | None = None,
    notes: str | None = None,
) -> Task:
    """Move one task along its lifecycle and store the replaced record in the plan.

    Raises ``InvalidTransitionError`` for any move the lifecycle does not allow
    and ``KeyError`` for an unknown task id.
    """
    idx = next((i for i, t in enumerate(plan.tasks) if t.id == task_id), None)
    if idx is None:
        raise KeyError(task_id)
    task = plan.tasks[idx]
    if status not in TRANSITIONS.get(task.status, frozenset()):
        raise InvalidTransitionError(task_id, task.status, status)

    changes: dict[str, Any] = {"status": status}
    if resolution is not None:
        changes["resolution"] = resolution
    if notes is not None:
        changes["notes"] = notes
    if status == "completed":
        files = tuple(dict.fromkeys(resolved_files or ()))
        changes["resolved_files"] = files
        changes["resolved_location"] = _resolved_location(task, files)
        changes["completion_method"] = completion_method or "manual"
    elif completion_method is not None:
        changes["completion_method"] = completion_method

    updated = replace(task, **changes)
    plan.tasks[idx] = updated
    recompute_stats(plan)
    return updated


def start_task(plan: Plan, task_id: str) -> Task:
    return update_status(plan, task_id, "in_progress")


def skip_task(plan: Plan, task_id: str, reason: str | None = None) -> Task:
    return update_status(plan, task_id, "skipped", reason)


@dataclass
class GroupResult:
    code: str
    task_ids: list[str]
    success: bool
    message: str
    files: list[str] = field(default_factory=list)
    outcomes: list[FixOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "task_ids": list(self.task_ids),
            "success": self.success,
            "message": self.message,
            "files": list(self.files),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class RemediationResults:
    groups: list[GroupResult] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    validator_fixes: int = 0
    validator_failures: list[str] = field(default_factory=list)
    validator_outcomes: list[FixOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.completed + self.failed

    @property
    def modified_files(self) -> list[str]:
        files: dict[str, None] = {}
        for g in self.groups:
            for f in g.files:
                files.setdefault(f, None)
        for o in self.validator_outcomes:
            if o.modified and o.file_path:
                files.setdefault(o.file_path, None)
        return list(files)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": "epubremedy.remediation.v1",
            "attempted": self.attempted,
            "completed": self.completed,
            "failed": self.failed,
            "validator_fixes": self.validator_fixes,
            "validator_failures": list(self.validator_failures),
            "modified_files": self.modified_files,
            "groups": [g.to_dict() for g in self.groups],
        }


def _group_order(codes: Iterable[str]) -> list[str]:
    registry = list(AUTO_FIX_HANDLERS)
    known = [c for c in registry if c in codes]
    unknown = sorted(c for c in codes if c not in AUTO_FIX_HANDLERS)
    return known + unknown


def _primary(tasks: list[Task], path: str | None) -> Task:
    if path:
        for t in tasks:
            loc = normalize_location(t.location)
            if loc and (loc == path or path.endswith("/" + loc.lstrip("/"))):
                return t
    return tasks[0]


def _fail_group(plan: Plan, tasks: list[Task], reason: str) -> None:
    for t in tasks:
        update_status(plan, t.id, "failed", reason, completion_method="auto")


def run_auto_remediation(
    plan: Plan,
    archive: Archive,
    *,
    settings: RemediationSettings | None = None,
    changelog: ChangeLog | None = None,
) -> RemediationResults:
    """Apply every pending auto task, then run the landmark invariant pass once.

    The archive is mutated in place. Group failures are recorded on the tasks
    and never stop later groups.
    """
    settings = settings or plan.settings
    changelog = changelog if changelog is not None else ChangeLog()
    results = RemediationResults()

    groups: dict[str, list[Task]] = {}
    for t in plan.tasks:
        if t.status == "pending" and t.type == "auto":
            groups.setdefault(normalize_code(t.issue_code), []).append(t)

    for code in _group_order(groups):
        tasks = [start_task(plan, t.id) for t in groups[code]]
        handler = AUTO_FIX_HANDLERS.get(code)
        if handler is None:
            reason = f"No auto-fix handler for {code}"
            _fail_group(plan, tasks, reason)
            results.failed += len(tasks)
            results.groups.append(GroupResult(code, [t.id for t in tasks], False, reason))
            logger.warning("%s: %s", code, reason)
            continue

        try:
            outcomes = handler(archive, settings, tasks)
        except Exception as exc:
            if isinstance(exc, (PatchMatchError, BinaryMemberError, ArchiveError)):
                reason = str(exc)
            else:
                reason = f"{type(exc).__name__}: {exc}"
                logger.exception("%s: auto-fix handler raised", code)
            _fail_group(plan, tasks, reason)
            results.failed += len(tasks)
            results.groups.append(GroupResult(code, [t.id for t in tasks], False, reason))
            logger.warning("%s: auto-fix failed for %d task(s): %s", code, len(tasks), reason)
            continue

        if not any(o.success for o in outcomes):
            reason = "; ".join(o.description for o in outcomes) or "no repair applied"
            _fail_group(plan, tasks, reason)
            results.failed += len(tasks)
            results.groups.append(GroupResult(code, [t.id for t in tasks], False, reason, outcomes=outcomes))
            logger.warning("%s: auto-fix failed for %d task(s): %s", code, len(tasks), reason)
            continue

        files = list(dict.fromkeys(o.file_path for o in outcomes if o.modified and o.file_path))
        for o in outcomes:
            if o.modified and o.file_path:
                changelog.record(
                    _primary(tasks, o.file_path).id,
                    o.file_path,
                    o.change_type,
                    o.description,
                    before=o.before,
                    after=o.after,
                    strategy=o.strategy,
                )
        message = "; ".join(o.description for o in outcomes if o.success)
        for t in tasks:
            update_status(
                plan, t.id, "completed", message, resolved_files=files, completion_method="auto"
            )
        results.completed += len(tasks)
        results.groups.append(GroupResult(code, [t.id for t in tasks], True, message, files, outcomes))
        logger.info("%s: completed %d task(s), %d file(s) modified", code, len(tasks), len(files))

    validator = validate_landmarks(archive)
    results.validator_outcomes = validator
    for o in validator:
        if o.success and o.modified and o.file_path:
            results.validator_fixes += 1
            changelog.record(
                VALIDATOR_TASK_ID, o.file_path, o.change_type, o.description,
                before=o.before, after=o.after, strategy=o.strategy,
            )
        elif not o.success:
            results.validator_failures.append(f"{o.file_path}: {o.description}")
    if results.validator_fixes or results.validator_failures:
        logger.info(
            "invariant validator: %d fix(es), %d failure(s)",
            results.validator_fixes, len(results.validator_failures),
        )
    return results


def plan_summary(plan: Plan) -> dict[str, Any]:
    stats = plan.stats or recompute_stats(plan)
    total = plan.total_issues
    done = stats.get("completed", 0) + stats.get("skipped", 0)
    pending_manual = sum(1 for t in plan.tasks if t.type == "manual" and t.status == "pending")
    return {
        "job_id": plan.job_id,
        "total_tasks": total,
        "completion_percentage": round(done / total * 100) if total else 100,
        "critical_remaining": sum(
            1 for t in plan.tasks if t.priority == "critical" and t.status == "pending"
        ),
        "estimated_time_minutes": pending_manual * MANUAL_MINUTES_PER_TASK,
        "stats": stats,
    }
