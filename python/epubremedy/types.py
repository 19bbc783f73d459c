# SPDX-License-Identifier: AGPL-3.0-only
"""Canonical issue and task records.

Issues come from detectors and are never mutated; a new audit supersedes them.
Tasks are derived one-to-one from surviving issues and change only through
``epubremedy.planner.update_status``.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import jsonschema

from .errors import IssueValidationError

Severity = Literal["critical", "serious", "moderate", "minor"]
FixType = Literal["auto", "quickfix", "manual"]
TaskStatus = Literal["pending", "in_progress", "completed", "skipped", "failed"]
Priority = Literal["critical", "high", "medium", "low"]
CompletionMethod = Literal["auto", "manual", "verified"]

SEVERITIES: tuple[str, ...] = ("critical", "serious", "moderate", "minor")
FIX_TYPES: tuple[str, ...] = ("auto", "quickfix", "manual")
TASK_STATUSES: tuple[str, ...] = ("pending", "in_progress", "completed", "skipped", "failed")
PRIORITIES: tuple[str, ...] = ("critical", "high", "medium", "low")
COMPLETION_METHODS: tuple[str, ...] = ("auto", "manual", "verified")

SEVERITY_TO_PRIORITY: dict[str, str] = {
    "critical": "critical",
    "serious": "high",
    "moderate": "medium",
    "minor": "low",
}

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "issue.v1.schema.json"


@lru_cache(maxsize=1)
def load_issue_schema() -> dict[str, Any]:
    return json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))


def normalize_location(location: str | None) -> str:
    """Trimmed location; the empty string means package-wide."""
    return str(location or "").strip()


def _criteria(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset(t.strip() for t in value.split(",") if t.strip())
    return frozenset(str(v).strip() for v in value if str(v).strip())


@dataclass(frozen=True)
class Issue:
    code: str
    source: str
    severity: Severity
    message: str = ""
    location: str | None = None
    wcag_criteria: frozenset[str] = frozenset()
    category: str = "general"
    issue_id: str | None = None
    suggestion: str | None = None
    selector: str | None = None
    snippet: str | None = None
    affected_files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not str(self.code or "").strip():
            raise IssueValidationError("issue code must not be empty", ["code"])
        if self.severity not in SEVERITIES:
            raise IssueValidationError(
                f"unknown severity {self.severity!r} for {self.code}", ["severity"]
            )
        loc = normalize_location(self.location)
        object.__setattr__(self, "location", loc or None)
        object.__setattr__(self, "wcag_criteria", _criteria(self.wcag_criteria))
        object.__setattr__(self, "affected_files", tuple(self.affected_files or ()))

    @property
    def normalized_location(self) -> str:
        return normalize_location(self.location)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.issue_id,
            "code": self.code,
            "source": self.source,
            "severity": self.severity,
            "message": self.message,
            "location": self.location,
            "wcagCriteria": sorted(self.wcag_criteria),
            "category": self.category,
            "suggestion": self.suggestion,
            "selector": self.selector,
            "snippet": self.snippet,
            "affectedFiles": list(self.affected_files),
        }


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def issue_from_dict(data: Mapping[str, Any], *, default_source: str = "unknown") -> Issue:
    """Validate one detector record and shape it into an ``Issue``.

    Raises ``IssueValidationError`` listing every schema violation.
    """
    if isinstance(data, Issue):
        return data
    if not isinstance(data, Mapping):
        raise IssueValidationError(f"issue entry must be an object, got {type(data).__name__}")

    validator = jsonschema.Draft202012Validator(load_issue_schema())
    errors = sorted(validator.iter_errors(dict(data)), key=lambda e: [str(p) for p in e.path])
    if errors:
        messages = [
            f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}" for err in errors
        ]
        raise IssueValidationError("invalid issue record: " + "; ".join(messages), messages)

    severity = str(data.get("severity") or "moderate").strip().lower()
    affected = _first(data, "affectedFiles", "affected_files") or ()
    return Issue(
        code=str(data["code"]).strip(),
        source=str(_first(data, "source", "ruleSource") or default_source).strip(),
        severity=severity,  # type: ignore[arg-type]
        message=str(data.get("message") or ""),
        location=_first(data, "location", "filePath"),
        wcag_criteria=_criteria(_first(data, "wcagCriteria", "wcag_criteria")),
        category=str(data.get("category") or "general"),
        issue_id=data.get("id"),
        suggestion=data.get("suggestion"),
        selector=data.get("selector"),
        snippet=_first(data, "snippet", "html"),
        affected_files=tuple(str(p) for p in affected),
    )


def task_id_for(job_id: str, code: str, location: str | None, occurrence: int = 1) -> str:
    """Content-addressed task id: the same job, code and location give the same id."""
    key = f"{job_id}|{code}|{normalize_location(location)}"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
    return f"task-{digest}" if occurrence <= 1 else f"task-{digest}-{occurrence}"


@dataclass(frozen=True)
class Task:
    id: str
    issue_code: str
    location: str | None
    priority: Priority
    type: FixType
    source: str
    severity: Severity
    message: str = ""
    category: str = "general"
    wcag_criteria: frozenset[str] = frozenset()
    affected_files: tuple[str, ...] = ()
    issue_id: str | None = None
    status: TaskStatus = "pending"
    resolution: str | None = None
    resolved_location: str | None = None
    resolved_files: tuple[str, ...] = ()
    completion_method: CompletionMethod | None = None
    notes: str | None = None

    @classmethod
    def from_issue(cls, issue: Issue, *, task_id: str, fix_type: FixType) -> "Task":
        return cls(
            id=task_id,
            issue_code=issue.code,
            location=issue.location,
            priority=SEVERITY_TO_PRIORITY.get(issue.severity, "medium"),  # type: ignore[arg-type]
            type=fix_type,
            source=issue.source,
            severity=issue.severity,
            message=issue.message,
            category=issue.category,
            wcag_criteria=issue.wcag_criteria,
            affected_files=issue.affected_files,
            issue_id=issue.issue_id,
        )

    @property
    def code(self) -> str:
        return self.issue_code

    @property
    def fix_type(self) -> str:
        return self.type

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issueId": self.issue_id,
            "issueCode": self.issue_code,
            "location": self.location,
            "status": self.status,
            "priority": self.priority,
            "type": self.type,
            "source": self.source,
            "severity": self.severity,
            "message": self.message,
            "category": self.category,
            "wcagCriteria": sorted(self.wcag_criteria),
            "affectedFiles": list(self.affected_files),
            "resolution": self.resolution,
            "resolvedLocation": self.resolved_location,
            "resolvedFiles": list(self.resolved_files),
            "completionMethod": self.completion_method,
            "notes": self.notes,
        }


@dataclass
class FixOutcome:
    """Result of one repair operation against the archive."""

    success: bool
    file_path: str | None
    description: str
    change_type: str = ""
    before: str | None = None
    after: str | None = None
    modified: bool = False
    strategy: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "file_path": self.file_path,
            "description": self.description,
            "change_type": self.change_type,
            "before": self.before,
            "after": self.after,
            "modified": self.modified,
            "strategy": self.strategy,
            "details": dict(self.details),
        }
