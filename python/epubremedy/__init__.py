# SPDX-License-Identifier: AGPL-3.0-only
"""Accessibility detection and automatic remediation for EPUB packages.

The library validates detector output into canonical issues, plans one task
per surviving issue with tally conservation checks, and applies the automatic
repairs to an in-memory archive. ``remediate`` runs the whole pass.
"""
from .archive import Archive
from .audit import EpubAuditor, audit_report
from .changelog import ChangeLog, ChangeRecord
from .classification import classify, classify_and_deduplicate, deduplicate, normalize_code
from .config import Config, RemediationSettings
from .errors import (
    ArchiveError,
    BinaryMemberError,
    InvalidTransitionError,
    IssueValidationError,
    PatchMatchError,
    RemediationError,
)
from .patching import Change, apply_change, apply_to_archive
from .pipeline import RemediationRun, remediate, run_detectors
from .planner import (
    Plan,
    RemediationResults,
    build_plan,
    plan_summary,
    run_auto_remediation,
    skip_task,
    start_task,
    update_status,
)
from .tally import Tally, TallyValidation, create_tally, validate_transition
from .types import FixOutcome, Issue, Task, issue_from_dict

SPDX_LICENSE_EXPRESSION = "AGPL-3.0-only"

__all__ = [
    "Archive",
    "ArchiveError",
    "BinaryMemberError",
    "Change",
    "ChangeLog",
    "ChangeRecord",
    "Config",
    "EpubAuditor",
    "FixOutcome",
    "InvalidTransitionError",
    "Issue",
    "IssueValidationError",
    "PatchMatchError",
    "Plan",
    "RemediationError",
    "RemediationResults",
    "RemediationRun",
    "RemediationSettings",
    "SPDX_LICENSE_EXPRESSION",
    "Tally",
    "TallyValidation",
    "Task",
    "apply_change",
    "apply_to_archive",
    "audit_report",
    "build_plan",
    "classify",
    "classify_and_deduplicate",
    "create_tally",
    "deduplicate",
    "issue_from_dict",
    "normalize_code",
    "plan_summary",
    "remediate",
    "run_auto_remediation",
    "run_detectors",
    "skip_task",
    "start_task",
    "update_status",
    "validate_transition",
]
