# SPDX-License-Identifier: AGPL-3.0-only
"""Contracts for the collaborators around the remediation core."""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .changelog import ChangeRecord
from .types import Issue

if TYPE_CHECKING:
    from .planner import Plan


@runtime_checkable
class Detector(Protocol):
    """A read-only checker returning issues already in canonical shape."""

    name: str

    def detect(self, archive_bytes: bytes) -> list[Issue]: ...


@runtime_checkable
class JobStore(Protocol):
    def load_job_issues(self, job_id: str) -> list[Issue]: ...

    def save_plan(self, job_id: str, plan: "Plan") -> None: ...

    def save_archive(self, job_id: str, data: bytes) -> None: ...


@runtime_checkable
class ChangeReporter(Protocol):
    def get_changes(self, task_id: str | None = None) -> list[ChangeRecord]: ...
