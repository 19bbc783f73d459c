# SPDX-License-Identifier: AGPL-3.0-only
"""Exception types raised by the remediation core."""
from __future__ import annotations


class RemediationError(Exception):
    pass


class ArchiveError(RemediationError):
    """The package could not be read or is missing a required member."""


class IssueValidationError(RemediationError, ValueError):
    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class InvalidTransitionError(RemediationError, ValueError):
    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"task {task_id}: cannot move from {current!r} to {requested!r}"
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class PatchMatchError(RemediationError):
    """No matching strategy could locate the anchor of a change."""

    def __init__(
        self,
        message: str,
        *,
        anchor: str | None = None,
        strategies_tried: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.anchor = anchor
        self.strategies_tried = tuple(strategies_tried)


class BinaryMemberError(RemediationError, TypeError):
    def __init__(self, path: str, operation: str) -> None:
        super().__init__(f"refusing {operation} on binary archive member {path!r}")
        self.path = path
        self.operation = operation
