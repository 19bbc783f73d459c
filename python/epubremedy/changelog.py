# SPDX-License-Identifier: AGPL-3.0-only
"""Append-only record of every patch applied during a remediation run."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

EXCERPT_LIMIT = 500


def _excerpt(text: str | None) -> str | None:
    if text is None:
        return None
    return text if len(text) <= EXCERPT_LIMIT else text[:EXCERPT_LIMIT] + "..."


@dataclass(frozen=True)
class ChangeRecord:
    sequence: int
    task_id: str
    file_path: str
    change_type: str
    description: str
    before: str | None = None
    after: str | None = None
    strategy: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "task_id": self.task_id,
            "file_path": self.file_path,
            "change_type": self.change_type,
            "description": self.description,
            "before": self.before,
            "after": self.after,
            "strategy": self.strategy,
        }


class ChangeLog:
    def __init__(self) -> None:
        self._records: list[ChangeRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    def record(
        self,
        task_id: str,
        file_path: str,
        change_type: str,
        description: str,
        *,
        before: str | None = None,
        after: str | None = None,
        strategy: str | None = None,
    ) -> ChangeRecord:
        rec = ChangeRecord(
            sequence=len(self._records) + 1,
            task_id=task_id,
            file_path=file_path,
            change_type=change_type,
            description=description,
            before=_excerpt(before),
            after=_excerpt(after),
            strategy=strategy,
        )
        self._records.append(rec)
        return rec

    def get_changes(self, task_id: str | None = None) -> list[ChangeRecord]:
        if task_id is None:
            return list(self._records)
        return [r for r in self._records if r.task_id == task_id]

    def files_changed(self) -> list[str]:
        seen: dict[str, None] = {}
        for r in self._records:
            seen.setdefault(r.file_path, None)
        return list(seen)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": "epubremedy.changes.v1",
            "count": len(self._records),
            "files": self.files_changed(),
            "changes": [r.to_dict() for r in self._records],
        }
