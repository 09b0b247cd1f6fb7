"""One-time conversion from the five-state status model to derived statuses.

Older project files stored ``not_started``/``pending``/``in_progress``/
``completed``/``blocked`` by hand. This recomputes every non-completed task's
status from its checklist and blockers. It works on a document snapshot and
never touches a live GraphStore; running it twice changes nothing.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from taskgraph_platform.core.model import (
    Deliverable,
    FixItem,
    SuccessCriterion,
    derive_status,
)


logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    changed: dict[str, tuple[str, str]] = field(default_factory=dict)
    unchanged: int = 0

    @property
    def changed_count(self) -> int:
        return len(self.changed)


def migrate_task(raw: dict[str, Any]) -> str:
    """Derived status for one raw task record. A stored ``completed`` is kept."""
    if raw.get("status") == "completed":
        return "completed"
    return derive_status(
        [SuccessCriterion.from_dict(c) for c in raw.get("success_criteria") or []],
        [Deliverable.from_dict(d) for d in raw.get("deliverables") or []],
        [FixItem.from_dict(f) for f in raw.get("need_fix") or []],
        list(raw.get("blockers") or []),
    )


def migrate_document(doc: dict[str, Any]) -> tuple[dict[str, Any], MigrationReport]:
    """Return a migrated copy of ``doc`` and what changed."""
    out = copy.deepcopy(doc)
    report = MigrationReport()
    tasks = out.get("tasks")
    if not isinstance(tasks, dict):
        return out, report

    for tid, raw in tasks.items():
        if not isinstance(raw, dict):
            continue
        old = str(raw.get("status") or "")
        new = migrate_task(raw)
        if old == new:
            report.unchanged += 1
            continue
        raw["status"] = new
        report.changed[tid] = (old, new)
        logger.debug("task %s: %s -> %s", tid, old or "<none>", new)

    # indexes are rebuilt by the next regular save
    out.pop("indexes", None)
    return out, report
