from __future__ import annotations

from typing import Optional

from taskgraph_platform.core.errors import ValidationError
from taskgraph_platform.core.graph.cycle import detect_cycles
from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.model import (
    CRITERIA_MAX,
    CRITERIA_MIN,
    DELIVERABLES_MAX,
    DELIVERABLES_MIN,
    DESCRIPTION_MAX,
    DESCRIPTION_MIN,
)


# Atomic task policy lint rules. Validation only checks shape; these flag
# tasks that load fine but drift from the policy:
# - L_CYCLE_DETECTED: dependency cycle exists
# - L_EDGE_BLOCKER_MISMATCH: edge list and blocker lists disagree
# - L_MISSING_DEPENDENCY_REASON / L_REASON_WITHOUT_BLOCKERS: blocker twin broken
# - L_STALE_BLOCKER: blocked by a task that is already completed
# - L_TITLE_NO_ACTION_VERB: title does not start with an action verb
# - L_DESCRIPTION_LENGTH, L_CHECKLIST_SIZE: outside the create-time bounds
# - L_OPEN_FIX_ON_COMPLETED: completed task still has unresolved fixes

ACTION_VERBS: frozenset[str] = frozenset(
    {
        "add", "adjust", "audit", "build", "bump", "cache", "clean", "configure",
        "convert", "create", "define", "delete", "deploy", "design", "disable",
        "document", "drop", "enable", "ensure", "expose", "extract", "fix",
        "handle", "implement", "improve", "integrate", "introduce", "investigate",
        "load", "log", "merge", "migrate", "move", "optimize", "parse", "publish",
        "refactor", "release", "remove", "rename", "replace", "review", "rewrite",
        "set", "setup", "split", "store", "support", "test", "update", "upgrade",
        "validate", "verify", "wire", "write",
    }
)


def lint_graph(graph: GraphStore, file: Optional[str] = None) -> list[ValidationError]:
    """Lint a loaded project graph.

    Lint runs *in addition to* document validation and enforces the atomic
    task policy on data that may predate it.
    """
    errors: list[ValidationError] = []

    def add(code: str, message: str, path: str) -> None:
        errors.append(ValidationError(code=code, message=message, file=file, path=path))

    # Rule: cycles
    for cycle in detect_cycles(graph).cycles:
        add(
            "L_CYCLE_DETECTED",
            "dependency cycle detected: " + " -> ".join(cycle),
            f"tasks.{cycle[0]}.blockers",
        )

    for node in graph.nodes():
        base = f"tasks.{node.id}"

        # Rule: edges and blockers agree
        incoming = set(graph.get_incoming_edges(node.id))
        for b in node.blockers:
            if b not in incoming:
                add("L_EDGE_BLOCKER_MISMATCH", f"blocker {b} has no matching edge", f"{base}.blockers")
        for p in sorted(incoming - set(node.blockers)):
            add("L_EDGE_BLOCKER_MISMATCH", f"edge from {p} is not listed in blockers", f"{base}.blockers")

        # Rule: blocker twin
        if node.blockers and not node.dependencies.strip():
            add(
                "L_MISSING_DEPENDENCY_REASON",
                "task has blockers but no dependencies explanation",
                f"{base}.dependencies",
            )
        if node.dependencies.strip() and not node.blockers:
            add(
                "L_REASON_WITHOUT_BLOCKERS",
                "dependencies explanation present but task has no blockers",
                f"{base}.dependencies",
            )

        # Rule: stale blockers
        for b in node.blockers:
            blocker = graph.get_node(b)
            if blocker is not None and blocker.status == "completed":
                add(
                    "L_STALE_BLOCKER",
                    f"blocker {b} is completed; remove it to unblock this task",
                    f"{base}.blockers",
                )

        # Rule: title starts with an action verb
        words = node.title.split()
        first = words[0].lower().strip(".,:;!?") if words else ""
        if first not in ACTION_VERBS:
            add(
                "L_TITLE_NO_ACTION_VERB",
                f"title should start with an action verb (got {first!r})",
                f"{base}.title",
            )

        # Rule: create-time bounds
        n = len(node.description.strip())
        if n < DESCRIPTION_MIN or n > DESCRIPTION_MAX:
            add(
                "L_DESCRIPTION_LENGTH",
                f"description should be {DESCRIPTION_MIN}-{DESCRIPTION_MAX} characters (got {n})",
                f"{base}.description",
            )
        for field_name, count, lo, hi in (
            ("success_criteria", len(node.success_criteria), CRITERIA_MIN, CRITERIA_MAX),
            ("deliverables", len(node.deliverables), DELIVERABLES_MIN, DELIVERABLES_MAX),
        ):
            if count < lo or count > hi:
                add(
                    "L_CHECKLIST_SIZE",
                    f"{field_name} should have {lo}-{hi} items (got {count}); consider splitting the task",
                    f"{base}.{field_name}",
                )

        # Rule: completed tasks carry no open fixes
        if node.status == "completed" and any(not f.completed for f in node.need_fix):
            add(
                "L_OPEN_FIX_ON_COMPLETED",
                "completed task has unresolved need_fix items",
                f"{base}.need_fix",
            )

    return _sorted(errors)


def _sorted(errors: list[ValidationError]) -> list[ValidationError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
