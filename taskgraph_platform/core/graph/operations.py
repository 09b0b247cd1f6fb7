from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from taskgraph_platform.core.errors import ValidationError, WirePreconditionError
from taskgraph_platform.core.graph.cycle import cycle_error, would_create_cycle
from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.graph.traversal import find_shortest_path, get_descendants
from taskgraph_platform.core.model import TaskNode


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CutResult:
    removed: TaskNode
    added_edges: tuple[tuple[str, str], ...]
    updated_tasks: tuple[str, ...]


@dataclass(frozen=True)
class MergeResult:
    task: TaskNode
    removed_tasks: tuple[str, ...]
    updated_tasks: tuple[str, ...]


# Structural mutations keep the edge set and every task's blocker list in step.
# A blocker edge always carries a rationale in the blocked task's `dependencies`.


def cut_node(graph: GraphStore, node_id: str) -> CutResult:
    """Remove a task, connecting each of its blockers to each of its dependents.

    A -> B -> C becomes A -> C when B is cut. With several blockers and
    dependents every blocker is wired to every dependent.
    """
    node = graph.require_node(node_id)
    preds = graph.get_incoming_edges(node_id)
    succs = graph.get_outgoing_edges(node_id)

    added: list[tuple[str, str]] = []
    updated: dict[str, None] = {}
    for s in succs:
        succ = graph.require_node(s)
        for p in preds:
            if p == s:
                continue
            if not graph.has_edge(p, s):
                graph.add_edge(p, s)
                added.append((p, s))
            succ.add_blocker(p)
        updated[s] = None

    graph.remove_node(node_id)
    updated.update(_drop_references(graph, {node_id}))
    logger.info("cut task %s (%d edges added)", node_id, len(added))
    return CutResult(removed=node, added_edges=tuple(added), updated_tasks=tuple(updated))


def cascade_delete(graph: GraphStore, node_id: str) -> list[str]:
    """Delete ``node_id`` and everything it transitively blocks.

    Returns deleted ids in deletion order. Cycles are safe.
    """
    graph.require_node(node_id)
    visited: set[str] = set()
    deleted: list[str] = []
    stack = [node_id]
    while stack:
        cur = stack.pop()
        if cur in visited or cur not in graph:
            continue
        visited.add(cur)
        succs = graph.get_outgoing_edges(cur)
        graph.remove_node(cur)
        deleted.append(cur)
        stack.extend(s for s in reversed(succs) if s not in visited)

    _drop_references(graph, visited)
    logger.info("cascade delete from %s removed %d tasks", node_id, len(deleted))
    return deleted


def merge_tasks(graph: GraphStore, source_id: str, target_id: str) -> MergeResult:
    """Fold ``source_id`` into ``target_id`` and delete the source."""
    if source_id == target_id:
        raise ValidationError(
            code="E_MERGE_SELF",
            message="cannot merge a task into itself",
            path="source",
        )
    source = graph.require_node(source_id)
    target = graph.require_node(target_id)

    preds = [p for p in graph.get_incoming_edges(source_id) if p != target_id]
    succs = [s for s in graph.get_outgoing_edges(source_id) if s != target_id]
    for s in succs:
        if would_create_cycle(graph, target_id, s):
            raise cycle_error(
                (target_id, s, target_id),
                message=f"merging would create a cycle between {target_id} and {s}",
            )
    for p in preds:
        if would_create_cycle(graph, p, target_id):
            raise cycle_error(
                (p, target_id, p),
                message=f"merging would create a cycle between {p} and {target_id}",
            )

    target.adopt_items(source.success_criteria, source.deliverables, source.need_fix)
    for path in source.related_files:
        target.add_related_file(path)
    for v in source.c7_verified:
        target.add_verification(v)
    if source.description:
        target.description = (
            f'{target.description}\n\n--- Merged from "{source.title}" ---\n{source.description}'
        )
    if source.notes:
        target.append_notes(f'Merged notes from "{source.title}":\n{source.notes}')
    if source.dependencies:
        target.set_dependencies(
            f"{target.dependencies}\n{source.dependencies}" if target.dependencies else source.dependencies
        )
    for b in source.blockers:
        if b != target_id:
            target.add_blocker(b)

    updated: dict[str, None] = {}
    for p in preds:
        if not graph.has_edge(p, target_id):
            graph.add_edge(p, target_id)
    for s in succs:
        if not graph.has_edge(target_id, s):
            graph.add_edge(target_id, s)
        succ = graph.require_node(s)
        succ.remove_blocker(source_id)
        succ.add_blocker(target_id)
        updated[s] = None

    graph.remove_node(source_id)
    updated.update(_drop_references(graph, {source_id}))
    if not target.blockers and target.dependencies:
        target.set_dependencies("")
    updated.pop(target_id, None)
    logger.info("merged task %s into %s", source_id, target_id)
    return MergeResult(task=target, removed_tasks=(source_id,), updated_tasks=tuple(updated))


def wire_insert(
    graph: GraphStore,
    task_id: str,
    after_id: str,
    before_id: str,
    dep_on_after: str,
    dep_on_before: str,
) -> TaskNode:
    """Splice task B into the existing edge A -> C, giving A -> B -> C.

    Every precondition is checked before anything changes, so a failure
    leaves the graph untouched.
    """
    if task_id == after_id:
        raise _wire_error("E_WIRE_SELF_AFTER", "task cannot be wired after itself", "after")
    if task_id == before_id:
        raise _wire_error("E_WIRE_SELF_BEFORE", "task cannot be wired before itself", "before")
    if after_id == before_id:
        raise _wire_error("E_WIRE_SAME_ENDPOINTS", "after and before must be different tasks", "before")

    task = graph.require_node(task_id)
    after = graph.require_node(after_id)
    before = graph.require_node(before_id)

    if not dep_on_after.strip():
        raise _wire_error(
            "E_WIRE_MISSING_REASON",
            f"explain why {task.id} depends on {after.id}",
            "dep_on_after",
        )
    if not dep_on_before.strip():
        raise _wire_error(
            "E_WIRE_MISSING_REASON",
            f"explain why {before.id} depends on {task.id}",
            "dep_on_before",
        )
    if not graph.has_edge(after_id, before_id):
        raise _wire_error("E_WIRE_NO_EDGE", f"no edge {after_id} -> {before_id}", "after")
    if after_id not in before.blockers:
        raise _wire_error(
            "E_WIRE_NOT_BLOCKER",
            f"{before_id} does not list {after_id} as a blocker",
            "before",
        )
    if graph.has_edge(after_id, task_id):
        raise _wire_error("E_WIRE_DUPLICATE_EDGE", f"edge {after_id} -> {task_id} already exists", "after")
    if graph.has_edge(task_id, before_id):
        raise _wire_error("E_WIRE_DUPLICATE_EDGE", f"edge {task_id} -> {before_id} already exists", "before")
    if would_create_cycle(graph, after_id, task_id) or would_create_cycle(graph, task_id, before_id):
        raise _wire_error(
            "E_WIRE_WOULD_CYCLE",
            f"wiring {task_id} between {after_id} and {before_id} would create a cycle",
            "task",
        )

    graph.remove_edge(after_id, before_id)
    graph.add_edge(after_id, task_id)
    graph.add_edge(task_id, before_id)

    task.add_blocker(after_id)
    reason = dep_on_after.strip()
    task.set_dependencies(f"{task.dependencies}\n{reason}" if task.dependencies else reason)

    before.remove_blocker(after_id)
    before.add_blocker(task_id)
    before.set_dependencies(dep_on_before)
    logger.info("wired %s between %s and %s", task_id, after_id, before_id)
    return task


def _wire_error(code: str, message: str, path: str) -> WirePreconditionError:
    return WirePreconditionError(code=code, message=message, path=path, precondition=code[len("E_WIRE_"):].lower())


def add_blocker(graph: GraphStore, task_id: str, blocker_id: str, reason: str) -> TaskNode:
    """Make ``blocker_id`` block ``task_id``; ``reason`` is appended to the task's dependencies."""
    return add_blockers(graph, task_id, [blocker_id], reason)


def add_blockers(graph: GraphStore, task_id: str, blocker_ids: Sequence[str], reason: str) -> TaskNode:
    """Make every id in ``blocker_ids`` block ``task_id``.

    ``reason`` explains the whole group and is appended to the dependencies once.
    """
    if not blocker_ids:
        raise ValidationError(
            code="E_TWIN_VALIDATION",
            message="dependencies explanation given without any blockers",
            path="blockers",
        )
    if not reason.strip():
        raise ValidationError(
            code="E_TWIN_VALIDATION",
            message="adding a blocker requires a dependencies explanation",
            path="dependencies",
        )
    task = graph.require_node(task_id)
    for blocker_id in blocker_ids:
        if task_id == blocker_id:
            raise ValidationError(code="E_SELF_BLOCKER", message="a task cannot block itself", path="blockers")
        graph.require_node(blocker_id)
        if blocker_id in task.blockers or graph.has_edge(blocker_id, task_id):
            raise ValidationError(
                code="E_DUPLICATE_BLOCKER",
                message=f"{blocker_id} already blocks {task_id}",
                path="blockers",
            )
        if would_create_cycle(graph, blocker_id, task_id):
            path = find_shortest_path(graph, task_id, blocker_id) or [task_id, blocker_id]
            raise cycle_error(tuple(path) + (task_id,))

        graph.add_edge(blocker_id, task_id)
        task.add_blocker(blocker_id)

    reason = reason.strip()
    task.set_dependencies(f"{task.dependencies}\n{reason}" if task.dependencies else reason)
    return task


def remove_blocker(graph: GraphStore, task_id: str, blocker_id: str) -> bool:
    """Drop the edge and the blocker entry. Clears the rationale once no blockers remain."""
    task = graph.require_node(task_id)
    if blocker_id not in task.blockers and not graph.has_edge(blocker_id, task_id):
        return False
    graph.remove_edge(blocker_id, task_id)
    task.remove_blocker(blocker_id)
    if not task.blockers:
        task.set_dependencies("")
    return True


def is_valid_subtree_move(graph: GraphStore, root_id: str, new_parent_id: str) -> bool:
    if root_id == new_parent_id:
        return False
    return new_parent_id not in get_descendants(graph, root_id)


def move_subtree(graph: GraphStore, root_id: str, new_parent_id: str, reason: str) -> list[str]:
    """Detach ``root_id`` from all its blockers and hang it under ``new_parent_id``.

    Returns the blockers that were detached.
    """
    root = graph.require_node(root_id)
    graph.require_node(new_parent_id)
    if not is_valid_subtree_move(graph, root_id, new_parent_id):
        raise ValidationError(
            code="E_INVALID_MOVE",
            message=f"cannot move {root_id} under itself or one of its dependents",
            path="parent",
        )
    if graph.has_edge(new_parent_id, root_id):
        raise ValidationError(
            code="E_DUPLICATE_BLOCKER",
            message=f"{new_parent_id} already blocks {root_id}",
            path="parent",
        )
    if not reason.strip():
        raise ValidationError(
            code="E_TWIN_VALIDATION",
            message="moving a task requires a dependencies explanation",
            path="dependencies",
        )

    detached = list(graph.get_incoming_edges(root_id))
    for p in detached:
        graph.remove_edge(p, root_id)
        root.remove_blocker(p)
    graph.add_edge(new_parent_id, root_id)
    root.add_blocker(new_parent_id)
    root.set_dependencies(reason)
    return detached


def _drop_references(graph: GraphStore, removed: set[str]) -> dict[str, None]:
    touched: dict[str, None] = {}
    for other in graph.nodes():
        hits = [b for b in other.blockers if b in removed]
        if not hits:
            continue
        for b in hits:
            other.remove_blocker(b)
        if not other.blockers:
            other.set_dependencies("")
        touched[other.id] = None
    return touched
