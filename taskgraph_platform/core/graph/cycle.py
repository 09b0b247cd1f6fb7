from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterator, Optional

from taskgraph_platform.core.errors import CircularDependencyError, ValidationError
from taskgraph_platform.core.graph.store import GraphStore


WHITE, GRAY, BLACK = 0, 1, 2


@dataclass(frozen=True)
class CycleDetectionResult:
    has_cycle: bool
    cycles: tuple[tuple[str, ...], ...]


@dataclass(frozen=True)
class CycleStatistics:
    cycle_count: int
    cyclic_node_count: int
    shortest_cycle_length: int
    longest_cycle_length: int


def detect_cycles(graph: GraphStore) -> CycleDetectionResult:
    """Three-color DFS over outgoing edges, without recursion.

    Every back edge to a GRAY node yields one closed path (first == last),
    e.g. ``("A", "B", "C", "A")``. A self-loop yields ``("A", "A")``.
    """
    color: dict[str, int] = {nid: WHITE for nid in graph.node_ids()}
    parent: dict[str, Optional[str]] = {}
    cycles: list[tuple[str, ...]] = []

    for start in graph.node_ids():
        if color[start] != WHITE:
            continue
        color[start] = GRAY
        parent[start] = None
        frames: list[tuple[str, Iterator[str]]] = [(start, iter(graph.get_outgoing_edges(start)))]

        while frames:
            node, neighbors = frames[-1]
            nxt = next(neighbors, None)
            if nxt is None:
                color[node] = BLACK
                frames.pop()
                continue

            state = color.get(nxt, BLACK)
            if state == WHITE:
                color[nxt] = GRAY
                parent[nxt] = node
                frames.append((nxt, iter(graph.get_outgoing_edges(nxt))))
            elif state == GRAY:
                cycles.append(_rebuild_cycle(nxt, node, parent))

    return CycleDetectionResult(has_cycle=bool(cycles), cycles=tuple(cycles))


def _rebuild_cycle(neighbor: str, current: str, parent: dict[str, Optional[str]]) -> tuple[str, ...]:
    path = [neighbor]
    cursor: Optional[str] = current
    while cursor is not None and cursor != neighbor:
        path.insert(0, cursor)
        cursor = parent.get(cursor)
    path.insert(0, neighbor)
    return tuple(path)


def has_cycle(graph: GraphStore) -> bool:
    return detect_cycles(graph).has_cycle


def validate_acyclic(graph: GraphStore) -> None:
    result = detect_cycles(graph)
    if result.has_cycle:
        raise cycle_error(result.cycles[0])


def cycle_error(cycle: tuple[str, ...], message: Optional[str] = None) -> CircularDependencyError:
    return CircularDependencyError(
        code="E_CIRCULAR_DEPENDENCY",
        message=message or "circular dependency: " + " -> ".join(cycle),
        path="edges",
        cycle=tuple(cycle),
    )


def get_cyclic_nodes(graph: GraphStore) -> list[str]:
    seen: dict[str, None] = {}
    for cycle in detect_cycles(graph).cycles:
        for nid in cycle:
            seen[nid] = None
    return list(seen)


def find_shortest_cycle(graph: GraphStore) -> Optional[tuple[str, ...]]:
    cycles = detect_cycles(graph).cycles
    if not cycles:
        return None
    return min(cycles, key=len)


def find_cycles_for_task(graph: GraphStore, task_id: str) -> list[tuple[str, ...]]:
    return [c for c in detect_cycles(graph).cycles if task_id in c]


def get_cycle_statistics(graph: GraphStore) -> CycleStatistics:
    cycles = detect_cycles(graph).cycles
    # length counts edges, so a self-loop is 1
    lengths = [len(c) - 1 for c in cycles]
    return CycleStatistics(
        cycle_count=len(cycles),
        cyclic_node_count=len({nid for c in cycles for nid in c}),
        shortest_cycle_length=min(lengths, default=0),
        longest_cycle_length=max(lengths, default=0),
    )


def validate_references(graph: GraphStore) -> list[ValidationError]:
    """Report blockers that point at tasks missing from the graph."""
    errors: list[ValidationError] = []
    for node in graph.nodes():
        for i, blocker in enumerate(node.blockers):
            if blocker not in graph:
                errors.append(
                    ValidationError(
                        code="E_UNKNOWN_BLOCKER",
                        message=f"blockers references unknown task: {blocker}",
                        path=f"tasks.{node.id}.blockers[{i}]",
                    )
                )
    return errors


def would_create_cycle(graph: GraphStore, blocker_id: str, task_id: str) -> bool:
    """True if adding the edge ``blocker_id -> task_id`` would close a cycle."""
    if blocker_id == task_id:
        return True
    q: deque[str] = deque([task_id])
    seen = {task_id}
    while q:
        cur = q.popleft()
        for nxt in graph.get_outgoing_edges(cur):
            if nxt == blocker_id:
                return True
            if nxt not in seen:
                seen.add(nxt)
                q.append(nxt)
    return False
