from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Mapping, Optional

from taskgraph_platform.core.graph.cycle import cycle_error, detect_cycles
from taskgraph_platform.core.graph.store import GraphStore, TopologicalSortResult


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CriticalPath:
    path: tuple[str, ...]
    duration: float


def cache_key(graph: GraphStore) -> str:
    meta = graph.metadata
    ids = ",".join(sorted(graph.node_ids()))
    return f"{meta.project_name}:{meta.version}:{ids}:{graph.size}"


def topological_sort(graph: GraphStore, *, use_cache: bool = True) -> TopologicalSortResult:
    """Kahn's algorithm. Nodes left unplaced are reported as ``cycle_nodes``."""
    key = cache_key(graph) if use_cache else ""
    if use_cache:
        cached = graph.sort_cache.get(key)
        if cached is not None:
            logger.debug("topological sort served from cache")
            return cached

    in_degree: dict[str, int] = {nid: 0 for nid in graph.node_ids()}
    for nid in in_degree:
        for succ in graph.get_outgoing_edges(nid):
            in_degree[succ] += 1

    q: deque[str] = deque(nid for nid, d in in_degree.items() if d == 0)
    order: list[str] = []
    while q:
        cur = q.popleft()
        order.append(cur)
        for succ in graph.get_outgoing_edges(cur):
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                q.append(succ)

    placed = set(order)
    cycle_nodes = tuple(nid for nid in in_degree if nid not in placed)
    result = TopologicalSortResult(
        order=tuple(order),
        has_cycle=bool(cycle_nodes),
        cycle_nodes=cycle_nodes,
    )
    if use_cache:
        graph.sort_cache.put(key, result)
    return result


def is_valid_dag(graph: GraphStore) -> bool:
    return not topological_sort(graph).has_cycle


def _require_order(graph: GraphStore) -> tuple[str, ...]:
    result = topological_sort(graph)
    if result.has_cycle:
        cycles = detect_cycles(graph).cycles
        if cycles:
            raise cycle_error(cycles[0])
        raise cycle_error(result.cycle_nodes)
    return result.order


def find_critical_path(
    graph: GraphStore,
    durations: Optional[Mapping[str, float]] = None,
    default_duration: float = 1.0,
) -> CriticalPath:
    """Longest weighted chain through the DAG (unit durations unless given)."""
    order = _require_order(graph)
    if not order:
        return CriticalPath(path=(), duration=0.0)

    def weight(nid: str) -> float:
        if durations is not None and nid in durations:
            return float(durations[nid])
        return default_duration

    finish: dict[str, float] = {}
    prev: dict[str, Optional[str]] = {}
    for nid in order:
        best: Optional[str] = None
        start = 0.0
        for pred in graph.get_incoming_edges(nid):
            if best is None or finish[pred] > start:
                best = pred
                start = finish[pred]
        finish[nid] = start + weight(nid)
        prev[nid] = best

    end = max(order, key=lambda nid: finish[nid])
    path: list[str] = []
    cursor: Optional[str] = end
    while cursor is not None:
        path.append(cursor)
        cursor = prev[cursor]
    path.reverse()
    return CriticalPath(path=tuple(path), duration=finish[end])


def get_execution_levels(graph: GraphStore) -> list[list[str]]:
    """Batches of mutually independent tasks, peeled off as zero-in-degree frontiers."""
    _require_order(graph)
    in_degree: dict[str, int] = {nid: len(graph.get_incoming_edges(nid)) for nid in graph.node_ids()}
    frontier = [nid for nid, d in in_degree.items() if d == 0]
    levels: list[list[str]] = []
    while frontier:
        levels.append(frontier)
        nxt: list[str] = []
        for nid in frontier:
            for succ in graph.get_outgoing_edges(nid):
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    nxt.append(succ)
        frontier = nxt
    return levels
