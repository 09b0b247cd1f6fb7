from __future__ import annotations

from collections import deque
from typing import Callable, Literal, Optional

from taskgraph_platform.core.graph.store import GraphStore


Direction = Literal["forward", "backward"]

DEFAULT_MAX_PATHS = 100


def _neighbors(graph: GraphStore, direction: Direction) -> Callable[[str], tuple[str, ...]]:
    if direction == "forward":
        return graph.get_outgoing_edges
    if direction == "backward":
        return graph.get_incoming_edges
    raise ValueError(f"unknown direction: {direction}")


def bfs_traversal(graph: GraphStore, start: str, direction: Direction = "forward") -> list[str]:
    """Breadth-first visit order starting at ``start`` (included)."""
    graph.require_node(start)
    step = _neighbors(graph, direction)
    q: deque[str] = deque([start])
    seen = {start}
    out: list[str] = []
    while q:
        cur = q.popleft()
        out.append(cur)
        for nxt in step(cur):
            if nxt not in seen:
                seen.add(nxt)
                q.append(nxt)
    return out


def get_descendants(graph: GraphStore, node_id: str) -> list[str]:
    """Every task transitively blocked by ``node_id``."""
    return bfs_traversal(graph, node_id, "forward")[1:]


def get_ancestors(graph: GraphStore, node_id: str) -> list[str]:
    """Every task that transitively blocks ``node_id``."""
    return bfs_traversal(graph, node_id, "backward")[1:]


def dfs_find_path(
    graph: GraphStore,
    source: str,
    target: str,
    direction: Direction = "forward",
) -> Optional[list[str]]:
    graph.require_node(source)
    graph.require_node(target)
    if source == target:
        return [source]
    step = _neighbors(graph, direction)
    stack: list[tuple[str, list[str]]] = [(source, [source])]
    seen = {source}
    while stack:
        cur, path = stack.pop()
        for nxt in reversed(step(cur)):
            if nxt == target:
                return path + [nxt]
            if nxt not in seen:
                seen.add(nxt)
                stack.append((nxt, path + [nxt]))
    return None


def find_all_paths(
    graph: GraphStore,
    source: str,
    target: str,
    direction: Direction = "forward",
    max_paths: int = DEFAULT_MAX_PATHS,
) -> list[list[str]]:
    """Simple paths from ``source`` to ``target``, stopping after ``max_paths``."""
    graph.require_node(source)
    graph.require_node(target)
    if source == target:
        return [[source]]
    step = _neighbors(graph, direction)
    paths: list[list[str]] = []
    stack: list[list[str]] = [[source]]
    while stack and len(paths) < max_paths:
        path = stack.pop()
        for nxt in reversed(step(path[-1])):
            if nxt == target:
                paths.append(path + [nxt])
                if len(paths) >= max_paths:
                    break
            elif nxt not in path:
                stack.append(path + [nxt])
    return paths


def find_shortest_path(
    graph: GraphStore,
    source: str,
    target: str,
    direction: Direction = "forward",
) -> Optional[list[str]]:
    graph.require_node(source)
    graph.require_node(target)
    step = _neighbors(graph, direction)
    prev: dict[str, Optional[str]] = {source: None}
    q: deque[str] = deque([source])
    while q:
        cur = q.popleft()
        if cur == target:
            path: list[str] = []
            cursor: Optional[str] = cur
            while cursor is not None:
                path.append(cursor)
                cursor = prev[cursor]
            return path[::-1]
        for nxt in step(cur):
            if nxt not in prev:
                prev[nxt] = cur
                q.append(nxt)
    return None


def are_connected(graph: GraphStore, a: str, b: str) -> bool:
    """True if either task can reach the other along blocking edges."""
    return (
        find_shortest_path(graph, a, b, "forward") is not None
        or find_shortest_path(graph, a, b, "backward") is not None
    )


def get_distance(graph: GraphStore, source: str, target: str, direction: Direction = "forward") -> int:
    """Number of edges on the shortest path, or -1 when unreachable."""
    path = find_shortest_path(graph, source, target, direction)
    return -1 if path is None else len(path) - 1


def get_connected_components(graph: GraphStore) -> list[list[str]]:
    """Weakly connected components, in graph order."""
    seen: set[str] = set()
    components: list[list[str]] = []
    for start in graph.node_ids():
        if start in seen:
            continue
        seen.add(start)
        component: list[str] = []
        q: deque[str] = deque([start])
        while q:
            cur = q.popleft()
            component.append(cur)
            for nxt in (*graph.get_outgoing_edges(cur), *graph.get_incoming_edges(cur)):
                if nxt not in seen:
                    seen.add(nxt)
                    q.append(nxt)
        components.append(component)
    return components
