from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from taskgraph_platform.core.errors import AmbiguousIdError, TaskNotFoundError, ValidationError
from taskgraph_platform.core.model import ProjectMetadata, TaskNode, utc_now_iso


logger = logging.getLogger(__name__)

DEFAULT_SORT_CACHE_TTL = 5.0
MIN_PREFIX_LENGTH = 8
EDGE_TYPE = "blocks"


@dataclass(frozen=True)
class TopologicalSortResult:
    order: tuple[str, ...]
    has_cycle: bool
    cycle_nodes: tuple[str, ...] = ()


class SortCache:
    """Short-lived memo of the last topological sort.

    Entries expire after ``ttl`` seconds and are dropped whenever the owning
    store changes its node or edge set.
    """

    def __init__(self, ttl: float = DEFAULT_SORT_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._key: Optional[str] = None
        self._value: Optional[TopologicalSortResult] = None
        self._stored_at = 0.0

    def get(self, key: str) -> Optional[TopologicalSortResult]:
        if self._value is None or self._key != key:
            return None
        if self._clock() - self._stored_at > self.ttl:
            self.invalidate()
            return None
        return self._value

    def put(self, key: str, value: TopologicalSortResult) -> None:
        if self.ttl <= 0:
            return
        self._key = key
        self._value = value
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._key = None
        self._value = None

    @property
    def is_empty(self) -> bool:
        return self._value is None


class GraphStore:
    """Tasks keyed by id plus the "blocks" edges between them.

    Edges live in one set exposed through two indexes (outgoing and incoming).
    Only ``add_edge`` and ``remove_edge`` touch those indexes.
    """

    def __init__(
        self,
        metadata: Optional[ProjectMetadata] = None,
        *,
        sort_cache_ttl: float = DEFAULT_SORT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._nodes: dict[str, TaskNode] = {}
        # dicts used as insertion-ordered sets
        self._out: dict[str, dict[str, None]] = {}
        self._in: dict[str, dict[str, None]] = {}
        self._metadata = metadata or ProjectMetadata()
        self.sort_cache = SortCache(ttl=sort_cache_ttl, clock=clock)

    # -- nodes ----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[TaskNode]:
        return iter(list(self._nodes.values()))

    @property
    def size(self) -> int:
        return len(self._nodes)

    def node_ids(self) -> list[str]:
        return list(self._nodes.keys())

    def nodes(self) -> list[TaskNode]:
        return list(self._nodes.values())

    def add_node(self, node: TaskNode) -> None:
        if node.id in self._nodes:
            raise ValidationError(
                code="E_DUPLICATE_ID",
                message=f"task already exists: {node.id}",
                path=f"tasks.{node.id}",
            )
        self._nodes[node.id] = node
        self._out[node.id] = {}
        self._in[node.id] = {}
        self.sort_cache.invalidate()

    def remove_node(self, node_id: str) -> TaskNode:
        """Remove a node and every incident edge. Blocker lists elsewhere are left alone."""
        node = self.require_node(node_id)
        for succ in list(self._out[node_id]):
            self.remove_edge(node_id, succ)
        for pred in list(self._in[node_id]):
            self.remove_edge(pred, node_id)
        del self._nodes[node_id]
        del self._out[node_id]
        del self._in[node_id]
        self.sort_cache.invalidate()
        return node

    def clear(self) -> None:
        self._nodes.clear()
        self._out.clear()
        self._in.clear()
        self.sort_cache.invalidate()

    def get_node(self, node_id: str) -> Optional[TaskNode]:
        return self._nodes.get(node_id)

    def require_node(self, node_id: str) -> TaskNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise TaskNotFoundError(
                code="E_TASK_NOT_FOUND",
                message=f"task not found: {node_id}",
                path="tasks",
            )
        return node

    def get_node_by_id_or_prefix(self, ref: str) -> Optional[TaskNode]:
        """Exact id, else a unique prefix of at least 8 characters."""
        node = self._nodes.get(ref)
        if node is not None:
            return node
        matches = self._prefix_matches(ref)
        return matches[0] if len(matches) == 1 else None

    def resolve(self, ref: str) -> TaskNode:
        """Like get_node_by_id_or_prefix, but raises with a reason when nothing matches."""
        node = self._nodes.get(ref)
        if node is not None:
            return node
        matches = self._prefix_matches(ref)
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise AmbiguousIdError(
                code="E_AMBIGUOUS_ID",
                message=f"id prefix {ref!r} matches {len(matches)} tasks: "
                + ", ".join(sorted(n.id for n in matches)),
                path="tasks",
            )
        hint = "" if len(ref) >= MIN_PREFIX_LENGTH else f" (prefixes need {MIN_PREFIX_LENGTH}+ characters)"
        raise TaskNotFoundError(code="E_TASK_NOT_FOUND", message=f"task not found: {ref}{hint}", path="tasks")

    def _prefix_matches(self, ref: str) -> list[TaskNode]:
        if len(ref) < MIN_PREFIX_LENGTH:
            return []
        return [n for nid, n in self._nodes.items() if nid.startswith(ref)]

    # -- edges ----------------------------------------------------------

    def add_edge(self, from_id: str, to_id: str) -> None:
        """Add ``from_id`` blocks ``to_id``. Callers check ``has_edge`` to avoid repeats."""
        for nid in (from_id, to_id):
            if nid not in self._nodes:
                raise TaskNotFoundError(
                    code="E_TASK_NOT_FOUND",
                    message=f"edge endpoint not found: {nid}",
                    path="edges",
                )
        self._out[from_id][to_id] = None
        self._in[to_id][from_id] = None
        self.sort_cache.invalidate()

    def remove_edge(self, from_id: str, to_id: str) -> None:
        if to_id not in self._out.get(from_id, {}):
            return
        del self._out[from_id][to_id]
        del self._in[to_id][from_id]
        self.sort_cache.invalidate()

    def has_edge(self, from_id: str, to_id: str) -> bool:
        return to_id in self._out.get(from_id, {})

    def get_outgoing_edges(self, node_id: str) -> tuple[str, ...]:
        return tuple(self._out.get(node_id, ()))

    def get_incoming_edges(self, node_id: str) -> tuple[str, ...]:
        return tuple(self._in.get(node_id, ()))

    def edges(self) -> list[tuple[str, str]]:
        return [(src, dst) for src, outs in self._out.items() for dst in outs]

    @property
    def edge_count(self) -> int:
        return sum(len(outs) for outs in self._out.values())

    def get_root_tasks(self) -> list[str]:
        return [nid for nid in self._nodes if not self._in[nid]]

    def get_orphan_tasks(self) -> list[str]:
        return [nid for nid in self._nodes if not self._in[nid] and not self._out[nid]]

    def get_leaf_tasks(self) -> list[str]:
        return [nid for nid in self._nodes if not self._out[nid]]

    # -- metadata -------------------------------------------------------

    @property
    def metadata(self) -> ProjectMetadata:
        return self._metadata

    def set_metadata(
        self,
        *,
        project_name: Optional[str] = None,
        version: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        if project_name is not None:
            self._metadata.project_name = project_name
        if version is not None:
            self._metadata.version = version
        if description is not None:
            self._metadata.description = description or None
        self.touch()

    def touch(self) -> None:
        self._metadata.updated_at = utc_now_iso()

    # -- serialization --------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self._metadata.to_dict(),
            "tasks": {nid: node.to_dict() for nid, node in self._nodes.items()},
            "edges": [{"from": src, "to": dst, "type": EDGE_TYPE} for src, dst in self.edges()],
        }

    @classmethod
    def from_dict(
        cls,
        doc: dict[str, Any],
        *,
        sort_cache_ttl: float = DEFAULT_SORT_CACHE_TTL,
    ) -> GraphStore:
        """Hydrate from a validated document.

        Without an ``edges`` list, edges are derived from each task's blockers.
        """
        graph = cls(ProjectMetadata.from_dict(doc.get("metadata") or {}), sort_cache_ttl=sort_cache_ttl)
        for raw in (doc.get("tasks") or {}).values():
            graph.add_node(TaskNode.from_dict(raw))

        raw_edges = doc.get("edges")
        if raw_edges is None:
            for node in graph.nodes():
                for blocker in node.blockers:
                    if blocker in graph and not graph.has_edge(blocker, node.id):
                        graph.add_edge(blocker, node.id)
        else:
            for e in raw_edges:
                if not graph.has_edge(e["from"], e["to"]):
                    graph.add_edge(e["from"], e["to"])
        logger.debug("hydrated graph: %d tasks, %d edges", graph.size, graph.edge_count)
        return graph
