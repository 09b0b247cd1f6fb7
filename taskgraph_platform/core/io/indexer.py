from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.model import TASK_PRIORITIES, TASK_STATUSES, TaskNode


_TOKEN_RE = re.compile(r"\b\w+\b")


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _search_tokens(node: TaskNode) -> set[str]:
    return set(tokenize(f"{node.title} {node.description} {node.notes}"))


def build_indexes(graph: GraphStore) -> dict[str, Any]:
    """Secondary indexes persisted next to the tasks. Rebuilt on every save."""
    by_status: dict[str, list[str]] = {s: [] for s in TASK_STATUSES}
    by_priority: dict[str, list[str]] = {p: [] for p in TASK_PRIORITIES}
    search_text: dict[str, list[str]] = {}
    files: dict[str, list[str]] = {}

    for node in graph.nodes():
        by_status.setdefault(node.status, []).append(node.id)
        by_priority.setdefault(node.priority, []).append(node.id)
        for token in sorted(_search_tokens(node)):
            search_text.setdefault(token, []).append(node.id)
        for path in node.related_files:
            ids = files.setdefault(path, [])
            if node.id not in ids:
                ids.append(node.id)

    return {
        "byStatus": by_status,
        "byPriority": by_priority,
        "rootTasks": graph.get_root_tasks(),
        "orphanTasks": graph.get_orphan_tasks(),
        "searchText": dict(sorted(search_text.items())),
        "files": dict(sorted(files.items())),
    }


def search_tasks(graph: GraphStore, query: str) -> list[str]:
    """Ids of tasks whose title, description or notes contain every query token."""
    wanted = set(tokenize(query))
    if not wanted:
        return []
    return [n.id for n in graph.nodes() if wanted <= _search_tokens(n)]


def tasks_referencing_file(graph: GraphStore, path: str) -> list[str]:
    """Ids of tasks whose related files or deliverables mention ``path``."""
    out: list[str] = []
    for node in graph.nodes():
        paths = [*node.related_files, *(d.file_path for d in node.deliverables if d.file_path)]
        if any(path in p for p in paths):
            out.append(node.id)
    return out


@dataclass(frozen=True)
class TaskFilter:
    """Criteria shared by ``find`` and ``batch``. Every set field must match."""

    query: Optional[str] = None
    title: Optional[str] = None
    file: Optional[str] = None
    verified: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    without_blockers: bool = False
    orphans: bool = False
    leaves: bool = False

    @property
    def is_empty(self) -> bool:
        return self == TaskFilter()


def filter_tasks(graph: GraphStore, f: TaskFilter) -> list[TaskNode]:
    """Tasks matching ``f``, in graph insertion order."""
    ids = graph.node_ids()
    if f.orphans:
        keep = set(graph.get_orphan_tasks())
        ids = [i for i in ids if i in keep]
    if f.leaves:
        keep = set(graph.get_leaf_tasks())
        ids = [i for i in ids if i in keep]
    if f.query:
        keep = set(search_tasks(graph, f.query))
        ids = [i for i in ids if i in keep]
    if f.file:
        keep = set(tasks_referencing_file(graph, f.file))
        ids = [i for i in ids if i in keep]

    nodes = [graph.require_node(i) for i in ids]
    if f.without_blockers:
        nodes = [n for n in nodes if not n.blockers]
    if f.title:
        needle = f.title.lower()
        nodes = [n for n in nodes if needle in n.title.lower()]
    if f.verified:
        nodes = [n for n in nodes if n.is_verified_against(f.verified)]
    if f.status:
        nodes = [n for n in nodes if n.status == f.status]
    if f.priority:
        nodes = [n for n in nodes if n.priority == f.priority]
    return nodes
