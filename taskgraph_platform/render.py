from __future__ import annotations

from typing import Iterable

from rich.table import Table

from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.model import TaskNode


SHORT_ID = 8


def short_id(task_id: str) -> str:
    return task_id[:SHORT_ID]


def _check(done: bool) -> str:
    return "[x]" if done else "[ ]"


def task_table(nodes: Iterable[TaskNode], title: str = "tasks") -> Table:
    table = Table(title=title)
    table.add_column("id", no_wrap=True)
    table.add_column("title")
    table.add_column("status", no_wrap=True)
    table.add_column("priority", no_wrap=True)
    table.add_column("blockers", justify="right")
    table.add_column("progress", justify="right")
    for n in nodes:
        items = [*n.success_criteria, *n.deliverables]
        done = sum(1 for i in items if i.completed)
        table.add_row(
            short_id(n.id),
            n.title,
            n.status,
            n.priority,
            str(len(n.blockers)),
            f"{done}/{len(items)}",
        )
    return table


def task_lines(nodes: Iterable[TaskNode]) -> list[str]:
    return [f"{short_id(n.id)}  {n.status:<11} {n.priority:<6} {n.title}" for n in nodes]


def task_detail(node: TaskNode, graph: GraphStore) -> str:
    lines = [
        f"{node.title}",
        f"id: {node.id}",
        f"status: {node.status}   priority: {node.priority}",
    ]
    if node.assignee:
        lines.append(f"assignee: {node.assignee}")
    lines += ["", node.description, ""]

    lines.append("success criteria:")
    lines += [f"  {_check(c.completed)} {c.text}  ({short_id(c.id)})" for c in node.success_criteria]
    lines.append("deliverables:")
    for d in node.deliverables:
        suffix = f" -> {d.file_path}" if d.file_path else ""
        lines.append(f"  {_check(d.completed)} {d.text}{suffix}  ({short_id(d.id)})")
    if node.need_fix:
        lines.append("need fix:")
        for f in node.need_fix:
            src = f" [{f.source}]" if f.source else ""
            lines.append(f"  {_check(f.completed)} {f.text}{src}  ({short_id(f.id)})")

    if node.blockers:
        lines.append("blocked by:")
        for b in node.blockers:
            other = graph.get_node(b)
            lines.append(f"  {short_id(b)}  {other.title if other else '<missing>'}")
        lines.append(f"dependencies: {node.dependencies}")
    dependents = graph.get_outgoing_edges(node.id)
    if dependents:
        lines.append("blocks:")
        for d_id in dependents:
            other = graph.get_node(d_id)
            lines.append(f"  {short_id(d_id)}  {other.title if other else '<missing>'}")
    if node.related_files:
        lines.append("related files:")
        lines += [f"  {p}" for p in node.related_files]
    if node.c7_verified:
        lines.append("verified against:")
        for v in node.c7_verified:
            note = f" ({v.notes})" if v.notes else ""
            lines.append(f"  {v.library_id} at {v.verified_at}{note}")
    if node.notes:
        lines += ["notes:", *[f"  {ln}" for ln in node.notes.splitlines()]]
    return "\n".join(lines)


def render_markdown(graph: GraphStore, order: Iterable[str]) -> str:
    """Markdown export of every task, in the given order."""
    meta = graph.metadata
    out = [f"# {meta.project_name}", ""]
    if meta.description:
        out += [meta.description, ""]
    out += [f"Version {meta.version}. {graph.size} tasks.", ""]

    for tid in order:
        n = graph.require_node(tid)
        out += [f"## {n.title}", "", f"- **ID**: `{n.id}`", f"- **Status**: {n.status}", f"- **Priority**: {n.priority}"]
        if n.blockers:
            out.append("- **Blocked by**: " + ", ".join(f"`{short_id(b)}`" for b in n.blockers))
            out.append(f"- **Dependencies**: {n.dependencies}")
        out += ["", n.description, "", "### Success criteria", ""]
        out += [f"- {_check(c.completed)} {c.text}" for c in n.success_criteria]
        out += ["", "### Deliverables", ""]
        for d in n.deliverables:
            suffix = f" (`{d.file_path}`)" if d.file_path else ""
            out.append(f"- {_check(d.completed)} {d.text}{suffix}")
        if n.need_fix:
            out += ["", "### Need fix", ""]
            out += [f"- {_check(f.completed)} {f.text}" for f in n.need_fix]
        if n.related_files:
            out += ["", "### Related files", ""]
            out += [f"- `{p}`" for p in n.related_files]
        if n.sub_items:
            out += ["", "### Sub-items", ""]
            out += [f"- `{short_id(s)}`" for s in n.sub_items]
        if n.c7_verified:
            out += ["", "### Library verifications", ""]
            for v in n.c7_verified:
                out.append(f"- {v.library_id} (verified: {v.verified_at})")
                if v.notes:
                    out.append(f"  - {v.notes}")
        if n.notes:
            out += ["", "### Notes", "", n.notes]
        out.append("")
    return "\n".join(out).rstrip() + "\n"
