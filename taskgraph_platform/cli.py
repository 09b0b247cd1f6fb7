from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any, Callable, NoReturn, Optional

import typer
from rich.console import Console

from taskgraph_platform.core.errors import (
    ConfigError,
    FileOperationError,
    TaskGraphError,
    ValidationError,
)
from taskgraph_platform.core.graph.cycle import detect_cycles, get_cycle_statistics
from taskgraph_platform.core.graph.operations import (
    add_blocker,
    add_blockers,
    cascade_delete,
    cut_node,
    merge_tasks,
    move_subtree,
    remove_blocker,
    wire_insert,
)
from taskgraph_platform.core.graph.sort import find_critical_path, get_execution_levels, topological_sort
from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.io.indexer import TaskFilter, filter_tasks
from taskgraph_platform.core.io.project_store import ProjectStore, find_project_path
from taskgraph_platform.core.lint.lint_graph import lint_graph
from taskgraph_platform.core.model import TASK_PRIORITIES, TASK_STATUSES, LibraryVerification, TaskNode
from taskgraph_platform.core.validate.validate_project import summarize_project, validate_project
from taskgraph_platform.logging_setup import setup_logging
from taskgraph_platform.render import render_markdown, short_id, task_detail, task_lines, task_table
from taskgraph_platform.tools.migrate_status import migrate_document

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


@app.callback()
def _callback(
    ctx: typer.Context,
    project: str | None = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory (default: nearest parent holding .taskgraph/)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr"),
    log_file: str | None = typer.Option(
        None,
        "--log-file",
        help="Also write full debug logs to this file (default: log_file from config)",
    ),
) -> None:
    """Task dependency graph CLI."""
    ctx.obj = {"project": project, "verbose": verbose, "log_file": log_file}


# -- plumbing ------------------------------------------------------------


def _print_errors(errors: list[TaskGraphError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def _fail(e: TaskGraphError) -> NoReturn:
    _print_errors([e])
    raise typer.Exit(code=1 if isinstance(e, FileOperationError) else 2)


def _check_format(value: str, allowed: tuple[str, ...], command: str) -> None:
    if value not in allowed:
        _fail(
            ValidationError(
                code=f"E_{command.upper().replace('-', '_')}_UNKNOWN_FORMAT",
                message=f"unknown format: {value} (choose one of: {', '.join(allowed)})",
                path="format",
            )
        )


def _project_dir(ctx: typer.Context, search: bool = True) -> Path:
    explicit = (ctx.obj or {}).get("project")
    if explicit:
        return Path(explicit)
    if search:
        found = find_project_path()
        if found is not None:
            return found
    return Path.cwd()


def _store(ctx: typer.Context, search: bool = True) -> ProjectStore:
    try:
        store = ProjectStore(_project_dir(ctx, search))
    except ConfigError as e:
        _fail(e)
    opts = ctx.obj or {}
    setup_logging(
        "DEBUG" if opts.get("verbose") else store.config.log_level,
        log_file=opts.get("log_file") or store.log_path,
    )
    return store


def _load(ctx: typer.Context) -> tuple[ProjectStore, GraphStore]:
    store = _store(ctx)
    try:
        return store, store.load()
    except TaskGraphError as e:
        _fail(e)


def _save(store: ProjectStore, graph: GraphStore) -> None:
    try:
        store.save(graph)
    except TaskGraphError as e:
        _fail(e)


def _emit_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


# -- project ---------------------------------------------------------------


@app.command("init")
def init(
    ctx: typer.Context,
    name: str = typer.Option("Untitled Project", "--name", "-n", help="Project name"),
    description: str | None = typer.Option(None, "--description", help="Project description"),
) -> None:
    """Create an empty project in the project directory."""
    store = _store(ctx, search=False)
    try:
        store.create_project(name, description)
    except TaskGraphError as e:
        _fail(e)
    typer.echo(f"OK: created project '{name}' at {store.path}")


@app.command("info")
def info(ctx: typer.Context) -> None:
    """Show project metadata and a status summary."""
    store, graph = _load(ctx)
    meta = graph.metadata
    typer.echo(f"{meta.project_name} (version {meta.version})")
    if meta.description:
        typer.echo(meta.description)
    typer.echo(f"created {meta.created_at}, updated {meta.updated_at}")
    typer.echo(summarize_project(graph))


# -- tasks -----------------------------------------------------------------


@app.command("create")
def create(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Task title (max 200 chars), starting with an action verb"),
    description: str = typer.Option(..., "--description", help="Task description (50-10000 chars)"),
    criteria: list[str] = typer.Option(..., "--criterion", "-c", help="Success criterion (1-10)"),
    deliverables: list[str] = typer.Option(..., "--deliverable", "-d", help="Deliverable (1-5)"),
    priority: str = typer.Option("second", "--priority", help="top|second|later"),
    blockers: list[str] | None = typer.Option(None, "--blocker", "-b", help="Id (or 8+ char prefix) of a blocking task"),
    dependencies: str = typer.Option("", "--dependencies", help="Why the blockers block this task"),
    related_files: list[str] | None = typer.Option(None, "--file", help="Related file path"),
    notes: str = typer.Option("", "--notes"),
    assignee: str | None = typer.Option(None, "--assignee"),
    verified: list[str] | None = typer.Option(
        None,
        "--verified",
        help="Library the task was checked against: library-id or library-id:notes",
    ),
) -> None:
    """Create a new atomic task."""
    store, graph = _load(ctx)
    try:
        blocker_ids = [graph.resolve(b).id for b in blockers or []]
        node = TaskNode.create(
            title=title,
            description=description,
            success_criteria=criteria,
            deliverables=deliverables,
            priority=priority,
            blockers=blocker_ids,
            dependencies=dependencies,
            related_files=related_files or [],
            notes=notes,
            assignee=assignee,
            c7_verified=[LibraryVerification.parse(v) for v in verified or []],
        )
        graph.add_node(node)
        for b in node.blockers:
            graph.add_edge(b, node.id)
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: created {node.id} ({node.status})")


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", help=f"Filter: {'|'.join(TASK_STATUSES)}"),
    priority: str | None = typer.Option(None, "--priority", help=f"Filter: {'|'.join(TASK_PRIORITIES)}"),
    format: str = typer.Option("table", "--format", help="Output format: table|text|json"),
) -> None:
    """List tasks."""
    _check_format(format, ("table", "text", "json"), "list")
    _, graph = _load(ctx)
    nodes = [
        n
        for n in graph.nodes()
        if (status is None or n.status == status) and (priority is None or n.priority == priority)
    ]
    if format == "json":
        _emit_json([n.to_dict() for n in nodes])
        return
    if format == "text":
        for line in task_lines(nodes):
            typer.echo(line)
        return
    console.print(task_table(nodes, title=f"{graph.metadata.project_name} ({len(nodes)} tasks)"))


@app.command("get")
def get(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id or 8+ char prefix"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Show one task."""
    _check_format(format, ("text", "json"), "get")
    _, graph = _load(ctx)
    try:
        node = graph.resolve(task_id)
    except TaskGraphError as e:
        _fail(e)
    if format == "json":
        _emit_json(node.to_dict())
        return
    typer.echo(task_detail(node, graph))


@app.command("update")
def update(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id or 8+ char prefix"),
    title: str | None = typer.Option(None, "--title"),
    description: str | None = typer.Option(None, "--description"),
    priority: str | None = typer.Option(None, "--priority"),
    assignee: str | None = typer.Option(None, "--assignee"),
    add_criterion: list[str] | None = typer.Option(None, "--add-criterion"),
    remove_criterion: list[str] | None = typer.Option(None, "--remove-criterion"),
    complete_criterion: list[str] | None = typer.Option(None, "--complete-criterion"),
    uncomplete_criterion: list[str] | None = typer.Option(None, "--uncomplete-criterion"),
    add_deliverable: list[str] | None = typer.Option(None, "--add-deliverable"),
    remove_deliverable: list[str] | None = typer.Option(None, "--remove-deliverable"),
    complete_deliverable: list[str] | None = typer.Option(None, "--complete-deliverable"),
    uncomplete_deliverable: list[str] | None = typer.Option(None, "--uncomplete-deliverable"),
    add_need_fix: list[str] | None = typer.Option(None, "--add-need-fix"),
    fix_source: str = typer.Option("review", "--fix-source", help="review|runtime|regression"),
    complete_need_fix: list[str] | None = typer.Option(None, "--complete-need-fix"),
    add_blocker_ids: list[str] | None = typer.Option(None, "--add-blocker"),
    reason: str = typer.Option("", "--dependencies", help="Why the added blockers block this task"),
    remove_blocker_ids: list[str] | None = typer.Option(None, "--remove-blocker"),
    add_file: list[str] | None = typer.Option(None, "--add-file"),
    remove_file: list[str] | None = typer.Option(None, "--remove-file"),
    notes: str | None = typer.Option(None, "--notes", help="Text appended to the notes"),
    verified: list[str] | None = typer.Option(
        None,
        "--verified",
        help="Record a library verification: library-id or library-id:notes",
    ),
) -> None:
    """Update fields and checklists. Status is re-derived afterwards."""
    store, graph = _load(ctx)
    try:
        node = graph.resolve(task_id)
        if title is not None:
            node.set_title(title)
        if description is not None:
            node.set_description(description)
        if priority is not None:
            node.set_priority(priority)
        if assignee is not None:
            node.set_assignee(assignee)

        for text in add_criterion or []:
            node.add_success_criterion(text)
        for item_id in remove_criterion or []:
            node.remove_success_criterion(item_id)
        for item_id in complete_criterion or []:
            node.complete_criterion(item_id)
        for item_id in uncomplete_criterion or []:
            node.complete_criterion(item_id, completed=False)

        for text in add_deliverable or []:
            node.add_deliverable(text)
        for item_id in remove_deliverable or []:
            node.remove_deliverable(item_id)
        for item_id in complete_deliverable or []:
            node.complete_deliverable(item_id)
        for item_id in uncomplete_deliverable or []:
            node.complete_deliverable(item_id, completed=False)

        for text in add_need_fix or []:
            node.add_need_fix(text, source=fix_source)
        for item_id in complete_need_fix or []:
            node.complete_need_fix(item_id)

        if add_blocker_ids or reason.strip():
            add_blockers(graph, node.id, [graph.resolve(ref).id for ref in add_blocker_ids or []], reason)
        for ref in remove_blocker_ids or []:
            remove_blocker(graph, node.id, graph.resolve(ref).id)

        for path in add_file or []:
            node.add_related_file(path)
        for path in remove_file or []:
            node.remove_related_file(path)
        if notes is not None:
            node.append_notes(notes)
        for entry in verified or []:
            node.add_verification(LibraryVerification.parse(entry))
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: updated {node.id} ({node.status})")


@app.command("approve")
def approve(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id or 8+ char prefix"),
    unblock: bool = typer.Option(
        False,
        "--unblock",
        help="Also remove this task from its dependents' blockers",
    ),
) -> None:
    """Mark an in_review task as completed."""
    store, graph = _load(ctx)
    try:
        node = graph.resolve(task_id)
        node.approve()
        dependents = list(graph.get_outgoing_edges(node.id))
        if unblock:
            for d in dependents:
                remove_blocker(graph, d, node.id)
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: approved {node.id}")
    for d in dependents:
        dep = graph.require_node(d)
        typer.echo(f"  {short_id(d)} is now {dep.status}")


@app.command("reopen")
def reopen(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id or 8+ char prefix"),
) -> None:
    """Revert an approval."""
    store, graph = _load(ctx)
    try:
        node = graph.resolve(task_id)
        node.reopen()
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: reopened {node.id} ({node.status})")


@app.command("delete")
def delete(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id or 8+ char prefix"),
    cascade: bool = typer.Option(False, "--cascade", help="Also delete every task it transitively blocks"),
    reconnect: bool = typer.Option(False, "--reconnect", help="Wire its blockers directly to its dependents"),
) -> None:
    """Delete a task."""
    if cascade and reconnect:
        _fail(
            ValidationError(
                code="E_DELETE_CONFLICTING_FLAGS",
                message="--cascade and --reconnect are mutually exclusive",
                path="cascade",
            )
        )
    store, graph = _load(ctx)
    try:
        node = graph.resolve(task_id)
        if cascade:
            deleted = cascade_delete(graph, node.id)
        else:
            dependents = graph.get_outgoing_edges(node.id)
            if dependents and not reconnect:
                raise ValidationError(
                    code="E_HAS_DEPENDENTS",
                    message=f"task blocks {len(dependents)} other task(s); use --reconnect or --cascade",
                    path="task_id",
                )
            deleted = [cut_node(graph, node.id).removed.id]
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: deleted {len(deleted)} task(s)")
    for d in deleted:
        typer.echo(f"  {d}")


@app.command("merge")
def merge(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Task merged away"),
    target: str = typer.Argument(..., help="Task that survives"),
) -> None:
    """Merge SOURCE into TARGET."""
    store, graph = _load(ctx)
    try:
        result = merge_tasks(graph, graph.resolve(source).id, graph.resolve(target).id)
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: merged {result.removed_tasks[0]} into {result.task.id} ({result.task.status})")


@app.command("wire")
def wire(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task to insert"),
    after: str = typer.Option(..., "--after", help="Current blocker (A in A -> C)"),
    before: str = typer.Option(..., "--before", help="Current dependent (C in A -> C)"),
    dep_on_after: str = typer.Option(..., "--dep-on-after", help="Why TASK depends on AFTER"),
    dep_on_before: str = typer.Option(..., "--dep-on-before", help="Why BEFORE depends on TASK"),
) -> None:
    """Insert TASK into the existing edge AFTER -> BEFORE."""
    store, graph = _load(ctx)
    try:
        node = wire_insert(
            graph,
            graph.resolve(task_id).id,
            graph.resolve(after).id,
            graph.resolve(before).id,
            dep_on_after,
            dep_on_before,
        )
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: wired {node.id}")


@app.command("move")
def move(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task to move"),
    under: str = typer.Option(..., "--under", help="New blocker"),
    reason: str = typer.Option(..., "--dependencies", help="Why the new blocker blocks TASK"),
) -> None:
    """Detach TASK from its blockers and make it depend on --under."""
    store, graph = _load(ctx)
    try:
        detached = move_subtree(graph, graph.resolve(task_id).id, graph.resolve(under).id, reason)
    except TaskGraphError as e:
        _fail(e)
    _save(store, graph)
    typer.echo(f"OK: moved (detached from {len(detached)} blocker(s))")


# -- graph queries ---------------------------------------------------------


@app.command("order")
def order(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Topological order of all tasks."""
    _check_format(format, ("text", "json"), "order")
    _, graph = _load(ctx)
    result = topological_sort(graph)
    if format == "json":
        _emit_json(
            {"order": list(result.order), "has_cycle": result.has_cycle, "cycle_nodes": list(result.cycle_nodes)}
        )
    else:
        for i, tid in enumerate(result.order, 1):
            typer.echo(f"{i}. {short_id(tid)}  {graph.require_node(tid).title}")
        if result.has_cycle:
            typer.echo("unordered (cycle): " + ", ".join(result.cycle_nodes), err=True)
    if result.has_cycle:
        raise typer.Exit(code=2)


@app.command("levels")
def levels(ctx: typer.Context) -> None:
    """Batches of tasks that can run in parallel."""
    _, graph = _load(ctx)
    try:
        batches = get_execution_levels(graph)
    except TaskGraphError as e:
        _fail(e)
    for i, batch in enumerate(batches, 1):
        typer.echo(f"level {i}: " + ", ".join(short_id(t) for t in batch))


@app.command("critical-path")
def critical_path(ctx: typer.Context) -> None:
    """Longest chain of blocking tasks."""
    _, graph = _load(ctx)
    try:
        result = find_critical_path(graph)
    except TaskGraphError as e:
        _fail(e)
    typer.echo(f"length: {result.duration:g}")
    for tid in result.path:
        typer.echo(f"  {short_id(tid)}  {graph.require_node(tid).title}")


@app.command("cycles")
def cycles(ctx: typer.Context) -> None:
    """Report dependency cycles."""
    _, graph = _load(ctx)
    result = detect_cycles(graph)
    if not result.has_cycle:
        typer.echo("OK: no cycles")
        return
    stats = get_cycle_statistics(graph)
    typer.echo(
        f"{stats.cycle_count} cycle(s) over {stats.cyclic_node_count} task(s) "
        f"(shortest {stats.shortest_cycle_length}, longest {stats.longest_cycle_length})"
    )
    for c in result.cycles:
        typer.echo("  " + " -> ".join(short_id(t) for t in c))
    raise typer.Exit(code=2)


FILTER_QUERY = typer.Option(None, "--query", "-q", help="Words in title, description or notes")
FILTER_TITLE = typer.Option(None, "--title", "-t", help="Title substring (case-insensitive)")
FILTER_FILE = typer.Option(None, "--file", help="Referenced file path (substring)")
FILTER_VERIFIED = typer.Option(None, "--verified", help="Verified against this library (substring)")
FILTER_STATUS = typer.Option(None, "--status", help=f"Filter: {'|'.join(TASK_STATUSES)}")
FILTER_PRIORITY = typer.Option(None, "--priority", help=f"Filter: {'|'.join(TASK_PRIORITIES)}")
FILTER_WITHOUT_BLOCKERS = typer.Option(False, "--without-blockers", help="Only tasks with no blockers")
FILTER_ORPHANS = typer.Option(False, "--orphans", help="Only tasks with no edges at all")
FILTER_LEAVES = typer.Option(False, "--leaves", help="Only tasks that block nothing")


@app.command("find")
def find(
    ctx: typer.Context,
    query: str | None = FILTER_QUERY,
    title: str | None = FILTER_TITLE,
    file: str | None = FILTER_FILE,
    verified: str | None = FILTER_VERIFIED,
    status: str | None = FILTER_STATUS,
    priority: str | None = FILTER_PRIORITY,
    without_blockers: bool = FILTER_WITHOUT_BLOCKERS,
    orphans: bool = FILTER_ORPHANS,
    leaves: bool = FILTER_LEAVES,
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Search tasks. Every given filter must match."""
    _check_format(format, ("text", "json"), "find")
    _, graph = _load(ctx)
    nodes = filter_tasks(
        graph,
        TaskFilter(
            query=query,
            title=title,
            file=file,
            verified=verified,
            status=status,
            priority=priority,
            without_blockers=without_blockers,
            orphans=orphans,
            leaves=leaves,
        ),
    )
    if format == "json":
        _emit_json([n.id for n in nodes])
        return
    for line in task_lines(nodes):
        typer.echo(line)


# -- batch -----------------------------------------------------------------

batch_app = typer.Typer(no_args_is_help=True, help="Apply one operation to every task matching the filters.")
app.add_typer(batch_app, name="batch")


def _batch_targets(
    ctx: typer.Context,
    f: TaskFilter,
) -> tuple[ProjectStore, GraphStore, list[TaskNode]]:
    if f.is_empty:
        _fail(
            ValidationError(
                code="E_BATCH_NO_FILTER",
                message="give at least one filter (preview the selection with find)",
                path="filter",
            )
        )
    store, graph = _load(ctx)
    return store, graph, filter_tasks(graph, f)


def _run_batch(
    store: ProjectStore,
    graph: GraphStore,
    nodes: list[TaskNode],
    verb: str,
    dry_run: bool,
    apply: Callable[[TaskNode], bool],
) -> None:
    """Apply to every node, then save only if all of them succeeded."""
    affected: list[TaskNode] = []
    errors: list[TaskGraphError] = []
    for node in nodes:
        try:
            if apply(node):
                affected.append(node)
        except TaskGraphError as e:
            path = f"tasks.{node.id}.{e.path}" if e.path else f"tasks.{node.id}"
            errors.append(dataclasses.replace(e, path=path))

    if errors:
        _print_errors(errors)
        typer.echo(f"batch {verb} failed for {len(errors)} task(s); nothing was saved", err=True)
        raise typer.Exit(code=2)
    for line in task_lines(affected):
        typer.echo(line)
    if dry_run:
        typer.echo(f"DRY RUN: {verb} would affect {len(affected)} task(s)")
        return
    if affected:
        _save(store, graph)
    typer.echo(f"OK: {verb} affected {len(affected)} task(s)")


@batch_app.command("approve")
def batch_approve(
    ctx: typer.Context,
    query: str | None = FILTER_QUERY,
    title: str | None = FILTER_TITLE,
    file: str | None = FILTER_FILE,
    verified: str | None = FILTER_VERIFIED,
    status: str | None = FILTER_STATUS,
    priority: str | None = FILTER_PRIORITY,
    without_blockers: bool = FILTER_WITHOUT_BLOCKERS,
    orphans: bool = FILTER_ORPHANS,
    leaves: bool = FILTER_LEAVES,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change without saving"),
) -> None:
    """Approve every matching task. All of them must be in_review."""
    store, graph, nodes = _batch_targets(
        ctx,
        TaskFilter(query, title, file, verified, status, priority, without_blockers, orphans, leaves),
    )

    def _approve(node: TaskNode) -> bool:
        node.approve()
        return True

    _run_batch(store, graph, nodes, "approve", dry_run, _approve)


@batch_app.command("reopen")
def batch_reopen(
    ctx: typer.Context,
    query: str | None = FILTER_QUERY,
    title: str | None = FILTER_TITLE,
    file: str | None = FILTER_FILE,
    verified: str | None = FILTER_VERIFIED,
    status: str | None = FILTER_STATUS,
    priority: str | None = FILTER_PRIORITY,
    without_blockers: bool = FILTER_WITHOUT_BLOCKERS,
    orphans: bool = FILTER_ORPHANS,
    leaves: bool = FILTER_LEAVES,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change without saving"),
) -> None:
    """Reopen every matching completed task."""
    store, graph, nodes = _batch_targets(
        ctx,
        TaskFilter(query, title, file, verified, status, priority, without_blockers, orphans, leaves),
    )

    def _reopen(node: TaskNode) -> bool:
        node.reopen()
        return True

    _run_batch(store, graph, nodes, "reopen", dry_run, _reopen)


@batch_app.command("delete")
def batch_delete(
    ctx: typer.Context,
    query: str | None = FILTER_QUERY,
    title: str | None = FILTER_TITLE,
    file: str | None = FILTER_FILE,
    verified: str | None = FILTER_VERIFIED,
    status: str | None = FILTER_STATUS,
    priority: str | None = FILTER_PRIORITY,
    without_blockers: bool = FILTER_WITHOUT_BLOCKERS,
    orphans: bool = FILTER_ORPHANS,
    leaves: bool = FILTER_LEAVES,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change without saving"),
    force: bool = typer.Option(False, "--force", help="Required to actually delete"),
    reconnect: bool = typer.Option(
        False,
        "--reconnect",
        help="Wire blockers of deleted tasks directly to their remaining dependents",
    ),
) -> None:
    """Delete every matching task."""
    if not dry_run and not force:
        _fail(
            ValidationError(
                code="E_BATCH_FORCE_REQUIRED",
                message="batch delete needs --force (or --dry-run to preview)",
                path="force",
            )
        )
    store, graph, nodes = _batch_targets(
        ctx,
        TaskFilter(query, title, file, verified, status, priority, without_blockers, orphans, leaves),
    )

    doomed = {n.id for n in nodes}
    if not reconnect:
        errors: list[TaskGraphError] = []
        for n in nodes:
            kept = [d for d in graph.get_outgoing_edges(n.id) if d not in doomed]
            if kept:
                errors.append(
                    ValidationError(
                        code="E_HAS_DEPENDENTS",
                        message=f"task blocks {len(kept)} task(s) outside the selection; use --reconnect",
                        path=f"tasks.{n.id}",
                    )
                )
        if errors:
            _print_errors(errors)
            raise typer.Exit(code=2)

    def _delete(node: TaskNode) -> bool:
        cut_node(graph, node.id)
        return True

    _run_batch(store, graph, nodes, "delete", dry_run, _delete)


@batch_app.command("add-blocker")
def batch_add_blocker(
    ctx: typer.Context,
    blocker: str = typer.Argument(..., help="Task that will block every matching task"),
    reason: str = typer.Option(..., "--dependencies", help="Why BLOCKER blocks the matching tasks"),
    query: str | None = FILTER_QUERY,
    title: str | None = FILTER_TITLE,
    file: str | None = FILTER_FILE,
    verified: str | None = FILTER_VERIFIED,
    status: str | None = FILTER_STATUS,
    priority: str | None = FILTER_PRIORITY,
    without_blockers: bool = FILTER_WITHOUT_BLOCKERS,
    orphans: bool = FILTER_ORPHANS,
    leaves: bool = FILTER_LEAVES,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change without saving"),
) -> None:
    """Make BLOCKER block every matching task. Tasks it already blocks, and BLOCKER itself, are skipped."""
    store, graph, nodes = _batch_targets(
        ctx,
        TaskFilter(query, title, file, verified, status, priority, without_blockers, orphans, leaves),
    )
    try:
        blocker_id = graph.resolve(blocker).id
    except TaskGraphError as e:
        _fail(e)

    def _add(node: TaskNode) -> bool:
        if node.id == blocker_id or blocker_id in node.blockers:
            return False
        add_blocker(graph, node.id, blocker_id, reason)
        return True

    _run_batch(store, graph, nodes, "add-blocker", dry_run, _add)


@batch_app.command("remove-blocker")
def batch_remove_blocker(
    ctx: typer.Context,
    blocker: str = typer.Argument(..., help="Blocker to drop from every matching task"),
    query: str | None = FILTER_QUERY,
    title: str | None = FILTER_TITLE,
    file: str | None = FILTER_FILE,
    verified: str | None = FILTER_VERIFIED,
    status: str | None = FILTER_STATUS,
    priority: str | None = FILTER_PRIORITY,
    without_blockers: bool = FILTER_WITHOUT_BLOCKERS,
    orphans: bool = FILTER_ORPHANS,
    leaves: bool = FILTER_LEAVES,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change without saving"),
) -> None:
    """Remove BLOCKER from every matching task that lists it."""
    store, graph, nodes = _batch_targets(
        ctx,
        TaskFilter(query, title, file, verified, status, priority, without_blockers, orphans, leaves),
    )
    try:
        blocker_id = graph.resolve(blocker).id
    except TaskGraphError as e:
        _fail(e)

    def _remove(node: TaskNode) -> bool:
        return remove_blocker(graph, node.id, blocker_id)

    _run_batch(store, graph, nodes, "remove-blocker", dry_run, _remove)


# -- checks ----------------------------------------------------------------


@app.command("validate")
def validate(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Validate the project document."""
    _check_format(format, ("text", "json"), "validate")
    store = _store(ctx)

    def _to_item(e: TaskGraphError) -> dict:
        return {
            "code": e.code,
            "message": e.message,
            "file": e.file,
            "path": e.path,
            "severity": "error",
            "source": "load" if isinstance(e, FileOperationError) else "validate",
        }

    def _emit(ok: bool, errors: list[TaskGraphError], summary: Optional[dict], exit_code: int) -> None:
        if format == "json":
            _emit_json(
                {
                    "tool": "taskgraph",
                    "command": "validate",
                    "ok": ok,
                    "error_count": len(errors),
                    "errors": [_to_item(e) for e in errors],
                    "summary": summary,
                }
            )
        else:
            _print_errors(errors)
        raise typer.Exit(code=exit_code)

    try:
        doc = store.load_document()
    except TaskGraphError as e:
        _emit(False, [e], None, 1)

    graph, errors = validate_project(doc)
    if errors:
        _emit(False, list(errors), None, 2)
    assert graph is not None

    if format == "text":
        typer.echo(summarize_project(graph))
        return
    summary = {
        "task_count": graph.size,
        "edge_count": graph.edge_count,
        "status_counts": {s: sum(1 for n in graph.nodes() if n.status == s) for s in TASK_STATUSES},
        "roots": graph.get_root_tasks(),
    }
    _emit(True, [], summary, 0)


@app.command("lint")
def lint(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Lint the project against the atomic task policy."""
    _check_format(format, ("text", "json"), "lint")
    store = _store(ctx)
    try:
        doc = store.load_document()
    except TaskGraphError as e:
        _fail(e)

    graph, validation_errors = validate_project(doc)
    errors: list[TaskGraphError] = list(validation_errors)
    if graph is not None:
        errors += lint_graph(graph, file=str(store.path))

    if format == "json":
        _emit_json(
            {
                "tool": "taskgraph",
                "command": "lint",
                "ok": not errors,
                "error_count": len(errors),
                "errors": [
                    {
                        "code": e.code,
                        "message": e.message,
                        "file": e.file,
                        "path": e.path,
                        "severity": "error",
                        "source": "lint" if e.code.startswith("L_") else "validate",
                    }
                    for e in errors
                ],
            }
        )
    elif errors:
        _print_errors(errors)
    else:
        typer.echo("OK: lint passed")
    if errors:
        raise typer.Exit(code=2)


# -- export and storage ----------------------------------------------------


@app.command("export")
def export(
    ctx: typer.Context,
    format: str = typer.Option("json", "--format", help="Output format: json|markdown"),
    out: str | None = typer.Option(None, "--out", help="Write to this file instead of stdout"),
) -> None:
    """Export the project."""
    _check_format(format, ("json", "markdown"), "export")
    store, graph = _load(ctx)
    if format == "json":
        text = json.dumps(store.to_document(graph), indent=2, ensure_ascii=False) + "\n"
    else:
        result = topological_sort(graph)
        text = render_markdown(graph, [*result.order, *result.cycle_nodes])

    if out is None:
        typer.echo(text, nl=False)
        return
    try:
        store.writer.write(out, text, create_backup=False)
    except TaskGraphError as e:
        _fail(e)
    typer.echo(f"OK: wrote {out}")


@app.command("import")
def import_tasks(
    ctx: typer.Context,
    file: str = typer.Argument(..., help="JSON file: a project document, an array of tasks or one task"),
    merge: bool = typer.Option(
        False,
        "--merge",
        help="Keep current tasks; imported tasks replace those with the same id",
    ),
) -> None:
    """Import tasks from a JSON file, replacing the current tasks unless --merge is given."""
    store = _store(ctx)
    try:
        graph = store.import_file(file, merge=merge)
    except TaskGraphError as e:
        _fail(e)
    typer.echo(f"OK: imported {file} ({graph.size} tasks, {graph.edge_count} edges)")


@app.command("backups")
def backups(ctx: typer.Context) -> None:
    """List project backups, newest first."""
    store = _store(ctx)
    found = store.list_backups()
    if not found:
        typer.echo("no backups")
        return
    for p in found:
        typer.echo(str(p))


@app.command("restore")
def restore(
    ctx: typer.Context,
    backup: str | None = typer.Argument(None, help="Backup file (default: newest)"),
) -> None:
    """Restore the project file from a backup."""
    store = _store(ctx)
    try:
        source = store.restore_from_backup(backup)
    except TaskGraphError as e:
        _fail(e)
    typer.echo(f"OK: restored from {source.name}")


@app.command("migrate-status")
def migrate_status(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report changes without writing"),
) -> None:
    """Recompute statuses of a project written with the legacy five-state model."""
    store = _store(ctx)
    try:
        doc = store.load_document()
        migrated, report = migrate_document(doc)
        for tid, (old, new) in report.changed.items():
            typer.echo(f"  {short_id(tid)}: {old or '<none>'} -> {new}")
        if dry_run:
            typer.echo(f"DRY RUN: {report.changed_count} task(s) would change")
            return
        graph, errors = validate_project(migrated, sort_cache_ttl=store.config.sort_cache_ttl)
        if errors:
            _print_errors(list(errors))
            raise typer.Exit(code=2)
        assert graph is not None
        store.save(graph)
    except TaskGraphError as e:
        _fail(e)
    typer.echo(f"OK: migrated {report.changed_count} task(s)")


def main() -> None:
    app(prog_name="taskgraph")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
