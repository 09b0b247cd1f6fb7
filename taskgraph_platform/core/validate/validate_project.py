from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Optional, cast

from taskgraph_platform.core.errors import ValidationError
from taskgraph_platform.core.graph.store import DEFAULT_SORT_CACHE_TTL, GraphStore
from taskgraph_platform.core.model import FIX_SOURCES, LEGACY_STATUSES, TASK_PRIORITIES, TASK_STATUSES


_ITEM_LISTS = ("success_criteria", "deliverables", "need_fix")
_STR_LISTS = ("blockers", "related_files", "sub_items")
_OPTIONAL_STRS = ("description", "dependencies", "notes", "assignee", "created_at", "updated_at")


def _is_list_of_str(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) for x in v)


def validate_project(
    doc: dict[str, Any],
    *,
    sort_cache_ttl: float = DEFAULT_SORT_CACHE_TTL,
) -> tuple[Optional[GraphStore], list[ValidationError]]:
    """Shape and reference checks for a persisted project document.

    Returns (graph, errors). Graph is None when errors exist.
    """

    file = cast(Optional[str], doc.get("__file__"))
    errors: list[ValidationError] = []

    metadata = doc.get("metadata")
    if not isinstance(metadata, dict):
        errors.append(
            ValidationError(
                code="E_REQUIRED_FIELD",
                message="metadata is required and must be an object",
                file=file,
                path="metadata",
            )
        )
    else:
        name = metadata.get("project_name")
        if not isinstance(name, str) or not name.strip():
            errors.append(
                ValidationError(
                    code="E_REQUIRED_FIELD",
                    message="project_name is required and must be a non-empty string",
                    file=file,
                    path="metadata.project_name",
                )
            )

    tasks = doc.get("tasks")
    if not isinstance(tasks, dict):
        errors.append(
            ValidationError(
                code="E_REQUIRED_FIELD",
                message="tasks is required and must be an object keyed by task id",
                file=file,
                path="tasks",
            )
        )
        return None, _sorted(errors)

    valid_ids: set[str] = set()
    for key, raw in tasks.items():
        task_errors = _validate_task(key, raw, file)
        if task_errors:
            errors.extend(task_errors)
            continue
        valid_ids.add(key)

    # Referential integrity checks.
    for key in sorted(valid_ids):
        for bi, blocker in enumerate(tasks[key].get("blockers") or []):
            if blocker not in tasks:
                errors.append(
                    ValidationError(
                        code="E_UNKNOWN_BLOCKER",
                        message=f"blockers references unknown task: {blocker}",
                        file=file,
                        path=f"tasks.{key}.blockers[{bi}]",
                    )
                )
            elif blocker == key:
                errors.append(
                    ValidationError(
                        code="E_SELF_BLOCKER",
                        message="a task cannot block itself",
                        file=file,
                        path=f"tasks.{key}.blockers[{bi}]",
                    )
                )

    edges = doc.get("edges")
    if edges is not None:
        if not isinstance(edges, list):
            errors.append(
                ValidationError(
                    code="E_INVALID_TYPE",
                    message="edges must be an array",
                    file=file,
                    path="edges",
                )
            )
        else:
            for ei, edge in enumerate(edges):
                errors.extend(_validate_edge(ei, edge, tasks, file))

    if errors:
        return None, _sorted(errors)

    return GraphStore.from_dict(doc, sort_cache_ttl=sort_cache_ttl), []


def _validate_task(key: str, raw: Any, file: Optional[str]) -> list[ValidationError]:
    path = f"tasks.{key}"
    if not isinstance(raw, dict):
        return [ValidationError(code="E_INVALID_TYPE", message="task must be an object", file=file, path=path)]

    errors: list[ValidationError] = []
    tid = raw.get("id")
    if not isinstance(tid, str) or not tid.strip():
        errors.append(
            ValidationError(
                code="E_REQUIRED_FIELD",
                message="id is required and must be a non-empty string",
                file=file,
                path=f"{path}.id",
            )
        )
    elif tid != key:
        errors.append(
            ValidationError(
                code="E_ID_MISMATCH",
                message=f"task stored under {key} has id {tid}",
                file=file,
                path=f"{path}.id",
            )
        )

    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        errors.append(
            ValidationError(
                code="E_REQUIRED_FIELD",
                message="title is required and must be a non-empty string",
                file=file,
                path=f"{path}.title",
            )
        )

    status = raw.get("status")
    if status is not None and status not in TASK_STATUSES:
        hint = " (legacy status; run migrate-status)" if status in LEGACY_STATUSES else ""
        errors.append(
            ValidationError(
                code="E_INVALID_ENUM",
                message=f"status must be one of {list(TASK_STATUSES)}{hint}",
                file=file,
                path=f"{path}.status",
            )
        )

    if "priority" in raw and raw["priority"] not in TASK_PRIORITIES:
        errors.append(
            ValidationError(
                code="E_INVALID_ENUM",
                message=f"priority must be one of {list(TASK_PRIORITIES)}",
                file=file,
                path=f"{path}.priority",
            )
        )

    for field_name in _OPTIONAL_STRS:
        value = raw.get(field_name)
        if value is not None and not isinstance(value, str):
            errors.append(
                ValidationError(
                    code="E_INVALID_TYPE",
                    message=f"{field_name} must be a string",
                    file=file,
                    path=f"{path}.{field_name}",
                )
            )

    for field_name in _STR_LISTS:
        value = raw.get(field_name)
        if value is not None and not _is_list_of_str(value):
            errors.append(
                ValidationError(
                    code="E_INVALID_TYPE",
                    message=f"{field_name} must be an array of strings",
                    file=file,
                    path=f"{path}.{field_name}",
                )
            )

    for field_name in _ITEM_LISTS:
        value = raw.get(field_name)
        if value is None:
            continue
        if not isinstance(value, list):
            errors.append(
                ValidationError(
                    code="E_INVALID_TYPE",
                    message=f"{field_name} must be an array",
                    file=file,
                    path=f"{path}.{field_name}",
                )
            )
            continue
        for ii, item in enumerate(value):
            errors.extend(_validate_item(item, field_name, f"{path}.{field_name}[{ii}]", file))

    verifications = raw.get("c7_verified")
    if verifications is not None:
        if not isinstance(verifications, list):
            errors.append(
                ValidationError(
                    code="E_INVALID_TYPE",
                    message="c7_verified must be an array",
                    file=file,
                    path=f"{path}.c7_verified",
                )
            )
        else:
            for vi, v in enumerate(verifications):
                if (
                    not isinstance(v, dict)
                    or not isinstance(v.get("library_id"), str)
                    or not v["library_id"].strip()
                    or not all(v.get(k) is None or isinstance(v[k], str) for k in ("verified_at", "notes"))
                ):
                    errors.append(
                        ValidationError(
                            code="E_INVALID_TYPE",
                            message="verification must be an object with a library_id and string verified_at and notes",
                            file=file,
                            path=f"{path}.c7_verified[{vi}]",
                        )
                    )

    return errors


def _validate_item(item: Any, list_name: str, path: str, file: Optional[str]) -> list[ValidationError]:
    if not isinstance(item, dict) or not isinstance(item.get("id"), str) or not isinstance(item.get("text"), str):
        return [
            ValidationError(
                code="E_INVALID_TYPE",
                message="checklist item must be an object with string id and text",
                file=file,
                path=path,
            )
        ]

    errors: list[ValidationError] = []
    if not isinstance(item.get("completed", False), bool):
        errors.append(
            ValidationError(
                code="E_INVALID_TYPE",
                message="completed must be a boolean",
                file=file,
                path=f"{path}.completed",
            )
        )
    for key in ("completed_at", "file_path", "added_at"):
        if item.get(key) is not None and not isinstance(item[key], str):
            errors.append(
                ValidationError(
                    code="E_INVALID_TYPE",
                    message=f"{key} must be a string",
                    file=file,
                    path=f"{path}.{key}",
                )
            )
    if list_name == "need_fix" and item.get("source") is not None and item["source"] not in FIX_SOURCES:
        errors.append(
            ValidationError(
                code="E_INVALID_ENUM",
                message=f"source must be one of {list(FIX_SOURCES)}",
                file=file,
                path=f"{path}.source",
            )
        )
    return errors


def _validate_edge(ei: int, edge: Any, tasks: dict[str, Any], file: Optional[str]) -> list[ValidationError]:
    path = f"edges[{ei}]"
    if not isinstance(edge, dict) or not isinstance(edge.get("from"), str) or not isinstance(edge.get("to"), str):
        return [
            ValidationError(
                code="E_INVALID_TYPE",
                message="edge must be an object with string from and to",
                file=file,
                path=path,
            )
        ]
    out: list[ValidationError] = []
    for end in ("from", "to"):
        if edge[end] not in tasks:
            out.append(
                ValidationError(
                    code="E_UNKNOWN_EDGE_ENDPOINT",
                    message=f"edge {end} references unknown task: {edge[end]}",
                    file=file,
                    path=f"{path}.{end}",
                )
            )
    return out


def summarize_project(graph: GraphStore) -> str:
    counts = Counter([n.status for n in graph.nodes()])
    parts = [f"{s}={counts.get(s, 0)}" for s in TASK_STATUSES]
    roots = graph.get_root_tasks()
    return (
        f"OK: {graph.size} tasks, {graph.edge_count} edges ("
        + ", ".join(parts)
        + ")\nRoots: "
        + (", ".join(roots) if roots else "-")
    )


def _sorted(errors: Iterable[ValidationError]) -> list[ValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )
