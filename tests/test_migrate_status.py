from taskgraph_platform.core.validate.validate_project import validate_project
from taskgraph_platform.tools.migrate_status import migrate_document, migrate_task


def _item(iid, completed=False):
    return {"id": iid, "text": iid, "completed": completed}


def _legacy_doc():
    return {
        "metadata": {"project_name": "Old"},
        "tasks": {
            "a": {
                "id": "a",
                "title": "Implement a",
                "status": "not_started",
                "success_criteria": [_item("c1")],
                "deliverables": [_item("d1")],
            },
            "b": {
                "id": "b",
                "title": "Implement b",
                "status": "pending",
                "blockers": ["a"],
                "dependencies": "b reads a",
                "success_criteria": [_item("c1")],
                "deliverables": [_item("d1")],
            },
            "c": {
                "id": "c",
                "title": "Implement c",
                "status": "in_progress",
                "success_criteria": [_item("c1", True)],
                "deliverables": [_item("d1", True)],
            },
            "d": {
                "id": "d",
                "title": "Implement d",
                "status": "completed",
                "success_criteria": [_item("c1")],
                "deliverables": [_item("d1")],
                "c7_verified": [{"library_id": "/yaml/pyyaml", "verified_at": "2025-01-01T00:00:00.000Z"}],
                "sub_items": ["a"],
            },
        },
        "indexes": {"byStatus": {}},
    }


def test_migrate_task():
    assert migrate_task({"status": "completed"}) == "completed"
    assert migrate_task({"status": "blocked"}) == "ready"
    assert migrate_task({"blockers": ["x"]}) == "blocked"
    assert migrate_task({"success_criteria": [_item("c", True)], "deliverables": [_item("d")]}) == "in_progress"


def test_migrate_document():
    doc = _legacy_doc()
    out, report = migrate_document(doc)

    statuses = {tid: t["status"] for tid, t in out["tasks"].items()}
    assert statuses == {"a": "ready", "b": "blocked", "c": "in_review", "d": "completed"}
    assert report.changed == {
        "a": ("not_started", "ready"),
        "b": ("pending", "blocked"),
        "c": ("in_progress", "in_review"),
    }
    assert report.unchanged == 1
    assert report.changed_count == 3
    assert "indexes" not in out
    # input is untouched
    assert doc["tasks"]["a"]["status"] == "not_started"

    graph, errors = validate_project(out)
    assert errors == []
    assert graph.require_node("d").status == "completed"
    assert graph.require_node("d").to_dict()["c7_verified"][0]["library_id"] == "/yaml/pyyaml"
    assert graph.require_node("d").sub_items == ["a"]


def test_migration_is_idempotent():
    once, _ = migrate_document(_legacy_doc())
    twice, report = migrate_document(once)
    assert twice == once
    assert report.changed_count == 0
    assert report.unchanged == 4


def test_migrate_document_without_tasks():
    out, report = migrate_document({"metadata": {}})
    assert out == {"metadata": {}}
    assert report.changed_count == 0
