from taskgraph_platform.core.validate.validate_project import summarize_project, validate_project


def _task(tid, **kw):
    raw = {
        "id": tid,
        "title": f"Implement {tid}",
        "description": "Build it.",
        "success_criteria": [{"id": f"{tid}-c1", "text": "works", "completed": False}],
        "deliverables": [{"id": f"{tid}-d1", "text": "code", "completed": False}],
    }
    raw.update(kw)
    return raw


def _doc(*tasks, **kw):
    doc = {"metadata": {"project_name": "Demo"}, "tasks": {t["id"]: t for t in tasks}}
    doc.update(kw)
    return doc


def test_valid_document_loads():
    doc = _doc(_task("a"), _task("b", blockers=["a"], dependencies="b reads a"))
    graph, errors = validate_project(doc)
    assert errors == []
    assert graph is not None
    assert graph.edges() == [("a", "b")]
    assert graph.require_node("b").status == "blocked"


def test_edges_list_takes_precedence():
    doc = _doc(
        _task("a"),
        _task("b", blockers=["a"], dependencies="b reads a"),
        edges=[{"from": "a", "to": "b", "type": "blocks"}],
    )
    graph, errors = validate_project(doc)
    assert errors == []
    assert graph.edge_count == 1


def test_missing_metadata_and_tasks():
    graph, errors = validate_project({"__file__": "p.json"})
    assert graph is None
    assert [(e.code, e.path) for e in errors] == [
        ("E_REQUIRED_FIELD", "metadata"),
        ("E_REQUIRED_FIELD", "tasks"),
    ]
    assert str(errors[0]).startswith("p.json:metadata: E_REQUIRED_FIELD:")


def test_task_shape_errors():
    doc = _doc(
        _task("b", title=" ", priority="urgent"),
        _task("c", blockers="a", need_fix=[{"text": "no id"}]),
    )
    doc["tasks"]["a"] = _task("other")
    _, errors = validate_project(doc)
    got = {(e.code, e.path) for e in errors}
    assert ("E_ID_MISMATCH", "tasks.a.id") in got
    assert ("E_REQUIRED_FIELD", "tasks.b.title") in got
    assert ("E_INVALID_ENUM", "tasks.b.priority") in got
    assert ("E_INVALID_TYPE", "tasks.c.blockers") in got
    assert ("E_INVALID_TYPE", "tasks.c.need_fix[0]") in got


def test_legacy_status_gets_hint():
    _, errors = validate_project(_doc(_task("a", status="not_started")))
    assert len(errors) == 1
    assert errors[0].code == "E_INVALID_ENUM"
    assert "migrate-status" in errors[0].message


def test_reference_errors():
    doc = _doc(
        _task("a", blockers=["ghost"], dependencies="x"),
        _task("b", blockers=["b"], dependencies="x"),
        edges=[{"from": "a", "to": "nowhere"}, "bad"],
    )
    _, errors = validate_project(doc)
    got = [(e.code, e.path) for e in errors]
    assert ("E_UNKNOWN_BLOCKER", "tasks.a.blockers[0]") in got
    assert ("E_SELF_BLOCKER", "tasks.b.blockers[0]") in got
    assert ("E_UNKNOWN_EDGE_ENDPOINT", "edges[0].to") in got
    assert ("E_INVALID_TYPE", "edges[1]") in got
    assert got == sorted(got, key=lambda cp: (cp[1], cp[0]))


def test_summarize_project():
    graph, _ = validate_project(_doc(_task("a"), _task("b", blockers=["a"], dependencies="b reads a")))
    text = summarize_project(graph)
    assert text.startswith("OK: 2 tasks, 1 edges (")
    assert "ready=1" in text
    assert "blocked=1" in text
    assert text.endswith("Roots: a")


def test_checklist_item_field_types():
    doc = _doc(
        _task(
            "a",
            success_criteria=[{"id": "c1", "text": "works", "completed": "false"}],
            deliverables=[{"id": "d1", "text": "code", "completed": True, "completed_at": 17}],
            need_fix=[{"id": "f1", "text": "flaky", "completed": False, "source": "gut-feeling"}],
        )
    )
    graph, errors = validate_project(doc)
    assert graph is None
    assert [(e.code, e.path) for e in errors] == [
        ("E_INVALID_TYPE", "tasks.a.deliverables[0].completed_at"),
        ("E_INVALID_ENUM", "tasks.a.need_fix[0].source"),
        ("E_INVALID_TYPE", "tasks.a.success_criteria[0].completed"),
    ]


def test_null_priority_rejected():
    _, errors = validate_project(_doc(_task("a", priority=None)))
    assert [(e.code, e.path) for e in errors] == [("E_INVALID_ENUM", "tasks.a.priority")]


def test_missing_priority_defaults():
    graph, errors = validate_project(_doc(_task("a")))
    assert errors == []
    assert graph.require_node("a").priority == "second"


def test_verifications_and_sub_items_round_trip():
    verified = [{"library_id": "/pallets/click", "verified_at": "2025-01-01T00:00:00.000Z", "notes": "options"}]
    doc = _doc(_task("a", c7_verified=verified, sub_items=["b"]), _task("b"))
    graph, errors = validate_project(doc)
    assert errors == []
    out = graph.to_dict()["tasks"]["a"]
    assert out["c7_verified"] == verified
    assert out["sub_items"] == ["b"]


def test_bad_verifications():
    doc = _doc(_task("a", c7_verified=[{"library_id": ""}, {"library_id": "/x", "notes": 3}], sub_items="b"))
    _, errors = validate_project(doc)
    assert [(e.code, e.path) for e in errors] == [
        ("E_INVALID_TYPE", "tasks.a.c7_verified[0]"),
        ("E_INVALID_TYPE", "tasks.a.c7_verified[1]"),
        ("E_INVALID_TYPE", "tasks.a.sub_items"),
    ]
