import json


def _task(run, task_id):
    r = run("get", task_id, "--format", "json")
    assert r.exit_code == 0, r.output
    return json.loads(r.stdout)


def _finish(run, task_id):
    t = _task(run, task_id)
    r = run(
        "update",
        task_id,
        "--complete-criterion",
        t["success_criteria"][0]["id"],
        "--complete-deliverable",
        t["deliverables"][0]["id"],
    )
    assert r.exit_code == 0, r.output
    return r


def test_init_twice_fails(project, run):
    r = run("init")
    assert r.exit_code == 2
    assert "E_PROJECT_EXISTS" in r.output


def test_info(project, run):
    project("Implement parser")
    r = run("info")
    assert r.exit_code == 0
    assert "Demo (version 1.0.0)" in r.stdout
    assert "demo project" in r.stdout
    assert "OK: 1 tasks, 0 edges" in r.stdout


def test_create_and_list(project, run):
    a = project("Implement parser", "--priority", "top", "--file", "src/parser.py")
    b = project("Write parser tests", "-b", a[:8], "--dependencies", "tests need the parser")

    r = run("list", "--format", "json")
    assert r.exit_code == 0
    tasks = {t["id"]: t for t in json.loads(r.stdout)}
    assert tasks[a]["status"] == "ready"
    assert tasks[a]["priority"] == "top"
    assert tasks[a]["related_files"] == ["src/parser.py"]
    assert tasks[b]["status"] == "blocked"
    assert tasks[b]["blockers"] == [a]

    r = run("list", "--status", "blocked", "--format", "text")
    assert r.exit_code == 0
    assert b[:8] in r.stdout
    assert a[:8] not in r.stdout

    r = run("list")
    assert r.exit_code == 0
    assert "Write parser tests" in r.stdout


def test_create_requires_twin(project, run):
    a = project("Implement parser")
    r = run(
        "create",
        "--title",
        "Write tests",
        "--description",
        "x" * 60,
        "-c",
        "ok",
        "-d",
        "tests",
        "-b",
        a,
    )
    assert r.exit_code == 2
    assert "E_TWIN_VALIDATION" in r.output


def test_create_rejects_short_description(project, run):
    r = run("create", "--title", "Implement it", "--description", "short", "-c", "ok", "-d", "code")
    assert r.exit_code == 2
    assert "description: E_OUT_OF_RANGE" in r.output


def test_get_text_and_unknown(project, run):
    a = project("Implement parser", "--notes", "uses regex")
    r = run("get", a)
    assert r.exit_code == 0
    assert "Implement parser" in r.stdout
    assert "success criteria:" in r.stdout
    assert "uses regex" in r.stdout

    r = run("get", "does-not-exist")
    assert r.exit_code == 2
    assert "E_TASK_NOT_FOUND" in r.output


def test_status_lifecycle(project, run):
    a = project("Implement parser")
    b = project("Write parser tests", "-b", a, "--dependencies", "tests need the parser")

    r = run("approve", a)
    assert r.exit_code == 2
    assert "E_NOT_IN_REVIEW" in r.output

    r = _finish(run, a)
    assert "(in_review)" in r.stdout

    r = run("approve", a)
    assert r.exit_code == 0
    assert f"{b[:8]} is now blocked" in r.stdout
    assert _task(run, a)["status"] == "completed"

    r = run("reopen", a)
    assert r.exit_code == 0
    assert "(in_review)" in r.stdout

    r = run("approve", a, "--unblock")
    assert r.exit_code == 0
    assert f"{b[:8]} is now ready" in r.stdout
    assert _task(run, b)["blockers"] == []
    assert _task(run, b)["dependencies"] == ""


def test_need_fix_moves_task_back(project, run):
    a = project("Implement parser")
    _finish(run, a)
    r = run("update", a, "--add-need-fix", "crashes on empty input", "--fix-source", "runtime")
    assert r.exit_code == 0
    assert "(in_progress)" in r.stdout

    fix = _task(run, a)["need_fix"][0]
    assert fix["source"] == "runtime"
    r = run("update", a, "--complete-need-fix", fix["id"])
    assert "(in_review)" in r.stdout


def test_update_blockers(project, run):
    a = project("Implement parser")
    b = project("Write parser tests")

    r = run("update", b, "--add-blocker", a)
    assert r.exit_code == 2
    assert "E_TWIN_VALIDATION" in r.output

    r = run("update", b, "--add-blocker", a, "--dependencies", "tests need the parser")
    assert r.exit_code == 0
    assert "(blocked)" in r.stdout

    r = run("update", a, "--add-blocker", b, "--dependencies", "loop")
    assert r.exit_code == 2
    assert "E_CIRCULAR_DEPENDENCY" in r.output

    r = run("update", b, "--remove-blocker", a)
    assert r.exit_code == 0
    assert "(ready)" in r.stdout


def test_delete_modes(project, run):
    a = project("Implement parser")
    b = project("Write parser tests", "-b", a, "--dependencies", "tests need the parser")
    c = project("Publish parser", "-b", b, "--dependencies", "publish after tests")

    r = run("delete", b)
    assert r.exit_code == 2
    assert "E_HAS_DEPENDENTS" in r.output

    r = run("delete", b, "--cascade", "--reconnect")
    assert r.exit_code == 2
    assert "E_DELETE_CONFLICTING_FLAGS" in r.output

    r = run("delete", b, "--reconnect")
    assert r.exit_code == 0
    assert "OK: deleted 1 task(s)" in r.stdout
    assert _task(run, c)["blockers"] == [a]

    r = run("delete", a, "--cascade")
    assert r.exit_code == 0
    assert "OK: deleted 2 task(s)" in r.stdout
    assert json.loads(run("list", "--format", "json").stdout) == []


def test_merge(project, run):
    a = project("Implement lexer")
    b = project("Implement parser", "--file", "src/parser.py")
    r = run("merge", b, a)
    assert r.exit_code == 0
    assert f"OK: merged {b} into {a}" in r.stdout

    merged = _task(run, a)
    assert len(merged["success_criteria"]) == 2
    assert merged["related_files"] == ["src/parser.py"]
    assert 'Merged from "Implement parser"' in merged["description"]

    r = run("merge", a, a)
    assert r.exit_code == 2
    assert "E_MERGE_SELF" in r.output


def test_wire_and_move(project, run):
    a = project("Implement schema")
    c = project("Implement client", "-b", a, "--dependencies", "client reads the schema")
    b = project("Implement codec")

    r = run(
        "wire",
        b,
        "--after",
        a,
        "--before",
        c,
        "--dep-on-after",
        "codec encodes the schema",
        "--dep-on-before",
        "client uses the codec",
    )
    assert r.exit_code == 0, r.output
    order = json.loads(run("order", "--format", "json").stdout)["order"]
    assert order == [a, b, c]

    r = run("wire", b, "--after", a, "--before", c, "--dep-on-after", "x", "--dep-on-before", "y")
    assert r.exit_code == 2
    assert "E_WIRE_NO_EDGE" in r.output

    r = run("move", c, "--under", a, "--dependencies", "client reads the schema directly")
    assert r.exit_code == 0
    assert "detached from 1 blocker(s)" in r.stdout
    assert _task(run, c)["blockers"] == [a]


def test_undecodable_notes_are_reported(project, run, tmp_path):
    a = project("Implement parser")
    before = (tmp_path / ".taskgraph" / "project.json").read_bytes()
    r = run("update", a, "--notes", "bad \udcff byte")
    assert r.exit_code == 2
    assert r.exception is None or isinstance(r.exception, SystemExit)
    assert "E_INVALID_CONTENT" in r.output
    assert (tmp_path / ".taskgraph" / "project.json").read_bytes() == before


def test_update_blocker_reason_is_recorded_once(project, run):
    a = project("Implement lexer")
    b = project("Implement parser")
    c = project("Implement evaluator")

    r = run("update", c, "--dependencies", "reason without blockers")
    assert r.exit_code == 2
    assert "E_TWIN_VALIDATION" in r.output
    assert _task(run, c)["dependencies"] == ""

    r = run("update", c, "--add-blocker", a, "--add-blocker", b, "--dependencies", "evaluates parsed tokens")
    assert r.exit_code == 0, r.output
    t = _task(run, c)
    assert t["blockers"] == [a, b]
    assert t["dependencies"] == "evaluates parsed tokens"


def test_library_verifications(project, run):
    a = project("Implement CLI", "--verified", "/pallets/click:checked option parsing")
    assert [v["library_id"] for v in _task(run, a)["c7_verified"]] == ["/pallets/click"]

    r = run("update", a, "--verified", "/yaml/pyyaml", "--verified", "/pallets/click:again")
    assert r.exit_code == 0
    verified = _task(run, a)["c7_verified"]
    assert [v["library_id"] for v in verified] == ["/pallets/click", "/yaml/pyyaml"]
    assert verified[0]["notes"] == "checked option parsing"

    r = run("get", a)
    assert "verified against:" in r.stdout
    assert "/yaml/pyyaml at " in r.stdout

    r = run("update", a, "--verified", ":no library")
    assert r.exit_code == 2
    assert "E_REQUIRED_FIELD" in r.output
