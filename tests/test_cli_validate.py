import json


def test_cli_validate_success(project, run):
    a = project("Implement parser")
    project("Write parser tests", "-b", a, "--dependencies", "tests need the parser")
    r = run("validate")
    assert r.exit_code == 0
    assert "OK: 2 tasks, 1 edges" in r.stdout
    assert f"Roots: {a}" in r.stdout


def test_cli_validate_failure(project, run, tmp_path):
    a = project("Implement parser")
    path = tmp_path / ".taskgraph" / "project.json"
    doc = json.loads(path.read_text(encoding="utf-8"))
    doc["tasks"][a]["blockers"] = ["ghost"]
    path.write_text(json.dumps(doc), encoding="utf-8")

    r = run("validate")
    assert r.exit_code == 2
    assert "E_UNKNOWN_BLOCKER" in r.output


def test_cli_validate_missing_project(run):
    r = run("validate")
    assert r.exit_code == 1
    assert "E_PROJECT_NOT_FOUND" in r.output
