import json


def test_cli_lint_json_success(project, run):
    project("Implement parser")
    r = run("lint", "--format", "json")
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["command"] == "lint"
    assert payload["ok"] is True
    assert payload["error_count"] == 0
    assert payload["errors"] == []


def test_cli_lint_json_failure_contains_codes(project, run):
    a = project("Implement parser")
    project("Parser docs", "-b", a, "--dependencies", "docs describe the parser")
    run("update", a, "--complete-criterion", _item_id(run, a, "success_criteria"))
    run("update", a, "--complete-deliverable", _item_id(run, a, "deliverables"))
    assert run("approve", a).exit_code == 0

    r = run("lint", "--format", "json")
    assert r.exit_code == 2
    payload = json.loads(r.stdout)
    assert payload["ok"] is False
    codes = {e["code"] for e in payload["errors"]}
    assert codes == {"L_TITLE_NO_ACTION_VERB", "L_STALE_BLOCKER"}
    assert {e["source"] for e in payload["errors"]} == {"lint"}


def _item_id(run, task_id, field):
    r = run("get", task_id, "--format", "json")
    return json.loads(r.stdout)[field][0]["id"]
