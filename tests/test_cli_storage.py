import json


def test_export_json_and_markdown(project, run, tmp_path):
    a = project("Implement parser")
    b = project("Write parser tests", "-b", a, "--dependencies", "tests need the parser")

    r = run("export")
    assert r.exit_code == 0
    doc = json.loads(r.stdout)
    assert doc["format"] == "taskgraph-project"
    assert doc["edges"] == [{"from": a, "to": b, "type": "blocks"}]

    out = tmp_path / "plan.md"
    r = run("export", "--format", "markdown", "--out", str(out))
    assert r.exit_code == 0
    text = out.read_text(encoding="utf-8")
    assert text.startswith("# Demo\n")
    assert text.index("## Implement parser") < text.index("## Write parser tests")
    assert "- **Dependencies**: tests need the parser" in text

    r = run("export", "--format", "pdf")
    assert r.exit_code == 2
    assert "E_EXPORT_UNKNOWN_FORMAT" in r.output


def test_backups_and_restore(project, run):
    assert run("backups").stdout.strip() == "no backups"
    a = project("Implement parser")
    project("Write parser tests")

    r = run("backups")
    lines = r.stdout.splitlines()
    assert len(lines) == 2
    assert all(".bak." in line for line in lines)

    r = run("restore")
    assert r.exit_code == 0
    assert r.stdout.startswith("OK: restored from project.json.bak.")
    ids = [t["id"] for t in json.loads(run("list", "--format", "json").stdout)]
    assert ids == [a]


def test_restore_without_backups(project, run):
    r = run("restore")
    assert r.exit_code == 1
    assert "E_NO_BACKUP" in r.output


def test_backup_count_from_config(project, run, tmp_path):
    (tmp_path / ".taskgraph" / "config.yaml").write_text("backup_count: 1\n", encoding="utf-8")
    for i in range(3):
        project(f"Implement step {i}")
    assert len(run("backups").stdout.splitlines()) == 1


def test_bad_config_is_reported(project, run, tmp_path):
    (tmp_path / ".taskgraph" / "config.yaml").write_text("colour: blue\n", encoding="utf-8")
    r = run("info")
    assert r.exit_code == 2
    assert "E_CONFIG_UNKNOWN_KEY" in r.output


def test_migrate_status(run, tmp_path):
    store = tmp_path / ".taskgraph"
    store.mkdir()
    doc = {
        "metadata": {"project_name": "Old"},
        "tasks": {
            "t1": {
                "id": "t1",
                "title": "Implement t1",
                "status": "not_started",
                "success_criteria": [{"id": "c1", "text": "works", "completed": True}],
                "deliverables": [{"id": "d1", "text": "code", "completed": True}],
            },
            "t2": {"id": "t2", "title": "Implement t2", "status": "completed"},
        },
    }
    (store / "project.json").write_text(json.dumps(doc), encoding="utf-8")

    assert run("validate").exit_code == 2

    r = run("migrate-status", "--dry-run")
    assert r.exit_code == 0
    assert "t1: not_started -> in_review" in r.stdout
    assert "DRY RUN: 1 task(s) would change" in r.stdout
    assert run("validate").exit_code == 2

    r = run("migrate-status")
    assert r.exit_code == 0
    assert "OK: migrated 1 task(s)" in r.stdout
    assert run("validate").exit_code == 0
    t2 = json.loads(run("get", "t2", "--format", "json").stdout)
    assert t2["status"] == "completed"


def test_log_file_from_config(project, run, tmp_path):
    project("Implement parser")
    (tmp_path / ".taskgraph" / "config.yaml").write_text("log_file: logs/taskgraph.log\n", encoding="utf-8")
    r = run("info")
    assert r.exit_code == 0
    log = tmp_path / ".taskgraph" / "logs" / "taskgraph.log"
    assert "loaded" in log.read_text(encoding="utf-8")


def test_log_file_option(project, run, tmp_path):
    log = tmp_path / "cli.log"
    r = run("--log-file", str(log), "list", "--format", "json")
    assert r.exit_code == 0
    assert "loaded" in log.read_text(encoding="utf-8")


def _record(tid, **kw):
    raw = {
        "id": tid,
        "title": f"Implement {tid}",
        "description": "Imported task.",
        "success_criteria": [{"id": f"{tid}-c", "text": "works", "completed": False}],
        "deliverables": [{"id": f"{tid}-d", "text": "code", "completed": False}],
    }
    raw.update(kw)
    return raw


def test_import_replace_and_merge(project, run, tmp_path):
    a = project("Implement parser")
    src = tmp_path / "tasks.json"
    src.write_text(json.dumps([_record("x"), _record("y", blockers=["x"], dependencies="y needs x")]), encoding="utf-8")

    r = run("import", str(src), "--merge")
    assert r.exit_code == 0, r.output
    assert r.stdout.startswith(f"OK: imported {src} (3 tasks, 1 edges)")
    ids = [t["id"] for t in json.loads(run("list", "--format", "json").stdout)]
    assert ids == [a, "x", "y"]

    r = run("import", str(src))
    assert r.exit_code == 0
    ids = [t["id"] for t in json.loads(run("list", "--format", "json").stdout)]
    assert ids == ["x", "y"]
    assert run("info").stdout.startswith("Demo")


def test_import_errors(project, run, tmp_path):
    src = tmp_path / "bad.json"
    src.write_text("{not json", encoding="utf-8")
    r = run("import", str(src))
    assert r.exit_code == 1
    assert "E_JSON_PARSE" in r.output

    src.write_text(json.dumps({"name": "not a task"}), encoding="utf-8")
    r = run("import", str(src))
    assert r.exit_code == 2
    assert "E_IMPORT_UNRECOGNIZED" in r.output
