import pytest
from typer.testing import CliRunner

from taskgraph_platform.cli import app
from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.model import TaskNode


DESCRIPTION = "Implement the change carefully so that it satisfies every acceptance check listed below."


@pytest.fixture
def make_task():
    def _make(title="Implement feature", *, criteria=("Criterion one",), deliverables=("Deliverable one",), **kw):
        kw.setdefault("description", DESCRIPTION)
        return TaskNode.create(
            title=title,
            success_criteria=list(criteria),
            deliverables=list(deliverables),
            **kw,
        )

    return _make


@pytest.fixture
def build_graph(make_task):
    """Graph with tasks named by ``ids`` and blocker edges kept in step with blocker lists."""

    def _build(ids, edges=(), reason="needs the upstream output"):
        g = GraphStore()
        for i in ids:
            g.add_node(make_task(f"Implement {i}", id=i))
        for a, b in edges:
            g.add_edge(a, b)
            node = g.require_node(b)
            node.add_blocker(a)
            node.set_dependencies(reason)
        return g

    return _build


@pytest.fixture
def run(tmp_path):
    """Invoke the CLI against a project in ``tmp_path``."""
    runner = CliRunner()

    def _run(*args):
        return runner.invoke(app, ["-p", str(tmp_path), *args])

    return _run


@pytest.fixture
def project(run):
    """An initialised project; returns a helper that creates tasks and yields their ids."""
    r = run("init", "--name", "Demo", "--description", "demo project")
    assert r.exit_code == 0, r.output

    def _create(title, *extra):
        r = run(
            "create",
            "--title",
            title,
            "--description",
            DESCRIPTION,
            "-c",
            "It works",
            "-d",
            "The code",
            *extra,
        )
        assert r.exit_code == 0, r.output
        return r.stdout.split()[2]

    return _create
