import pytest

from taskgraph_platform.core.errors import CircularDependencyError
from taskgraph_platform.core.graph.sort import (
    find_critical_path,
    get_execution_levels,
    is_valid_dag,
    topological_sort,
)


def test_topological_order_respects_edges(build_graph):
    g = build_graph(["d", "c", "b", "a"], [("a", "b"), ("b", "c"), ("a", "d"), ("d", "c")])
    result = topological_sort(g)
    assert not result.has_cycle
    pos = {nid: i for i, nid in enumerate(result.order)}
    for u, v in g.edges():
        assert pos[u] < pos[v]
    assert sorted(result.order) == ["a", "b", "c", "d"]


def test_cycle_nodes_reported(build_graph):
    g = build_graph(["a", "b", "c", "x"], [("x", "a"), ("a", "b"), ("b", "c")])
    g.add_edge("c", "a")
    result = topological_sort(g)
    assert result.has_cycle
    assert result.order == ("x",)
    assert set(result.cycle_nodes) == {"a", "b", "c"}
    assert not is_valid_dag(g)


def test_cache_reused_until_mutation(build_graph):
    g = build_graph(["a", "b"])
    first = topological_sort(g)
    assert topological_sort(g) is first

    g.add_edge("b", "a")
    second = topological_sort(g)
    assert second is not first
    assert second.order == ("b", "a")


def test_cache_can_be_bypassed(build_graph):
    g = build_graph(["a"])
    first = topological_sort(g)
    assert topological_sort(g, use_cache=False) is not first


def test_critical_path_unit_durations(build_graph):
    g = build_graph(
        ["a", "b", "c", "d", "e"],
        [("a", "b"), ("b", "c"), ("c", "d"), ("a", "e"), ("e", "d")],
    )
    cp = find_critical_path(g)
    assert cp.path == ("a", "b", "c", "d")
    assert cp.duration == 4.0


def test_critical_path_weighted(build_graph):
    g = build_graph(["a", "b", "c", "d"], [("a", "b"), ("b", "d"), ("a", "c"), ("c", "d")])
    cp = find_critical_path(g, durations={"c": 10})
    assert cp.path == ("a", "c", "d")
    assert cp.duration == 12.0


def test_critical_path_empty_graph(build_graph):
    cp = find_critical_path(build_graph([]))
    assert cp.path == ()
    assert cp.duration == 0.0


def test_critical_path_raises_on_cycle(build_graph):
    g = build_graph(["a", "b"], [("a", "b")])
    g.add_edge("b", "a")
    with pytest.raises(CircularDependencyError) as ei:
        find_critical_path(g)
    assert ei.value.cycle[0] == ei.value.cycle[-1]


def test_execution_levels(build_graph):
    g = build_graph(
        ["a", "b", "c", "d", "e"],
        [("a", "c"), ("b", "c"), ("c", "d"), ("b", "e")],
    )
    assert get_execution_levels(g) == [["a", "b"], ["c", "e"], ["d"]]


def test_execution_levels_raise_on_cycle(build_graph):
    g = build_graph(["a"])
    g.add_edge("a", "a")
    with pytest.raises(CircularDependencyError):
        get_execution_levels(g)
