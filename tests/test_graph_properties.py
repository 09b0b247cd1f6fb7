from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from taskgraph_platform.core.graph.cycle import detect_cycles, has_cycle
from taskgraph_platform.core.graph.operations import cascade_delete, cut_node
from taskgraph_platform.core.graph.sort import get_execution_levels, topological_sort
from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.model import TaskNode
from taskgraph_platform.core.validate.validate_project import validate_project


@st.composite
def _graph_case(draw: st.DrawFn, acyclic: bool = False) -> tuple[int, tuple[tuple[int, int], ...]]:
    node_count = draw(st.integers(min_value=1, max_value=7))
    if acyclic:
        candidates = [(a, b) for a in range(node_count) for b in range(a + 1, node_count)]
    else:
        candidates = [(a, b) for a in range(node_count) for b in range(node_count) if a != b]
    if not candidates:
        return node_count, ()
    edges = draw(st.sets(st.sampled_from(candidates), max_size=len(candidates)))
    return node_count, tuple(sorted(edges))


def _build(node_count: int, edges: tuple[tuple[int, int], ...]) -> GraphStore:
    g = GraphStore()
    for i in range(node_count):
        g.add_node(TaskNode(id=f"t{i}", title=f"Implement t{i}", description="generated"))
    for a, b in edges:
        g.add_edge(f"t{a}", f"t{b}")
        node = g.require_node(f"t{b}")
        node.add_blocker(f"t{a}")
        node.set_dependencies("generated edge")
    return g


@given(case=_graph_case())
@settings(max_examples=75, deadline=None, suppress_health_check=[HealthCheck.too_slow])
def test_sort_and_cycle_detection_agree(case):
    g = _build(*case)
    result = topological_sort(g, use_cache=False)
    assert result.has_cycle == has_cycle(g)
    assert len(result.order) + len(result.cycle_nodes) == g.size

    pos = {nid: i for i, nid in enumerate(result.order)}
    for u, v in g.edges():
        if u in pos and v in pos:
            assert pos[u] < pos[v]

    for cycle in detect_cycles(g).cycles:
        assert cycle[0] == cycle[-1]
        for u, v in zip(cycle, cycle[1:]):
            assert g.has_edge(u, v)


@given(case=_graph_case(acyclic=True))
@settings(max_examples=75, deadline=None)
def test_execution_levels_partition_the_dag(case):
    g = _build(*case)
    levels = get_execution_levels(g)
    flat = [nid for level in levels for nid in level]
    assert sorted(flat) == sorted(g.node_ids())
    depth = {nid: i for i, level in enumerate(levels) for nid in level}
    for u, v in g.edges():
        assert depth[u] < depth[v]


@given(case=_graph_case(acyclic=True), data=st.data())
@settings(max_examples=50, deadline=None)
def test_cut_preserves_reachability(case, data):
    g = _build(*case)
    victim = data.draw(st.sampled_from(g.node_ids()))
    before = {
        (u, v)
        for u in g.node_ids()
        for v in g.node_ids()
        if u != v and victim not in (u, v) and _reaches(g, u, v)
    }
    cut_node(g, victim)
    assert victim not in g
    for u, v in before:
        assert _reaches(g, u, v)
    for node in g.nodes():
        assert sorted(node.blockers) == sorted(g.get_incoming_edges(node.id))


@given(case=_graph_case(), data=st.data())
@settings(max_examples=50, deadline=None)
def test_cascade_leaves_no_dangling_references(case, data):
    g = _build(*case)
    start = data.draw(st.sampled_from(g.node_ids()))
    deleted = set(cascade_delete(g, start))
    assert start in deleted
    for node in g.nodes():
        assert not deleted & set(node.blockers)
    for u, v in g.edges():
        assert u not in deleted and v not in deleted


@given(case=_graph_case())
@settings(max_examples=50, deadline=None)
def test_document_round_trip(case):
    g = _build(*case)
    loaded, errors = validate_project(g.to_dict())
    assert errors == []
    assert loaded.node_ids() == g.node_ids()
    assert sorted(loaded.edges()) == sorted(g.edges())


def _reaches(g: GraphStore, src: str, dst: str) -> bool:
    seen = {src}
    stack = [src]
    while stack:
        cur = stack.pop()
        for nxt in g.get_outgoing_edges(cur):
            if nxt == dst:
                return True
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return False
