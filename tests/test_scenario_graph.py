import pytest

from errors import DocumentNotFound, GraphInvalid
from guards.context import StateContext
from scenario.graph import (
    MAX_GRAPH_BYTES,
    frontier,
    graph_hash,
    graph_slice,
    reachable_nodes,
    validate_graph,
)
from scenario.store import InMemoryGraphStore, ScenarioGraphService

TRUSTED = StateContext.from_snapshot({"warm": {"relationships": {"kiera": {"trust": 12}}}})
EMPTY = StateContext()


def test_valid_graph_round_trips_through_service(graph_data) -> None:
    store = InMemoryGraphStore()
    service = ScenarioGraphService(store)

    stored = service.set_graph("tide-main", graph_data)

    assert "tide-main" in store
    assert service.get_graph("tide-main") == stored
    assert stored.node("warden").type == "objective"


def test_problems_are_collected_together(graph_data) -> None:
    graph_data["nodes"].append({"id": "docks", "synopsis": "Again."})
    graph_data["edges"].append({"from": "tower", "to": "lighthouse"})
    graph_data["entry_node"] = "pier"

    with pytest.raises(GraphInvalid) as excinfo:
        validate_graph(graph_data, graph_id="tide-main")

    problems = excinfo.value.problems
    assert "duplicate node id 'docks'" in problems
    assert "entry node 'pier' does not exist" in problems
    assert "edge 3 references unknown node 'lighthouse'" in problems
    assert excinfo.value.code == "GRAPH_INVALID"


def test_schema_errors_raise_graph_invalid() -> None:
    with pytest.raises(GraphInvalid) as excinfo:
        validate_graph({"entry_node": "a", "nodes": [{"id": "a", "synopsis": "x" * 161}]})
    assert any("synopsis" in problem for problem in excinfo.value.problems)


def test_size_cap_is_enforced() -> None:
    nodes = [{"id": f"node_{index}", "synopsis": "s" * 160} for index in range(30)]
    with pytest.raises(GraphInvalid) as excinfo:
        validate_graph({"entry_node": "node_0", "nodes": nodes})
    assert any(f"limit is {MAX_GRAPH_BYTES}" in problem for problem in excinfo.value.problems)


def test_failed_set_graph_stores_nothing(graph_data) -> None:
    store = InMemoryGraphStore()
    service = ScenarioGraphService(store)
    graph_data["edges"].append({"from": "docks", "to": "nowhere"})

    with pytest.raises(GraphInvalid):
        service.set_graph("broken", graph_data)
    assert "broken" not in store


def test_unknown_graph_is_missing_document() -> None:
    service = ScenarioGraphService(InMemoryGraphStore())
    with pytest.raises(DocumentNotFound) as excinfo:
        service.get_graph("nope")
    assert excinfo.value.context["doc_id"] == "nope"


def test_reachable_respects_guards(graph_data) -> None:
    graph = validate_graph(graph_data)

    assert reachable_nodes(graph, EMPTY) == {"docks", "warden"}
    assert reachable_nodes(graph, TRUSTED) == {"docks", "warden", "tower"}


def test_entry_always_reachable_when_every_guard_fails(graph_data) -> None:
    closed = {"op": "any", "guards": []}
    for edge in graph_data["edges"]:
        edge["guard"] = closed
    graph = validate_graph(graph_data)
    assert reachable_nodes(graph, TRUSTED) == {"docks"}


def test_removing_an_edge_never_grows_reachability(graph_data) -> None:
    before = reachable_nodes(validate_graph(graph_data), TRUSTED)
    graph_data["edges"].pop(1)
    after = reachable_nodes(validate_graph(graph_data), TRUSTED)
    assert after <= before
    assert after == {"docks", "warden"}


def test_frontier_lists_open_neighbours(graph_data) -> None:
    graph = validate_graph(graph_data)
    assert [node.id for node in frontier(graph, EMPTY, "warden")] == []
    assert [node.id for node in frontier(graph, TRUSTED, "warden")] == ["tower"]


def test_slice_falls_back_to_entry_for_unknown_node(graph_data) -> None:
    graph = validate_graph(graph_data)

    sliced = graph_slice(graph, EMPTY, "lighthouse", graph_id="tide-main")

    assert sliced["graph_id"] == "tide-main"
    assert sliced["active"]["id"] == "docks"
    assert [node["id"] for node in sliced["frontier"]] == ["warden"]
    assert sliced["reachable"] == ["docks", "warden"]
    assert sliced["hash"] == graph_hash(graph)
