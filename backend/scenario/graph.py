from __future__ import annotations

import logging
from collections import deque
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from documents.hashing import canonical_size, content_hash
from errors import GraphInvalid
from guards.context import StateContext
from guards.evaluator import evaluate
from guards.schemas import Guard

logger = logging.getLogger(__name__)

MAX_GRAPH_BYTES = 4096


class ScenarioNode(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str = Field(min_length=1, max_length=50)
    type: Literal["beat", "objective", "gate", "setpiece"] = "beat"
    synopsis: str = Field(min_length=1, max_length=160)
    hint: str | None = Field(default=None, max_length=120)


class ScenarioEdge(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)

    source: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    guard: Guard | None = None


class ScenarioGraph(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    nodes: list[ScenarioNode] = Field(min_length=1)
    edges: list[ScenarioEdge] = Field(default_factory=list)
    entry_node: str = Field(min_length=1)

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def node(self, node_id: str) -> ScenarioNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_graph(data: object, *, graph_id: str | None = None) -> ScenarioGraph:
    if isinstance(data, ScenarioGraph):
        return data
    try:
        return ScenarioGraph.model_validate(data)
    except ValidationError as exc:
        problems = []
        for error in exc.errors():
            loc = ".".join(str(part) for part in error.get("loc", ()))
            problems.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
        raise GraphInvalid(graph_id, problems) from exc


def graph_problems(graph: ScenarioGraph) -> list[str]:
    problems: list[str] = []
    seen: set[str] = set()
    for node in graph.nodes:
        if node.id in seen:
            problems.append(f"duplicate node id '{node.id}'")
        seen.add(node.id)
    if graph.entry_node not in seen:
        problems.append(f"entry node '{graph.entry_node}' does not exist")
    for index, edge in enumerate(graph.edges):
        for endpoint in (edge.source, edge.to):
            if endpoint not in seen:
                problems.append(f"edge {index} references unknown node '{endpoint}'")
    size = canonical_size(graph.to_json())
    if size > MAX_GRAPH_BYTES:
        problems.append(f"graph is {size} bytes, limit is {MAX_GRAPH_BYTES}")
    return problems


def validate_graph(data: object, *, graph_id: str | None = None) -> ScenarioGraph:
    graph = parse_graph(data, graph_id=graph_id)
    problems = graph_problems(graph)
    if problems:
        raise GraphInvalid(graph_id, problems)
    return graph


def graph_hash(graph: ScenarioGraph) -> str:
    return content_hash(graph.to_json())


def reachable_nodes(graph: ScenarioGraph, ctx: StateContext) -> set[str]:
    """Breadth-first walk from the entry node over edges whose guard holds."""
    known = graph.node_ids()
    reachable = {graph.entry_node}
    queue = deque([graph.entry_node])
    while queue:
        current = queue.popleft()
        for edge in graph.edges:
            if edge.source != current or edge.to in reachable or edge.to not in known:
                continue
            if evaluate(edge.guard, ctx):
                reachable.add(edge.to)
                queue.append(edge.to)
    return reachable


def frontier(graph: ScenarioGraph, ctx: StateContext, node_id: str) -> list[ScenarioNode]:
    neighbours: list[ScenarioNode] = []
    seen: set[str] = set()
    for edge in graph.edges:
        if edge.source != node_id or edge.to in seen:
            continue
        target = graph.node(edge.to)
        if target is not None and evaluate(edge.guard, ctx):
            seen.add(edge.to)
            neighbours.append(target)
    return neighbours


def graph_slice(
    graph: ScenarioGraph,
    ctx: StateContext,
    current: str | None = None,
    *,
    graph_id: str | None = None,
) -> dict:
    active = graph.node(current) if current else None
    if active is None:
        if current:
            logger.warning(
                "Current node %s missing from graph %s; using entry node", current, graph_id
            )
        active = graph.node(graph.entry_node)
    if active is None:
        raise GraphInvalid(graph_id, [f"entry node '{graph.entry_node}' does not exist"])
    return {
        "graph_id": graph_id,
        "active": {"id": active.id, "type": active.type, "synopsis": active.synopsis},
        "frontier": [
            _frontier_entry(node) for node in frontier(graph, ctx, active.id)
        ],
        "reachable": sorted(reachable_nodes(graph, ctx)),
        "hash": graph_hash(graph),
    }


def _frontier_entry(node: ScenarioNode) -> dict:
    entry = {"id": node.id, "type": node.type, "synopsis": node.synopsis}
    if node.hint:
        entry["hint"] = node.hint
    return entry
