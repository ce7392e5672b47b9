from __future__ import annotations

import logging
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import DocumentNotFound
from models import StoredScenarioGraph
from scenario.graph import ScenarioGraph, graph_hash, parse_graph, validate_graph
from scenario.lint import LintIssue, lint

logger = logging.getLogger(__name__)

GRAPH_KIND = "scenario_graph"


class GraphStore(Protocol):
    def get(self, graph_id: str) -> ScenarioGraph: ...

    def save(self, graph_id: str, graph: ScenarioGraph) -> None: ...


class InMemoryGraphStore:
    def __init__(self) -> None:
        self._graphs: dict[str, dict] = {}

    def get(self, graph_id: str) -> ScenarioGraph:
        data = self._graphs.get(graph_id)
        if data is None:
            raise DocumentNotFound(GRAPH_KIND, graph_id)
        return ScenarioGraph.model_validate(data)

    def save(self, graph_id: str, graph: ScenarioGraph) -> None:
        self._graphs[graph_id] = graph.to_json()

    def __contains__(self, graph_id: str) -> bool:
        return graph_id in self._graphs


class SqlGraphStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, graph_id: str) -> ScenarioGraph:
        with self._session_factory() as session:
            row = session.scalars(
                select(StoredScenarioGraph).where(StoredScenarioGraph.graph_id == graph_id)
            ).first()
            if row is None:
                raise DocumentNotFound(GRAPH_KIND, graph_id)
            return ScenarioGraph.model_validate(row.graph_json)

    def save(self, graph_id: str, graph: ScenarioGraph) -> None:
        with self._session_factory() as session:
            row = session.scalars(
                select(StoredScenarioGraph).where(StoredScenarioGraph.graph_id == graph_id)
            ).first()
            if row is None:
                row = StoredScenarioGraph(graph_id=graph_id)
                session.add(row)
            row.graph_json = graph.to_json()
            row.content_hash = graph_hash(graph)
            session.commit()


class ScenarioGraphService:
    def __init__(self, store: GraphStore) -> None:
        self.store = store

    def set_graph(self, graph_id: str, data: object) -> ScenarioGraph:
        graph = validate_graph(data, graph_id=graph_id)
        self.store.save(graph_id, graph)
        logger.info("Stored scenario graph %s (%s nodes)", graph_id, len(graph.nodes))
        return graph

    def get_graph(self, graph_id: str) -> ScenarioGraph:
        return self.store.get(graph_id)

    def lint_graph(self, data: object, *, graph_id: str | None = None) -> list[LintIssue]:
        return lint(parse_graph(data, graph_id=graph_id))
