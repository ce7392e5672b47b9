from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from typing import Literal

from guards.evaluator import MAX_GUARD_DEPTH, guard_depth
from scenario.graph import ScenarioGraph

HIGH_OUT_DEGREE = 6


@dataclass(frozen=True)
class LintIssue:
    code: str
    severity: Literal["error", "warning"]
    message: str
    node_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def lint(
    graph: ScenarioGraph,
    *,
    max_out_degree: int = HIGH_OUT_DEGREE,
    max_guard_depth: int = MAX_GUARD_DEPTH,
) -> list[LintIssue]:
    issues: list[LintIssue] = []
    known = graph.node_ids()
    outgoing: dict[str, list[str]] = defaultdict(list)
    incoming: dict[str, int] = defaultdict(int)

    for index, edge in enumerate(graph.edges):
        missing = [endpoint for endpoint in (edge.source, edge.to) if endpoint not in known]
        for endpoint in missing:
            issues.append(
                LintIssue(
                    "EDGE_UNKNOWN_NODE",
                    "error",
                    f"Edge {index} ({edge.source} -> {edge.to}) references unknown node "
                    f"'{endpoint}'.",
                    endpoint,
                )
            )
        if edge.guard is not None and guard_depth(edge.guard) > max_guard_depth:
            issues.append(
                LintIssue(
                    "GUARD_TOO_DEEP",
                    "warning",
                    f"Guard on edge {edge.source} -> {edge.to} nests deeper than "
                    f"{max_guard_depth} levels and will always evaluate to false.",
                    edge.source,
                )
            )
        if missing:
            continue
        outgoing[edge.source].append(edge.to)
        incoming[edge.to] += 1

    orphans: set[str] = set()
    for node in graph.nodes:
        if not outgoing.get(node.id) and not incoming.get(node.id):
            orphans.add(node.id)
            issues.append(
                LintIssue("NODE_ORPHAN", "warning", f"Node '{node.id}' has no edges.", node.id)
            )
        degree = len(outgoing.get(node.id, []))
        if degree > max_out_degree:
            issues.append(
                LintIssue(
                    "NODE_HIGH_OUT_DEGREE",
                    "warning",
                    f"Node '{node.id}' has {degree} outgoing edges (max {max_out_degree}).",
                    node.id,
                )
            )

    for source, target in _back_edges(graph, outgoing):
        issues.append(
            LintIssue(
                "GRAPH_CYCLE",
                "warning",
                f"Cycle detected through edge {source} -> {target}.",
                target,
            )
        )

    if graph.entry_node in known:
        reached = _reachable_ignoring_guards(graph.entry_node, outgoing)
        for node in graph.nodes:
            if node.id not in reached and node.id not in orphans:
                issues.append(
                    LintIssue(
                        "NODE_UNREACHABLE",
                        "warning",
                        f"Node '{node.id}' cannot be reached from '{graph.entry_node}'.",
                        node.id,
                    )
                )
    return issues


def has_errors(issues: list[LintIssue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


def _back_edges(graph: ScenarioGraph, outgoing: dict[str, list[str]]) -> list[tuple[str, str]]:
    visited: set[str] = set()
    on_stack: set[str] = set()
    found: list[tuple[str, str]] = []

    for node in graph.nodes:
        if node.id in visited:
            continue
        visited.add(node.id)
        on_stack.add(node.id)
        stack = [(node.id, iter(outgoing.get(node.id, [])))]
        while stack:
            current, targets = stack[-1]
            target = next(targets, None)
            if target is None:
                on_stack.discard(current)
                stack.pop()
            elif target in on_stack:
                found.append((current, target))
            elif target not in visited:
                visited.add(target)
                on_stack.add(target)
                stack.append((target, iter(outgoing.get(target, []))))
    return found


def _reachable_ignoring_guards(entry: str, outgoing: dict[str, list[str]]) -> set[str]:
    reached = {entry}
    queue = deque([entry])
    while queue:
        for target in outgoing.get(queue.popleft(), []):
            if target not in reached:
                reached.add(target)
                queue.append(target)
    return reached
