from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from assembler.budget import TokenEstimator, estimate_tokens, warn_threshold
from assembler.injection import apply_injection_map
from assembler.sections import SECTION_ORDER
from documents.schemas import (
    AdventureContent,
    Document,
    InjectionMapContent,
    InjectionRule,
    NpcContent,
    parse_ref,
)
from documents.store import DocumentStore, resolve_document
from errors import BundleOverBudget
from guards.context import StateContext
from guards.evaluator import evaluate
from scenario.graph import ScenarioGraph, graph_hash, graph_slice

logger = logging.getLogger(__name__)

NPC_DROPPED = "NPC_DROPPED"
BUDGET_WARN = "BUDGET_WARN"

DEFAULT_INJECTION_RULES: tuple[InjectionRule, ...] = tuple(
    InjectionRule.model_validate(rule)
    for rule in (
        {"from": "/contract/instructions", "to": "/contract/instructions"},
        {"from": "/contract/output_keys", "to": "/contract/output_keys"},
        {"from": "/contract/acts_catalog", "to": "/contract/acts_catalog", "skipIfEmpty": True},
        {"from": "/rulesets/{env.ruleset_ref}/rules", "to": "/ruleset/rules"},
        {
            "from": "/rulesets/{env.ruleset_ref}/choices_policy",
            "to": "/ruleset/choices_policy",
            "skipIfEmpty": True,
        },
        {
            "from": "/rulesets/{env.ruleset_ref}/txt_policy",
            "to": "/ruleset/txt_policy",
            "skipIfEmpty": True,
        },
        {"from": "/world/summary", "to": "/world/summary", "skipIfEmpty": True},
        {"from": "/world/tone", "to": "/world/tone", "skipIfEmpty": True},
        {"from": "/world/lore", "to": "/world/lore", "skipIfEmpty": True},
        {
            "from": "/world/locations",
            "to": "/world/locations",
            "skipIfEmpty": True,
            "limit": {"units": "count", "max": 12},
        },
        {"from": "/adventure/synopsis", "to": "/scenario/adventure/synopsis", "skipIfEmpty": True},
        {"from": "/game/opening", "to": "/scenario/opening", "skipIfEmpty": True},
        {"from": "/scenario/objectives", "to": "/scenario/objectives", "skipIfEmpty": True},
    )
)


@dataclass(frozen=True)
class DocumentRefs:
    """References to the documents one turn is built from.

    Each reference is ``id`` (active version) or ``id@version``.
    """

    contract: str
    ruleset: str
    world: str
    adventure: str
    scenario: str | None = None
    npcs: tuple[str, ...] = ()
    injection_map: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DocumentRefs:
        return cls(
            contract=data["contract"],
            ruleset=data["ruleset"],
            world=data["world"],
            adventure=data["adventure"],
            scenario=data.get("scenario"),
            npcs=tuple(data.get("npcs") or ()),
            injection_map=data.get("injection_map"),
        )


@dataclass(frozen=True)
class AssemblerConfig:
    max_tokens: int = 8000
    max_active_npcs: int = 5
    warn_pct: float = 0.9
    module_overrides: Mapping[str, bool] = field(default_factory=dict)
    token_estimator: TokenEstimator = estimate_tokens


@dataclass(frozen=True)
class AssemblyRequest:
    game_id: str
    turn_number: int
    player_input: str
    state: Mapping[str, Any] = field(default_factory=dict)
    locale: str = "en-US"
    rng_seed: int = 0
    current_node: str | None = None
    active_npcs: frozenset[str] | None = None

    @property
    def is_first_turn(self) -> bool:
        return self.turn_number <= 1


@dataclass(frozen=True)
class Piece:
    scope: str
    ref: str
    hash: str

    @property
    def label(self) -> str:
        return f"{self.scope}:{self.ref}"

    def to_dict(self) -> dict:
        return {"scope": self.scope, "ref": self.ref, "hash": self.hash}


@dataclass
class BundleResult:
    bundle: dict
    pieces: list[Piece]
    included: list[str]
    dropped: list[str]
    token_estimate: int
    policy_flags: list[str]
    injection_errors: list[str] = field(default_factory=list)

    def metadata(self) -> dict:
        return {
            "pieces": [piece.to_dict() for piece in self.pieces],
            "included": list(self.included),
            "dropped": list(self.dropped),
            "token_estimate": self.token_estimate,
            "policy_flags": list(self.policy_flags),
            "injection_errors": list(self.injection_errors),
        }


@dataclass
class _NpcEntry:
    document: Document
    active: bool
    piece: Piece
    payload: dict


def assemble_bundle(
    store: DocumentStore,
    refs: DocumentRefs,
    ctx: StateContext,
    request: AssemblyRequest,
    *,
    graph: ScenarioGraph | None = None,
    config: AssemblerConfig | None = None,
) -> BundleResult:
    config = config or AssemblerConfig()

    contract = _load(store, "contract", refs.contract)
    ruleset = _load(store, "ruleset", refs.ruleset)
    world = _load(store, "world", refs.world)
    adventure = _load(store, "adventure", refs.adventure)
    scenario = _load(store, "scenario", refs.scenario) if refs.scenario else None
    injection_map = (
        _load(store, "injection_map", refs.injection_map) if refs.injection_map else None
    )
    npc_documents = _load_npcs(store, refs.npcs)

    pieces = [
        Piece(document.kind, document.ref, document.hash)
        for document in (contract, ruleset, world, adventure, scenario, injection_map)
        if document is not None
    ]
    adventure_body = AdventureContent.model_validate(adventure.content)

    sections: dict[str, Any] = {
        "contract": _identity(contract),
        "ruleset": {
            **_identity(ruleset),
            "ticks_per_turn": ruleset.content.get("ticks_per_turn", 1),
        },
        "modules": _modules(adventure_body, config.module_overrides),
        "world": _identity(world),
        "scenario": _scenario_section(adventure, scenario, graph, ctx, request),
        "npcs": [],
        "state": _state_section(request),
        "input": {"text": request.player_input},
    }
    if graph is not None:
        pieces.append(Piece("graph", _graph_id(scenario), graph_hash(graph)))

    entries = _eligible_npcs(npc_documents, ctx, request.active_npcs)
    pieces.extend(entry.piece for entry in entries)
    sections["npcs"] = [entry.payload for entry in entries]

    sources = {
        "contract": contract.content,
        "rulesets": {ruleset.id: ruleset.content},
        "world": world.content,
        "adventure": adventure.content,
        "scenario": scenario.content if scenario else {},
        "npcs": {document.id: document.content for document in npc_documents},
        "game": {
            "game_id": request.game_id,
            "turn_number": request.turn_number,
            "locale": request.locale,
            "opening": adventure_body.opening if request.is_first_turn else None,
        },
        "state": dict(request.state),
    }
    env = {
        "ruleset_ref": ruleset.id,
        "world_ref": world.id,
        "adventure_ref": adventure.id,
        "scenario_ref": scenario.id if scenario else None,
        "locale": request.locale,
        "game_id": request.game_id,
    }
    rules = DEFAULT_INJECTION_RULES
    if injection_map is not None:
        rules = tuple(InjectionMapContent.model_validate(injection_map.content).rules)
    report = apply_injection_map(rules, sources, env, sections, estimator=config.token_estimator)

    bundle = _ordered(sections)
    estimate = config.token_estimator(bundle)
    dropped: list[Piece] = []
    if estimate > config.max_tokens:
        bundle, estimate, dropped = _trim_npcs(sections, entries, config)

    policy_flags: list[str] = []
    if dropped:
        policy_flags.append(NPC_DROPPED)
    if estimate >= warn_threshold(config.max_tokens, config.warn_pct):
        policy_flags.append(BUDGET_WARN)

    dropped_labels = {piece.label for piece in dropped}
    result = BundleResult(
        bundle=bundle,
        pieces=pieces,
        included=[piece.label for piece in pieces if piece.label not in dropped_labels],
        dropped=[piece.label for piece in dropped],
        token_estimate=estimate,
        policy_flags=policy_flags,
        injection_errors=report.errors,
    )
    logger.debug(
        "Assembled bundle for game %s turn %s: %s tokens, %s dropped",
        request.game_id,
        request.turn_number,
        estimate,
        len(dropped),
    )
    return result


def _load(store: DocumentStore, kind: str, ref: str) -> Document:
    doc_id, version = parse_ref(ref)
    return resolve_document(store, kind, doc_id, version)


def _load_npcs(store: DocumentStore, refs: tuple[str, ...]) -> list[Document]:
    documents: dict[str, Document] = {}
    for ref in refs:
        document = _load(store, "npc", ref)
        documents.setdefault(document.id, document)
    return [documents[doc_id] for doc_id in sorted(documents)]


def _identity(document: Document) -> dict:
    return {
        "id": document.id,
        "version": document.version,
        "hash": document.hash,
        "name": document.content.get("name"),
    }


def _modules(adventure: AdventureContent, overrides: Mapping[str, bool]) -> list[dict]:
    modules = []
    for module in adventure.modules:
        if not overrides.get(module.id, module.enabled):
            continue
        entry: dict[str, Any] = {"id": module.id, "summary": module.summary}
        if module.params:
            entry["params"] = dict(module.params)
        modules.append(entry)
    return modules


def _graph_id(scenario: Document | None) -> str:
    if scenario is not None and scenario.content.get("graph_id"):
        return str(scenario.content["graph_id"])
    return "inline"


def _scenario_section(
    adventure: Document,
    scenario: Document | None,
    graph: ScenarioGraph | None,
    ctx: StateContext,
    request: AssemblyRequest,
) -> dict:
    section: dict[str, Any] = {
        "adventure": {
            "id": adventure.id,
            "version": adventure.version,
            "name": adventure.content.get("name"),
        }
    }
    if scenario is not None:
        section.update(_identity(scenario))
    if graph is not None:
        section["graph"] = graph_slice(
            graph, ctx, request.current_node, graph_id=_graph_id(scenario)
        )
    return section


def _state_section(request: AssemblyRequest) -> dict:
    hot = request.state.get("hot")
    warm = request.state.get("warm")
    return {
        "turn": request.turn_number,
        "is_first_turn": request.is_first_turn,
        "locale": request.locale,
        "rng_seed": request.rng_seed,
        "node": request.current_node,
        "hot": dict(hot) if isinstance(hot, Mapping) else {},
        "warm": dict(warm) if isinstance(warm, Mapping) else {},
    }


def _eligible_npcs(
    documents: list[Document],
    ctx: StateContext,
    active_ids: frozenset[str] | None,
) -> list[_NpcEntry]:
    active: list[_NpcEntry] = []
    inactive: list[_NpcEntry] = []
    for document in documents:
        body = NpcContent.model_validate(document.content)
        if body.visible_if is not None and not evaluate(body.visible_if, ctx):
            logger.debug("NPC %s hidden by its visibility guard", document.label)
            continue
        is_active = active_ids is None or document.id in active_ids
        entry = _NpcEntry(
            document=document,
            active=is_active,
            piece=Piece("npc", document.ref, document.hash),
            payload=_npc_payload(document, body, is_active),
        )
        (active if is_active else inactive).append(entry)
    return active + inactive


def _npc_payload(document: Document, body: NpcContent, is_active: bool) -> dict:
    payload: dict[str, Any] = {
        "id": document.id,
        "version": document.version,
        "name": body.name,
        "active": is_active,
    }
    if body.archetype:
        payload["archetype"] = body.archetype
    if body.summary:
        payload["summary"] = body.summary
    if body.traits:
        payload["traits"] = list(body.traits)
    if body.style is not None:
        payload["style"] = body.style.model_dump(by_alias=True, exclude_none=True)
    return payload


def _trim_npcs(
    sections: dict[str, Any],
    entries: list[_NpcEntry],
    config: AssemblerConfig,
) -> tuple[dict, int, list[Piece]]:
    """Drop NPCs until the bundle fits.

    Inactive NPCs go first from the tail, then active NPCs beyond the active cap
    in id order, then whatever remains from the tail.
    """
    kept = list(entries)
    dropped: list[Piece] = []

    def rebuild() -> tuple[dict, int]:
        kept_ids = {entry.document.id for entry in kept}
        current = sections.get("npcs")
        if isinstance(current, list):
            sections["npcs"] = [
                npc
                for npc in current
                if not isinstance(npc, dict) or npc.get("id", "") in kept_ids
            ]
        bundle = _ordered(sections)
        return bundle, config.token_estimator(bundle)

    def drop(entry: _NpcEntry) -> None:
        kept.remove(entry)
        dropped.append(entry.piece)
        logger.info("Dropped %s to fit the token budget", entry.document.label)

    bundle, estimate = rebuild()
    for entry in reversed([entry for entry in kept if not entry.active]):
        if estimate <= config.max_tokens:
            break
        drop(entry)
        bundle, estimate = rebuild()

    if estimate > config.max_tokens:
        active = [entry for entry in kept if entry.active]
        for entry in reversed(active[config.max_active_npcs :]):
            drop(entry)
        bundle, estimate = rebuild()

    while estimate > config.max_tokens and kept:
        drop(kept[-1])
        bundle, estimate = rebuild()

    if estimate > config.max_tokens:
        raise BundleOverBudget(
            f"Bundle needs {estimate} tokens after trimming; limit is {config.max_tokens}.",
            token_estimate=estimate,
            max_tokens=config.max_tokens,
        )
    return bundle, estimate, dropped


def _ordered(sections: Mapping[str, Any]) -> dict:
    return {
        name: sections.get(name, [] if name in ("modules", "npcs") else {})
        for name in SECTION_ORDER
    }
