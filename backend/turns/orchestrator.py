from __future__ import annotations

import hashlib
import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Mapping

from assembler.bundle import AssemblyRequest, DocumentRefs, assemble_bundle
from documents.schemas import ScenarioContent, parse_ref
from documents.store import DocumentStore, resolve_document
from errors import TurnEngineError
from guards.context import StateContext
from llm.client import ModelClient
from llm.normalize import normalize_output
from llm.repair import invoke_with_repair
from llm.schemas import TurnDTO
from scenario.graph import ScenarioGraph
from scenario.store import GraphStore
from turns.idempotency import IdempotencyStore, InMemoryIdempotencyStore
from turns.settings import TurnConfig

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


class TurnState(str, Enum):
    IDLE = "idle"
    BUNDLE_BUILDING = "bundle_building"
    AWAITING_MODEL = "awaiting_model"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    NORMALIZED = "normalized"
    PERSISTED = "persisted"
    FAILED = "failed"


TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.IDLE: frozenset({TurnState.BUNDLE_BUILDING, TurnState.FAILED}),
    TurnState.BUNDLE_BUILDING: frozenset({TurnState.AWAITING_MODEL, TurnState.FAILED}),
    TurnState.AWAITING_MODEL: frozenset({TurnState.VALIDATING, TurnState.FAILED}),
    TurnState.VALIDATING: frozenset(
        {TurnState.REPAIRING, TurnState.NORMALIZED, TurnState.FAILED}
    ),
    TurnState.REPAIRING: frozenset({TurnState.VALIDATING, TurnState.FAILED}),
    TurnState.NORMALIZED: frozenset({TurnState.PERSISTED, TurnState.FAILED}),
    TurnState.PERSISTED: frozenset(),
    TurnState.FAILED: frozenset(),
}


class TurnMachine:
    def __init__(self) -> None:
        self.state = TurnState.IDLE
        self.history: list[TurnState] = [TurnState.IDLE]

    def advance(self, target: TurnState | str) -> None:
        target = TurnState(target)
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal turn transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def fail(self) -> None:
        if self.state not in (TurnState.PERSISTED, TurnState.FAILED):
            self.advance(TurnState.FAILED)


@dataclass(frozen=True)
class GameSnapshot:
    game_id: str
    session_id: str
    turn_number: int
    refs: DocumentRefs
    state: Mapping[str, Any] = field(default_factory=dict)
    locale: str = "en-US"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GameSnapshot:
        return cls(
            game_id=str(data["game_id"]),
            session_id=str(data.get("session_id") or data["game_id"]),
            turn_number=int(data.get("turn_number", 0)),
            refs=DocumentRefs.from_dict(data["refs"]),
            state=dict(data.get("state") or {}),
            locale=data.get("locale") or "en-US",
        )

    @property
    def hot(self) -> Mapping[str, Any]:
        hot = self.state.get("hot")
        return hot if isinstance(hot, Mapping) else {}

    def current_node(self) -> str | None:
        node = self.hot.get("node")
        return node if isinstance(node, str) and node else None

    def active_npcs(self) -> frozenset[str] | None:
        scene_npcs = self.hot.get("scene_npcs")
        if not isinstance(scene_npcs, list):
            return None
        return frozenset(npc for npc in scene_npcs if isinstance(npc, str))


@dataclass(frozen=True)
class TurnOutcome:
    success: bool
    turn: TurnDTO | None = None
    turn_json: str | None = None
    error_code: str | None = None
    message: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict:
        if self.success and self.turn is not None:
            return {"success": True, "turn": self.turn.model_dump(mode="json")}
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "retryable": self.retryable,
            },
        }


@dataclass
class TurnTrace:
    game_id: str
    idempotency_key: str
    turn_number: int | None = None
    pieces: list[dict] = field(default_factory=list)
    included: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    token_estimate: int | None = None
    policy_flags: list[str] = field(default_factory=list)
    injection_errors: list[str] = field(default_factory=list)
    repair_attempted: bool = False
    replayed: bool = False
    states: list[str] = field(default_factory=list)
    timings_ms: dict[str, float] = field(default_factory=dict)
    error_code: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


TraceSink = Callable[[TurnTrace], None]


def derive_rng_seed(session_id: str, turn_number: int) -> int:
    digest = hashlib.sha256(f"{session_id}:{turn_number}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


class TurnOrchestrator:
    def __init__(
        self,
        *,
        documents: DocumentStore,
        model: ModelClient,
        idempotency: IdempotencyStore | None = None,
        graphs: GraphStore | None = None,
        trace_sink: TraceSink | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.documents = documents
        self.model = model
        self.idempotency = idempotency or InMemoryIdempotencyStore()
        self.graphs = graphs
        self.trace_sink = trace_sink
        self.clock = clock

    def run_turn(
        self,
        snapshot: GameSnapshot,
        player_input: str,
        idempotency_key: str,
        config: TurnConfig | None = None,
    ) -> TurnOutcome:
        config = config or TurnConfig()
        trace = TurnTrace(game_id=snapshot.game_id, idempotency_key=idempotency_key)
        with self.idempotency.lock(snapshot.game_id, idempotency_key):
            stored = self.idempotency.get(snapshot.game_id, idempotency_key)
            if stored is not None:
                logger.info(
                    "Replaying stored turn for game %s key %s", snapshot.game_id, idempotency_key
                )
                trace.replayed = True
                outcome = _replay(stored)
                trace.turn_number = outcome.turn.turn_number if outcome.turn else None
            else:
                outcome = self._execute(snapshot, player_input, idempotency_key, config, trace)
        self._emit(trace)
        return outcome

    def _execute(
        self,
        snapshot: GameSnapshot,
        player_input: str,
        idempotency_key: str,
        config: TurnConfig,
        trace: TurnTrace,
    ) -> TurnOutcome:
        machine = TurnMachine()
        turn_number = snapshot.turn_number + 1
        trace.turn_number = turn_number
        try:
            machine.advance(TurnState.BUNDLE_BUILDING)
            with self._timed(trace, "bundle"):
                ctx = StateContext.from_snapshot(dict(snapshot.state))
                request = AssemblyRequest(
                    game_id=snapshot.game_id,
                    turn_number=turn_number,
                    player_input=player_input,
                    state=snapshot.state,
                    locale=snapshot.locale,
                    rng_seed=derive_rng_seed(snapshot.session_id, turn_number),
                    current_node=snapshot.current_node(),
                    active_npcs=snapshot.active_npcs(),
                )
                result = assemble_bundle(
                    self.documents,
                    snapshot.refs,
                    ctx,
                    request,
                    graph=self._load_graph(snapshot.refs),
                    config=config.assembler_config(),
                )
            trace.pieces = [piece.to_dict() for piece in result.pieces]
            trace.included = list(result.included)
            trace.dropped = list(result.dropped)
            trace.token_estimate = result.token_estimate
            trace.policy_flags = list(result.policy_flags)
            trace.injection_errors = list(result.injection_errors)

            machine.advance(TurnState.AWAITING_MODEL)
            with self._timed(trace, "model"):
                invocation = invoke_with_repair(
                    self.model,
                    result.bundle,
                    is_first_turn=request.is_first_turn,
                    settings=config.invocation_settings(),
                    on_stage=machine.advance,
                )

            normalized = normalize_output(invocation.output)
            machine.advance(TurnState.NORMALIZED)
            dto = TurnDTO.model_validate(
                {
                    **normalized.model_dump(),
                    "game_id": snapshot.game_id,
                    "turn_number": turn_number,
                }
            )
            turn_json = self.idempotency.put(
                snapshot.game_id, idempotency_key, turn_number, dto.model_dump_json()
            )
            machine.advance(TurnState.PERSISTED)
            logger.info(
                "Turn %s completed for game %s (%s tokens, repair=%s)",
                turn_number,
                snapshot.game_id,
                result.token_estimate,
                invocation.repair_attempted,
            )
            return TurnOutcome(
                success=True,
                turn=TurnDTO.model_validate_json(turn_json),
                turn_json=turn_json,
            )
        except TurnEngineError as exc:
            machine.fail()
            trace.error_code = exc.code
            logger.warning(
                "Turn %s failed for game %s: %s (%s)",
                turn_number,
                snapshot.game_id,
                exc.code,
                exc.message,
            )
            return TurnOutcome(
                success=False,
                error_code=exc.code,
                message=exc.public_message,
                retryable=exc.retryable,
            )
        except Exception:
            machine.fail()
            trace.error_code = INTERNAL_ERROR
            logger.exception(
                "Unexpected error in turn %s for game %s", turn_number, snapshot.game_id
            )
            return TurnOutcome(
                success=False,
                error_code=INTERNAL_ERROR,
                message=TurnEngineError.public_message,
            )
        finally:
            trace.states = [state.value for state in machine.history]
            trace.repair_attempted = TurnState.REPAIRING in machine.history

    def _load_graph(self, refs: DocumentRefs) -> ScenarioGraph | None:
        if self.graphs is None or not refs.scenario:
            return None
        doc_id, version = parse_ref(refs.scenario)
        scenario = resolve_document(self.documents, "scenario", doc_id, version)
        graph_id = ScenarioContent.model_validate(scenario.content).graph_id
        if not graph_id:
            return None
        return self.graphs.get(graph_id)

    @contextmanager
    def _timed(self, trace: TurnTrace, name: str) -> Iterator[None]:
        started = self.clock()
        try:
            yield
        finally:
            trace.timings_ms[name] = round((self.clock() - started) * 1000, 3)

    def _emit(self, trace: TurnTrace) -> None:
        if self.trace_sink is None:
            return
        try:
            self.trace_sink(trace)
        except Exception:
            logger.exception("Trace sink failed for game %s", trace.game_id)


def _replay(stored: str) -> TurnOutcome:
    return TurnOutcome(success=True, turn=TurnDTO.model_validate_json(stored), turn_json=stored)
