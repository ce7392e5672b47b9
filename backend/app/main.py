from typing import Any

from fastapi import Body, FastAPI, HTTPException
from pydantic import BaseModel, Field

from db import SessionLocal, check_db_connection
from documents.hashing import content_hash
from documents.schemas import DOCUMENT_KINDS, normalized_content, validate_document
from documents.store import SqlDocumentStore
from errors import DocumentInvalid, GraphInvalid
from llm.client import create_model_client
from scenario.lint import has_errors
from scenario.store import ScenarioGraphService, SqlGraphStore
from turns.idempotency import KeyedLocks, SqlIdempotencyStore
from turns.orchestrator import GameSnapshot, TurnOrchestrator
from turns.settings import Settings

app = FastAPI(title="turn-engine")

# Shared so concurrent requests with one key wait on the same lock.
_turn_locks = KeyedLocks()

ERROR_STATUS = {
    "DOCUMENT_NOT_FOUND": 404,
    "DOCUMENT_INVALID": 422,
    "GRAPH_INVALID": 422,
    "BUNDLE_OVER_BUDGET": 422,
    "MODEL_TIMEOUT": 504,
    "MODEL_UNAVAILABLE": 503,
    "MODEL_RESPONSE_MALFORMED": 502,
    "INTERNAL_NORMALIZATION_ERROR": 500,
    "INTERNAL_ERROR": 500,
}


def _settings() -> Settings:
    return Settings.from_env()


def _orchestrator() -> TurnOrchestrator:
    return TurnOrchestrator(
        documents=SqlDocumentStore(SessionLocal),
        model=create_model_client(_settings().model_provider),
        idempotency=SqlIdempotencyStore(SessionLocal, _turn_locks),
        graphs=SqlGraphStore(SessionLocal),
    )


def _graph_service() -> ScenarioGraphService:
    return ScenarioGraphService(SqlGraphStore(SessionLocal))


class TurnConfigOverrides(BaseModel):
    max_tokens: int | None = Field(default=None, gt=0)
    max_active_npcs: int | None = Field(default=None, ge=0)
    temperature: float | None = Field(default=None, ge=0, le=2)
    module_overrides: dict[str, bool] | None = None


class TurnRequest(BaseModel):
    idempotency_key: str = Field(min_length=1, max_length=200)
    input: str
    session_id: str | None = None
    turn_number: int = Field(default=0, ge=0)
    locale: str = "en-US"
    refs: dict[str, Any]
    state: dict[str, Any] = Field(default_factory=dict)
    config: TurnConfigOverrides | None = None


@app.get("/health")
def health() -> dict:
    try:
        check_db_connection()
    except Exception as exc:
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok"}


@app.post("/games/{game_id}/turns")
def take_turn(game_id: str, payload: TurnRequest) -> dict:
    try:
        snapshot = GameSnapshot.from_dict(
            {
                "game_id": game_id,
                "session_id": payload.session_id,
                "turn_number": payload.turn_number,
                "locale": payload.locale,
                "refs": payload.refs,
                "state": payload.state,
            }
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid game snapshot: {exc}") from exc

    overrides = payload.config.model_dump(exclude_none=True) if payload.config else {}
    outcome = _orchestrator().run_turn(
        snapshot,
        payload.input,
        payload.idempotency_key,
        _settings().turn_config(**overrides),
    )
    if not outcome.success:
        raise HTTPException(
            status_code=ERROR_STATUS.get(outcome.error_code or "", 500),
            detail=outcome.to_dict()["error"],
        )
    return outcome.to_dict()


@app.put("/scenario-graphs/{graph_id}")
def put_scenario_graph(graph_id: str, graph: dict[str, Any] = Body(...)) -> dict:
    service = _graph_service()
    try:
        stored = service.set_graph(graph_id, graph)
    except GraphInvalid as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": exc.code, "problems": exc.problems},
        ) from exc
    issues = service.lint_graph(stored, graph_id=graph_id)
    return {
        "graph_id": graph_id,
        "nodes": len(stored.nodes),
        "lint": [issue.to_dict() for issue in issues],
    }


@app.post("/scenario-graphs/lint")
def lint_scenario_graph(graph: dict[str, Any] = Body(...)) -> dict:
    try:
        issues = _graph_service().lint_graph(graph)
    except GraphInvalid as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": exc.code, "problems": exc.problems},
        ) from exc
    return {"ok": not has_errors(issues), "issues": [issue.to_dict() for issue in issues]}


@app.post("/documents/{kind}/validate")
def validate_document_preview(kind: str, content: dict[str, Any] = Body(...)) -> dict:
    if kind not in DOCUMENT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown document kind '{kind}'")
    try:
        model = validate_document(kind, content)
    except DocumentInvalid as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": exc.code, "errors": exc.context.get("errors", [])},
        ) from exc
    return {"kind": kind, "hash": content_hash(normalized_content(model))}
