from __future__ import annotations

from typing import Any


class TurnEngineError(Exception):
    code = "INTERNAL_ERROR"
    retryable = False
    public_message = "The turn could not be completed."

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class DocumentNotFound(TurnEngineError):
    code = "DOCUMENT_NOT_FOUND"
    public_message = "Required story content is missing."

    def __init__(self, kind: str, doc_id: str, version: str | None = None) -> None:
        label = f"{doc_id}@{version}" if version else f"{doc_id} (active)"
        super().__init__(
            f"{kind} document {label} not found.",
            kind=kind,
            doc_id=doc_id,
            version=version,
        )


class DocumentInvalid(TurnEngineError):
    code = "DOCUMENT_INVALID"
    public_message = "Story content failed validation."


class GuardInvalid(DocumentInvalid):
    pass


class GraphInvalid(TurnEngineError):
    code = "GRAPH_INVALID"
    public_message = "Scenario graph failed validation."

    def __init__(self, graph_id: str | None, problems: list[str]) -> None:
        super().__init__(
            "; ".join(problems) or "Invalid scenario graph.",
            graph_id=graph_id,
            problems=list(problems),
        )
        self.problems = list(problems)


class BundleOverBudget(TurnEngineError):
    code = "BUNDLE_OVER_BUDGET"
    public_message = "The story context is too large for this turn."


class ModelTimeout(TurnEngineError):
    code = "MODEL_TIMEOUT"
    retryable = True
    public_message = "The storyteller took too long to answer. Please try again."


class ModelUnavailable(TurnEngineError):
    code = "MODEL_UNAVAILABLE"
    retryable = True
    public_message = "The storyteller is unavailable. Please try again."


class ModelResponseMalformed(TurnEngineError):
    code = "MODEL_RESPONSE_MALFORMED"
    public_message = "The storyteller returned an unreadable answer."


class InternalNormalizationError(TurnEngineError):
    code = "INTERNAL_NORMALIZATION_ERROR"
