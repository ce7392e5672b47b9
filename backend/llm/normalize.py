from __future__ import annotations

import logging
import re
from typing import Union

from pydantic import ValidationError

from errors import InternalNormalizationError
from llm.schemas import ModelChoice, ModelOutput, TurnResult

logger = logging.getLogger(__name__)

FALLBACK_NARRATIVE = "The scene unfolds before you, though the details remain unclear."
FALLBACK_CHOICE_LABEL = "Continue"

AI_EMPTY_NARRATIVE = "AI_EMPTY_NARRATIVE"
AI_EMPTY_CHOICES = "AI_EMPTY_CHOICES"
AI_DUPLICATE_CHOICE = "AI_DUPLICATE_CHOICE"

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def choice_id(label: str) -> str:
    return "choice_" + _WHITESPACE.sub("_", label.lower())[:50]


def fallback_choice(label: str = FALLBACK_CHOICE_LABEL) -> dict:
    sanitized = _NON_SLUG.sub("_", label.lower()).strip("_")
    return {"id": f"choice_fallback_{sanitized or 'continue'}", "label": label}


def pick_narrative(output: ModelOutput) -> tuple[str, str]:
    candidates = (
        ("txt", output.txt),
        ("narrative", output.narrative),
        ("scene.txt", output.scene.txt if output.scene else None),
    )
    for source, text in candidates:
        if isinstance(text, str) and text.strip():
            return text.strip(), source
    return FALLBACK_NARRATIVE, "fallback"


def normalize_choices(raw: list[Union[str, ModelChoice]] | None) -> tuple[list[dict], bool]:
    choices: list[dict] = []
    seen: set[str] = set()
    duplicates = False
    for item in raw or []:
        if isinstance(item, str):
            label, given_id = item.strip(), None
        else:
            texts = [value.strip() for value in (item.label, item.text, item.choice) if value]
            label = next((text for text in texts if text), "")
            given_id = item.id.strip() if item.id and item.id.strip() else None
        if not label:
            continue
        identifier = given_id or choice_id(label)
        if identifier in seen:
            duplicates = True
            continue
        seen.add(identifier)
        choices.append({"id": identifier, "label": label})
    return choices, duplicates


def normalize_output(output: ModelOutput) -> TurnResult:
    """Map a validated model answer onto the turn shape sent to players.

    Missing narrative or choices are replaced with fixed fallbacks and each
    substitution is listed in ``warnings``.
    """
    warnings: list[str] = []
    narrative, source = pick_narrative(output)
    if source == "fallback":
        warnings.append(AI_EMPTY_NARRATIVE)
        logger.warning("Model returned no narrative; using fallback sentence")

    raw_choices = output.choices if output.choices is not None else output.optional_choices
    choices, duplicates = normalize_choices(raw_choices)
    if duplicates:
        warnings.append(AI_DUPLICATE_CHOICE)
    if not choices:
        choices = [fallback_choice()]
        warnings.append(AI_EMPTY_CHOICES)
        logger.warning("Model returned no choices; using fallback choice")

    emotion = output.emotion.strip() if output.emotion and output.emotion.strip() else "neutral"
    try:
        return TurnResult.model_validate(
            {
                "narrative": narrative,
                "narrative_source": source,
                "choices": choices,
                "actions": [act.model_dump() for act in output.acts],
                "emotion": emotion,
                "warnings": warnings,
            }
        )
    except ValidationError as exc:
        raise InternalNormalizationError(
            "Normalized turn failed validation.", errors=exc.errors(include_url=False)
        ) from exc
