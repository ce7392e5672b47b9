from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Callable

from pydantic import ValidationError

from errors import ModelResponseMalformed
from llm.client import ModelClient, extract_json
from llm.schemas import MAX_ACTS, MAX_CHOICES, TIME_ADVANCE, ModelOutput

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are the narrator of an interactive story. "
    "The user message is a JSON bundle with the sections contract, ruleset, modules, world, "
    "scenario, npcs, state and input. Follow the contract section exactly. "
    "Return exactly one JSON object and nothing else, using only these keys: "
    "{"
    '"scn": "string", '
    '"txt": "string", '
    f'"choices": [{{"id": "string", "label": "string"}}] (at most {MAX_CHOICES}), '
    f'"acts": [{{"type": "string", "data": {{"any": "json"}}}}] (at most {MAX_ACTS}), '
    '"val": "string|null", '
    '"emotion": "string|null"'
    "}. "
    "No prose, no markdown, no extra keys."
)
FIRST_TURN_RULE = f" This is the first turn: do not emit a {TIME_ADVANCE} act."
LATER_TURN_RULE = f" Emit exactly one {TIME_ADVANCE} act for this turn."


@dataclass(frozen=True)
class InvocationSettings:
    temperature: float = 0.7
    repair_temperature: float = 0.2
    timeout: float | None = None


@dataclass
class ModelInvocation:
    output: ModelOutput
    raw: str
    repair_attempted: bool = False
    errors: list[str] = field(default_factory=list)


def system_instruction(is_first_turn: bool) -> str:
    return SYSTEM_INSTRUCTION + (FIRST_TURN_RULE if is_first_turn else LATER_TURN_RULE)


def build_messages(bundle: dict, *, is_first_turn: bool) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_instruction(is_first_turn)},
        {"role": "user", "content": json.dumps(bundle, ensure_ascii=False)},
    ]


def build_repair_messages(
    bundle: dict,
    *,
    is_first_turn: bool,
    error: str,
    raw_output: str,
) -> list[dict[str, str]]:
    system = system_instruction(is_first_turn)
    system += f" Previous output invalid: {error}. Return JSON only."
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": json.dumps(bundle, ensure_ascii=False)},
        {"role": "assistant", "content": raw_output},
    ]


def contract_violations(output: ModelOutput, *, is_first_turn: bool) -> list[str]:
    time_acts = sum(1 for act in output.acts if act.type == TIME_ADVANCE)
    if is_first_turn and time_acts:
        return [f"{TIME_ADVANCE} acts are forbidden on the first turn"]
    if not is_first_turn and time_acts != 1:
        return [f"exactly one {TIME_ADVANCE} act is required, found {time_acts}"]
    return []


def parse_output(content: str, *, is_first_turn: bool) -> ModelOutput:
    output = ModelOutput.model_validate(extract_json(content))
    problems = contract_violations(output, is_first_turn=is_first_turn)
    if problems:
        raise ValueError("; ".join(problems))
    return output


def invoke_with_repair(
    client: ModelClient,
    bundle: dict,
    *,
    is_first_turn: bool,
    settings: InvocationSettings | None = None,
    on_stage: Callable[[str], None] | None = None,
) -> ModelInvocation:
    """Call the model once and, if its answer is unusable, once more with the error.

    Timeouts and transport errors from the client propagate unchanged. ``on_stage``
    is told when a response enters validation and when a repair starts.
    """
    settings = settings or InvocationSettings()
    notify = on_stage or (lambda stage: None)
    raw = client.complete(
        build_messages(bundle, is_first_turn=is_first_turn),
        temperature=settings.temperature,
        timeout=settings.timeout,
    )
    notify("validating")
    try:
        return ModelInvocation(output=parse_output(raw, is_first_turn=is_first_turn), raw=raw)
    except (ValidationError, ValueError) as exc:
        first_error = describe_error(exc)

    logger.warning("Model output invalid, attempting repair: %s", first_error)
    notify("repairing")
    repaired = client.complete(
        build_repair_messages(
            bundle, is_first_turn=is_first_turn, error=first_error, raw_output=raw
        ),
        temperature=settings.repair_temperature,
        timeout=settings.timeout,
    )
    notify("validating")
    try:
        output = parse_output(repaired, is_first_turn=is_first_turn)
    except (ValidationError, ValueError) as exc:
        second_error = describe_error(exc)
        logger.warning("Model output still invalid after repair: %s", second_error)
        raise ModelResponseMalformed(
            "Model output failed validation after one repair attempt.",
            errors=[first_error, second_error],
        ) from exc
    return ModelInvocation(
        output=output, raw=repaired, repair_attempted=True, errors=[first_error]
    )


def describe_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        parts = []
        for error in exc.errors():
            loc = ".".join(str(part) for part in error.get("loc", ()))
            parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
        return "; ".join(parts)
    return str(exc)
