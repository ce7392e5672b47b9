from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator

TIME_ADVANCE = "TIME_ADVANCE"
MAX_CHOICES = 5
MAX_ACTS = 8
MAX_CHOICE_ID_LENGTH = 100


class ModelChoice(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str | None = Field(default=None, max_length=MAX_CHOICE_ID_LENGTH)
    label: str | None = None
    text: str | None = None
    choice: str | None = None


class ModelAct(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    type: str = Field(min_length=1)
    data: dict[str, JsonValue]


class ModelScene(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str | None = None
    txt: str | None = None


class ModelOutput(BaseModel):
    """Raw generator response after JSON parsing.

    ``txt`` is the current field; ``narrative`` and ``scene.txt`` are older shapes
    still accepted. At least one of them must be present.
    """

    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)

    scn: str | dict[str, JsonValue] | None = None
    txt: str | None = None
    narrative: str | None = None
    scene: ModelScene | None = None
    choices: list[Union[str, ModelChoice]] | None = Field(default=None, max_length=MAX_CHOICES)
    optional_choices: list[Union[str, ModelChoice]] | None = Field(
        default=None, alias="optional choices", max_length=MAX_CHOICES
    )
    acts: list[ModelAct] = Field(default_factory=list, max_length=MAX_ACTS)
    val: str | None = None
    emotion: str | None = Field(default=None, max_length=32)
    confidence: float | None = Field(default=None, ge=0, le=1)

    @model_validator(mode="after")
    def _has_narrative(self) -> ModelOutput:
        if self.txt is None and self.narrative is None and self.scene is None:
            raise ValueError("one of txt, narrative or scene is required")
        return self


class Choice(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str = Field(min_length=1, max_length=MAX_CHOICE_ID_LENGTH)
    label: str = Field(min_length=1)


class TurnAction(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    type: str = Field(min_length=1)
    data: dict[str, JsonValue] = Field(default_factory=dict)


class TurnResult(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    narrative: str = Field(min_length=1)
    narrative_source: Literal["txt", "narrative", "scene.txt", "fallback"]
    choices: list[Choice] = Field(min_length=1)
    actions: list[TurnAction] = Field(default_factory=list)
    emotion: str = "neutral"
    warnings: list[str] = Field(default_factory=list)


class TurnDTO(TurnResult):
    game_id: str = Field(min_length=1)
    turn_number: int = Field(ge=1)
