from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, ValidationError, field_validator

from assembler.sections import SECTION_ORDER
from errors import DocumentInvalid
from guards.schemas import Guard

DOCUMENT_KINDS: tuple[str, ...] = (
    "contract",
    "ruleset",
    "world",
    "adventure",
    "npc",
    "scenario",
    "injection_map",
)


class ContractContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    instructions: list[str] = Field(default_factory=list)
    output_keys: list[str] = Field(default_factory=lambda: ["txt", "choices", "acts"])
    acts_catalog: list[str] = Field(default_factory=list)
    notes: dict[str, JsonValue] = Field(default_factory=dict)


class RulesetContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    rules: dict[str, JsonValue] = Field(default_factory=dict)
    choices_policy: str | None = None
    txt_policy: str | None = None
    ticks_per_turn: int = Field(default=1, ge=1)


class WorldLocation(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str = Field(min_length=1)
    name: str
    summary: str = ""


class WorldContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    summary: str = ""
    tone: list[str] = Field(default_factory=list)
    lore: dict[str, JsonValue] = Field(default_factory=dict)
    locations: list[WorldLocation] = Field(default_factory=list)


class AdventureModule(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    id: str = Field(min_length=1)
    summary: str = ""
    enabled: bool = True
    params: dict[str, JsonValue] = Field(default_factory=dict)


class AdventureContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    synopsis: str = ""
    opening: str | None = None
    modules: list[AdventureModule] = Field(default_factory=list)


class NpcStyle(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)

    voice: str = ""
    speech_register: str | None = Field(default=None, alias="register")


class NpcContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    archetype: str | None = None
    summary: str = ""
    traits: list[str] = Field(default_factory=list)
    style: NpcStyle | None = None
    visible_if: Guard | None = None


class ScenarioContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    name: str = Field(min_length=1)
    summary: str = ""
    objectives: list[str] = Field(default_factory=list)
    graph_id: str | None = None


class InjectionFallback(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)

    if_missing: JsonValue = Field(alias="ifMissing")


class InjectionLimit(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    units: Literal["count", "tokens"]
    max: int = Field(ge=0)


class InjectionRule(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)

    source: str = Field(alias="from", min_length=1)
    to: str = Field(min_length=1)
    skip_if_empty: bool = Field(default=False, alias="skipIfEmpty")
    fallback: InjectionFallback | None = None
    limit: InjectionLimit | None = None

    @field_validator("source", "to")
    @classmethod
    def _absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @field_validator("to")
    @classmethod
    def _known_section(cls, value: str) -> str:
        section = value.strip("/").split("/", 1)[0]
        if section not in SECTION_ORDER:
            raise ValueError(f"target must start with a bundle section, got '{section}'")
        return value


class InjectionMapContent(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    rules: list[InjectionRule] = Field(default_factory=list)


DocumentContent = Union[
    ContractContent,
    RulesetContent,
    WorldContent,
    AdventureContent,
    NpcContent,
    ScenarioContent,
    InjectionMapContent,
]

CONTENT_SCHEMAS: dict[str, type[BaseModel]] = {
    "contract": ContractContent,
    "ruleset": RulesetContent,
    "world": WorldContent,
    "adventure": AdventureContent,
    "npc": NpcContent,
    "scenario": ScenarioContent,
    "injection_map": InjectionMapContent,
}


@dataclass(frozen=True)
class Document:
    kind: str
    id: str
    version: str
    content: dict
    hash: str
    active: bool = False

    @property
    def ref(self) -> str:
        return f"{self.id}@{self.version}"

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.id}@{self.version}"


def validate_document(
    kind: str,
    content: object,
    *,
    doc_id: str | None = None,
    version: str | None = None,
) -> DocumentContent:
    schema = CONTENT_SCHEMAS.get(kind)
    if schema is None:
        raise DocumentInvalid(
            f"Unknown document kind '{kind}'.", kind=kind, doc_id=doc_id, version=version
        )
    try:
        return schema.model_validate(content)
    except ValidationError as exc:
        raise DocumentInvalid(
            f"{kind} document {doc_id or '?'}@{version or '?'} is invalid: "
            f"{exc.error_count()} error(s)",
            kind=kind,
            doc_id=doc_id,
            version=version,
            errors=[_describe(error) for error in exc.errors()],
        ) from exc


def normalized_content(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def parse_ref(ref: str) -> tuple[str, str | None]:
    doc_id, sep, version = ref.partition("@")
    if not doc_id:
        raise ValueError(f"Invalid document reference '{ref}'.")
    return doc_id, (version or None) if sep else None


def _describe(error: dict) -> str:
    loc = ".".join(str(part) for part in error.get("loc", ()))
    return f"{loc}: {error.get('msg')}" if loc else str(error.get("msg"))
