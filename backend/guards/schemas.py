from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from errors import GuardInvalid

Operand = Union[str, int, float, bool, None]
FlagScope = Literal["story", "player", "world"]


class AllGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["all"]
    guards: list[Guard] = Field(default_factory=list)


class AnyGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["any"]
    guards: list[Guard] = Field(default_factory=list)


class NotGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["not"]
    guard: Guard


class CompareGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["eq", "neq", "gte", "gt", "lte", "lt"]
    left: Operand
    right: Operand


class InGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["in"]
    value: Operand
    options: list[Operand]


class IncludesGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["includes"]
    collection: Union[str, list[Operand]]
    value: Operand


class FlagGuard(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    op: Literal["flag"]
    scope: FlagScope
    key: str = Field(min_length=1)
    value: bool = True


Guard = Annotated[
    Union[AllGuard, AnyGuard, NotGuard, CompareGuard, InGuard, IncludesGuard, FlagGuard],
    Field(discriminator="op"),
]

AllGuard.model_rebuild()
AnyGuard.model_rebuild()
NotGuard.model_rebuild()

_GUARD_ADAPTER: TypeAdapter[Guard] = TypeAdapter(Guard)


def parse_guard(data: object, *, where: str | None = None) -> Guard:
    try:
        return _GUARD_ADAPTER.validate_python(data)
    except ValidationError as exc:
        location = where or "guard"
        raise GuardInvalid(
            f"Invalid guard at {location}: {_first_error(exc)}",
            guard_path=location,
        ) from exc


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
