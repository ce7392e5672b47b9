from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

FLAG_SCOPES = ("story", "player", "world")


@dataclass(frozen=True)
class StateContext:
    """Read-only view of game state used for one guard evaluation pass."""

    relationships: dict[str, dict[str, float]] = field(default_factory=dict)
    inventory: dict[str, int] = field(default_factory=dict)
    currency: dict[str, int] = field(default_factory=dict)
    flags: dict[str, dict[str, Any]] = field(default_factory=dict)
    time_ticks: int = 0

    @classmethod
    def from_snapshot(cls, state: dict | None) -> StateContext:
        state = state if isinstance(state, dict) else {}
        hot = _bucket(state, "hot")
        warm = _bucket(state, "warm")
        return cls(
            relationships=_relationships(warm.get("relationships")),
            inventory=_inventory(hot.get("inventory")),
            currency=_numeric_map(hot.get("currency")),
            flags=_flags(hot.get("flags")),
            time_ticks=_clock_ticks(hot.get("clock")),
        )


def _bucket(state: dict, name: str) -> dict:
    value = state.get(name)
    return value if isinstance(value, dict) else {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _relationships(value: Any) -> dict[str, dict[str, float]]:
    if not isinstance(value, dict):
        return {}
    result: dict[str, dict[str, float]] = {}
    for npc_id, stats in value.items():
        if isinstance(stats, dict):
            result[str(npc_id)] = {
                str(stat): stat_value
                for stat, stat_value in stats.items()
                if _is_number(stat_value)
            }
    return result


def _inventory(value: Any) -> dict[str, int]:
    if isinstance(value, dict):
        return _numeric_map(value)
    if not isinstance(value, list):
        return {}
    result: dict[str, int] = {}
    for entry in value:
        if not isinstance(entry, dict):
            continue
        item_id = entry.get("id")
        qty = entry.get("qty", 1)
        if isinstance(item_id, str) and _is_number(qty):
            result[item_id] = result.get(item_id, 0) + qty
    return result


def _numeric_map(value: Any) -> dict[str, int]:
    if not isinstance(value, dict):
        return {}
    return {str(key): amount for key, amount in value.items() if _is_number(amount)}


def _flags(value: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(value, dict):
        return {}
    result: dict[str, dict[str, Any]] = {}
    for scope in FLAG_SCOPES:
        scoped = value.get(scope)
        if isinstance(scoped, dict):
            result[scope] = dict(scoped)
    return result


def _clock_ticks(value: Any) -> int:
    if isinstance(value, dict):
        ticks = value.get("ticks")
        if isinstance(ticks, int) and not isinstance(ticks, bool):
            return ticks
    return 0
