from __future__ import annotations

import logging
import re
from typing import Any, Iterator

from guards.context import StateContext
from guards.schemas import (
    AllGuard,
    AnyGuard,
    CompareGuard,
    FlagGuard,
    Guard,
    IncludesGuard,
    InGuard,
    NotGuard,
)

logger = logging.getLogger(__name__)

MAX_GUARD_DEPTH = 4

_SEGMENT = r"[A-Za-z0-9_\-]+"
REL_PATH = re.compile(rf"^rel\.({_SEGMENT})\.({_SEGMENT})$")
INV_PATH = re.compile(rf"^inv\.player\.({_SEGMENT})\.qty$")
FLAG_PATH = re.compile(rf"^flag\.(story|player|world)\.({_SEGMENT})$")
COIN_PATH = "currency.player.coin"
CLOCK_PATH = "state.story.timeTicks"


def is_state_path(operand: Any) -> bool:
    if not isinstance(operand, str) or "." not in operand:
        return False
    if operand in (COIN_PATH, CLOCK_PATH):
        return True
    return bool(
        REL_PATH.match(operand) or INV_PATH.match(operand) or FLAG_PATH.match(operand)
    )


def resolve(operand: Any, ctx: StateContext) -> Any:
    """Resolve a state path against ``ctx``; anything else is returned as is.

    Missing state resolves to ``0`` for numeric paths and ``False`` for flags.
    """
    if not isinstance(operand, str) or "." not in operand:
        return operand
    if operand == COIN_PATH:
        return ctx.currency.get("coin", 0)
    if operand == CLOCK_PATH:
        return ctx.time_ticks
    match = REL_PATH.match(operand)
    if match:
        npc_id, stat = match.groups()
        return ctx.relationships.get(npc_id, {}).get(stat, 0)
    match = INV_PATH.match(operand)
    if match:
        return ctx.inventory.get(match.group(1), 0)
    match = FLAG_PATH.match(operand)
    if match:
        scope, key = match.groups()
        return ctx.flags.get(scope, {}).get(key, False)
    return operand


def evaluate(guard: Guard | None, ctx: StateContext, *, max_depth: int = MAX_GUARD_DEPTH) -> bool:
    if guard is None:
        return True
    depth = guard_depth(guard)
    if depth > max_depth:
        logger.warning(
            "Guard nesting of %s levels exceeds %s; evaluating to false", depth, max_depth
        )
        return False
    return _evaluate(guard, ctx)


def _evaluate(guard: Guard, ctx: StateContext) -> bool:
    if isinstance(guard, AllGuard):
        return all(_evaluate(child, ctx) for child in guard.guards)
    if isinstance(guard, AnyGuard):
        return any(_evaluate(child, ctx) for child in guard.guards)
    if isinstance(guard, NotGuard):
        return not _evaluate(guard.guard, ctx)
    if isinstance(guard, CompareGuard):
        return _compare(guard.op, resolve(guard.left, ctx), resolve(guard.right, ctx))
    if isinstance(guard, InGuard):
        value = resolve(guard.value, ctx)
        return any(_equal(value, resolve(option, ctx)) for option in guard.options)
    if isinstance(guard, IncludesGuard):
        return _includes(guard.collection, resolve(guard.value, ctx), ctx)
    if isinstance(guard, FlagGuard):
        return bool(ctx.flags.get(guard.scope, {}).get(guard.key, False)) == guard.value
    raise TypeError(f"Unsupported guard type: {type(guard).__name__}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "eq":
        return _equal(left, right)
    if op == "neq":
        return not _equal(left, right)
    if not (_is_number(left) and _is_number(right)):
        return False
    if op == "gte":
        return left >= right
    if op == "gt":
        return left > right
    if op == "lte":
        return left <= right
    if op == "lt":
        return left < right
    return False


def _includes(collection: Any, value: Any, ctx: StateContext) -> bool:
    if isinstance(collection, list):
        return any(_equal(resolve(item, ctx), value) for item in collection)
    resolved = resolve(collection, ctx)
    if isinstance(resolved, str) and isinstance(value, str):
        return value in resolved
    return False


def guard_depth(guard: Guard) -> int:
    if isinstance(guard, (AllGuard, AnyGuard)):
        return 1 + max((guard_depth(child) for child in guard.guards), default=0)
    if isinstance(guard, NotGuard):
        return 1 + guard_depth(guard.guard)
    return 1


def state_paths(guard: Guard) -> Iterator[str]:
    if isinstance(guard, (AllGuard, AnyGuard)):
        for child in guard.guards:
            yield from state_paths(child)
    elif isinstance(guard, NotGuard):
        yield from state_paths(guard.guard)
    elif isinstance(guard, CompareGuard):
        yield from _operand_paths(guard.left, guard.right)
    elif isinstance(guard, InGuard):
        yield from _operand_paths(guard.value, *guard.options)
    elif isinstance(guard, IncludesGuard):
        items = guard.collection if isinstance(guard.collection, list) else [guard.collection]
        yield from _operand_paths(guard.value, *items)
    elif isinstance(guard, FlagGuard):
        yield f"flag.{guard.scope}.{guard.key}"


def _operand_paths(*operands: Any) -> Iterator[str]:
    for operand in operands:
        if is_state_path(operand):
            yield operand
