import logging

import pytest

from errors import GuardInvalid
from guards.context import StateContext
from guards.evaluator import evaluate, guard_depth, resolve, state_paths
from guards.schemas import parse_guard

STATE = {
    "hot": {
        "inventory": [{"id": "rope", "qty": 2}, {"id": "rope", "qty": 1}],
        "currency": {"coin": 15},
        "flags": {"story": {"met_kiera": True}},
        "clock": {"ticks": 3},
    },
    "warm": {"relationships": {"kiera": {"trust": 12}}},
}


@pytest.fixture
def ctx() -> StateContext:
    return StateContext.from_snapshot(STATE)


def _eval(data, ctx) -> bool:
    return evaluate(parse_guard(data), ctx)


def _nest(op: str, leaf: dict, levels: int) -> dict:
    guard = leaf
    for _ in range(levels):
        guard = {"op": op, "guard": guard} if op == "not" else {"op": op, "guards": [guard]}
    return guard


def test_empty_all_is_true_and_empty_any_is_false(ctx) -> None:
    assert _eval({"op": "all", "guards": []}, ctx) is True
    assert _eval({"op": "any", "guards": []}, ctx) is False


def test_missing_guard_is_true(ctx) -> None:
    assert evaluate(None, ctx) is True


@pytest.mark.parametrize(
    ("operand", "expected"),
    [
        ("rel.kiera.trust", 12),
        ("rel.talan.trust", 0),
        ("inv.player.rope.qty", 3),
        ("inv.player.torch.qty", 0),
        ("currency.player.coin", 15),
        ("flag.story.met_kiera", True),
        ("flag.world.storm", False),
        ("state.story.timeTicks", 3),
        ("hello.world", "hello.world"),
        ("plain", "plain"),
        (5, 5),
    ],
)
def test_resolve_state_paths_and_literals(ctx, operand, expected) -> None:
    assert resolve(operand, ctx) == expected


def test_missing_state_defaults() -> None:
    empty = StateContext.from_snapshot({})
    assert resolve("rel.kiera.trust", empty) == 0
    assert resolve("state.story.timeTicks", empty) == 0
    assert resolve("flag.player.ready", empty) is False


def test_compare_operators(ctx) -> None:
    assert _eval({"op": "gte", "left": "rel.kiera.trust", "right": 10}, ctx)
    assert _eval({"op": "lt", "left": "currency.player.coin", "right": 20}, ctx)
    assert _eval({"op": "neq", "left": "inv.player.rope.qty", "right": 0}, ctx)
    assert not _eval({"op": "gt", "left": "abc", "right": 1}, ctx)


def test_booleans_do_not_equal_numbers(ctx) -> None:
    assert not _eval({"op": "eq", "left": "flag.story.met_kiera", "right": 1}, ctx)
    assert _eval({"op": "eq", "left": "flag.story.met_kiera", "right": True}, ctx)


def test_in_and_includes(ctx) -> None:
    assert _eval({"op": "in", "value": "currency.player.coin", "options": [10, 15]}, ctx)
    assert not _eval({"op": "in", "value": "rel.kiera.trust", "options": []}, ctx)
    assert _eval({"op": "includes", "collection": ["a", "b"], "value": "b"}, ctx)
    assert _eval({"op": "includes", "collection": "hello there", "value": "there"}, ctx)
    assert not _eval({"op": "includes", "collection": "hello", "value": "bye"}, ctx)


def test_flag_guard(ctx) -> None:
    assert _eval({"op": "flag", "scope": "story", "key": "met_kiera"}, ctx)
    assert _eval({"op": "flag", "scope": "world", "key": "storm", "value": False}, ctx)
    assert not _eval({"op": "flag", "scope": "player", "key": "met_kiera"}, ctx)


def test_depth_limit_is_inclusive(ctx) -> None:
    leaf = {"op": "all", "guards": []}
    assert _eval(_nest("all", leaf, 3), ctx) is True
    assert _eval(_nest("all", leaf, 4), ctx) is False


def test_too_deep_guard_fails_closed_even_under_not(ctx, caplog) -> None:
    deep = {"op": "not", "guard": _nest("all", {"op": "any", "guards": []}, 3)}
    assert guard_depth(parse_guard(deep)) == 5

    with caplog.at_level(logging.WARNING):
        assert _eval(deep, ctx) is False
    assert "exceeds 4" in caplog.text


def test_too_deep_branch_fails_closed_behind_deciding_sibling(ctx) -> None:
    deep = _nest("all", {"op": "flag", "scope": "story", "key": "met_kiera"}, 4)
    shortcut = {"op": "any", "guards": [{"op": "all", "guards": []}, deep]}
    negated = {
        "op": "not",
        "guard": {"op": "all", "guards": [{"op": "any", "guards": []}, deep]},
    }

    assert guard_depth(parse_guard(shortcut)) == 6
    assert _eval(shortcut, ctx) is False
    assert _eval(negated, ctx) is False


def test_unknown_operator_is_rejected() -> None:
    with pytest.raises(GuardInvalid) as excinfo:
        parse_guard({"op": "xor", "left": 1, "right": 2}, where="edges.0.guard")
    assert excinfo.value.code == "DOCUMENT_INVALID"
    assert excinfo.value.context["guard_path"] == "edges.0.guard"


def test_state_paths_lists_referenced_state() -> None:
    guard = parse_guard(
        {
            "op": "all",
            "guards": [
                {"op": "gte", "left": "rel.kiera.trust", "right": 10},
                {"op": "not", "guard": {"op": "flag", "scope": "story", "key": "x"}},
                {"op": "eq", "left": "plain", "right": "words"},
            ],
        }
    )
    assert list(state_paths(guard)) == ["rel.kiera.trust", "flag.story.x"]
