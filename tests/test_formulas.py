"""Tests for the rule value formula language."""

import pytest

from pf2e_engine.rules.formulas import (
    BinaryOp,
    Call,
    Number,
    Reference,
    UnaryOp,
    compile_value,
    evaluate_formula,
    parse_formula,
)


def resolver(values: dict):
    def resolve(path: str) -> float:
        return values[path]
    return resolve


ACTOR = resolver({
    "actor.level": 9,
    "actor.system.proficiencies.defenses.medium.rank": 2,
    "item.badge.value": 3,
})


class TestParsing:
    def test_number(self):
        assert parse_formula("3") == Number(3)

    def test_reference(self):
        assert parse_formula("@actor.level") == Reference("actor.level")

    def test_precedence(self):
        expr = parse_formula("1 + 2 * 3")
        assert isinstance(expr, BinaryOp)
        assert expr.op == "+"
        assert expr.right == BinaryOp("*", Number(2), Number(3))

    def test_call(self):
        expr = parse_formula("max(@actor.level, 1)")
        assert expr == Call("max", (Reference("actor.level"), Number(1)))

    def test_malformed_parses_to_zero(self):
        assert parse_formula("max(1,") == Number(0)
        assert parse_formula("1 $ 2") == Number(0)

    def test_deep_nesting_parses_to_zero(self):
        text = "(" * 5000 + "1" + ")" * 5000
        assert parse_formula(text) == Number(0)
        assert compile_value(text) == Number(0)
        assert evaluate_formula(text, ACTOR) == 0

    def test_compile_value_passthrough(self):
        assert compile_value(2) == Number(2)
        assert compile_value(True) == Number(1)
        assert compile_value(None) == Number(0)


class TestEvaluation:
    def test_deep_tree_evaluates_to_zero(self):
        expr = Number(1)
        for _ in range(10_000):
            expr = UnaryOp("-", expr)
        assert evaluate_formula(expr, ACTOR) == 0

    @pytest.mark.parametrize("text, expected", [
        ("@actor.level", 9),
        ("max(@actor.system.proficiencies.defenses.medium.rank, 1)", 2),
        ("min(@actor.level, 4)", 4),
        ("ternary(gte(@actor.level,13),2,1)", 1),
        ("ternary(gte(@actor.level,9),2,1)", 2),
        ("@actor.level + clamp(-2, floor((@actor.level - 7) / 2), 0)", 9),
        ("floor(@actor.level / 2)", 4),
        ("-@item.badge.value", -3),
        ("(1 + 2) * 3", 9),
    ])
    def test_formulas(self, text, expected):
        assert evaluate_formula(text, ACTOR) == expected

    def test_clamp_is_order_independent(self):
        assert evaluate_formula("clamp(5, 1, 3)", ACTOR) == 3
        assert evaluate_formula("clamp(1, 5, 3)", ACTOR) == 3

    def test_division_by_zero_is_zero(self):
        assert evaluate_formula("4 / 0", ACTOR) == 0

    def test_result_is_floored(self):
        assert evaluate_formula("7 / 2", ACTOR) == 3
        assert evaluate_formula("-7 / 2", ACTOR) == -4

    def test_unknown_reference_is_zero(self):
        assert evaluate_formula("@actor.nothing + 1", ACTOR) == 1

    def test_unknown_function_is_zero(self):
        assert evaluate_formula("sqrt(16)", ACTOR) == 0

    def test_plain_numbers(self):
        assert evaluate_formula(4, ACTOR) == 4
        assert evaluate_formula("2", ACTOR) == 2
        assert evaluate_formula(None, ACTOR) == 0
