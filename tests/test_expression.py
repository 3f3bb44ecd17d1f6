"""
Tests for the expression language: parsing, coercions, variable access and
the built-in function library.
"""

import math

import pytest

from scenarioforge.errors import ParseError, ScenarioError
from scenarioforge.expression import (
    ExpressionContext,
    create_empty_context,
    evaluate,
    parse,
    to_number,
    to_string,
    truthy,
    validate_expression,
)
from scenarioforge.sampling import SeededRandom


@pytest.fixture
def ctx():
    return ExpressionContext(
        node={"value": 7, "label": "n"},
        inputs={"price": 50, "values": [3, 1, 2], "nested": {"a": {"b": 4}}},
        params={"rate": 0.1, "names": ["x", "y"]},
        time=12,
        iteration=3,
        nodes={"demand": {"output": 120}},
    )


# =============================================================================
# Operators
# =============================================================================

class TestOperators:

    @pytest.mark.parametrize("expr,expected", [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("10 - 4 - 3", 3),
        ("2 ^ 3 ^ 2", 512),
        ("2 * 3 ^ 2", 18),
        ("-2 ^ 2", 4),
        ("-7 % 3", -1),
        ("7 / 2", 3.5),
        ("1e3 + .5", 1000.5),
        ("!0", True),
        ("!!'x'", True),
        ("1 < 2 && 2 < 3", True),
        ("0 || 5", True),
        ("3 >= 3", True),
        ("'a' < 'b'", True),
    ])
    def test_arithmetic_and_logic(self, expr, expected):
        assert evaluate(expr) == expected

    def test_division_by_zero(self):
        assert evaluate("1 / 0") == math.inf
        assert evaluate("-1 / 0") == -math.inf
        assert math.isnan(evaluate("0 / 0"))
        assert math.isnan(evaluate("5 % 0"))

    def test_string_concatenation(self):
        assert evaluate("'a' + 1") == "a1"
        assert evaluate("1 + 2 + 'x'") == "3x"
        assert evaluate("'v' + 1.5") == "v1.5"
        assert evaluate("'n=' + null") == "n=undefined"

    def test_strict_equality(self):
        assert evaluate("1 == 1.0") is True
        assert evaluate("1 == '1'") is False
        assert evaluate("'a' != 'b'") is True
        assert evaluate("true == 1") is False

    def test_nested_ternary(self):
        assert evaluate("true ? 1 : false ? 2 : 3") == 1
        assert evaluate("false ? 1 : false ? 2 : 3") == 3
        assert evaluate("false ? 1 : true ? 2 : 3") == 2

    def test_long_sum_chain(self):
        assert evaluate(" + ".join(["1"] * 100)) == 100
        assert evaluate(" + ".join(["1"] * 5000)) == 5000

    def test_deeply_nested_parentheses(self):
        expr = "1" + " + (1" * 60 + ")" * 60
        assert evaluate(expr) == 61

    def test_array_literal_and_index(self):
        assert evaluate("[1, 2, 3][1]") == 2
        assert evaluate("[1, 2, 3][5]") is None
        assert evaluate("[]") == []
        assert evaluate("'abc'.length") == 3


# =============================================================================
# Variables
# =============================================================================

class TestVariables:

    def test_roots(self, ctx):
        assert evaluate("$inputs.price * 2", ctx) == 100
        assert evaluate("$params.rate", ctx) == 0.1
        assert evaluate("$node.value", ctx) == 7
        assert evaluate("$time", ctx) == 12
        assert evaluate("$iteration", ctx) == 3
        assert evaluate("$nodes.demand.output", ctx) == 120

    def test_bracket_access(self, ctx):
        assert evaluate("$params['rate']", ctx) == 0.1
        assert evaluate('$params["names"][1]', ctx) == "y"
        assert evaluate("$inputs.nested.a.b", ctx) == 4
        assert evaluate("$inputs.values.length", ctx) == 3

    def test_missing_paths_are_undefined(self, ctx):
        assert evaluate("$inputs.missing", ctx) is None
        assert evaluate("$inputs.missing.deeper", ctx) is None
        assert evaluate("$inputs.values[10]", ctx) is None
        assert evaluate("$inputs.values[-1]", ctx) is None
        assert evaluate("$unknown", ctx) is None
        assert math.isnan(evaluate("$inputs.missing + 1", ctx))

    def test_empty_context(self):
        assert evaluate("$inputs.x", create_empty_context()) is None
        assert evaluate("1 + 1") == 2


# =============================================================================
# Functions
# =============================================================================

class TestFunctions:

    def test_round_sqrt_abs(self):
        assert evaluate("round(sqrt(abs(-16)))") == 4

    @pytest.mark.parametrize("expr,expected", [
        ("min(3, 1, 2)", 1),
        ("max([3, 9], 2)", 9),
        ("sum([1, 2, 3])", 6),
        ("mean(2, 4, 6)", 4),
        ("avg([1, 3])", 2),
        ("median([5, 1, 3, 2])", 2.5),
        ("variance(2, 4, 4, 4, 5, 5, 7, 9)", 4),
        ("std(2, 4, 4, 4, 5, 5, 7, 9)", 2),
        ("percentile([1, 2, 3, 4, 5], 50)", 3),
        ("percentile([10, 20], 25)", 12.5),
        ("product(2, 3, 4)", 24),
        ("count([1, 2], 3)", 3),
        ("clamp(15, 0, 10)", 10),
        ("clamp(-5, 0, 10)", 0),
        ("pow(2, 10)", 1024),
        ("floor(2.7)", 2),
        ("ceil(2.1)", 3),
        ("round(2.5)", 3),
        ("round(-2.5)", -2),
        ("round(3.14159, 2)", 3.14),
        ("sign(-3)", -1),
        ("Math.sqrt(9)", 3),
        ("log10(1000)", 3),
        ("cbrt(-8)", -2),
    ])
    def test_math_and_stats(self, expr, expected):
        assert evaluate(expr) == pytest.approx(expected)

    def test_constants(self):
        assert evaluate("PI") == pytest.approx(math.pi)
        assert evaluate("Math.PI") == pytest.approx(math.pi)
        assert evaluate("E()") == pytest.approx(math.e)
        assert evaluate("Infinity") == math.inf

    def test_math_domain_errors_give_nan(self):
        assert math.isnan(evaluate("sqrt(-1)"))
        assert evaluate("log(0)") == -math.inf

    def test_statistics_propagate_non_finite_values(self):
        assert math.isnan(evaluate("sum(1/0, -1/0)"))
        assert evaluate("sum(1e308, 1e308)") == math.inf
        assert evaluate("mean(1e308, 1e308)") == math.inf
        assert evaluate("variance(1e200, -1e200)") == math.inf
        assert math.isnan(evaluate("mean(1/0, -1/0)"))

    def test_undefined_arguments_do_not_raise(self):
        assert math.isnan(evaluate("round(1.5, $inputs.missing)"))
        assert evaluate("round(1/0)") == math.inf
        assert evaluate("round(1.25, 1)") == 1.3
        assert math.isnan(evaluate("percentile([1, 2, 3], $inputs.missing)"))
        assert evaluate("slice([1, 2, 3], $inputs.missing)") == [1, 2, 3]
        assert evaluate("slice([1, 2, 3], 1, 1/0)") == [2, 3]

    @pytest.mark.parametrize("expr,expected", [
        ("length([1, 2, 3])", 3),
        ("first([4, 5])", 4),
        ("last([4, 5])", 5),
        ("slice([1, 2, 3, 4], 1, 3)", [2, 3]),
        ("reverse([1, 2])", [2, 1]),
        ("sort([3, 1, 2])", [1, 2, 3]),
        ("unique([1, 1, 2])", [1, 2]),
        ("flatten([[1], [2, 3]])", [1, 2, 3]),
        ("contains([1, 2], 2)", True),
        ("indexOf([1, 2], 2)", 1),
        ("indexOf([1, 2], 7)", -1),
    ])
    def test_arrays(self, expr, expected):
        assert evaluate(expr) == expected

    @pytest.mark.parametrize("expr,expected", [
        ("if(1 > 0, 'yes', 'no')", "yes"),
        ("and(1, true)", True),
        ("or(0, null)", False),
        ("not(0)", True),
        ("isNull(null)", True),
        ("isNumber(1)", True),
        ("isNumber('1')", False),
        ("isString('a')", True),
        ("isArray([1])", True),
        ("coalesce(null, 2, 3)", 2),
        ("concat('a', 1, true)", "a1true"),
        ("upper('ab')", "AB"),
        ("lower('AB')", "ab"),
        ("trim('  a ')", "a"),
        ("split('a,b')", ["a", "b"]),
        ("join(['a', 'b'], '-')", "a-b"),
        ("toString(2.0)", "2"),
        ("toNumber('4.5')", 4.5),
    ])
    def test_logic_and_strings(self, expr, expected):
        assert evaluate(expr) == expected

    def test_random_uses_context_stream(self):
        first = evaluate("random()", ExpressionContext(rng=SeededRandom(99)))
        second = evaluate("random()", ExpressionContext(rng=SeededRandom(99)))

        assert first == second
        assert 0 <= first < 1

    def test_evaluation_is_pure(self, ctx):
        before = dict(ctx.inputs)
        results = {evaluate("sum($inputs.values) * $params.rate", ctx) for _ in range(3)}

        assert len(results) == 1
        assert ctx.inputs == before


# =============================================================================
# Parse errors
# =============================================================================

class TestParseErrors:

    @pytest.mark.parametrize("expr", [
        "",
        "   ",
        "(1 + 2",
        "1 +",
        "1 2",
        "foo",
        "unknown(1)",
        "if(true, 1)",
        "round()",
        "1 @ 2",
        "'unterminated",
        "$node.constructor",
        "$x.__class__",
        "__import__('os')",
        "eval('1')",
        "[1, 2",
    ])
    def test_invalid(self, expr):
        with pytest.raises(ParseError):
            parse(expr)

    def test_parse_error_is_a_scenario_error(self):
        with pytest.raises(ScenarioError):
            evaluate("1 +")

    def test_parse_error_position(self):
        with pytest.raises(ParseError) as exc:
            parse("1 + @")
        assert exc.value.position == 4

    def test_validate_expression(self):
        assert validate_expression("$inputs.a * 2") == {"valid": True, "error": None}
        result = validate_expression("$inputs.a *")
        assert result["valid"] is False
        assert result["error"]


# =============================================================================
# Coercions
# =============================================================================

class TestCoercions:

    def test_to_number(self):
        assert to_number(3) == 3
        assert to_number(" 2.5 ") == 2.5
        assert to_number("") == 0
        assert to_number([]) == 0
        assert to_number([4]) == 4
        assert math.isnan(to_number("abc"))
        assert math.isnan(to_number(None))
        assert math.isnan(to_number({"a": 1}))

    def test_truthy(self):
        assert not truthy(None)
        assert not truthy(0)
        assert not truthy("")
        assert not truthy(math.nan)
        assert truthy([])
        assert truthy({})
        assert truthy("0")

    def test_to_string(self):
        assert to_string(None) == "undefined"
        assert to_string(True) == "true"
        assert to_string(3.0) == "3"
        assert to_string(math.inf) == "Infinity"
        assert to_string([1, None, 2]) == "1,,2"
