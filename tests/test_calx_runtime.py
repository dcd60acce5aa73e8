import math
import sys
import pytest
from calx.calx_runtime import (
    Context, StdLib, evaluate, evaluate_program, evaluate_with_context,
    new_evaluator, signature_arity, describe_builtins,
)
from calx.calx_datatypes import (
    Builtin, Closure, UndefinedVariable, UndefinedFunction, ArityMismatch, ConstantAssignment, TypeMismatch,
)


# --- Headline behaviour ---

def test_precedence_and_power():
    assert evaluate("2 + 3 * 4") == 14
    assert evaluate("2 ^ 3 ^ 2") == 512
    assert evaluate("2 ^ 10") == 1024
    assert evaluate("2 ** 3 ** 2") == 512


def test_short_circuit_does_not_invoke_side_effect():
    ctx = Context()
    calls = []

    def sideeffect():
        calls.append(1)
        return 1.0

    ctx.register("sideeffect", sideeffect)
    assert evaluate_with_context("x = 0; (x != 0) and (sideeffect())", ctx) == 0.0
    assert calls == []
    assert evaluate_with_context("(x == 0) and (sideeffect())", ctx) == 1.0
    assert len(calls) == 1


def test_closure_captures_defining_scope():
    assert evaluate_program("multiplier = 10; scale = x => x * multiplier; scale(5)") == 50


def test_closure_capture_is_live():
    src = "k = 1; f = x => x + k; k = 5; f(0)"
    assert evaluate_program(src) == 5


def test_recursion_via_def():
    src = "def factorial(n) = if n <= 1 then 1 else n * factorial(n - 1); factorial(5)"
    assert evaluate_program(src) == 120


def test_mutual_recursion_between_defs():
    src = """
def is_even(n) = if n == 0 then 1 else is_odd(n - 1)
def is_odd(n) = if n == 0 then 0 else is_even(n - 1)
is_even(10) + is_odd(7) * 10
"""
    assert evaluate_program(src) == 11


def test_arity_mismatch_is_an_error_not_a_crash():
    with pytest.raises(ArityMismatch) as exc:
        evaluate_program("f = (a, b) => a + b; f(1)")
    assert exc.value.expected == 2
    assert exc.value.got == 1


def test_undefined_variable():
    with pytest.raises(UndefinedVariable) as exc:
        evaluate("y + 1")
    assert exc.value.name == "y"


def test_context_persistence():
    context = Context()
    context.set("x", 10.0)
    assert evaluate_with_context("y = x * 2; y + 5", context) == 25.0
    assert context.get("y") == 20.0


def test_higher_order_functions():
    src = """
def compose(f, g) = x => f(g(x))
inc = x => x + 1
double = x => x * 2
compose(inc, double)(5)
"""
    assert evaluate_program(src) == 11
    assert evaluate_program("def apply(g, x) = g(x); apply(abs, -3)") == 3
    assert evaluate_program("f = sqrt; f(9)") == 3


def test_evaluate_returns_function_values():
    fn = evaluate("x => x")
    assert isinstance(fn, Closure)
    assert isinstance(evaluate("max"), Builtin)


def test_evaluate_accepts_a_single_statement_only():
    from calx.calx_datatypes import ParseError
    with pytest.raises(ParseError):
        evaluate("a = 1; a")


def test_ieee_division_and_modulo():
    assert evaluate("1 / 0") == math.inf
    assert evaluate("-1 / 0") == -math.inf
    assert math.isnan(evaluate("0 / 0"))
    assert math.isnan(evaluate("5 % 0"))
    assert evaluate("-7 % 3") == -1
    assert evaluate("7 % -3") == 1
    assert evaluate("7.5 % 2") == 1.5


def test_constants_are_seeded():
    assert evaluate("pi") == math.pi
    assert evaluate("e") == math.e
    assert evaluate("tau") == math.tau
    assert evaluate("true") == 1.0
    assert evaluate("false") == 0.0


def test_error_aborts_remaining_statements():
    ctx = Context()
    with pytest.raises(UndefinedVariable):
        evaluate_with_context("a = 1; b = zzz; c = 3", ctx)
    assert ctx.get("a") == 1.0
    assert ctx.get("b") is None
    assert ctx.get("c") is None


def test_unbounded_recursion_surfaces_as_recursion_error():
    with pytest.raises(RecursionError):
        evaluate_program("def f(n) = f(n + 1); f(0)")


# --- Built-in library ---

@pytest.mark.parametrize("source,expected", [
    ("sqrt(16)", 4.0),
    ("cbrt(27)", 3.0),
    ("pow(2, 8)", 256.0),
    ("hypot(3, 4)", 5.0),
    ("exp(0)", 1.0),
    ("ln(e)", 1.0),
    ("log2(8)", 3.0),
    ("log10(1000)", 3.0),
    ("log(8, 2)", 3.0),
    ("atan2(1, 1)", math.pi / 4),
    ("sin(0)", 0.0),
    ("cos(0)", 1.0),
    ("tanh(0)", 0.0),
    ("degrees(pi)", 180.0),
    ("radians(180)", math.pi),
    ("floor(-1.5)", -2.0),
    ("ceil(-1.5)", -1.0),
    ("trunc(-1.5)", -1.0),
    ("fract(1.25)", 0.25),
    ("abs(-3)", 3.0),
    ("clamp(5, 0, 3)", 3.0),
    ("clamp(-2, 0, 3)", 0.0),
    ("lerp(0, 10, 0.25)", 2.5),
    ("min(3, 1, 2)", 1.0),
    ("max(3, 1, 2)", 3.0),
    ("sum()", 0.0),
    ("sum(1, 2, 3.5)", 6.5),
    ("avg(1, 2, 3)", 2.0),
])
def test_builtin_values(source, expected):
    assert evaluate(source) == pytest.approx(expected)


def test_round_is_half_away_from_zero():
    assert evaluate("round(2.5)") == 3.0
    assert evaluate("round(-2.5)") == -3.0
    assert evaluate("round(0.5)") == 1.0
    assert evaluate("round(1.4)") == 1.0
    assert evaluate("round(0.49999999999999994)") == 0.0


def test_sign():
    assert evaluate("sign(-4)") == -1.0
    assert evaluate("sign(4)") == 1.0
    assert evaluate("sign(-0)") == -1.0
    assert evaluate("sign(0)") == 1.0
    assert math.isnan(evaluate("sign(0 / 0)"))


def test_clamp_with_inverted_bounds_returns_lo():
    assert evaluate("clamp(1, 5, 2)") == 5.0


def test_min_max_ignore_nan():
    assert evaluate("max(0 / 0, 2)") == 2.0
    assert evaluate("min(4, 0 / 0, 2)") == 2.0
    assert math.isnan(evaluate("min(0 / 0, 0 / 0)"))


def test_domain_pole_and_overflow_follow_ieee():
    assert math.isnan(evaluate("sqrt(-1)"))
    assert math.isnan(evaluate("asin(2)"))
    assert math.isnan(evaluate("acosh(0.5)"))
    assert math.isnan(evaluate("ln(-1)"))
    assert math.isnan(evaluate("sin(1e999)"))
    assert evaluate("ln(0)") == -math.inf
    assert evaluate("log10(0)") == -math.inf
    assert evaluate("atanh(1)") == math.inf
    assert evaluate("atanh(-1)") == -math.inf
    assert evaluate("exp(1000)") == math.inf
    assert evaluate("sinh(1000)") == math.inf
    assert evaluate("sinh(-1000)") == -math.inf
    assert evaluate("cosh(1000)") == math.inf
    assert evaluate("floor(1e999)") == math.inf
    assert math.isnan(evaluate("fract(1e999)"))


def test_builtin_arity_is_checked():
    with pytest.raises(ArityMismatch):
        evaluate("sin(1, 2)")
    with pytest.raises(ArityMismatch) as exc:
        evaluate("min()")
    assert exc.value.variadic is True
    with pytest.raises(ArityMismatch):
        evaluate("avg()")


def test_numeric_builtins_reject_functions():
    with pytest.raises(TypeMismatch):
        evaluate("sin(sqrt)")


def test_print_writes_to_sink_and_returns_last_argument():
    out = []
    assert evaluate_program("print(1, 2.5); print()", output=out.append) == 0.0
    assert out == ["1 2.5", ""]
    assert evaluate("print(7)", output=out.append) == 7.0


def test_print_formats_functions():
    out = []
    evaluate_program("def sq(x) = x * x; print(sq, sqrt)", output=out.append)
    assert out == ["<fn sq(x)> <builtin sqrt/1>"]


def test_print_without_sink_discards_output(capsys):
    assert evaluate("print(1)") == 1.0
    assert capsys.readouterr().out == ""


def test_parameters_shadow_builtins_and_constants():
    assert evaluate_program("def f(sin) = sin + 1; f(2)") == 3
    assert evaluate_program("def area(pi) = pi * 2; area(5)") == 10
    assert evaluate("(e => e * e)(3)") == 9


@pytest.mark.parametrize("source, name", [
    ("pi = 5", "pi"),
    ("tau = 1", "tau"),
    ("true = 0", "true"),
    ("sin = 5", "sin"),
    ("def sin(x) = 42", "sin"),
    ("def print(x) = x", "print"),
])
def test_constants_and_builtins_cannot_be_assigned(source, name):
    with pytest.raises(ConstantAssignment) as exc:
        evaluate_program(source)
    assert exc.value.name == name
    assert str(exc.value) == f"cannot assign to constant '{name}'"


def test_constant_assignment_stops_the_program():
    ctx = Context()
    with pytest.raises(ConstantAssignment):
        evaluate_with_context("a = 1; pi = 3; b = 2", ctx)
    assert ctx.get("a") == 1.0
    assert ctx.get("b") is None
    assert ctx.get("pi") == math.pi


def test_context_without_constants_allows_assigning_their_names():
    ctx = Context(constants=False)
    assert evaluate_with_context("pi = 3; pi * 2", ctx) == 6
    with pytest.raises(ConstantAssignment):
        evaluate_with_context("sqrt = 3", ctx)


def test_host_api_can_still_rebind_constants():
    ctx = Context()
    ctx.set("pi", 3)
    assert evaluate_with_context("pi", ctx) == 3


def test_recursion_limit_never_lowers_interpreter_limit(monkeypatch):
    monkeypatch.setattr(sys, "getrecursionlimit", lambda: 1000)
    limits = []
    monkeypatch.setattr(sys, "setrecursionlimit", limits.append)
    Context(recursion_limit=10000)
    Context(recursion_limit=10)
    assert limits == [10000, 1000]


def test_deep_recursion_with_raised_limit():
    previous = sys.getrecursionlimit()
    try:
        ctx = Context(recursion_limit=10000)
        source = "def s(n) = if n <= 0 then 0 else 1 + s(n - 1); s(500)"
        assert evaluate_with_context(source, ctx) == 500
    finally:
        sys.setrecursionlimit(previous)


def test_undefined_function():
    with pytest.raises(UndefinedFunction):
        evaluate("frobnicate(1)")


def test_registry_is_built_from_stdlib_signatures():
    evaluator = new_evaluator()
    registry = StdLib(evaluator).registry()
    assert registry["sin"].arity == 1 and not registry["sin"].variadic
    assert registry["atan2"].arity == 2
    assert registry["clamp"].arity == 3
    assert registry["min"].arity == 1 and registry["min"].variadic
    assert registry["sum"].arity == 0 and registry["sum"].variadic
    assert registry["print"].arity == 0 and registry["print"].variadic
    assert "make_builtin" not in registry
    assert set(evaluator.builtins) == set(registry)


def test_signature_arity():
    assert signature_arity(lambda a, b: a) == (2, False)
    assert signature_arity(lambda a, b=1: a) == (1, False)
    assert signature_arity(lambda a, *rest: a) == (1, True)


def test_describe_builtins_lists_catalogue():
    text = describe_builtins()
    assert "pi = 3.141592653589793" in text
    assert "atan2(y, x)" in text
    assert "min(first, rest...)" in text
    assert "sum(values...)" in text


# --- Context ---

def test_context_register_host_function():
    ctx = Context()
    ctx.register("double", lambda x: x * 2)
    assert evaluate_with_context("double(4)", ctx) == 8.0
    with pytest.raises(ArityMismatch):
        evaluate_with_context("double(1, 2)", ctx)


def test_context_register_explicit_arity_and_int_results():
    ctx = Context()
    ctx.register("three", lambda *a: 3, arity=0)
    result = evaluate_with_context("three()", ctx)
    assert result == 3.0 and isinstance(result, float)


def test_context_get_returns_none_for_unbound_or_function():
    ctx = Context()
    evaluate_with_context("f = x => x", ctx)
    assert ctx.get("nothing") is None
    assert ctx.get("f") is None
    assert isinstance(ctx.lookup("f"), Closure)
    assert isinstance(ctx.lookup("sqrt"), Builtin)


def test_context_assign_requires_existing_binding():
    ctx = Context()
    ctx.set("x", 1)
    ctx.assign("x", 2)
    assert ctx.get("x") == 2.0
    with pytest.raises(UndefinedVariable):
        ctx.assign("ghost", 1)


def test_context_without_constants():
    ctx = Context(constants=False)
    assert ctx.names() == []
    with pytest.raises(UndefinedVariable):
        evaluate_with_context("pi", ctx)


def test_context_names_and_persistence_across_calls():
    ctx = Context()
    evaluate_with_context("def sq(x) = x * x", ctx)
    evaluate_with_context("a = sq(3)", ctx)
    assert evaluate_with_context("a + 1", ctx) == 10.0
    assert {"pi", "e", "tau", "true", "false", "sq", "a"} <= set(ctx.names())


def test_context_output_sink():
    out = []
    ctx = Context(output=out.append)
    evaluate_with_context("print(1 + 1)", ctx)
    assert out == ["2"]
