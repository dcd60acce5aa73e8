# calx_runtime.py

import inspect
import math
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

import pystache

from calx.calx_datatypes import (
    Environment, Builtin, LexError, ParseError, EvalError
)
from calx.calx_interpreter import Evaluator, ieee_div, ieee_pow
from calx.calx_parser import parse, parse_program
from calx.calx_printer import Printer
from calx.calx_serialize import serialize

# ===================================================================
# 1. Constants and Built-in Helpers
# ===================================================================

CONSTANTS: Dict[str, float] = {
    'pi': math.pi,
    'e': math.e,
    'tau': math.tau,
    'true': 1.0,
    'false': 0.0,
}


def seed_constants(env: Environment) -> List[str]:
    for name, value in CONSTANTS.items():
        env.define(name, value)
    return list(CONSTANTS)


def any_args(func):
    """Marks a StdLib method as taking any value, functions included."""
    func._calx_any_args = True
    return func


def signature_arity(func: Callable) -> Tuple[int, bool]:
    """Reads (minimum positional count, variadic) from a callable's signature."""
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        # Some C callables carry no signature; accept any argument count.
        return 0, True
    required = 0
    variadic = False
    for p in sig.parameters.values():
        if p.kind == p.VAR_POSITIONAL:
            variadic = True
        elif p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty:
            required += 1
    return required, variadic


def _domain(fn: Callable[[float], float], x: float) -> float:
    try:
        return fn(x)
    except ValueError:
        return math.nan


def _log_of(fn: Callable[[float], float], x: float) -> float:
    if x == 0.0:
        return -math.inf
    if x < 0.0 or x != x:
        return math.nan
    return fn(x)


def _finite_or_self(fn: Callable[[float], Any], x: float) -> float:
    if not math.isfinite(x):
        return x
    return float(fn(x))


class StdLib:
    """Python implementations of the CALX built-in functions.

    Every method named `_name` becomes the built-in `name`. Arguments are
    coerced to numbers before the method runs unless it is marked @any_args.
    """
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    def methods(self) -> List[Tuple[str, Callable]]:
        found = []
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                found.append((name[1:], member))
        return found

    def make_builtin(self, name: str, method: Callable) -> Builtin:
        arity, variadic = signature_arity(method)
        if getattr(method, '_calx_any_args', False):
            return Builtin(name, arity, method, variadic)
        evaluator = self.evaluator

        def numeric(*args):
            return method(*(evaluator.to_number(a, f"a number argument to {name}") for a in args))

        numeric.__name__ = name
        return Builtin(name, arity, numeric, variadic)

    def registry(self) -> Dict[str, Builtin]:
        return {name: self.make_builtin(name, member) for name, member in self.methods()}

    # --- Trigonometric ---
    def _sin(self, x): return _domain(math.sin, x)
    def _cos(self, x): return _domain(math.cos, x)
    def _tan(self, x): return _domain(math.tan, x)
    def _asin(self, x): return _domain(math.asin, x)
    def _acos(self, x): return _domain(math.acos, x)
    def _atan(self, x): return math.atan(x)
    def _atan2(self, y, x): return math.atan2(y, x)

    # --- Hyperbolic ---
    def _sinh(self, x):
        try:
            return math.sinh(x)
        except OverflowError:
            return math.copysign(math.inf, x)

    def _cosh(self, x):
        try:
            return math.cosh(x)
        except OverflowError:
            return math.inf

    def _tanh(self, x): return math.tanh(x)
    def _asinh(self, x): return math.asinh(x)
    def _acosh(self, x): return _domain(math.acosh, x)

    def _atanh(self, x):
        if abs(x) == 1.0:
            return math.copysign(math.inf, x)
        return _domain(math.atanh, x)

    # --- Roots and powers ---
    def _sqrt(self, x): return _domain(math.sqrt, x)
    def _cbrt(self, x): return math.cbrt(x)
    def _pow(self, b, e): return ieee_pow(b, e)
    def _hypot(self, x, y): return math.hypot(x, y)

    def _exp(self, x):
        try:
            return math.exp(x)
        except OverflowError:
            return math.inf

    # --- Logarithms ---
    def _ln(self, x): return _log_of(math.log, x)
    def _log2(self, x): return _log_of(math.log2, x)
    def _log10(self, x): return _log_of(math.log10, x)

    def _log(self, x, base):
        return ieee_div(_log_of(math.log, x), _log_of(math.log, base))

    # --- Rounding ---
    def _floor(self, x): return _finite_or_self(math.floor, x)
    def _ceil(self, x): return _finite_or_self(math.ceil, x)
    def _trunc(self, x): return _finite_or_self(math.trunc, x)

    def _round(self, x):
        # Half away from zero
        if not math.isfinite(x):
            return x
        whole = math.floor(abs(x))
        if abs(x) - whole >= 0.5:
            whole += 1
        return math.copysign(float(whole), x)

    def _fract(self, x): return x - self._trunc(x)

    # --- Misc ---
    def _abs(self, x): return abs(x)

    def _sign(self, x):
        if x != x:
            return x
        return math.copysign(1.0, x)

    def _degrees(self, x): return math.degrees(x)
    def _radians(self, x): return math.radians(x)

    def _clamp(self, x, lo, hi):
        if x != x:
            return x
        return max(lo, min(x, hi))

    def _lerp(self, a, b, t): return a + (b - a) * t

    # --- Variadic ---
    def _min(self, first, *rest):
        result = first
        for x in rest:
            if result != result or x < result:
                result = x
        return result

    def _max(self, first, *rest):
        result = first
        for x in rest:
            if result != result or x > result:
                result = x
        return result

    def _sum(self, *values): return sum(values, 0.0)

    def _avg(self, first, *rest):
        return (first + sum(rest, 0.0)) / (1 + len(rest))

    @any_args
    def _print(self, *values):
        pf = Printer().pformat
        self.evaluator.emit(" ".join(pf(v) for v in values))
        return values[-1] if values else 0.0


def new_evaluator(output: Optional[Callable[[str], Any]] = None) -> Evaluator:
    """An Evaluator wired to the standard built-in registry."""
    evaluator = Evaluator(output=output)
    evaluator.builtins = StdLib(evaluator).registry()
    return evaluator


# ===================================================================
# 2. Context and the Public Evaluation API
# ===================================================================

class Context:
    """A persistent evaluation session: a root Environment and its Evaluator."""

    def __init__(self, output: Optional[Callable[[str], Any]] = None, constants: bool = True,
                 recursion_limit: Optional[int] = None):
        self.env = Environment()
        self.evaluator = new_evaluator(output)
        if constants:
            self.evaluator.constants.update(seed_constants(self.env))
        if recursion_limit is not None:
            # Each CALX call costs about five interpreter frames.
            sys.setrecursionlimit(max(sys.getrecursionlimit(), recursion_limit))

    @property
    def output(self) -> Optional[Callable[[str], Any]]:
        return self.evaluator.output

    @output.setter
    def output(self, sink: Optional[Callable[[str], Any]]):
        self.evaluator.output = sink

    def set(self, name: str, value: float):
        self.env.define(name, float(value))

    def get(self, name: str) -> Optional[float]:
        """The number bound to name, or None when unbound or not a number."""
        owner = self.env.find_owner(name)
        if owner is None:
            return None
        value = owner.bindings[name]
        return value if isinstance(value, float) else None

    def assign(self, name: str, value: float):
        self.env.assign_existing(name, float(value))

    def lookup(self, name: str) -> Any:
        return self.evaluator.resolve_name(name, self.env)

    def register(self, name: str, func: Callable, arity: Optional[int] = None) -> Builtin:
        """Binds a host callable as a built-in function in the root scope."""
        min_args, variadic = signature_arity(func)
        if arity is not None:
            min_args, variadic = arity, False
        builtin = Builtin(name, min_args, func, variadic)
        self.env.define(name, builtin)
        return builtin

    def names(self) -> List[str]:
        return list(self.env.keys())

    def run(self, node) -> Any:
        self.evaluator.call_stack.clear()
        return self.evaluator.eval(node, self.env)


def evaluate(source: str, output: Optional[Callable[[str], Any]] = None) -> Any:
    """Evaluates a single statement in a fresh environment."""
    return Context(output=output).run(parse(source))


def evaluate_program(source: str, output: Optional[Callable[[str], Any]] = None) -> Any:
    """Evaluates a `;`/newline separated program; returns the last statement's value."""
    return Context(output=output).run(parse_program(source))


def evaluate_with_context(source: str, context: Context) -> Any:
    """Evaluates a program against a caller-owned Context, keeping its bindings."""
    return context.run(parse_program(source))


# ===================================================================
# 3. Script Runner
# ===================================================================

CATALOGUE_TEMPLATE = """\
Constants:
{{#constants}}
  {{name}} = {{value}}
{{/constants}}

Built-in functions:
{{#builtins}}
  {{name}}({{params}})
{{/builtins}}
"""

MAX_TRACE_FRAMES = 12


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Dict[str, Any]] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Parses and executes CALX source against a persistent Context."""

    def __init__(self, context: Optional[Context] = None):
        self.context = context if context is not None else Context()
        self.side_effects: List[Dict] = []
        self._forward = self.context.output
        self.context.output = self._capture_stdout

    @property
    def evaluator(self) -> Evaluator:
        return self.context.evaluator

    def _capture_stdout(self, text: str):
        self.side_effects.append({'topics': ['stdout'], 'message': text})
        if self._forward is not None:
            self._forward(text)

    def _error(self, msg: str, token: Optional[Dict[str, Any]]) -> ExecutionResult:
        self.side_effects.append({'topics': ['stderr'], 'message': msg})
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_token=token,
            side_effects=self.side_effects
        )

    def _format_parse_error(self, e, source: str) -> str:
        context = self._source_context(source, e.line, e.col)
        msg = f"{type(e).__name__}: {e}"
        return f"{msg}\n{context}" if context else msg

    def _format_runtime_error(self, e: Exception, source: str) -> Tuple[str, Optional[Dict[str, Any]]]:
        match e:
            case EvalError():
                msg = f"{type(e).__name__}: {e}"
            case RecursionError():
                msg = "RecursionError: maximum recursion depth exceeded"
            case _:
                msg = f"InternalError: {e}"

        token = None
        node = getattr(e, 'calx_node', None) or self.evaluator.current_node
        loc = getattr(node, 'loc', None)
        if loc:
            line, col = loc.get('line'), loc.get('col')
            token = {'line': line, 'col': col}
            context = self._source_context(source, line, col)
            msg = f"{msg}\n(line {line}, col {col})"
            if context:
                msg = f"{msg}\n{context}"

        st = self._format_stacktrace(getattr(e, 'calx_frames', None) or [])
        if st:
            msg += "\n" + st
        return msg, token

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self, frames: List[Dict[str, Any]]) -> str:
        if not frames:
            return ""
        pf = Printer().pformat
        parts = []
        for frame in frames:
            args = " ".join(pf(a) for a in frame.get('args') or [])
            name = frame.get('name') or '<call>'
            parts.append(f"({name} {args})" if args else f"({name})")
        if len(parts) > MAX_TRACE_FRAMES:
            hidden = len(parts) - MAX_TRACE_FRAMES
            parts = parts[:MAX_TRACE_FRAMES // 2] + [f"... {hidden} more ..."] + parts[-(MAX_TRACE_FRAMES // 2):]
        return "CALX stacktrace: " + " ".join(parts)

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script. Never raises."""
        self.side_effects = []
        self.evaluator.call_stack.clear()

        # 1. Parse
        try:
            program = parse_program(source_code)
        except (LexError, ParseError) as e:
            return self._error(self._format_parse_error(e, source_code), {'line': e.line, 'col': e.col})

        # 2. Evaluate
        try:
            value = self.context.run(program)
        except Exception as e:
            msg, token = self._format_runtime_error(e, source_code)
            return self._error(msg, token)

        return ExecutionResult(status='success', value=value, side_effects=self.side_effects)

    def describe_ast(self, source_code: str, fmt: str = 'json') -> str:
        """Serialized AST of source_code. Raises LexError/ParseError."""
        return serialize(parse_program(source_code), fmt=fmt)

    def describe_builtins(self) -> str:
        return describe_builtins()


def describe_builtins() -> str:
    """Renders the catalogue of constants and built-in functions."""
    stdlib = StdLib(new_evaluator())
    builtins = []
    for name, method in stdlib.methods():
        params = list(inspect.signature(method).parameters.values())
        shown = [f"{p.name}..." if p.kind == p.VAR_POSITIONAL else p.name for p in params]
        builtins.append({'name': name, 'params': ", ".join(shown)})
    constants = [{'name': k, 'value': Printer().pformat(v)} for k, v in CONSTANTS.items()]
    renderer = pystache.Renderer(escape=lambda u: u)
    return renderer.render(CATALOGUE_TEMPLATE, {'constants': constants, 'builtins': builtins})
