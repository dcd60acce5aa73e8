"""
The core CALX interpreter: a tree-walking Evaluator over the AST.
"""
import math
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Set

from calx.calx_datatypes import (
    Expr, NumberLiteral, Identifier, UnaryOp, BinOp, Conditional, Call, Lambda, Assignment, Program,
    Environment, CalxFunction, Builtin, Closure,
    UndefinedVariable, UndefinedFunction, ArityMismatch, ConstantAssignment, NotCallable, TypeMismatch,
    describe,
)

TRUE = 1.0
FALSE = 0.0


def as_bool(flag: bool) -> float:
    return TRUE if flag else FALSE


def ieee_div(a: float, b: float) -> float:
    """Division with IEEE-754 results for a zero divisor."""
    if b == 0.0:
        if a == 0.0 or a != a:
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def ieee_mod(a: float, b: float) -> float:
    """Truncated remainder (sign of the dividend); nan where fmod is undefined."""
    try:
        return math.fmod(a, b)
    except ValueError:
        return math.nan


def _is_odd_integer(x: float) -> bool:
    return math.isfinite(x) and x == math.floor(x) and math.fmod(x, 2.0) != 0.0


def ieee_pow(base: float, exp: float) -> float:
    """`base ^ exp` following C pow(): overflow and poles give infinities."""
    try:
        return math.pow(base, exp)
    except OverflowError:
        if base < 0 and _is_odd_integer(exp):
            return -math.inf
        return math.inf
    except ValueError:
        if base == 0.0 and exp < 0:
            if _is_odd_integer(exp):
                return math.copysign(math.inf, base)
            return math.inf
        return math.nan


ARITHMETIC: Dict[str, Callable[[float, float], float]] = {
    '+': lambda a, b: a + b,
    '-': lambda a, b: a - b,
    '*': lambda a, b: a * b,
    '/': ieee_div,
    '%': ieee_mod,
    '^': ieee_pow,
    '==': lambda a, b: as_bool(a == b),
    '!=': lambda a, b: as_bool(a != b),
    '<': lambda a, b: as_bool(a < b),
    '>': lambda a, b: as_bool(a > b),
    '<=': lambda a, b: as_bool(a <= b),
    '>=': lambda a, b: as_bool(a >= b),
}


class Evaluator:
    """The CALX execution engine.

    `builtins` is the fixed name -> Builtin registry consulted when a name is
    not bound in the environment. `output` is the sink used by `print`.
    Names in `constants` and in `builtins` cannot be targets of assignment.
    """

    def __init__(self, builtins: Optional[Dict[str, Builtin]] = None,
                 output: Optional[Callable[[str], Any]] = None):
        self.builtins: Dict[str, Builtin] = dict(builtins or {})
        self.output = output
        self.constants: Set[str] = set()
        self.current_node = None
        self.call_stack: List[Dict[str, Any]] = []

    def _push_frame(self, name, func, args, call_site_node):
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': getattr(call_site_node, 'loc', None),
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _record_trace(self, exc: BaseException):
        """Snapshots the frames active where exc was raised, innermost last."""
        if getattr(exc, "calx_frames", None) is None:
            exc.calx_frames = [dict(frame) for frame in self.call_stack]
            exc.calx_node = self.current_node

    def _dbg(self, *parts):
        if os.environ.get("CALX_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def emit(self, text: str):
        """Writes text through the output sink, if one was supplied."""
        if self.output is not None:
            self.output(text)

    # --- Value helpers ---

    def to_number(self, value: Any, what: str = "a number") -> float:
        if isinstance(value, float):
            return value
        if isinstance(value, CalxFunction):
            raise TypeMismatch(what, describe(value))
        if isinstance(value, (int, bool)):
            return float(value)
        raise TypeMismatch(what, describe(value))

    def truthy(self, value: Any) -> bool:
        return self.to_number(value, "a number as condition") != 0.0

    def resolve_name(self, name: str, env: Environment) -> Any:
        """Looks name up in the scope chain, then in the built-in registry."""
        owner = env.find_owner(name)
        if owner is not None:
            return owner.bindings[name]
        if name in self.builtins:
            return self.builtins[name]
        raise UndefinedVariable(name)

    # --- Evaluation ---

    def eval(self, node: Any, env: Environment) -> Any:
        """Evaluates one node. The only dispatch point over node kinds."""
        self.current_node = node
        match node:
            case NumberLiteral():
                return node.value

            case Identifier():
                return self.resolve_name(node.name, env)

            case UnaryOp():
                operand = self.eval(node.operand, env)
                if node.op == '-':
                    return -self.to_number(operand)
                if node.op == 'not':
                    return as_bool(not self.truthy(operand))
                raise NotImplementedError(f"Unknown unary operator {node.op!r}")

            case BinOp(op='and'):
                if not self.truthy(self.eval(node.left, env)):
                    return FALSE
                return as_bool(self.truthy(self.eval(node.right, env)))

            case BinOp(op='or'):
                if self.truthy(self.eval(node.left, env)):
                    return TRUE
                return as_bool(self.truthy(self.eval(node.right, env)))

            case BinOp():
                fn = ARITHMETIC.get(node.op)
                if fn is None:
                    raise NotImplementedError(f"Unknown binary operator {node.op!r}")
                left = self.to_number(self.eval(node.left, env))
                right = self.to_number(self.eval(node.right, env))
                self.current_node = node
                return fn(left, right)

            case Conditional():
                if self.truthy(self.eval(node.cond, env)):
                    return self.eval(node.then, env)
                return self.eval(node.otherwise, env)

            case Call():
                return self._eval_call(node, env)

            case Lambda():
                return Closure(node.params, node.body, env)

            case Assignment():
                if node.name in self.constants or node.name in self.builtins:
                    raise ConstantAssignment(node.name)
                value = self.eval(node.value, env)
                if isinstance(value, Closure) and value.name is None:
                    value.name = node.name
                env.define(node.name, value)
                return value

            case Program():
                result = None
                for stmt in node.statements:
                    result = self.eval(stmt, env)
                return result

            case _:
                raise TypeError(f"Cannot evaluate {node!r}")

    def _eval_call(self, node: Call, env: Environment) -> Any:
        callee = node.callee
        if isinstance(callee, Identifier):
            owner = env.find_owner(callee.name)
            if owner is not None:
                func = owner.bindings[callee.name]
            elif callee.name in self.builtins:
                func = self.builtins[callee.name]
            else:
                raise UndefinedFunction(callee.name)
        else:
            func = self.eval(callee, env)
        args = [self.eval(arg, env) for arg in node.args]
        self.current_node = node
        return self.call(func, args, node)

    def call(self, func: Any, args: List[Any], call_site: Optional[Expr] = None) -> Any:
        """Calls a Closure or Builtin with already-evaluated arguments."""
        self._dbg("Evaluator.call", describe(func), "argc", len(args))
        match func:
            case Closure():
                if len(args) != func.arity:
                    raise ArityMismatch(func.arity, len(args), func.name)
                call_env = Environment.child_of(func.env)
                for param, arg in zip(func.params, args):
                    call_env.define(param, arg)
                self._dbg("Call-scope bindings", list(call_env.keys()))
                self._push_frame(func.name or '<lambda>', func, args, call_site)
                try:
                    result = self.eval(func.body, call_env)
                except Exception as e:
                    self._record_trace(e)
                    raise
                finally:
                    self._pop_frame()
                return result

            case Builtin():
                if not func.accepts(len(args)):
                    raise ArityMismatch(func.arity, len(args), func.name, func.variadic)
                self._dbg("Builtin dispatch", func.name, args)
                self._push_frame(func.name, func, args, call_site)
                try:
                    result = func.fn(*args)
                except Exception as e:
                    self._record_trace(e)
                    raise
                finally:
                    self._pop_frame()
                return self._coerce_result(result)

            case _:
                raise NotCallable(describe(func))

    def _coerce_result(self, result: Any) -> Any:
        # Host callables may hand back ints, bools or None.
        if isinstance(result, (float, CalxFunction)):
            return result
        if result is None:
            return FALSE
        return self.to_number(result, "a number from builtin")
