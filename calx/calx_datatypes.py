"""
Defines the core data types for the CALX language runtime.

This module provides the token type produced by the lexer, the AST node
classes produced by the parser, the Environment scope chain, the function
values the evaluator works with, and the error taxonomy shared by every stage.
"""

from abc import ABC
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Callable
import collections.abc


# =================================================================
# Errors
# =================================================================

class CalxError(Exception):
    """Base class for every error raised by the CALX core."""
    pass


class LexError(CalxError):
    """Raised when the lexer meets a character that starts no token."""
    def __init__(self, char: str, position: int, line: int = 1, col: int = 1):
        super().__init__(f"unexpected character {char!r} at line {line}, col {col}")
        self.char = char
        self.position = position
        self.line = line
        self.col = col


class ParseError(CalxError):
    """Raised at the first token the parser cannot accept."""
    def __init__(self, expected: str, found: 'Token'):
        what = "end of input" if found.kind == TokenKind.EOF else repr(found.text)
        super().__init__(f"expected {expected}, found {what} at line {found.line}, col {found.col}")
        self.expected = expected
        self.found = found

    @property
    def position(self) -> int:
        return self.found.position

    @property
    def line(self) -> int:
        return self.found.line

    @property
    def col(self) -> int:
        return self.found.col


class EvalError(CalxError):
    """Base class for errors raised while evaluating an AST."""
    pass


class UndefinedVariable(EvalError):
    def __init__(self, name: str):
        super().__init__(f"undefined variable '{name}'")
        self.name = name


class UndefinedFunction(EvalError):
    def __init__(self, name: str):
        super().__init__(f"undefined function '{name}'")
        self.name = name


class ArityMismatch(EvalError):
    def __init__(self, expected: int, got: int, name: Optional[str] = None, variadic: bool = False):
        who = f"'{name}'" if name else "function"
        need = f"at least {expected}" if variadic else f"{expected}"
        super().__init__(f"{who} expects {need} argument(s), got {got}")
        self.expected = expected
        self.got = got
        self.name = name
        self.variadic = variadic


class ConstantAssignment(EvalError):
    def __init__(self, name: str):
        super().__init__(f"cannot assign to constant '{name}'")
        self.name = name


class NotCallable(EvalError):
    def __init__(self, description: str):
        super().__init__(f"value is not callable: {description}")
        self.description = description


class TypeMismatch(EvalError):
    def __init__(self, expected: str, got: str):
        super().__init__(f"expected {expected}, got {got}")
        self.expected = expected
        self.got = got


# =================================================================
# Tokens
# =================================================================

class TokenKind:
    """Token kind tags produced by the lexer."""
    NUMBER = 'number'
    IDENTIFIER = 'identifier'
    OPERATOR = 'operator'
    KEYWORD = 'keyword'
    PUNCTUATION = 'punctuation'
    NEWLINE = 'newline'
    EOF = 'eof'


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    position: int
    line: int = 1
    col: int = 1
    value: Optional[float] = None

    def is_(self, kind: str, text: Optional[str] = None) -> bool:
        """True if the token has the given kind (and text, when given)."""
        return self.kind == kind and (text is None or self.text == text)


# =================================================================
# AST Nodes
# =================================================================

class Expr(ABC):
    """Abstract base class for all expression nodes.

    Every node may carry a `loc` dict ({'line': .., 'col': ..}) attached by the
    parser or transformer. Location is metadata only and never takes part in
    equality.
    """
    loc: Optional[Dict[str, int]] = None


class NumberLiteral(Expr):
    def __init__(self, value: float):
        self.value = float(value)

    def __repr__(self) -> str:
        return f"NumberLiteral({self.value!r})"

    def __eq__(self, other):
        if not isinstance(other, NumberLiteral):
            return NotImplemented
        # NaN literals only arise from deserialized trees; compare them as equal
        if self.value != self.value and other.value != other.value:
            return True
        return self.value == other.value

    def __hash__(self):
        if self.value != self.value:
            return hash((NumberLiteral, "nan"))
        return hash((NumberLiteral, self.value))


class Identifier(Expr):
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return f"Identifier<{self.name!r}>"

    def __eq__(self, other):
        return isinstance(other, Identifier) and self.name == other.name

    def __hash__(self):
        return hash(self.name)


class UnaryOp(Expr):
    """A prefix operation: `-x` or `not x` (written `!x` too)."""
    def __init__(self, op: str, operand: Expr):
        self.op = op
        self.operand = operand

    def __repr__(self) -> str:
        return f"UnaryOp({self.op!r}, {self.operand!r})"

    def __eq__(self, other):
        return isinstance(other, UnaryOp) and self.op == other.op and self.operand == other.operand

    def __hash__(self):
        return hash((UnaryOp, self.op, self.operand))


class BinOp(Expr):
    """An infix operation. `op` is stored in canonical form ('^', 'and', 'or', ...)."""
    def __init__(self, op: str, left: Expr, right: Expr):
        self.op = op
        self.left = left
        self.right = right

    def __repr__(self) -> str:
        return f"BinOp({self.op!r}, {self.left!r}, {self.right!r})"

    def __eq__(self, other):
        return (
            isinstance(other, BinOp) and
            self.op == other.op and
            self.left == other.left and
            self.right == other.right
        )

    def __hash__(self):
        return hash((BinOp, self.op, self.left, self.right))


class Conditional(Expr):
    """`if cond then a else b`."""
    def __init__(self, cond: Expr, then: Expr, otherwise: Expr):
        self.cond = cond
        self.then = then
        self.otherwise = otherwise

    def __repr__(self) -> str:
        return f"Conditional({self.cond!r}, {self.then!r}, {self.otherwise!r})"

    def __eq__(self, other):
        return (
            isinstance(other, Conditional) and
            self.cond == other.cond and
            self.then == other.then and
            self.otherwise == other.otherwise
        )

    def __hash__(self):
        return hash((Conditional, self.cond, self.then, self.otherwise))


class Call(Expr):
    def __init__(self, callee: Expr, args: List[Expr]):
        self.callee = callee
        self.args = list(args)

    def __repr__(self) -> str:
        return f"Call({self.callee!r}, {self.args!r})"

    def __eq__(self, other):
        return isinstance(other, Call) and self.callee == other.callee and self.args == other.args

    def __hash__(self):
        return hash((Call, self.callee, tuple(self.args)))


class Lambda(Expr):
    def __init__(self, params: List[str], body: Expr):
        self.params = list(params)
        self.body = body

    def __repr__(self) -> str:
        return f"Lambda({self.params!r}, {self.body!r})"

    def __eq__(self, other):
        return isinstance(other, Lambda) and self.params == other.params and self.body == other.body

    def __hash__(self):
        return hash((Lambda, tuple(self.params), self.body))


class Assignment(Expr):
    """`name = value`. A `def` statement is an Assignment whose value is a Lambda."""
    def __init__(self, name: str, value: Expr):
        self.name = name
        self.value = value

    def __repr__(self) -> str:
        return f"Assignment({self.name!r}, {self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Assignment) and self.name == other.name and self.value == other.value

    def __hash__(self):
        return hash((Assignment, self.name, self.value))


class Program(collections.abc.Sequence):
    """An ordered sequence of top-level statements."""
    loc: Optional[Dict[str, int]] = None

    def __init__(self, statements: List[Expr]):
        self.statements = list(statements)

    def __getitem__(self, index):
        return self.statements[index]

    def __len__(self) -> int:
        return len(self.statements)

    def __repr__(self) -> str:
        return f"Program({self.statements!r})"

    def __eq__(self, other):
        return isinstance(other, Program) and self.statements == other.statements

    def __hash__(self):
        return hash((Program, tuple(self.statements)))


# =================================================================
# Core Runtime Types
# =================================================================

class Environment:
    """A CALX scope: name bindings plus an optional parent scope.

    Lookups walk outward through parents. Since a child is only ever created
    from an existing parent, the chain cannot contain a cycle.
    """
    def __init__(self, parent: Optional['Environment'] = None):
        self.bindings: Dict[str, Any] = {}
        self._parent = parent

    @classmethod
    def child_of(cls, parent: 'Environment') -> 'Environment':
        return cls(parent)

    @property
    def parent(self) -> Optional['Environment']:
        return self._parent

    def define(self, name: str, value: Any):
        """Binds name in this scope only, shadowing any outer binding."""
        self.bindings[name] = value

    def find_owner(self, name: str) -> Optional['Environment']:
        """Finds the nearest scope in the chain that binds name."""
        env = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env._parent
        return None

    def lookup(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise UndefinedVariable(name)
        return owner.bindings[name]

    def assign_existing(self, name: str, value: Any):
        """Rebinds name in the nearest scope that already defines it."""
        owner = self.find_owner(name)
        if owner is None:
            raise UndefinedVariable(name)
        owner.bindings[name] = value

    def __contains__(self, name: Any) -> bool:
        return isinstance(name, str) and self.find_owner(name) is not None

    def keys(self) -> collections.abc.KeysView:
        """Returns a view of names bound in this scope only."""
        return self.bindings.keys()

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self._parent)}" if self._parent else ""
        return f"<Environment bindings=[{keys}]{parent_id}>"


class CalxFunction(ABC):
    """Abstract base class for all function values."""
    name: Optional[str] = None


class Builtin(CalxFunction):
    """A native function from the built-in registry or registered by a host.

    `arity` is the exact parameter count, or the minimum count when
    `variadic` is set.
    """
    def __init__(self, name: str, arity: int, fn: Callable[..., Any], variadic: bool = False):
        self.name = name
        self.arity = arity
        self.fn = fn
        self.variadic = variadic

    def accepts(self, argc: int) -> bool:
        return argc >= self.arity if self.variadic else argc == self.arity

    def __repr__(self) -> str:
        suffix = "+" if self.variadic else ""
        return f"<builtin {self.name}/{self.arity}{suffix}>"

    def __eq__(self, other):
        if not isinstance(other, Builtin):
            return NotImplemented
        return self.name == other.name and self.arity == other.arity and self.variadic == other.variadic

    def __hash__(self):
        return hash((self.name, self.arity, self.variadic))


class Closure(CalxFunction):
    """A user function: parameters, a body, and the scope it was created in.

    The environment is held by reference, so the closure sees later rebinding
    of captured names.
    """
    def __init__(self, params: List[str], body: Expr, env: Environment, name: Optional[str] = None):
        self.params = list(params)
        self.body = body
        self.env = env
        self.name = name

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        from calx.calx_printer import Printer
        return Printer().pformat(self)

    def __eq__(self, other):
        if not isinstance(other, Closure):
            return NotImplemented
        # Environments are not compared.
        return self.params == other.params and self.body == other.body

    def __hash__(self):
        return hash((tuple(self.params), self.body))


def is_function(value: Any) -> bool:
    return isinstance(value, CalxFunction)


def describe(value: Any) -> str:
    """A short type description of a value, used in error messages."""
    if isinstance(value, Closure):
        return f"function {value.name}" if value.name else "function"
    if isinstance(value, Builtin):
        return f"builtin {value.name}"
    if isinstance(value, float):
        return f"number {value!r}"
    return type(value).__name__
