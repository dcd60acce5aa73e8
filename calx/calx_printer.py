"""
A pretty-printer for CALX ASTs and values.
"""
import math

from calx.calx_datatypes import (
    NumberLiteral, Identifier, UnaryOp, BinOp, Conditional, Call, Lambda, Assignment, Program,
    Builtin, Closure, Environment
)
from calx.calx_parser import PRECEDENCE, RIGHT_ASSOCIATIVE, UNARY_PRECEDENCE

# Calls, names and literals never need parentheses.
ATOM_PRECEDENCE = UNARY_PRECEDENCE + 1


def format_number(value: float) -> str:
    """Formats a number for display: whole numbers print without a fraction."""
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


class Printer:
    """Formats CALX objects into readable, valid CALX source strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            float: self._pformat_number,
            int: self._pformat_primitive,
            bool: self._pformat_primitive,
            type(None): self._pformat_none,
            NumberLiteral: self._pformat_number_literal,
            Identifier: self._pformat_identifier,
            UnaryOp: self._pformat_unary,
            BinOp: self._pformat_binop,
            Conditional: self._pformat_conditional,
            Call: self._pformat_call,
            Lambda: self._pformat_lambda,
            Assignment: self._pformat_assignment,
            Program: self._pformat_program,
            Closure: self._pformat_closure,
            Builtin: self._pformat_builtin,
            Environment: self._pformat_environment,
        }

    # --- Values ---

    def _pformat_number(self, obj, level):
        return format_number(obj)

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_none(self, obj, level):
        return 'none'

    def _pformat_closure(self, obj, level):
        name = obj.name or 'lambda'
        return f"<fn {name}({', '.join(obj.params)})>"

    def _pformat_builtin(self, obj, level):
        return repr(obj)

    def _pformat_environment(self, obj, level):
        if not obj.bindings:
            return "{}"
        indent = self._indent_char * (level + 1)
        lines = [f"{indent}{k} = {self.pformat(v, level + 1)}" for k, v in obj.bindings.items()]
        return "{\n" + "\n".join(lines) + "\n" + self._indent_char * level + "}"

    # --- AST ---

    def _precedence(self, node) -> int:
        match node:
            case BinOp():
                return PRECEDENCE.get(node.op, 0)
            case UnaryOp():
                return UNARY_PRECEDENCE
            case Conditional() | Lambda() | Assignment():
                return 0
            case _:
                return ATOM_PRECEDENCE

    def _wrap(self, node, min_prec, level):
        text = self.pformat(node, level)
        if self._precedence(node) < min_prec:
            return f"({text})"
        return text

    def _pformat_number_literal(self, obj, level):
        if math.isinf(obj.value):
            return "1e999" if obj.value > 0 else "-1e999"
        return format_number(obj.value)

    def _pformat_identifier(self, obj, level):
        return obj.name

    def _pformat_unary(self, obj, level):
        operand = self._wrap(obj.operand, UNARY_PRECEDENCE, level)
        if obj.op == 'not':
            return f"not {operand}"
        return f"{obj.op}{operand}"

    def _pformat_binop(self, obj, level):
        prec = PRECEDENCE.get(obj.op, 0)
        if obj.op in RIGHT_ASSOCIATIVE:
            left_min, right_min = prec + 1, prec
        else:
            left_min, right_min = prec, prec + 1
        left = self._wrap(obj.left, left_min, level)
        right = self._wrap(obj.right, right_min, level)
        return f"{left} {obj.op} {right}"

    def _pformat_conditional(self, obj, level):
        cond = self.pformat(obj.cond, level)
        then = self.pformat(obj.then, level)
        otherwise = self.pformat(obj.otherwise, level)
        return f"if {cond} then {then} else {otherwise}"

    def _pformat_call(self, obj, level):
        callee = self._wrap(obj.callee, ATOM_PRECEDENCE, level)
        args = ", ".join(self.pformat(arg, level) for arg in obj.args)
        return f"{callee}({args})"

    def _pformat_lambda(self, obj, level):
        body = self.pformat(obj.body, level)
        if len(obj.params) == 1:
            return f"{obj.params[0]} => {body}"
        return f"({', '.join(obj.params)}) => {body}"

    def _pformat_assignment(self, obj, level):
        if isinstance(obj.value, Lambda):
            params = ", ".join(obj.value.params)
            return f"def {obj.name}({params}) = {self.pformat(obj.value.body, level)}"
        return f"{obj.name} = {self.pformat(obj.value, level)}"

    def _pformat_program(self, obj, level):
        indent = self._indent_char * level
        return "\n".join(indent + self.pformat(stmt, level) for stmt in obj.statements)
