"""CALX: a small expression-language interpreter."""

from calx.calx_datatypes import (
    CalxError, LexError, ParseError, EvalError,
    UndefinedVariable, UndefinedFunction, ArityMismatch, ConstantAssignment, NotCallable, TypeMismatch,
    Token, TokenKind, Environment, Builtin, Closure, Program,
)
from calx.calx_lexer import tokenize
from calx.calx_parser import parse, parse_program
from calx.calx_interpreter import Evaluator
from calx.calx_runtime import (
    Context, ScriptRunner, ExecutionResult,
    evaluate, evaluate_program, evaluate_with_context, describe_builtins,
)
from calx.calx_serialize import to_tree, serialize, deserialize
from calx.calx_printer import Printer

__all__ = [
    "CalxError", "LexError", "ParseError", "EvalError",
    "UndefinedVariable", "UndefinedFunction", "ArityMismatch", "ConstantAssignment", "NotCallable", "TypeMismatch",
    "Token", "TokenKind", "Environment", "Builtin", "Closure", "Program",
    "tokenize", "parse", "parse_program", "Evaluator",
    "Context", "ScriptRunner", "ExecutionResult",
    "evaluate", "evaluate_program", "evaluate_with_context", "describe_builtins",
    "to_tree", "serialize", "deserialize", "Printer",
]
