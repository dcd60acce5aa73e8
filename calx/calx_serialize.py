from __future__ import annotations

import json
from typing import Any, Optional

import yaml

from calx.calx_datatypes import (
    NumberLiteral, Identifier, UnaryOp, BinOp, Conditional, Call, Lambda, Assignment, Program
)
from calx.calx_transformer import CalxTransformer


# --------------------------
# AST -> generic tree
# --------------------------

def _node(tag: str, source: Any, **fields) -> dict:
    out = {'tag': tag}
    out.update(fields)
    loc = getattr(source, 'loc', None)
    if loc:
        out['line'] = loc.get('line')
        out['col'] = loc.get('col')
    return out


def to_tree(node: Any) -> dict:
    """
    Convert an AST node (or Program) into plain dicts/lists/scalars, in the
    same {'tag', 'text'|'value', 'children', 'line', 'col'} shape the
    transformer reads back.
    """
    match node:
        case NumberLiteral():
            return _node('number', node, value=node.value)
        case Identifier():
            return _node('name', node, text=node.name)
        case UnaryOp():
            return _node('unary', node, text=node.op, children=[to_tree(node.operand)])
        case BinOp():
            return _node('binop', node, text=node.op, children=[to_tree(node.left), to_tree(node.right)])
        case Conditional():
            return _node('if', node, children=[to_tree(node.cond), to_tree(node.then), to_tree(node.otherwise)])
        case Call():
            return _node('call', node, children=[to_tree(node.callee)] + [to_tree(a) for a in node.args])
        case Lambda():
            params = [{'tag': 'name', 'text': p} for p in node.params]
            return _node('lambda', node, children={'params': params, 'body': to_tree(node.body)})
        case Assignment():
            return _node('assign', node, text=node.name, children=[to_tree(node.value)])
        case Program():
            return _node('program', node, children=[to_tree(s) for s in node.statements])
        case _:
            raise TypeError(f"Cannot serialize {type(node).__name__}")


# --------------------------
# Text formats
# --------------------------

def detect_format(data_hint: Optional[str]) -> Optional[str]:
    """
    Returns 'json' or 'yaml' by sniffing the text; None when there is nothing to sniff.
    """
    if data_hint is None:
        return None
    s = data_hint.lstrip()
    if not s:
        return None
    if s.startswith('{') or s.startswith('['):
        return 'json'
    return 'yaml'


def serialize(node: Any, fmt: str = 'json', pretty: bool = True) -> str:
    """
    Encode an AST node as text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    tree = to_tree(node)
    if f == 'json':
        return json.dumps(tree, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(tree, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def deserialize(data: bytes | bytearray | str, fmt: Optional[str] = None) -> Any:
    """
    Decode text produced by `serialize` back into an AST node.
    If fmt is None, the format is sniffed from the text.
    """
    text = data.decode('utf-8') if isinstance(data, (bytes, bytearray)) else data
    f = (fmt or detect_format(text) or '').lower()
    if f == 'json':
        tree = json.loads(text)
    elif f == 'yaml':
        tree = yaml.safe_load(text)
    else:
        raise ValueError(f"Unsupported serialization format: {fmt!r}")
    return CalxTransformer().transform(tree)


__all__ = [
    "to_tree",
    "serialize",
    "deserialize",
    "detect_format",
]
