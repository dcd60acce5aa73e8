"""
Transforms a generic {'tag', 'children', ...} tree back into CALX AST nodes.
"""

from calx.calx_datatypes import (
    NumberLiteral, Identifier, UnaryOp, BinOp, Conditional, Call, Lambda, Assignment, Program
)
from calx.calx_parser import canonical_op, PRECEDENCE


class CalxTransformer:
    def _attach_loc(self, obj, node):
        line = node.get('line'); col = node.get('col')
        if line is not None and col is not None:
            obj.loc = {'line': line, 'col': col}
        return obj

    def _name_of(self, node) -> str:
        if isinstance(node, dict) and node.get('tag') == 'name':
            return node['text']
        raise ValueError(f"Expected a name node, got {node!r}")

    def transform(self, node: object) -> object:
        # Lists: transform each item
        if isinstance(node, list):
            return [self.transform(n) for n in node]

        if not isinstance(node, dict) or 'tag' not in node:
            raise ValueError(f"Not a CALX tree node: {node!r}")

        tag = node.get('tag')
        children = node.get('children', [])

        match tag:
            case 'program':
                return self._attach_loc(Program(self.transform(children)), node)

            case 'number':
                return self._attach_loc(NumberLiteral(float(node['value'])), node)

            case 'name':
                return self._attach_loc(Identifier(node['text']), node)

            case 'unary':
                op = canonical_op(node['text'])
                if op not in ('-', 'not'):
                    raise ValueError(f"Unknown unary operator {node['text']!r}")
                (operand,) = children
                return self._attach_loc(UnaryOp(op, self.transform(operand)), node)

            case 'binop':
                op = canonical_op(node['text'])
                if op not in PRECEDENCE:
                    raise ValueError(f"Unknown binary operator {node['text']!r}")
                left, right = children
                return self._attach_loc(BinOp(op, self.transform(left), self.transform(right)), node)

            case 'if':
                cond, then, otherwise = self.transform(children)
                return self._attach_loc(Conditional(cond, then, otherwise), node)

            case 'call':
                callee, *args = self.transform(children)
                return self._attach_loc(Call(callee, args), node)

            case 'lambda':
                # children is a dict: {'params': [name nodes], 'body': node}
                params = [self._name_of(p) for p in children.get('params') or []]
                body = self.transform(children['body'])
                return self._attach_loc(Lambda(params, body), node)

            case 'assign':
                (value,) = children
                return self._attach_loc(Assignment(node['text'], self.transform(value)), node)

            case _:
                raise NotImplementedError(f"No transformer for tag '{tag}'")
