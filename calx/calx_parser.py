"""
Builds the CALX AST from a token list.

Statements are parsed by recursive descent; binary operators by precedence
climbing over the PRECEDENCE table below.
"""
from typing import List, Optional, Sequence, Union

from calx.calx_datatypes import (
    Token, TokenKind, ParseError,
    Expr, NumberLiteral, Identifier, UnaryOp, BinOp, Conditional, Call, Lambda, Assignment, Program
)
from calx.calx_lexer import tokenize

# Spelling variants are folded into one canonical operator name.
CANONICAL = {'**': '^', '&&': 'and', '||': 'or', '!': 'not'}

PRECEDENCE = {
    'or': 1,
    'and': 2,
    '==': 3, '!=': 3,
    '<': 4, '>': 4, '<=': 4, '>=': 4,
    '+': 5, '-': 5,
    '*': 6, '/': 6, '%': 6,
    '^': 7,
}

RIGHT_ASSOCIATIVE = frozenset({'^'})

# Binds tighter than every binary operator, looser than calls and grouping.
UNARY_PRECEDENCE = 8


def canonical_op(text: str) -> str:
    return CANONICAL.get(text, text)


class Parser:
    """Parses one token list. Instances are single-use."""

    def __init__(self, tokens: Sequence[Token]):
        tokens = list(tokens)
        if not tokens or tokens[-1].kind != TokenKind.EOF:
            end = tokens[-1].position + len(tokens[-1].text) if tokens else 0
            tokens.append(Token(TokenKind.EOF, '', end))
        self.tokens = tokens
        self.pos = 0
        # Nesting level of parentheses; newlines are insignificant while > 0.
        self.depth = 0

    # --- Token helpers ---

    def _skip_newlines(self):
        while self.tokens[self.pos].kind == TokenKind.NEWLINE:
            self.pos += 1

    def _peek(self) -> Token:
        if self.depth > 0:
            self._skip_newlines()
        return self.tokens[self.pos]

    def _peek_raw(self, offset: int = 1) -> Token:
        i = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[i]

    def _advance(self) -> Token:
        tok = self._peek()
        if tok.kind != TokenKind.EOF:
            self.pos += 1
        return tok

    def _check(self, kind: str, text: Optional[str] = None) -> bool:
        return self._peek().is_(kind, text)

    def _accept(self, kind: str, text: Optional[str] = None) -> Optional[Token]:
        if self._check(kind, text):
            return self._advance()
        return None

    def _expect(self, kind: str, text: Optional[str], expected: str) -> Token:
        tok = self._peek()
        if not tok.is_(kind, text):
            raise ParseError(expected, tok)
        return self._advance()

    def _is_separator(self, tok: Token) -> bool:
        return tok.kind == TokenKind.NEWLINE or tok.is_(TokenKind.PUNCTUATION, ';')

    def _skip_separators(self):
        while self._is_separator(self._peek()):
            self._advance()

    @staticmethod
    def _at(node, tok: Token):
        node.loc = {'line': tok.line, 'col': tok.col}
        return node

    # --- Entry points ---

    def parse_program(self) -> Program:
        statements: List[Expr] = []
        self._skip_separators()
        while not self._check(TokenKind.EOF):
            statements.append(self.statement())
            tok = self._peek()
            if tok.kind == TokenKind.EOF:
                break
            if not self._is_separator(tok):
                raise ParseError("';' or newline", tok)
            self._skip_separators()
        if not statements:
            raise ParseError("an expression", self._peek())
        program = Program(statements)
        program.loc = statements[0].loc
        return program

    def parse_single(self) -> Expr:
        self._skip_separators()
        stmt = self.statement()
        self._skip_separators()
        tok = self._peek()
        if tok.kind != TokenKind.EOF:
            raise ParseError("end of input", tok)
        return stmt

    # --- Statements ---

    def statement(self) -> Expr:
        tok = self._peek()
        if tok.is_(TokenKind.KEYWORD, 'def'):
            return self.definition()
        if tok.kind == TokenKind.IDENTIFIER and self._peek_raw().is_(TokenKind.OPERATOR, '='):
            self._advance()
            self._advance()
            self._skip_newlines()
            value = self.expression()
            return self._at(Assignment(tok.text, value), tok)
        return self.expression()

    def definition(self) -> Assignment:
        """`def name(params) = body`, sugar for `name = (params) => body`."""
        def_tok = self._advance()
        name = self._expect(TokenKind.IDENTIFIER, None, "a function name after 'def'")
        self._expect(TokenKind.PUNCTUATION, '(', "'('")
        params = self._param_list()
        self._expect(TokenKind.OPERATOR, '=', "'='")
        self._skip_newlines()
        body = self.expression()
        fn = self._at(Lambda(params, body), name)
        return self._at(Assignment(name.text, fn), def_tok)

    def _param_list(self) -> List[str]:
        # The opening '(' has already been consumed.
        self.depth += 1
        params: List[str] = []
        if not self._check(TokenKind.PUNCTUATION, ')'):
            while True:
                tok = self._expect(TokenKind.IDENTIFIER, None, "a parameter name")
                if tok.text in params:
                    raise ParseError("a distinct parameter name", tok)
                params.append(tok.text)
                if not self._accept(TokenKind.PUNCTUATION, ','):
                    break
        self._expect(TokenKind.PUNCTUATION, ')', "',' or ')'")
        self.depth -= 1
        return params

    # --- Expressions ---

    def _binary_op(self, tok: Token) -> Optional[str]:
        if tok.kind == TokenKind.OPERATOR or tok.is_(TokenKind.KEYWORD, 'and') or tok.is_(TokenKind.KEYWORD, 'or'):
            op = canonical_op(tok.text)
            if op in PRECEDENCE:
                return op
        return None

    def expression(self, min_prec: int = 1) -> Expr:
        left = self.unary()
        while True:
            tok = self._peek()
            op = self._binary_op(tok)
            if op is None:
                break
            prec = PRECEDENCE[op]
            if prec < min_prec:
                break
            self._advance()
            self._skip_newlines()
            right = self.expression(prec if op in RIGHT_ASSOCIATIVE else prec + 1)
            left = self._at(BinOp(op, left, right), tok)
        return left

    def unary(self) -> Expr:
        tok = self._peek()
        if tok.is_(TokenKind.OPERATOR, '-') or tok.is_(TokenKind.OPERATOR, '!') or tok.is_(TokenKind.KEYWORD, 'not'):
            self._advance()
            operand = self.unary()
            return self._at(UnaryOp(canonical_op(tok.text), operand), tok)
        return self.postfix(self.primary())

    def postfix(self, expr: Expr) -> Expr:
        while self._check(TokenKind.PUNCTUATION, '('):
            self._advance()
            self.depth += 1
            args: List[Expr] = []
            if not self._check(TokenKind.PUNCTUATION, ')'):
                while True:
                    args.append(self.expression())
                    if not self._accept(TokenKind.PUNCTUATION, ','):
                        break
            self._expect(TokenKind.PUNCTUATION, ')', "',' or ')'")
            self.depth -= 1
            call = Call(expr, args)
            call.loc = expr.loc
            expr = call
        return expr

    def primary(self) -> Expr:
        tok = self._peek()
        if tok.kind == TokenKind.NUMBER:
            self._advance()
            return self._at(NumberLiteral(tok.value), tok)
        if tok.is_(TokenKind.KEYWORD, 'if'):
            return self.conditional()
        if tok.kind == TokenKind.IDENTIFIER:
            self._advance()
            if self.tokens[self.pos].is_(TokenKind.OPERATOR, '=>'):
                self._advance()
                self._skip_newlines()
                body = self.expression()
                return self._at(Lambda([tok.text], body), tok)
            return self._at(Identifier(tok.text), tok)
        if tok.is_(TokenKind.PUNCTUATION, '('):
            self._advance()
            if self._is_lambda_head():
                params = self._param_list()
                self._expect(TokenKind.OPERATOR, '=>', "'=>'")
                self._skip_newlines()
                body = self.expression()
                return self._at(Lambda(params, body), tok)
            self.depth += 1
            inner = self.expression()
            self._expect(TokenKind.PUNCTUATION, ')', "')'")
            self.depth -= 1
            return inner
        raise ParseError("an expression", tok)

    def _is_lambda_head(self) -> bool:
        """After '(': does the matching ')' come right before '=>'?"""
        nesting = 1
        i = self.pos
        while nesting:
            tok = self.tokens[i]
            if tok.kind == TokenKind.EOF:
                return False
            if tok.is_(TokenKind.PUNCTUATION, '('):
                nesting += 1
            elif tok.is_(TokenKind.PUNCTUATION, ')'):
                nesting -= 1
            i += 1
        return self.tokens[i].is_(TokenKind.OPERATOR, '=>')

    def conditional(self) -> Conditional:
        if_tok = self._advance()
        self._skip_newlines()
        cond = self.expression()
        self._skip_newlines()
        self._expect(TokenKind.KEYWORD, 'then', "'then'")
        self._skip_newlines()
        then = self.expression()
        self._skip_newlines()
        self._expect(TokenKind.KEYWORD, 'else', "'else'")
        self._skip_newlines()
        otherwise = self.expression()
        return self._at(Conditional(cond, then, otherwise), if_tok)


def _tokens(source: Union[str, Sequence[Token]]) -> Sequence[Token]:
    return tokenize(source) if isinstance(source, str) else source


def parse(source: Union[str, Sequence[Token]]) -> Expr:
    """Parses exactly one statement (expression, assignment or def)."""
    return Parser(_tokens(source)).parse_single()


def parse_program(source: Union[str, Sequence[Token]]) -> Program:
    """Parses one or more statements separated by ';' or newlines."""
    return Parser(_tokens(source)).parse_program()
