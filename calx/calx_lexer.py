"""
Turns CALX source text into a flat list of tokens.
"""
from typing import List

from calx.calx_datatypes import Token, TokenKind, LexError

KEYWORDS = frozenset({'if', 'then', 'else', 'and', 'or', 'not', 'def'})

# Longest first, so '**' wins over '*' and '=>' over '='.
OPERATORS = ('**', '==', '!=', '<=', '>=', '&&', '||', '=>',
             '^', '+', '-', '*', '/', '%', '<', '>', '=', '!')

PUNCTUATION = ('(', ')', ',', ';')


def is_digit(c: str) -> bool:
    return '0' <= c <= '9'


def is_identifier_start(c: str) -> bool:
    return c.isascii() and (c.isalpha() or c == '_')


def is_identifier_char(c: str) -> bool:
    return c.isascii() and (c.isalnum() or c == '_')


class Lexer:
    def __init__(self, text: str):
        self.text = text
        self.idx = 0
        self.lineno = 1
        self.line_start = 0

    @property
    def colno(self) -> int:
        return self.idx - self.line_start + 1

    def has_input(self) -> bool:
        return self.idx < len(self.text)

    def peek_char(self, offset: int = 0) -> str:
        i = self.idx + offset
        return self.text[i] if i < len(self.text) else ''

    def make_token(self, kind: str, text: str, start: int, col: int, value=None) -> Token:
        return Token(kind, text, start, self.lineno, col, value)

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            token = self.read_one()
            if token.kind == TokenKind.NEWLINE and tokens and tokens[-1].kind == TokenKind.NEWLINE:
                continue
            tokens.append(token)
            if token.kind == TokenKind.EOF:
                return tokens

    def read_one(self) -> Token:
        while self.has_input():
            c = self.peek_char()
            if c == '#':
                self.read_comment()
            elif c == '\n':
                start, col = self.idx, self.colno
                token = self.make_token(TokenKind.NEWLINE, '\n', start, col)
                self.idx += 1
                self.lineno += 1
                self.line_start = self.idx
                return token
            elif c in ' \t\r\f\v':
                self.idx += 1
            else:
                break
        else:
            return self.make_token(TokenKind.EOF, '', self.idx, self.colno)

        c = self.peek_char()
        if is_digit(c) or (c == '.' and is_digit(self.peek_char(1))):
            return self.read_number()
        if is_identifier_start(c):
            return self.read_word()
        for op in OPERATORS:
            if self.text.startswith(op, self.idx):
                return self.read_fixed(TokenKind.OPERATOR, op)
        if c in PUNCTUATION:
            return self.read_fixed(TokenKind.PUNCTUATION, c)
        raise LexError(c, self.idx, self.lineno, self.colno)

    def read_comment(self):
        while self.has_input() and self.peek_char() != '\n':
            self.idx += 1

    def read_fixed(self, kind: str, text: str) -> Token:
        start, col = self.idx, self.colno
        self.idx += len(text)
        return self.make_token(kind, text, start, col)

    def read_number(self) -> Token:
        start, col = self.idx, self.colno
        while is_digit(self.peek_char()):
            self.idx += 1
        if self.peek_char() == '.':
            self.idx += 1
            while is_digit(self.peek_char()):
                self.idx += 1
        # Exponent only when digits follow; otherwise 'e' starts the next token
        if self.peek_char() in ('e', 'E'):
            offset = 2 if self.peek_char(1) in ('+', '-') else 1
            if is_digit(self.peek_char(offset)):
                self.idx += offset
                while is_digit(self.peek_char()):
                    self.idx += 1
        text = self.text[start:self.idx]
        return self.make_token(TokenKind.NUMBER, text, start, col, float(text))

    def read_word(self) -> Token:
        start, col = self.idx, self.colno
        while is_identifier_char(self.peek_char()):
            self.idx += 1
        text = self.text[start:self.idx]
        kind = TokenKind.KEYWORD if text in KEYWORDS else TokenKind.IDENTIFIER
        return self.make_token(kind, text, start, col)


def tokenize(source: str) -> List[Token]:
    """Tokenize source text; the result always ends with an EOF token."""
    return Lexer(source).tokenize()
