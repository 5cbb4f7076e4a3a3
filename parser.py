from __future__ import annotations
import math
from typing import Iterable, List, Optional

from errors import CalcError
from lexer import Token
from nodes import ArrayLiteral, BinaryOp, Call, Node, NumberLiteral, UnaryOp


class ParseError(CalcError):
    """Raised on the first token the grammar cannot accept."""

    stage = "ParseError"

    def __init__(self, token: Token, expected: Iterable[str], message: Optional[str] = None) -> None:
        self.token = token
        self.expected = frozenset(expected)
        found = "end of input" if token.type == "EOF" else f"'{token.value}'"
        if message is None:
            message = f"Unexpected {found}; expected {' or '.join(sorted(self.expected))}"
        super().__init__(message, offset=token.offset)


CONSTANTS = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
    "phi": (1.0 + math.sqrt(5.0)) / 2.0,
}

# Token types that may begin an operand.
OPERAND_START = {"NUMBER", "IDENT", "LPAREN", "LBRACKET", "MINUS"}

ADDITIVE = {"PLUS": "+", "MINUS": "-"}
MULTIPLICATIVE = {"STAR": "*", "SLASH": "/", "PERCENT": "%"}

# Deepest allowed nesting of groups, arrays, call arguments, prefix minus
# and power operands.
MAX_NESTING = 64


class Parser:
    """Precedence-climbing parser for a single calculator expression.

    Binding strength, loosest first: ``+ -``, ``* / %``, ``^``/``**``
    (right-associative), prefix ``-``, postfix ``!``, then primaries.
    Prefix minus binds tighter than power, so ``-2^2`` is ``(-2)^2``.
    """

    def __init__(self, tokens: List[Token]) -> None:
        self.tokens = tokens
        self.index = 0
        self.nesting = 0

    def parse(self) -> Node:
        expr = self._parse_expression()
        self._consume("EOF")
        return expr

    def _parse_expression(self) -> Node:
        self._enter(self._peek())
        try:
            return self._parse_additive()
        finally:
            self.nesting -= 1

    def _parse_additive(self) -> Node:
        left = self._parse_multiplicative()
        while self._peek().type in ADDITIVE:
            op_token = self._advance()
            right = self._parse_multiplicative()
            left = BinaryOp(offset=op_token.offset, op=ADDITIVE[op_token.type], left=left, right=right)
        return left

    def _parse_multiplicative(self) -> Node:
        left = self._parse_power()
        while self._peek().type in MULTIPLICATIVE:
            op_token = self._advance()
            right = self._parse_power()
            left = BinaryOp(offset=op_token.offset, op=MULTIPLICATIVE[op_token.type], left=left, right=right)
        return left

    def _parse_power(self) -> Node:
        base = self._parse_prefix()
        if self._peek().type == "CARET":
            op_token = self._advance()
            # Recursing here makes the chain right-associative.
            self._enter(op_token)
            try:
                exponent = self._parse_power()
            finally:
                self.nesting -= 1
            return BinaryOp(offset=op_token.offset, op="^", left=base, right=exponent)
        return base

    def _parse_prefix(self) -> Node:
        if self._peek().type == "MINUS":
            minus = self._advance()
            self._enter(minus)
            try:
                operand = self._parse_prefix()
            finally:
                self.nesting -= 1
            return UnaryOp(offset=minus.offset, op="-", operand=operand)
        return self._parse_postfix()

    def _parse_postfix(self) -> Node:
        expr = self._parse_primary()
        while self._peek().type == "BANG":
            bang = self._advance()
            expr = UnaryOp(offset=bang.offset, op="!", operand=expr)
        return expr

    def _parse_primary(self) -> Node:
        token = self._peek()
        if token.type == "NUMBER":
            self._advance()
            value = float(token.value)
            if math.isinf(value):
                raise ParseError(token, {"NUMBER"}, f"Number literal '{token.value[:16]}...' is out of range")
            return NumberLiteral(offset=token.offset, value=value)
        if token.type == "LPAREN":
            self._advance()
            expr = self._parse_expression()
            self._consume("RPAREN")
            return expr
        if token.type == "LBRACKET":
            return self._parse_array_literal()
        if token.type == "IDENT":
            return self._parse_identifier()
        raise ParseError(token, OPERAND_START)

    def _parse_identifier(self) -> Node:
        ident = self._consume("IDENT")
        if self._match("LPAREN"):
            args = self._parse_expression_list("RPAREN")
            return Call(offset=ident.offset, name=ident.value, args=args)
        constant = CONSTANTS.get(ident.value.lower())
        if constant is not None:
            return NumberLiteral(offset=ident.offset, value=constant)
        raise ParseError(
            self._peek(),
            {"LPAREN"},
            f"Name '{ident.value}' must be called as a function, e.g. {ident.value}(...)",
        )

    def _parse_array_literal(self) -> ArrayLiteral:
        lbracket = self._consume("LBRACKET")
        items = self._parse_expression_list("RBRACKET")
        return ArrayLiteral(offset=lbracket.offset, items=items)

    def _parse_expression_list(self, closing: str) -> List[Node]:
        items: List[Node] = []
        if self._match(closing):
            return items
        while True:
            items.append(self._parse_expression())
            if self._match(closing):
                return items
            if not self._match("COMMA"):
                raise ParseError(self._peek(), {"COMMA", closing})

    def _enter(self, token: Token) -> None:
        self.nesting += 1
        if self.nesting > MAX_NESTING:
            raise ParseError(token, (), "Expression nested too deeply")

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise ParseError(token, {token_type})
        self.index += 1
        return token

    def _match(self, token_type: str) -> bool:
        if self._peek().type == token_type:
            self.index += 1
            return True
        return False

    def _advance(self) -> Token:
        token = self._peek()
        self.index += 1
        return token

    def _peek(self) -> Token:
        return self.tokens[self.index]
