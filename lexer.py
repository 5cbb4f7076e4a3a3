from __future__ import annotations
from dataclasses import dataclass
from typing import List

from errors import CalcError


class LexError(CalcError):
    """Raised when the source contains a character no token starts with."""

    stage = "LexError"

    def __init__(self, char: str, offset: int) -> None:
        super().__init__(f"Unexpected character '{char}'", offset=offset)
        self.char = char


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    offset: int


SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "%": "PERCENT",
    "^": "CARET",
    "!": "BANG",
    "(": "LPAREN",
    ")": "RPAREN",
    "[": "LBRACKET",
    "]": "RBRACKET",
    ",": "COMMA",
    # Typographic forms from calculator keypads.
    "×": "STAR",
    "÷": "SLASH",
}

# Greek letters stand in for their constant names.
GREEK_CONSTANTS = {
    "π": "pi",
    "τ": "tau",
    "φ": "phi",
}

DIGITS = "0123456789"


class Lexer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.index = 0

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch.isspace():
                self.index += 1
                continue
            if ch == "*" and self.index + 1 < n and text[self.index + 1] == "*":
                # '**' is an alternate spelling of '^'.
                tokens_append(Token("CARET", "**", self.index))
                self.index += 2
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.index))
                self.index += 1
                continue
            if ch in DIGITS or (ch == "." and self._digit_at(self.index + 1)):
                tokens_append(self._consume_number())
                continue
            if ch in GREEK_CONSTANTS:
                tokens_append(Token("IDENT", GREEK_CONSTANTS[ch], self.index))
                self.index += 1
                continue
            if ch.isalpha():
                tokens_append(self._consume_identifier())
                continue
            raise LexError(ch, self.index)
        tokens_append(Token("EOF", "", self.index))
        return tokens

    def _consume_number(self) -> Token:
        start = self.index
        self._consume_digits()
        # A '.' only belongs to the number when at least one digit follows.
        if not self._eof and self._peek() == "." and self._digit_at(self.index + 1):
            self.index += 1
            self._consume_digits()
        return Token("NUMBER", self.text[start:self.index], start)

    def _consume_digits(self) -> None:
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] in DIGITS:
            self.index += 1

    def _consume_identifier(self) -> Token:
        start = self.index
        text = self.text
        n = len(text)
        while self.index < n and self._is_identifier_part(text[self.index]):
            self.index += 1
        return Token("IDENT", text[start:self.index], start)

    def _is_identifier_part(self, ch: str) -> bool:
        return ch.isalpha() or ch in DIGITS or ch == "_"

    def _digit_at(self, index: int) -> bool:
        return index < len(self.text) and self.text[index] in DIGITS

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]
