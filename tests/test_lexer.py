import pytest

from lexer import LexError, Lexer


def token_types(source):
    return [t.type for t in Lexer(source).tokenize()]


def test_function_call_and_operators():
    assert token_types("sin(90) + 2^3") == [
        "IDENT", "LPAREN", "NUMBER", "RPAREN", "PLUS", "NUMBER", "CARET", "NUMBER", "EOF",
    ]


def test_array_literal_tokens():
    assert token_types("sum([1, 2, 3])") == [
        "IDENT", "LPAREN", "LBRACKET", "NUMBER", "COMMA", "NUMBER", "COMMA", "NUMBER",
        "RBRACKET", "RPAREN", "EOF",
    ]


def test_double_star_is_power():
    tokens = Lexer("2 ** 3").tokenize()
    assert [t.type for t in tokens] == ["NUMBER", "CARET", "NUMBER", "EOF"]
    assert tokens[1].value == "**"
    assert tokens[1].offset == 2


def test_factorial_and_modulo():
    assert token_types("5! % 3") == ["NUMBER", "BANG", "PERCENT", "NUMBER", "EOF"]


@pytest.mark.parametrize("source, text", [
    ("42", "42"),
    ("3.25", "3.25"),
    (".5", ".5"),
    ("007", "007"),
])
def test_number_literals(source, text):
    tokens = Lexer(source).tokenize()
    assert tokens[0].type == "NUMBER"
    assert tokens[0].value == text


def test_no_exponent_notation():
    tokens = Lexer("1e5").tokenize()
    assert [(t.type, t.value) for t in tokens] == [("NUMBER", "1"), ("IDENT", "e5"), ("EOF", "")]


def test_identifiers_may_contain_digits():
    tokens = Lexer("log10(100) + log2(8)").tokenize()
    assert tokens[0].value == "log10"
    assert tokens[5].value == "log2"


def test_typographic_symbols():
    tokens = Lexer("2 × π ÷ 4").tokenize()
    assert [(t.type, t.value) for t in tokens[:-1]] == [
        ("NUMBER", "2"), ("STAR", "×"), ("IDENT", "pi"), ("SLASH", "÷"), ("NUMBER", "4"),
    ]


def test_offsets_skip_whitespace():
    tokens = Lexer("  1 +\t22").tokenize()
    assert [t.offset for t in tokens] == [2, 4, 6, 8]


def test_empty_source_is_just_eof():
    tokens = Lexer("").tokenize()
    assert len(tokens) == 1
    assert tokens[0].type == "EOF"
    assert tokens[0].offset == 0


def test_stream_always_ends_with_eof():
    assert token_types("1 + 2")[-1] == "EOF"


def test_unexpected_character():
    with pytest.raises(LexError) as excinfo:
        Lexer("2 $ 3").tokenize()
    assert excinfo.value.char == "$"
    assert excinfo.value.offset == 2
    assert excinfo.value.describe() == "LexError at offset 2: Unexpected character '$'"


def test_trailing_dot_is_not_part_of_number():
    with pytest.raises(LexError) as excinfo:
        Lexer("5.").tokenize()
    assert excinfo.value.offset == 1
