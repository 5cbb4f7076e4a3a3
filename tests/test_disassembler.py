import re

import pytest

from bytecode import Instruction, OpCode, Program
from disassembler import disassemble, disassemble_lines, hex_dump_lines, max_stack_depth
from pipeline import compile_source


def test_listing_for_simple_sum():
    assert disassemble(compile_source("1 + 2")).splitlines() == [
        "=== Bytecode Disassembly ===",
        "Size: 19 bytes",
        "Instructions: 3  Constants: 2  Max stack: 2",
        "",
        "IDX   ADDR    OP  INSTRUCTION",
        "0000  0x0000  01  PUSH_CONST  0    ; 1",
        "0001  0x0009  01  PUSH_CONST  1    ; 2",
        "0002  0x0012  10  ADD",
        "",
        "=== Constant Pool ===",
        "  #0   1",
        "  #1   2",
        "",
        "=== Hex Dump ===",
        "0x0000  01 00 00 00 00 00 00 F0 3F 01 00 00 00 00 00 00",
        "0x0010  00 40 10",
    ]


def test_build_array_comment():
    lines = disassemble_lines(compile_source("[7]"))
    assert lines[-1] == "0001  0x0009  04  BUILD_ARRAY 1    ; 1 element"
    assert disassemble_lines(compile_source("[]")) == ["0000  0x0000  04  BUILD_ARRAY 0    ; 0 elements"]


def test_fractional_constants_keep_full_precision():
    lines = disassemble_lines(compile_source("0.1"))
    assert lines == ["0000  0x0000  01  PUSH_CONST  0    ; 0.1"]


def test_empty_constant_pool():
    text = disassemble(compile_source("[]"))
    assert "=== Constant Pool ===\n  (empty)\n" in text
    assert text.endswith("=== Hex Dump ===\n0x0000  04 00 00 00 00 00 00 00 00")


@pytest.mark.parametrize("source", [
    "1",
    "2 + 3 * 4",
    "-2^2",
    "sum([1, 2, 3]) / len([1, 2, 3])",
    "log(8, 2) + nCr(5, 2) - 3!",
    "[]",
])
def test_one_line_per_instruction(source):
    program = compile_source(source)
    assert len(disassemble_lines(program)) == len(program.instructions)
    listed = [line for line in disassemble(program).splitlines() if re.match(r"^\d{4}  ", line)]
    assert len(listed) == len(program.instructions)


def test_mnemonics_and_opcode_bytes():
    lines = disassemble_lines(compile_source("sqrt(16) ^ 2"))
    assert lines[1] == "0001  0x0009  30  SQRT"
    assert lines[-1] == "0003  0x0013  14  POW"


def test_size_header_matches_encoding():
    program = compile_source("sum([1, 2, 3]) * 2")
    size = len(program.to_bytes())
    assert size == 9 * 5 + 2
    assert f"Size: {size} bytes" in disassemble(program)


def test_hex_dump_wraps_rows():
    assert hex_dump_lines(bytes(range(18))) == [
        "0x0000  00 01 02 03 04 05 06 07 08 09 0A 0B 0C 0D 0E 0F",
        "0x0010  10 11",
    ]
    assert hex_dump_lines(b"") == []


def test_max_stack_depth():
    assert max_stack_depth(compile_source("1 + (2 + (3 + 4))")) == 4
    assert max_stack_depth(compile_source("((1 + 2) + 3) + 4")) == 2


def test_bad_constant_index_is_shown():
    program = Program(instructions=(Instruction(OpCode.PUSH_CONST, 4),), constants=())
    assert disassemble_lines(program) == ["0000  0x0000  01  PUSH_CONST  4    ; <bad constant index>"]
