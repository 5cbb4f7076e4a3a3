import struct

import pytest

from bytecode import Instruction, OpCode, Program, ProgramBuilder
from pipeline import compile_source
from vm import VM


def test_push_const_encodes_the_value():
    data = compile_source("2.5").to_bytes()
    assert data == bytes([0x01]) + struct.pack("<d", 2.5)


def test_build_array_encodes_the_count():
    data = compile_source("[]").to_bytes()
    assert data == bytes([0x04]) + struct.pack("<Q", 0)


def test_plain_opcodes_are_one_byte():
    assert Instruction(OpCode.ADD).size == 1
    assert Instruction(OpCode.PUSH_CONST, 0).size == 9
    assert Instruction(OpCode.BUILD_ARRAY, 3).size == 9


def test_byte_offsets():
    program = compile_source("[1, 2]")
    assert program.byte_offsets() == [0, 9, 18]
    assert len(program.to_bytes()) == 27


def test_decoded_program_runs_the_same():
    program = compile_source("sum([1.5, 2, 1.5]) * -2")
    decoded = Program.from_bytes(program.to_bytes())
    assert decoded.instructions == program.instructions
    assert decoded.constants == program.constants
    assert decoded.offsets == ()
    assert VM().run(decoded) == VM().run(program)


@pytest.mark.parametrize("data", [
    bytes([0xFF]),
    bytes([0x01, 0x00, 0x00]),
    bytes([0x04]),
])
def test_malformed_bytes(data):
    with pytest.raises(ValueError):
        Program.from_bytes(data)


def test_builder_rejects_bad_operands():
    builder = ProgramBuilder()
    with pytest.raises(ValueError):
        builder.emit(OpCode.PUSH_CONST, 0)
    with pytest.raises(ValueError):
        builder.emit(OpCode.ADD, 1)
    with pytest.raises(ValueError):
        builder.emit(OpCode.BUILD_ARRAY)
