"""Instruction set and program container for the calculator VM.

A program is a flat tuple of instructions plus a constant pool of floats.
There are no jumps: the VM walks the instructions once, front to back.
Only ``PUSH_CONST`` (constant-pool index) and ``BUILD_ARRAY`` (element
count) carry an inline operand; every other opcode takes its inputs from the
operand stack.

The byte form written by ``Program.to_bytes`` is one opcode byte per
instruction. ``PUSH_CONST`` is followed by the constant itself as an 8-byte
little-endian double and ``BUILD_ARRAY`` by its count as an 8-byte
little-endian unsigned integer.
"""

from __future__ import annotations
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple


class OpCode(IntEnum):
    # Stack
    PUSH_CONST = 0x01
    BUILD_ARRAY = 0x04

    # Operators
    ADD = 0x10
    SUB = 0x11
    MUL = 0x12
    DIV = 0x13
    POW = 0x14
    NEG = 0x15
    MOD = 0x16
    FACT = 0x17

    # Trigonometric (radians) and hyperbolic
    SIN = 0x20
    COS = 0x21
    TAN = 0x22
    ASIN = 0x23
    ACOS = 0x24
    ATAN = 0x25
    SINH = 0x26
    COSH = 0x27
    TANH = 0x28

    # Scalar functions
    SQRT = 0x30
    LOG = 0x31
    LN = 0x32
    ABS = 0x33
    FLOOR = 0x34
    CEIL = 0x35
    CBRT = 0x36
    LOG2 = 0x37
    EXP = 0x38
    ROUND = 0x39
    SIGN = 0x3A
    TORAD = 0x3B
    TODEG = 0x3C
    LOG_BASE = 0x3D

    # Array reducers
    SUM = 0x40
    AVG = 0x41
    MIN = 0x42
    MAX = 0x43
    LEN = 0x44

    # Two-argument functions
    GCD = 0x50
    LCM = 0x51
    NPR = 0x52
    NCR = 0x53


OPERAND_OPCODES = frozenset({OpCode.PUSH_CONST, OpCode.BUILD_ARRAY})

BINARY_OPCODES = frozenset({
    OpCode.ADD, OpCode.SUB, OpCode.MUL, OpCode.DIV, OpCode.POW, OpCode.MOD,
    OpCode.LOG_BASE, OpCode.GCD, OpCode.LCM, OpCode.NPR, OpCode.NCR,
})

REDUCER_OPCODES = frozenset({OpCode.SUM, OpCode.AVG, OpCode.MIN, OpCode.MAX, OpCode.LEN})

# Bytes following an opcode that carries an operand.
OPERAND_SIZE = 8


def stack_effect(opcode: OpCode, operand: Optional[int] = None) -> Tuple[int, int]:
    """Return ``(pops, pushes)`` for one instruction."""
    if opcode is OpCode.PUSH_CONST:
        return 0, 1
    if opcode is OpCode.BUILD_ARRAY:
        return int(operand or 0), 1
    if opcode in BINARY_OPCODES:
        return 2, 1
    return 1, 1


@dataclass(frozen=True)
class Instruction:
    opcode: OpCode
    operand: Optional[int] = None

    @property
    def mnemonic(self) -> str:
        return self.opcode.name

    @property
    def size(self) -> int:
        if self.opcode in OPERAND_OPCODES:
            return 1 + OPERAND_SIZE
        return 1


@dataclass(frozen=True)
class Program:
    instructions: Tuple[Instruction, ...]
    constants: Tuple[float, ...]
    # Source offset each instruction was compiled from, parallel to instructions.
    offsets: Tuple[int, ...] = ()

    def __len__(self) -> int:
        return len(self.instructions)

    def byte_offsets(self) -> List[int]:
        """Address of each instruction in the ``to_bytes`` encoding."""
        offsets: List[int] = []
        address = 0
        for instruction in self.instructions:
            offsets.append(address)
            address += instruction.size
        return offsets

    def to_bytes(self) -> bytes:
        out = bytearray()
        for instruction in self.instructions:
            out.append(int(instruction.opcode))
            if instruction.opcode is OpCode.PUSH_CONST:
                out += struct.pack("<d", self.constants[instruction.operand])
            elif instruction.opcode is OpCode.BUILD_ARRAY:
                out += struct.pack("<Q", instruction.operand)
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Program":
        """Decode ``to_bytes`` output. Source offsets are not part of the encoding."""
        builder = ProgramBuilder()
        address = 0
        while address < len(data):
            byte = data[address]
            try:
                opcode = OpCode(byte)
            except ValueError:
                raise ValueError(f"Unknown opcode 0x{byte:02X} at byte {address}")
            address += 1
            if opcode not in OPERAND_OPCODES:
                builder.emit(opcode)
                continue
            if address + OPERAND_SIZE > len(data):
                raise ValueError(f"Truncated {opcode.name} operand at byte {address}")
            if opcode is OpCode.PUSH_CONST:
                (value,) = struct.unpack_from("<d", data, address)
                builder.emit(opcode, builder.add_constant(value))
            else:
                (count,) = struct.unpack_from("<Q", data, address)
                builder.emit(opcode, count)
            address += OPERAND_SIZE
        return cls(instructions=tuple(builder.instructions), constants=tuple(builder.constants))


@dataclass
class ProgramBuilder:
    """Accumulates instructions and pooled constants for one program."""

    instructions: List[Instruction] = field(default_factory=list)
    constants: List[float] = field(default_factory=list)
    offsets: List[int] = field(default_factory=list)
    # Keyed by the IEEE-754 bit pattern so 0.0 and -0.0 get separate slots.
    _constant_index: Dict[bytes, int] = field(default_factory=dict)

    def add_constant(self, value: float) -> int:
        key = struct.pack("<d", value)
        index = self._constant_index.get(key)
        if index is None:
            index = len(self.constants)
            self.constants.append(float(value))
            self._constant_index[key] = index
        return index

    def emit(self, opcode: OpCode, operand: Optional[int] = None, *, offset: int = 0) -> Instruction:
        if opcode in OPERAND_OPCODES:
            if operand is None or operand < 0:
                raise ValueError(f"{opcode.name} requires a non-negative operand")
            if opcode is OpCode.PUSH_CONST and operand >= len(self.constants):
                raise ValueError(f"Constant index {operand} outside pool of {len(self.constants)}")
        elif operand is not None:
            raise ValueError(f"{opcode.name} takes no operand")
        instruction = Instruction(opcode, operand)
        self.instructions.append(instruction)
        self.offsets.append(offset)
        return instruction

    def build(self) -> Program:
        return Program(
            instructions=tuple(self.instructions),
            constants=tuple(self.constants),
            offsets=tuple(self.offsets),
        )
