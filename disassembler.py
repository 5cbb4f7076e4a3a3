"""Human-readable listing of a compiled ``Program``."""

from __future__ import annotations
from typing import List

from bytecode import Instruction, OpCode, Program, stack_effect


HEX_DUMP_WIDTH = 16


def _format_constant(value: float) -> str:
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def format_instruction(index: int, instruction: Instruction, program: Program, address: int = 0) -> str:
    line = f"{index:04d}  0x{address:04X}  {int(instruction.opcode):02X}  {instruction.mnemonic:<11}"
    if instruction.operand is None:
        return line.rstrip()
    line += f" {instruction.operand:<4}"
    if instruction.opcode is OpCode.PUSH_CONST:
        if 0 <= instruction.operand < len(program.constants):
            line += f" ; {_format_constant(program.constants[instruction.operand])}"
        else:
            line += " ; <bad constant index>"
    elif instruction.opcode is OpCode.BUILD_ARRAY:
        line += f" ; {instruction.operand} element{'s' if instruction.operand != 1 else ''}"
    return line.rstrip()


def disassemble_lines(program: Program) -> List[str]:
    addresses = program.byte_offsets()
    return [
        format_instruction(i, instr, program, addresses[i])
        for i, instr in enumerate(program.instructions)
    ]


def hex_dump_lines(data: bytes, width: int = HEX_DUMP_WIDTH) -> List[str]:
    lines = []
    for start in range(0, len(data), width):
        chunk = data[start:start + width]
        lines.append(f"0x{start:04X}  " + " ".join(f"{byte:02X}" for byte in chunk))
    return lines


def max_stack_depth(program: Program) -> int:
    depth = peak = 0
    for instruction in program.instructions:
        pops, pushes = stack_effect(instruction.opcode, instruction.operand)
        depth += pushes - pops
        peak = max(peak, depth)
    return peak


def disassemble(program: Program) -> str:
    data = program.to_bytes()
    lines = [
        "=== Bytecode Disassembly ===",
        f"Size: {len(data)} bytes",
        f"Instructions: {len(program.instructions)}  Constants: {len(program.constants)}  "
        f"Max stack: {max_stack_depth(program)}",
        "",
        "IDX   ADDR    OP  INSTRUCTION",
    ]
    lines.extend(disassemble_lines(program))
    lines.append("")
    lines.append("=== Constant Pool ===")
    if not program.constants:
        lines.append("  (empty)")
    for index, value in enumerate(program.constants):
        lines.append(f"  #{index:<3} {_format_constant(value)}")
    lines.append("")
    lines.append("=== Hex Dump ===")
    lines.extend(hex_dump_lines(data))
    return "\n".join(lines)
