"""Source-to-value entry points shared by the CLI and any UI front end."""

from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from bytecode import Program
from codegen import CodeGenerator, CodegenError
from disassembler import disassemble
from errors import CalcError
from lexer import LexError, Lexer
from nodes import Node
from parser import ParseError, Parser
from vm import VM, CalcRuntimeError, StepLogger, Value


EvalError = Union[LexError, ParseError, CodegenError, CalcRuntimeError]

# Errors caused by the input; InternalFault is not one of them.
EVAL_ERRORS = (LexError, ParseError, CodegenError, CalcRuntimeError)


def parse_source(source: str) -> Node:
    tokens = Lexer(source).tokenize()
    return Parser(tokens).parse()


def compile_source(source: str) -> Program:
    return CodeGenerator().generate(parse_source(source))


def evaluate(source: str, *, verbose: bool = False) -> Value:
    return VM(verbose=verbose).run(compile_source(source))


def disassemble_source(source: str) -> str:
    return disassemble(compile_source(source))


def render_value(value: Value) -> str:
    """Text form of ``value`` that evaluates back to an equal value."""
    return str(value)


@dataclass
class EvalResult:
    value: Optional[Value] = None
    error: Optional[CalcError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        if self.error is not None:
            return self.error.describe()
        return render_value(self.value) if self.value is not None else ""


def try_evaluate(source: str) -> EvalResult:
    """Run ``evaluate`` and return the outcome instead of raising.

    User-facing failures come back in ``error``. ``InternalFault`` is not
    caught: it marks a compiler bug rather than bad input.
    """
    try:
        return EvalResult(value=evaluate(source))
    except EVAL_ERRORS as error:
        return EvalResult(error=error)


class TracebackFormatter:
    def __init__(self, source: str, logger: Optional[StepLogger] = None) -> None:
        self.source = source
        self.logger = logger

    def format_text(self, error: CalcError, verbose: bool = False) -> str:
        lines: List[str] = []
        if error.offset is not None:
            lines.append("  " + self._display_source())
            lines.append("  " + " " * error.offset + "^")
        step_index = getattr(error, "step_index", None)
        if step_index is not None and self.logger is not None and step_index < len(self.logger.entries):
            entry = self.logger.entries[step_index]
            lines.append(f"  at step {step_index}: {entry.instruction.mnemonic}")
            if verbose and entry.stack_before is not None:
                lines.append(f"  stack: [{' '.join(entry.stack_before)}]")
        lines.append(error.describe())
        return "\n".join(lines)

    def to_json(self, error: CalcError) -> str:
        data: Dict[str, Any] = {
            "type": error.__class__.__name__,
            "stage": error.stage,
            "message": error.message,
            "offset": error.offset,
        }
        if isinstance(error, CalcRuntimeError):
            data["kind"] = error.kind.value
            data["opcode"] = error.opcode.name if error.opcode is not None else None
            data["step_index"] = error.step_index
        if isinstance(error, ParseError):
            data["expected"] = sorted(error.expected)
        return json.dumps({"error": data}, indent=2)

    def _display_source(self) -> str:
        # One character per source offset so the caret lines up.
        return "".join(" " if ch.isspace() else ch for ch in self.source)
