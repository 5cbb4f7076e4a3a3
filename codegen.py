from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from bytecode import OpCode, Program, ProgramBuilder, stack_effect
from errors import CalcError, InternalFault
from nodes import ArrayLiteral, BinaryOp, Call, Node, NumberLiteral, UnaryOp


TYPE_NUM = "NUM"
TYPE_ARR = "ARR"

# Deepest expression tree the generator walks; long operator chains nest
# one level per operator.
MAX_TREE_DEPTH = 150


class CodegenError(CalcError):
    """Raised for programs that parse but cannot be compiled."""

    stage = "CodegenError"


BINARY_OPERATORS = {
    "+": OpCode.ADD,
    "-": OpCode.SUB,
    "*": OpCode.MUL,
    "/": OpCode.DIV,
    "%": OpCode.MOD,
    "^": OpCode.POW,
}

UNARY_OPERATORS = {
    "-": OpCode.NEG,
    "!": OpCode.FACT,
}


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    # arity -> opcode; a function with several entries accepts each arity
    opcodes: Dict[int, OpCode]
    reducer: bool = False

    @property
    def arities(self) -> List[int]:
        return sorted(self.opcodes)

    def opcode_for(self, supplied: int, offset: int) -> OpCode:
        opcode = self.opcodes.get(supplied)
        if opcode is None:
            expected = " or ".join(str(n) for n in self.arities)
            plural = "" if self.arities == [1] else "s"
            raise CodegenError(
                f"{self.name} expects {expected} argument{plural} but got {supplied}",
                offset=offset,
            )
        return opcode


class FunctionTable:
    """Fixed mapping of lower-cased function names (and aliases) to specs."""

    def __init__(self) -> None:
        self.table: Dict[str, FunctionSpec] = {}
        self._register_scalar("sin", OpCode.SIN)
        self._register_scalar("cos", OpCode.COS)
        self._register_scalar("tan", OpCode.TAN)
        self._register_scalar("asin", OpCode.ASIN, aliases=("arcsin",))
        self._register_scalar("acos", OpCode.ACOS, aliases=("arccos",))
        self._register_scalar("atan", OpCode.ATAN, aliases=("arctan",))
        self._register_scalar("sinh", OpCode.SINH)
        self._register_scalar("cosh", OpCode.COSH)
        self._register_scalar("tanh", OpCode.TANH)
        self._register_scalar("sqrt", OpCode.SQRT)
        self._register_scalar("cbrt", OpCode.CBRT)
        self._register_scalar("exp", OpCode.EXP)
        self._register_scalar("abs", OpCode.ABS)
        self._register_scalar("floor", OpCode.FLOOR)
        self._register_scalar("ceil", OpCode.CEIL)
        self._register_scalar("round", OpCode.ROUND)
        self._register_scalar("sign", OpCode.SIGN, aliases=("sgn",))
        self._register_scalar("log2", OpCode.LOG2)
        self._register_scalar("ln", OpCode.LN)
        self._register_scalar("rad", OpCode.TORAD, aliases=("torad",))
        self._register_scalar("deg", OpCode.TODEG, aliases=("todeg",))
        self._register(FunctionSpec("log", {1: OpCode.LOG, 2: OpCode.LOG_BASE}), aliases=("log10",))
        self._register_binary("gcd", OpCode.GCD)
        self._register_binary("lcm", OpCode.LCM)
        self._register_binary("nPr", OpCode.NPR, aliases=("perm",))
        self._register_binary("nCr", OpCode.NCR, aliases=("comb", "choose"))
        self._register_reducer("sum", OpCode.SUM)
        self._register_reducer("avg", OpCode.AVG, aliases=("mean", "average"))
        self._register_reducer("min", OpCode.MIN)
        self._register_reducer("max", OpCode.MAX)
        self._register_reducer("len", OpCode.LEN, aliases=("length", "count"))

    def _register(self, spec: FunctionSpec, aliases: Iterable[str] = ()) -> None:
        for name in (spec.name, *aliases):
            self.table[name.lower()] = spec

    def _register_scalar(self, name: str, opcode: OpCode, aliases: Iterable[str] = ()) -> None:
        self._register(FunctionSpec(name, {1: opcode}), aliases)

    def _register_binary(self, name: str, opcode: OpCode, aliases: Iterable[str] = ()) -> None:
        self._register(FunctionSpec(name, {2: opcode}), aliases)

    def _register_reducer(self, name: str, opcode: OpCode, aliases: Iterable[str] = ()) -> None:
        self._register(FunctionSpec(name, {1: opcode}, reducer=True), aliases)

    def lookup(self, name: str) -> Optional[FunctionSpec]:
        return self.table.get(name.lower())

    def names(self) -> List[str]:
        return sorted(self.table)


FUNCTIONS = FunctionTable()


class CodeGenerator:
    """Compiles an expression tree into a straight-line stack program.

    Children are emitted before their parent, so every operation finds its
    inputs on top of the operand stack. Each subexpression is also given a
    static type (``NUM`` or ``ARR``); mismatches are rejected here so the VM
    only ever sees well-typed code.
    """

    def __init__(self, functions: FunctionTable = FUNCTIONS) -> None:
        self.functions = functions
        self.builder = ProgramBuilder()
        self.depth = 0
        self.nesting = 0

    def generate(self, node: Node) -> Program:
        self.builder = ProgramBuilder()
        self.depth = 0
        self.nesting = 0
        self._emit_node(node)
        if self.depth != 1:
            raise InternalFault(f"Generated code leaves {self.depth} values on the stack")
        return self.builder.build()

    def _emit_node(self, node: Node) -> str:
        self.nesting += 1
        if self.nesting > MAX_TREE_DEPTH:
            raise CodegenError("Expression nested too deeply", offset=node.offset)
        try:
            return self._emit_tree(node)
        finally:
            self.nesting -= 1

    def _emit_tree(self, node: Node) -> str:
        if isinstance(node, NumberLiteral):
            index = self.builder.add_constant(node.value)
            self._emit(OpCode.PUSH_CONST, index, node.offset)
            return TYPE_NUM
        if isinstance(node, ArrayLiteral):
            for item in node.items:
                if self._emit_node(item) != TYPE_NUM:
                    raise CodegenError("Array elements must be numbers, not arrays", offset=item.offset)
            self._emit(OpCode.BUILD_ARRAY, len(node.items), node.offset)
            return TYPE_ARR
        if isinstance(node, UnaryOp):
            self._emit_scalar(node.operand, f"operator '{node.op}'")
            self._emit(UNARY_OPERATORS[node.op], None, node.offset)
            return TYPE_NUM
        if isinstance(node, BinaryOp):
            self._emit_scalar(node.left, f"operator '{node.op}'")
            self._emit_scalar(node.right, f"operator '{node.op}'")
            self._emit(BINARY_OPERATORS[node.op], None, node.offset)
            return TYPE_NUM
        if isinstance(node, Call):
            return self._emit_call(node)
        raise InternalFault(f"Unknown node type {type(node).__name__}")

    def _emit_call(self, node: Call) -> str:
        spec = self.functions.lookup(node.name)
        if spec is None:
            raise CodegenError(f"Unknown function '{node.name}'", offset=node.offset)
        opcode = spec.opcode_for(len(node.args), node.offset)
        if spec.reducer:
            arg = node.args[0]
            if self._emit_node(arg) != TYPE_ARR:
                raise CodegenError(f"{spec.name} expects an array argument, e.g. {spec.name}([1, 2, 3])", offset=arg.offset)
        else:
            for arg in node.args:
                self._emit_scalar(arg, spec.name)
        self._emit(opcode, None, node.offset)
        return TYPE_NUM

    def _emit_scalar(self, node: Node, context: str) -> None:
        if self._emit_node(node) != TYPE_NUM:
            raise CodegenError(f"{context} expects a number, not an array", offset=node.offset)

    def _emit(self, opcode: OpCode, operand: Optional[int], offset: int) -> None:
        pops, pushes = stack_effect(opcode, operand)
        if pops > self.depth:
            raise InternalFault(f"{opcode.name} would pop {pops} values from a stack of {self.depth}")
        try:
            self.builder.emit(opcode, operand, offset=offset)
        except ValueError as exc:
            raise InternalFault(str(exc)) from exc
        self.depth += pushes - pops


def generate(node: Node) -> Program:
    return CodeGenerator().generate(node)
