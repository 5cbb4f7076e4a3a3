from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from bytecode import Instruction, OpCode, Program
from errors import CalcError, InternalFault


TYPE_NUM = "NUM"
TYPE_ARR = "ARR"

# Largest n for which n! is a finite double.
MAX_FACTORIAL = 170


def format_number(x: float) -> str:
    """Plain positional decimal, shortest digits that round-trip, no exponent."""
    if x == 0.0:
        return "0"
    return np.format_float_positional(x, unique=True, trim="-")


@dataclass(eq=False)
class Value:
    type: str
    value: Any

    @classmethod
    def number(cls, x: float) -> "Value":
        return cls(TYPE_NUM, float(x))

    @classmethod
    def array(cls, items: List[float]) -> "Value":
        data: NDArray[np.float64] = np.array(items, dtype=np.float64)
        data.flags.writeable = False
        return cls(TYPE_ARR, data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value) or other.type != self.type:
            return NotImplemented
        if self.type == TYPE_ARR:
            return bool(np.array_equal(self.value, other.value))
        return self.value == other.value

    def __str__(self) -> str:
        if self.type == TYPE_ARR:
            return "[" + ", ".join(format_number(float(x)) for x in self.value) + "]"
        return format_number(self.value)


class RuntimeErrorKind(Enum):
    DIVISION_BY_ZERO = "DivisionByZero"
    DOMAIN_ERROR = "DomainError"
    EMPTY_ARRAY = "EmptyArray"


class CalcRuntimeError(CalcError):
    """Raised for faults caused by the values an expression computes."""

    stage = "RuntimeError"

    def __init__(self, kind: RuntimeErrorKind, message: str, *, opcode: Optional[OpCode] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.opcode = opcode
        self.step_index: Optional[int] = None

    def describe(self) -> str:
        where = f" at offset {self.offset}" if self.offset is not None else ""
        return f"{self.stage} ({self.kind.value}){where}: {self.message}"


@dataclass
class StepEntry:
    step_index: int
    instruction: Instruction
    stack_before: Optional[Tuple[str, ...]]
    stack_after: Optional[Tuple[str, ...]]


class StepLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.entries: List[StepEntry] = []

    def record(self, *, instruction: Instruction, stack_before: Optional[List[Value]]) -> StepEntry:
        # Snapshots are only taken in verbose mode; the step itself is always
        # logged so a failure can name its instruction.
        before = tuple(str(v) for v in stack_before) if stack_before is not None else None
        entry = StepEntry(step_index=len(self.entries), instruction=instruction, stack_before=before, stack_after=None)
        self.entries.append(entry)
        return entry

    def finish(self, entry: StepEntry, stack: List[Value]) -> None:
        if self.verbose:
            entry.stack_after = tuple(str(v) for v in stack)

    def format_table(self) -> str:
        lines = [f"{'STEP':>4}  {'INSTRUCTION':<18}  {'STACK BEFORE':<24}  STACK AFTER"]
        for entry in self.entries:
            instr = entry.instruction
            text = instr.mnemonic if instr.operand is None else f"{instr.mnemonic} {instr.operand}"
            before = _format_stack(entry.stack_before)
            after = _format_stack(entry.stack_after)
            lines.append(f"{entry.step_index:>4}  {text:<18}  {before:<24}  {after}")
        return "\n".join(lines)


def _format_stack(stack: Optional[Tuple[str, ...]]) -> str:
    if stack is None:
        return "-"
    return "[" + " ".join(stack) + "]"


Handler = Callable[[List[Value], Instruction], None]


class VM:
    """Stack machine that runs a ``Program`` front to back.

    The program is never modified, so one program may be run many times.
    Every opcode has exactly one handler; the table is checked when the VM
    is built.
    """

    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose
        self.logger = StepLogger(verbose=verbose)
        self.constants: Tuple[float, ...] = ()
        self.table: Dict[OpCode, Handler] = {}
        self.table[OpCode.PUSH_CONST] = self._push_const
        self.table[OpCode.BUILD_ARRAY] = self._build_array
        self._register_binary(OpCode.ADD, lambda a, b: a + b)
        self._register_binary(OpCode.SUB, lambda a, b: a - b)
        self._register_binary(OpCode.MUL, lambda a, b: a * b)
        self._register_binary(OpCode.DIV, self._div)
        self._register_binary(OpCode.MOD, self._mod)
        self._register_binary(OpCode.POW, self._pow)
        self._register_unary(OpCode.NEG, lambda a: -a)
        self._register_unary(OpCode.FACT, self._factorial)
        self._register_unary(OpCode.SIN, math.sin)
        self._register_unary(OpCode.COS, math.cos)
        self._register_unary(OpCode.TAN, math.tan)
        self._register_unary(OpCode.ASIN, self._asin)
        self._register_unary(OpCode.ACOS, self._acos)
        self._register_unary(OpCode.ATAN, math.atan)
        self._register_unary(OpCode.SINH, math.sinh)
        self._register_unary(OpCode.COSH, math.cosh)
        self._register_unary(OpCode.TANH, math.tanh)
        self._register_unary(OpCode.SQRT, self._sqrt)
        self._register_unary(OpCode.CBRT, lambda a: float(np.cbrt(a)))
        self._register_unary(OpCode.LOG, lambda a: math.log10(self._expect_positive(a, "log")))
        self._register_unary(OpCode.LOG2, lambda a: math.log2(self._expect_positive(a, "log2")))
        self._register_unary(OpCode.LN, lambda a: math.log(self._expect_positive(a, "ln")))
        self._register_binary(OpCode.LOG_BASE, self._log_base)
        self._register_unary(OpCode.EXP, math.exp)
        self._register_unary(OpCode.ABS, abs)
        self._register_unary(OpCode.FLOOR, lambda a: float(math.floor(a)))
        self._register_unary(OpCode.CEIL, lambda a: float(math.ceil(a)))
        self._register_unary(OpCode.ROUND, self._round)
        self._register_unary(OpCode.SIGN, lambda a: 0.0 if a == 0.0 else math.copysign(1.0, a))
        self._register_unary(OpCode.TORAD, math.radians)
        self._register_unary(OpCode.TODEG, math.degrees)
        self._register_binary(OpCode.GCD, self._gcd)
        self._register_binary(OpCode.LCM, self._lcm)
        self._register_binary(OpCode.NPR, self._npr)
        self._register_binary(OpCode.NCR, self._ncr)
        self._register_reducer(OpCode.SUM, lambda data: float(np.sum(data)), allow_empty=True)
        self._register_reducer(OpCode.LEN, lambda data: float(data.size), allow_empty=True)
        self._register_reducer(OpCode.AVG, self._mean)
        self._register_reducer(OpCode.MIN, lambda data: float(np.min(data)))
        self._register_reducer(OpCode.MAX, lambda data: float(np.max(data)))
        missing = [op.name for op in OpCode if op not in self.table]
        if missing:
            raise InternalFault(f"No VM handler for {', '.join(missing)}")

    def run(self, program: Program) -> Value:
        self.logger = StepLogger(verbose=self.verbose)
        self.constants = program.constants
        stack: List[Value] = []
        log = self.logger
        verbose = self.verbose
        table = self.table

        offsets = program.offsets

        for ip, instruction in enumerate(program.instructions):
            entry = log.record(instruction=instruction, stack_before=stack if verbose else None)
            handler = table.get(instruction.opcode)
            if handler is None:
                raise InternalFault(f"Unknown opcode {instruction.opcode!r}")
            try:
                handler(stack, instruction)
            except CalcRuntimeError as error:
                error.opcode = instruction.opcode
                error.step_index = entry.step_index
                if ip < len(offsets):
                    error.offset = offsets[ip]
                raise
            log.finish(entry, stack)

        if len(stack) != 1:
            raise InternalFault(f"Program finished with {len(stack)} values on the stack")
        return stack[0]

    # Registration
    def _register_unary(self, opcode: OpCode, func: Callable[[float], float]) -> None:
        def handler(stack: List[Value], _: Instruction) -> None:
            a = self._pop_number(stack)
            stack.append(self._checked(func, a))

        self.table[opcode] = handler

    def _register_binary(self, opcode: OpCode, func: Callable[[float, float], float]) -> None:
        def handler(stack: List[Value], _: Instruction) -> None:
            # Right operand is on top.
            b = self._pop_number(stack)
            a = self._pop_number(stack)
            stack.append(self._checked(func, a, b))

        self.table[opcode] = handler

    def _register_reducer(
        self,
        opcode: OpCode,
        func: Callable[[NDArray[np.float64]], float],
        *,
        allow_empty: bool = False,
    ) -> None:
        def handler(stack: List[Value], _: Instruction) -> None:
            data = self._pop_array(stack)
            if data.size == 0 and not allow_empty:
                raise CalcRuntimeError(
                    RuntimeErrorKind.EMPTY_ARRAY,
                    f"{opcode.name.lower()} of an empty array is undefined",
                )
            stack.append(self._checked(func, data))

        self.table[opcode] = handler

    # Stack helpers
    def _push_const(self, stack: List[Value], instruction: Instruction) -> None:
        index = instruction.operand
        if index is None or not 0 <= index < len(self.constants):
            raise InternalFault(f"Constant index {index} outside pool of {len(self.constants)}")
        stack.append(Value.number(self.constants[index]))

    def _build_array(self, stack: List[Value], instruction: Instruction) -> None:
        count = instruction.operand or 0
        if count > len(stack):
            raise InternalFault(f"BUILD_ARRAY {count} with only {len(stack)} values on the stack")
        items: List[float] = []
        for _ in range(count):
            items.append(self._pop_number(stack))
        items.reverse()
        stack.append(Value.array(items))

    def _pop(self, stack: List[Value]) -> Value:
        if not stack:
            raise InternalFault("Operand stack underflow")
        return stack.pop()

    def _pop_number(self, stack: List[Value]) -> float:
        value = self._pop(stack)
        if value.type != TYPE_NUM:
            raise InternalFault(f"Expected a number on the stack but found {value.type}")
        return value.value

    def _pop_array(self, stack: List[Value]) -> NDArray[np.float64]:
        value = self._pop(stack)
        if value.type != TYPE_ARR:
            raise InternalFault(f"Expected an array on the stack but found {value.type}")
        return value.value

    def _checked(self, func: Callable[..., float], *args: Any) -> Value:
        try:
            result = func(*args)
        except OverflowError:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, "Result is too large to represent")
        except ValueError:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, "Argument outside the function's domain")
        if math.isnan(result):
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, "Result is not a number")
        if math.isinf(result):
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, "Result is too large to represent")
        return Value.number(result)

    # Numeric semantics
    def _expect_positive(self, a: float, name: str) -> float:
        if a <= 0.0:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"{name} argument must be > 0, got {format_number(a)}")
        return a

    def _expect_natural(self, a: float, name: str) -> int:
        if a < 0.0 or not float(a).is_integer():
            raise CalcRuntimeError(
                RuntimeErrorKind.DOMAIN_ERROR,
                f"{name} expects a non-negative integer, got {format_number(a)}",
            )
        return int(a)

    def _expect_integer(self, a: float, name: str) -> int:
        if not float(a).is_integer():
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"{name} expects integers, got {format_number(a)}")
        return int(a)

    def _div(self, a: float, b: float) -> float:
        if b == 0.0:
            raise CalcRuntimeError(RuntimeErrorKind.DIVISION_BY_ZERO, "Division by zero")
        return a / b

    def _mod(self, a: float, b: float) -> float:
        if b == 0.0:
            raise CalcRuntimeError(RuntimeErrorKind.DIVISION_BY_ZERO, "Modulo by zero")
        return math.fmod(a, b)

    def _pow(self, a: float, b: float) -> float:
        try:
            return math.pow(a, b)
        except ValueError:
            raise CalcRuntimeError(
                RuntimeErrorKind.DOMAIN_ERROR,
                f"{format_number(a)} ^ {format_number(b)} has no real value",
            )

    def _sqrt(self, a: float) -> float:
        if a < 0.0:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"sqrt of negative number {format_number(a)}")
        return math.sqrt(a)

    def _asin(self, a: float) -> float:
        if not -1.0 <= a <= 1.0:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"asin argument must be in [-1, 1], got {format_number(a)}")
        return math.asin(a)

    def _acos(self, a: float) -> float:
        if not -1.0 <= a <= 1.0:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"acos argument must be in [-1, 1], got {format_number(a)}")
        return math.acos(a)

    def _log_base(self, a: float, base: float) -> float:
        self._expect_positive(a, "log")
        if base <= 0.0 or base == 1.0:
            raise CalcRuntimeError(
                RuntimeErrorKind.DOMAIN_ERROR,
                f"log base must be > 0 and != 1, got {format_number(base)}",
            )
        return math.log(a) / math.log(base)

    def _round(self, a: float) -> float:
        # Halves round away from zero. The fraction is exact, so values just
        # below one half stay below it.
        magnitude = abs(a)
        whole = math.floor(magnitude)
        if magnitude - whole >= 0.5:
            whole += 1
        return math.copysign(whole, a)

    def _factorial(self, a: float) -> float:
        n = self._expect_natural(a, "factorial")
        if n > MAX_FACTORIAL:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"{n}! is too large to represent")
        result = 1.0
        for i in range(2, n + 1):
            result *= i
        return result

    def _mean(self, data: NDArray[np.float64]) -> float:
        with np.errstate(over="ignore"):
            total = np.sum(data)
        if np.isfinite(total):
            return float(total / data.size)
        # The sum overflowed; dividing first keeps a representable mean.
        return float(np.sum(data / data.size))

    def _gcd(self, a: float, b: float) -> float:
        return float(math.gcd(self._expect_integer(a, "gcd"), self._expect_integer(b, "gcd")))

    def _lcm(self, a: float, b: float) -> float:
        x, y = self._expect_integer(a, "lcm"), self._expect_integer(b, "lcm")
        if x == 0 or y == 0:
            return 0.0
        return float(abs(x * y) // math.gcd(x, y))

    def _npr(self, a: float, b: float) -> float:
        n, r = self._expect_natural(a, "nPr"), self._expect_natural(b, "nPr")
        if r > n:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"nPr requires r <= n, got n={n}, r={r}")
        result = 1.0
        for i in range(n - r + 1, n + 1):
            result *= i
            if math.isinf(result):
                break
        return result

    def _ncr(self, a: float, b: float) -> float:
        n, r = self._expect_natural(a, "nCr"), self._expect_natural(b, "nCr")
        if r > n:
            raise CalcRuntimeError(RuntimeErrorKind.DOMAIN_ERROR, f"nCr requires r <= n, got n={n}, r={r}")
        k = min(r, n - r)
        result = 1.0
        for i in range(1, k + 1):
            result = result * (n - k + i) / i
            if math.isinf(result):
                return result
        return float(round(result))
