from __future__ import annotations
from typing import Optional


class CalcError(Exception):
    """Base class for calculator errors."""

    stage = "Error"

    def __init__(self, message: str, *, offset: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset

    def describe(self) -> str:
        if self.offset is None:
            return f"{self.stage}: {self.message}"
        return f"{self.stage} at offset {self.offset}: {self.message}"


class InternalFault(CalcError):
    """Raised when generated code or VM state breaks a structural invariant.

    Seeing one means the compiler has a bug; it never signals bad input.
    """

    stage = "InternalFault"
