"""Expression tree produced by the parser and consumed by the code generator."""

from __future__ import annotations
from dataclasses import dataclass
from typing import List


@dataclass
class Node:
    offset: int


@dataclass
class NumberLiteral(Node):
    value: float


@dataclass
class ArrayLiteral(Node):
    items: List[Node]


@dataclass
class UnaryOp(Node):
    # "-" (negation) or "!" (factorial)
    op: str
    operand: Node


@dataclass
class BinaryOp(Node):
    op: str
    left: Node
    right: Node


@dataclass
class Call(Node):
    name: str
    args: List[Node]


def dump(node: Node) -> str:
    """Render a tree in a compact prefix form, e.g. ``(+ 1 (* 2 3))``."""
    if isinstance(node, NumberLiteral):
        return repr(node.value)
    if isinstance(node, ArrayLiteral):
        return "[" + ", ".join(dump(item) for item in node.items) + "]"
    if isinstance(node, UnaryOp):
        return f"({node.op} {dump(node.operand)})"
    if isinstance(node, BinaryOp):
        return f"({node.op} {dump(node.left)} {dump(node.right)})"
    if isinstance(node, Call):
        return "(" + " ".join([node.name] + [dump(arg) for arg in node.args]) + ")"
    raise TypeError(f"Unknown node type {type(node).__name__}")
